"""DID linkage exceptions mapped to error codes.

Resolution failures are recoverable (a retry may succeed); validation and
credential decode failures are not.
"""

from app.didlink.api_models import ErrorCode


class LinkageError(Exception):
    """Base exception for linkage operations.

    Carries an error code that maps to ErrorCode constants.
    The caller is responsible for converting this to ErrorDetail.
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class InvalidIdentifierError(LinkageError):
    """Identifier (DID or AID) is malformed."""

    def __init__(self, message: str = "Invalid identifier", code: str = ErrorCode.DID_INVALID):
        super().__init__(code, message)

    @classmethod
    def invalid_aid(cls, aid: str) -> "InvalidIdentifierError":
        """Factory for AID_INVALID error."""
        return cls(f"Invalid AID format: {aid}", code=ErrorCode.AID_INVALID)


class DocumentInvalidError(LinkageError):
    """A resolved DID document is missing required fields or is not a document."""

    def __init__(self, message: str = "Invalid DID document"):
        super().__init__(ErrorCode.DOCUMENT_INVALID, message)


class DocumentResolutionError(LinkageError):
    """DID document could not be resolved.

    Raised by resolver clients for a single failed path, and by the linkage
    verifier when every resolution strategy failed (message names each cause).
    """

    def __init__(self, message: str = "DID resolution failed"):
        super().__init__(ErrorCode.DOCUMENT_RESOLUTION_FAILED, message)


class KeyStateUnavailableError(LinkageError):
    """No key state for an AID from either KERIA path."""

    def __init__(self, aid: str):
        self.aid = aid
        super().__init__(
            ErrorCode.KEY_STATE_UNAVAILABLE,
            f"Unable to get key state for AID: {aid}",
        )


class EventLogUnavailableError(LinkageError):
    """KEL export for an AID could not be fetched."""

    def __init__(self, aid: str, reason: str):
        self.aid = aid
        super().__init__(
            ErrorCode.EVENT_LOG_UNAVAILABLE,
            f"Failed to fetch KERI CESR for AID {aid}: {reason}",
        )


class SaidMismatchError(LinkageError):
    """Credential SAID does not match its content."""

    def __init__(self, message: str = "SAID mismatch"):
        super().__init__(ErrorCode.SAID_MISMATCH, message)


class VcError(LinkageError):
    """Exception for linkage VC JWT decode/validation errors."""

    @classmethod
    def parse_failed(cls, reason: str) -> "VcError":
        """Factory for VC_PARSE_FAILED error.

        Used for:
        - Wrong segment count
        - Invalid base64/JSON
        - Missing required fields
        """
        return cls(
            code=ErrorCode.VC_PARSE_FAILED,
            message=f"VC JWT parse failed: {reason}"
        )

    @classmethod
    def expired(cls, reason: str) -> "VcError":
        """Factory for VC_EXPIRED error (covers not-yet-valid as well)."""
        return cls(
            code=ErrorCode.VC_EXPIRED,
            message=f"VC JWT expired: {reason}"
        )

    @classmethod
    def forbidden_alg(cls, alg: str) -> "VcError":
        """Factory for VC_FORBIDDEN_ALG error."""
        return cls(
            code=ErrorCode.VC_FORBIDDEN_ALG,
            message=f"VC JWT uses forbidden algorithm: {alg}"
        )

    @classmethod
    def signature_invalid(cls, reason: str) -> "VcError":
        """Factory for VC_SIGNATURE_INVALID error."""
        return cls(
            code=ErrorCode.VC_SIGNATURE_INVALID,
            message=f"VC JWT signature invalid: {reason}"
        )
