"""
DID linkage API models.

Request/response bodies for the HTTP surface and the error code registry
shared by the linkage exceptions.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Error Codes
# =============================================================================

class ErrorCode:
    """Error code registry"""
    # Validation layer
    DID_INVALID = "DID_INVALID"
    AID_INVALID = "AID_INVALID"
    DOCUMENT_INVALID = "DOCUMENT_INVALID"

    # Resolution layer
    DOCUMENT_RESOLUTION_FAILED = "DOCUMENT_RESOLUTION_FAILED"
    KEY_STATE_UNAVAILABLE = "KEY_STATE_UNAVAILABLE"
    EVENT_LOG_UNAVAILABLE = "EVENT_LOG_UNAVAILABLE"

    # Credential layer
    VC_PARSE_FAILED = "VC_PARSE_FAILED"
    VC_EXPIRED = "VC_EXPIRED"
    VC_FORBIDDEN_ALG = "VC_FORBIDDEN_ALG"
    VC_SIGNATURE_INVALID = "VC_SIGNATURE_INVALID"
    SAID_MISMATCH = "SAID_MISMATCH"

    # Verifier layer
    LINKAGE_NOT_VERIFIED = "LINKAGE_NOT_VERIFIED"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Recoverability mapping: recoverable errors may succeed on retry
ERROR_RECOVERABILITY: Dict[str, bool] = {
    ErrorCode.DID_INVALID: False,
    ErrorCode.AID_INVALID: False,
    ErrorCode.DOCUMENT_INVALID: False,
    ErrorCode.DOCUMENT_RESOLUTION_FAILED: True,   # Recoverable
    ErrorCode.KEY_STATE_UNAVAILABLE: True,        # Recoverable
    ErrorCode.EVENT_LOG_UNAVAILABLE: True,        # Recoverable
    ErrorCode.VC_PARSE_FAILED: False,
    ErrorCode.VC_EXPIRED: False,
    ErrorCode.VC_FORBIDDEN_ALG: False,
    ErrorCode.VC_SIGNATURE_INVALID: False,
    ErrorCode.SAID_MISMATCH: False,
    ErrorCode.LINKAGE_NOT_VERIFIED: True,         # Recoverable
    ErrorCode.NOT_CONFIGURED: False,
    ErrorCode.INTERNAL_ERROR: True,               # Recoverable
}


class ErrorDetail(BaseModel):
    """Structured error body"""
    code: str
    message: str
    recoverable: bool


# =============================================================================
# Request Models
# =============================================================================

class VerifyDidLinkingRequest(BaseModel):
    """Request body for /api/verify-did-linking"""
    model_config = ConfigDict(populate_by_name=True)

    did_webs: Optional[str] = Field(default=None, alias="didWebs")


class PublishDidDataRequest(BaseModel):
    """Request body for /keri/{aid}/publish"""
    model_config = ConfigDict(populate_by_name=True)

    did_document: Optional[Dict[str, Any]] = Field(default=None, alias="didDocument")
    da_cesr: Optional[str] = Field(default=None, alias="daCesr")


# =============================================================================
# Response Models
# =============================================================================

class WebhookAck(BaseModel):
    """Acknowledgement returned to Sally for every webhook delivery"""
    model_config = ConfigDict(populate_by_name=True)

    received: bool = True
    action: Optional[str] = None
    credential_said: Optional[str] = Field(default=None, alias="credentialSaid")
    resolved: Optional[bool] = None
    warning: Optional[str] = None


class ResolvedDidResponse(BaseModel):
    """Response for /api/resolve-did/{did}"""
    model_config = ConfigDict(populate_by_name=True)

    document: Dict[str, Any]
    iota_did: Optional[str] = Field(default=None, alias="iotaDid")
    keri_service_endpoint: Optional[str] = Field(default=None, alias="keriServiceEndpoint")
    has_iota_linkage: bool = Field(alias="hasIotaLinkage")


class AidListing(BaseModel):
    """Published AIDs and the endpoint templates they are served under"""
    model_config = ConfigDict(populate_by_name=True)

    aids: List[str]
    did_webs_format: str = Field(alias="didWebsFormat")
    endpoints: Dict[str, str]


class AttestationResponse(BaseModel):
    """Response for /api/attest"""
    model_config = ConfigDict(populate_by_name=True)

    jwt: str
    verification_method: str = Field(alias="verificationMethod")
    did_webs: str = Field(alias="didWebs")
    did_iota: str = Field(alias="didIota")
    designated_aliases_said: str = Field(alias="designatedAliasesSaid")
