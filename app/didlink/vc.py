"""
Linkage VC JWT codec.

Builds, encodes, decodes and verifies the W3C VC (JWT form) attesting that a
did:webs and a did:iota are controlled by the same legal entity. The JWT is
signed with the LE's KERI Ed25519 key using a detached signature over
``base64url(header).base64url(payload)``.

``validate_vc_jwt`` raises a coded VcError for the first failed check;
``verify_vc_signature`` wraps it and fails closed with False.
"""

import base64
import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import pysodium

from app.core.config import ALLOWED_ALGORITHMS, VC_CONTEXT, VC_TYPES, VC_VALIDITY_SECONDS
from app.didlink.exceptions import VcError


@dataclass(frozen=True)
class VcJwtHeader:
    """JWT header for EdDSA signing."""
    alg: str
    kid: str
    typ: str = "JWT"

    def to_dict(self) -> Dict[str, Any]:
        return {"alg": self.alg, "kid": self.kid, "typ": self.typ}


@dataclass(frozen=True)
class LinkageClaim:
    """The ``credentialSubject.linkage`` assertion."""
    did_webs: str
    did_iota: str
    lei: str
    designated_aliases_said: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "didWebs": self.did_webs,
            "didIota": self.did_iota,
            "lei": self.lei,
            "designatedAliasesSaid": self.designated_aliases_said,
        }


@dataclass(frozen=True)
class LinkageVcPayload:
    """W3C VC payload for the DID linkage attestation."""
    iss: str
    sub: str
    jti: str
    nbf: int
    iat: int
    exp: int
    linkage: LinkageClaim
    context: tuple = VC_CONTEXT
    types: tuple = VC_TYPES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iss": self.iss,
            "sub": self.sub,
            "jti": self.jti,
            "nbf": self.nbf,
            "iat": self.iat,
            "exp": self.exp,
            "vc": {
                "@context": list(self.context),
                "type": list(self.types),
                "credentialSubject": {
                    "id": self.sub,
                    "linkage": self.linkage.to_dict(),
                },
            },
        }


@dataclass(frozen=True)
class DecodedVcJwt:
    """Decoded JWT components.

    Attributes:
        header: Parsed header.
        payload: Parsed payload.
        signature: Raw signature bytes.
        signing_input: ``header.payload`` exactly as received (signed bytes).
    """
    header: VcJwtHeader
    payload: LinkageVcPayload
    signature: bytes
    signing_input: str


def build_linkage_vc_payload(
    issuer_did: str,
    subject_did: str,
    lei: str,
    designated_aliases_said: str,
    now: Optional[int] = None,
) -> LinkageVcPayload:
    """Build a linkage VC payload valid from now for one year."""
    if now is None:
        now = int(time.time())
    return LinkageVcPayload(
        iss=issuer_did,
        sub=subject_did,
        jti=f"urn:uuid:{uuid.uuid4()}",
        nbf=now,
        iat=now,
        exp=now + VC_VALIDITY_SECONDS,
        linkage=LinkageClaim(
            did_webs=issuer_did,
            did_iota=subject_did,
            lei=lei,
            designated_aliases_said=designated_aliases_said,
        ),
    )


def build_vc_jwt_header(verification_method_id: str) -> VcJwtHeader:
    """Build the JWT header for VC signing."""
    return VcJwtHeader(alg="EdDSA", kid=verification_method_id, typ="JWT")


def encode_vc_as_jwt(header: VcJwtHeader, payload: LinkageVcPayload) -> str:
    """Encode the VC as an unsigned JWT: ``base64url(header).base64url(payload)``.

    The returned string is exactly what the detached signature covers.
    """
    return f"{_encode_jwt_part(header.to_dict())}.{_encode_jwt_part(payload.to_dict())}"


def assemble_signed_jwt(unsigned_jwt: str, signature: bytes) -> str:
    """Append the base64url signature segment."""
    return f"{unsigned_jwt}.{_b64url_encode(signature)}"


def decode_vc_jwt(jwt: str) -> DecodedVcJwt:
    """Decode a VC JWT into its components.

    Raises:
        VcError: If the JWT is malformed (segment count, base64, JSON, fields).
    """
    if not isinstance(jwt, str) or not jwt.strip():
        raise VcError.parse_failed("JWT is missing or empty")

    parts = jwt.strip().split(".")
    if len(parts) != 3:
        raise VcError.parse_failed(f"expected 3 parts, got {len(parts)}")

    raw_header, raw_payload, raw_signature = parts
    header = _parse_header(_decode_jwt_part(raw_header, "header"))
    payload = _parse_payload(_decode_jwt_part(raw_payload, "payload"))
    try:
        signature = _b64url_decode(raw_signature)
    except ValueError as e:
        raise VcError.parse_failed(f"signature base64url decode failed: {e}")

    return DecodedVcJwt(
        header=header,
        payload=payload,
        signature=signature,
        signing_input=f"{raw_header}.{raw_payload}",
    )


def is_vc_expired(jwt: str, now: Optional[int] = None) -> bool:
    """True if the JWT has expired or isn't valid yet (checks exp/nbf).

    Raises:
        VcError: If the JWT cannot be decoded.
    """
    payload = decode_vc_jwt(jwt).payload
    return _outside_validity(payload, _now(now))


def validate_vc_jwt(jwt: str, public_key: bytes, now: Optional[int] = None) -> DecodedVcJwt:
    """Decode a VC JWT and check its validity window, algorithm and signature.

    Args:
        jwt: Full signed JWT string.
        public_key: Raw 32-byte Ed25519 public key.
        now: Evaluation time (defaults to time.time()).

    Returns:
        The decoded JWT.

    Raises:
        VcError: VC_PARSE_FAILED, VC_EXPIRED, VC_FORBIDDEN_ALG or
            VC_SIGNATURE_INVALID.
    """
    decoded = decode_vc_jwt(jwt)

    current = _now(now)
    if current < decoded.payload.nbf:
        raise VcError.expired(f"not valid before {decoded.payload.nbf}")
    if current > decoded.payload.exp:
        raise VcError.expired(f"expired at {decoded.payload.exp}")

    if decoded.header.alg not in ALLOWED_ALGORITHMS:
        raise VcError.forbidden_alg(decoded.header.alg)

    if not isinstance(public_key, (bytes, bytearray)) or len(public_key) != pysodium.crypto_sign_PUBLICKEYBYTES:
        raise VcError.signature_invalid(
            f"public key must be {pysodium.crypto_sign_PUBLICKEYBYTES} bytes"
        )

    try:
        pysodium.crypto_sign_verify_detached(
            decoded.signature,
            decoded.signing_input.encode("ascii"),
            bytes(public_key),
        )
    except Exception as e:
        # pysodium raises ValueError on mismatch and on malformed signatures
        raise VcError.signature_invalid(str(e) or "verification failed")
    return decoded


def verify_vc_signature(jwt: str, public_key: bytes, now: Optional[int] = None) -> bool:
    """Verify a VC JWT's Ed25519 signature; also rejects expired JWTs.

    Never raises for a malformed JWT or key: every failure is False.
    """
    try:
        validate_vc_jwt(jwt, public_key, now=now)
    except VcError:
        return False
    return True


def _now(now: Optional[int]) -> int:
    return int(time.time()) if now is None else now


def _outside_validity(payload: LinkageVcPayload, now: int) -> bool:
    return now < payload.nbf or now > payload.exp


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(encoded: str) -> bytes:
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as e:
        raise ValueError(str(e))


def _encode_jwt_part(data: Dict[str, Any]) -> str:
    return _b64url_encode(json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


def _decode_jwt_part(encoded: str, part_name: str) -> Dict[str, Any]:
    """Decode a base64url-encoded JWT part to a dictionary."""
    try:
        decoded_bytes = _b64url_decode(encoded)
    except ValueError as e:
        raise VcError.parse_failed(f"{part_name} base64url decode failed: {e}")

    try:
        parsed = json.loads(decoded_bytes)
    except json.JSONDecodeError as e:
        raise VcError.parse_failed(f"{part_name} JSON parse failed: {e}")
    except UnicodeDecodeError as e:
        raise VcError.parse_failed(f"{part_name} invalid UTF-8: {e}")

    if not isinstance(parsed, dict):
        raise VcError.parse_failed(f"{part_name} JSON root must be an object")
    return parsed


def _parse_header(data: Dict[str, Any]) -> VcJwtHeader:
    alg = _require_string(data, "alg", "header")
    kid = _require_string(data, "kid", "header")
    typ = data.get("typ")
    if not isinstance(typ, str):
        typ = "JWT"
    return VcJwtHeader(alg=alg, kid=kid, typ=typ)


def _parse_payload(data: Dict[str, Any]) -> LinkageVcPayload:
    vc = data.get("vc")
    if not isinstance(vc, dict):
        raise VcError.parse_failed("payload field vc must be an object")
    subject = vc.get("credentialSubject")
    if not isinstance(subject, dict):
        raise VcError.parse_failed("vc.credentialSubject must be an object")
    linkage = subject.get("linkage")
    if not isinstance(linkage, dict):
        raise VcError.parse_failed("credentialSubject.linkage must be an object")

    context = vc.get("@context", list(VC_CONTEXT))
    types = vc.get("type", list(VC_TYPES))
    return LinkageVcPayload(
        iss=_require_string(data, "iss", "payload"),
        sub=_require_string(data, "sub", "payload"),
        jti=_require_string(data, "jti", "payload"),
        nbf=_require_integer(data, "nbf", "payload"),
        iat=_require_integer(data, "iat", "payload"),
        exp=_require_integer(data, "exp", "payload"),
        linkage=LinkageClaim(
            did_webs=_require_string(linkage, "didWebs", "linkage"),
            did_iota=_require_string(linkage, "didIota", "linkage"),
            lei=_optional_string(linkage, "lei", "linkage"),
            designated_aliases_said=_optional_string(linkage, "designatedAliasesSaid", "linkage"),
        ),
        context=tuple(context) if isinstance(context, list) else (context,),
        types=tuple(types) if isinstance(types, list) else (types,),
    )


def _require_string(data: Dict[str, Any], field: str, part: str) -> str:
    """Require a non-empty string field."""
    if field not in data:
        raise VcError.parse_failed(f"{part} missing required field: {field}")
    value = data[field]
    if not isinstance(value, str):
        raise VcError.parse_failed(f"{part} field {field} must be a string")
    if not value.strip():
        raise VcError.parse_failed(f"{part} field {field} must not be empty")
    return value


def _optional_string(data: Dict[str, Any], field: str, part: str) -> str:
    """String field that may be empty (e.g. no DA credential yet)."""
    value = data.get(field, "")
    if not isinstance(value, str):
        raise VcError.parse_failed(f"{part} field {field} must be a string")
    return value


def _require_integer(data: Dict[str, Any], field: str, part: str) -> int:
    """Require an integer field."""
    if field not in data:
        raise VcError.parse_failed(f"{part} missing required field: {field}")
    value = data[field]
    if isinstance(value, bool):
        raise VcError.parse_failed(f"{part} field {field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise VcError.parse_failed(f"{part} field {field} must be an integer")
