"""KERI key conversion for did:webs documents.

KERI keys are CESR qualified base64: a derivation code followed by the
base64url key material, 44 characters in total for Ed25519. For one
character codes the raw 32 bytes are pre-padded with one zero byte before
encoding and the leading character is replaced by the code, so decoding the
full 44 characters yields 33 bytes whose first byte carries the code.
"""

import base64
from dataclasses import dataclass
from typing import Dict

from app.didlink.exceptions import InvalidIdentifierError


# KERI derivation codes for Ed25519 (from keripy MtrDex)
#   B = Ed25519 non-transferable
#   D = Ed25519 transferable
ED25519_CODES = frozenset({"B", "D"})

ED25519_QB64_LENGTH = 44


@dataclass(frozen=True)
class VerificationKey:
    """Decoded KERI verification key.

    Attributes:
        raw: 32-byte Ed25519 public key
        qb64: Original qualified key string
        code: KERI derivation code (e.g., "D")
    """
    raw: bytes
    qb64: str
    code: str


def cesr_encode(raw: bytes, code: str = "E") -> str:
    """Encode raw bytes in CESR format with a one-character derivation code.

    1. Compute pad size: ps = (3 - (len(raw) % 3)) % 3
    2. Prepad raw with ps zero bytes
    3. Base64 encode the prepadded bytes
    4. Skip the first ps characters (which encode the zero padding)
    5. Prepend the derivation code
    """
    ps = (3 - (len(raw) % 3)) % 3
    b64 = base64.urlsafe_b64encode(bytes(ps) + raw).decode("ascii")
    return code + b64[ps:].rstrip("=")


def decode_keri_key(qb64: str) -> VerificationKey:
    """Decode a qualified Ed25519 KERI key to raw bytes.

    Raises:
        InvalidIdentifierError: If the key is not a 44-char Ed25519 qb64 key.
    """
    if not isinstance(qb64, str) or len(qb64) != ED25519_QB64_LENGTH:
        raise InvalidIdentifierError(
            f"Invalid KERI key: expected {ED25519_QB64_LENGTH} chars, "
            f"got {len(qb64) if isinstance(qb64, str) else type(qb64).__name__}"
        )

    code = qb64[0]
    if code not in ED25519_CODES:
        raise InvalidIdentifierError(
            f"Unsupported derivation code '{code}', expected Ed25519 (B or D)"
        )

    try:
        full = base64.urlsafe_b64decode(qb64.encode("ascii"))
    except ValueError as e:
        raise InvalidIdentifierError(f"Failed to decode KERI key base64: {e}")

    # First byte holds the derivation code bits
    raw = full[1:]
    if len(raw) != 32:
        raise InvalidIdentifierError(
            f"Invalid key length: {len(raw)} bytes, expected 32 for Ed25519"
        )
    return VerificationKey(raw=raw, qb64=qb64, code=code)


def keri_key_to_jwk(qb64: str) -> Dict[str, str]:
    """Convert a KERI key to an OKP/Ed25519 JWK.

    The full qualified key is used as ``kid``; ``x`` is the raw key
    re-encoded as unpadded base64url.
    """
    key = decode_keri_key(qb64)
    return {
        "kid": qb64,
        "kty": "OKP",
        "crv": "Ed25519",
        "x": base64.urlsafe_b64encode(key.raw).decode("ascii").rstrip("="),
    }
