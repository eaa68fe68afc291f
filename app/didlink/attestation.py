"""Sign DID linkage attestation VCs with the LE's KERI key."""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import pysodium

from app.core.config import LINKAGE_SIGNING_SEED
from app.didlink.did.keys import cesr_encode
from app.didlink.vc import (
    assemble_signed_jwt,
    build_linkage_vc_payload,
    build_vc_jwt_header,
    encode_vc_as_jwt,
)

log = logging.getLogger("didlink.attestation")


class Signer(Protocol):
    """An Ed25519 signing key held by the LE."""

    @property
    def current_key(self) -> str:
        """Current public key, qb64."""
        ...

    def sign(self, data: bytes) -> bytes:
        """Raw 64-byte Ed25519 signature over data."""
        ...


class Ed25519Signer:
    """Ed25519 signer from a 32-byte seed.

    The public key is exposed in KERI form (``D`` transferable code) so it
    matches the key listed in the did:webs document.
    """

    def __init__(self, seed: bytes):
        if len(seed) != pysodium.crypto_sign_SEEDBYTES:
            raise ValueError(
                f"Ed25519 seed must be {pysodium.crypto_sign_SEEDBYTES} bytes, got {len(seed)}"
            )
        self._public_key, self._secret_key = pysodium.crypto_sign_seed_keypair(seed)

    @property
    def public_key(self) -> bytes:
        return self._public_key

    @property
    def current_key(self) -> str:
        return cesr_encode(self._public_key, code="D")

    def sign(self, data: bytes) -> bytes:
        return pysodium.crypto_sign_detached(data, self._secret_key)


@dataclass(frozen=True)
class SignedLinkageVc:
    jwt: str
    verification_method: str


def sign_linkage_vc(
    signer: Signer,
    did_webs: str,
    did_iota: str,
    lei: str,
    designated_aliases_said: str,
    now: Optional[int] = None,
) -> SignedLinkageVc:
    """Build and sign the linkage VC JWT.

    The ``kid`` is the did:webs verification method of the signer's current
    key, so a verifier can find the key by resolving the did:webs document.
    """
    verification_method = f"{did_webs}#{signer.current_key}"

    payload = build_linkage_vc_payload(did_webs, did_iota, lei, designated_aliases_said, now=now)
    header = build_vc_jwt_header(verification_method)
    unsigned_jwt = encode_vc_as_jwt(header, payload)

    signature = signer.sign(unsigned_jwt.encode("ascii"))
    jwt = assemble_signed_jwt(unsigned_jwt, signature)
    log.info(f"Signed linkage VC ({len(jwt)} chars)", extra={"did": did_webs})

    return SignedLinkageVc(jwt=jwt, verification_method=verification_method)


def signer_from_config(seed_hex: str = LINKAGE_SIGNING_SEED) -> Optional[Ed25519Signer]:
    """Signer from a hex-encoded seed, or None when no seed is configured.

    Raises:
        ValueError: If the seed is not 32 bytes of hex.
    """
    if not seed_hex:
        log.info("No linkage signing seed configured; attestation disabled")
        return None
    return Ed25519Signer(bytes.fromhex(seed_hex))
