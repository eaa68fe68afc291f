"""Designated Aliases credential handling and SAID computation.

The Designated Aliases (DA) ACDC is the self-issued credential in which a
legal entity lists the DIDs it designates as aliases of its AID. Its SAID
(``d``) is a content hash of the credential body:

1. Replace ``d`` with a placeholder of the same length (``#`` filled)
2. Serialize in ACDC field order (v, d, u, i, ri, s, a, e, r), no whitespace
3. Blake3-256 hash the canonical bytes
4. CESR-encode with the ``E`` derivation code (44 chars)

Changing any field changes the SAID, so a re-issued alias set always
carries a new SAID.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import blake3

from app.didlink.did.keys import cesr_encode
from app.didlink.exceptions import SaidMismatchError

log = logging.getLogger("didlink.said")

# ACDC canonical top-level field order
ACDC_FIELD_ORDER = ["v", "d", "u", "i", "ri", "s", "a", "e", "r"]

SAID_LENGTH = 44


def _acdc_canonical_serialize(data: Dict[str, Any]) -> bytes:
    """Serialize an ACDC to canonical form for SAID computation.

    Fields outside the standard order are appended in insertion order.
    """
    ordered = {}
    for key in ACDC_FIELD_ORDER:
        if key in data and data[key] is not None:
            ordered[key] = data[key]
    for key in data:
        if key not in ordered and data[key] is not None:
            ordered[key] = data[key]
    return json.dumps(ordered, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_said(data: Dict[str, Any], said_field: str = "d") -> str:
    """Compute the SAID of a credential body."""
    data_copy = dict(data)
    data_copy[said_field] = "#" * SAID_LENGTH
    digest = blake3.blake3(_acdc_canonical_serialize(data_copy)).digest()
    return cesr_encode(digest, code="E")


def saidify(data: Dict[str, Any], said_field: str = "d") -> Dict[str, Any]:
    """Return a copy of data with its SAID field populated."""
    result = dict(data)
    result[said_field] = "#" * SAID_LENGTH
    result[said_field] = compute_said(result, said_field=said_field)
    return result


@dataclass
class DesignatedAliases:
    """Parsed Designated Aliases credential.

    Attributes:
        said: Credential SAID (``sad.d``).
        issuer: Issuer AID (``sad.i``).
        schema: Schema SAID (``sad.s``).
        ids: Designated alias DIDs, in credential order (``sad.a.ids``).
        dt: Issuance datetime string (``sad.a.dt``), may be empty.
        revoked: True when the credential status shows a revocation.
        sad: Raw credential body.
    """
    said: str
    issuer: str
    schema: str
    ids: List[str]
    dt: str = ""
    revoked: bool = False
    sad: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_credential(cls, credential: Dict[str, Any]) -> Optional["DesignatedAliases"]:
        """Parse a KERIA credential listing entry.

        Returns None when the entry is not a usable DA credential (missing
        SAID or alias list).
        """
        sad = credential.get("sad") if isinstance(credential, dict) else None
        if not isinstance(sad, dict):
            return None
        attrs = sad.get("a") if isinstance(sad.get("a"), dict) else {}
        ids = attrs.get("ids")
        said = sad.get("d")
        if not isinstance(said, str) or not said or not isinstance(ids, list):
            return None

        status = credential.get("status")
        revoked = isinstance(status, dict) and status.get("et") in ("rev", "brv")

        return cls(
            said=said,
            issuer=str(sad.get("i", "")),
            schema=str(sad.get("s", "")),
            ids=[i for i in ids if isinstance(i, str)],
            dt=str(attrs.get("dt", "")),
            revoked=revoked,
            sad=sad,
        )

    def verify_said(self) -> None:
        """Check that the SAID matches the credential content.

        Raises:
            SaidMismatchError: If the recomputed SAID differs.
        """
        computed = compute_said(self.sad)
        if computed != self.said:
            raise SaidMismatchError(
                f"DA credential SAID mismatch: has {self.said[:20]}... "
                f"but computed {computed[:20]}..."
            )


def select_designated_aliases(
    credentials: Iterable[Dict[str, Any]],
    issuer: str,
    schema: str,
) -> Optional[DesignatedAliases]:
    """Pick the authoritative DA credential for an issuer.

    Only the most recent (by ``a.dt``) non-revoked credential with the DA
    schema issued by ``issuer`` counts. Credentials whose SAID does not match
    their content are skipped.
    """
    candidates = []
    for credential in credentials:
        da = DesignatedAliases.from_credential(credential)
        if da is None or da.issuer != issuer or da.schema != schema:
            continue
        if da.revoked:
            log.debug(f"Skipping revoked DA credential {da.said}")
            continue
        try:
            da.verify_said()
        except SaidMismatchError as e:
            log.warning(f"Skipping DA credential with invalid SAID: {e.message}")
            continue
        candidates.append(da)

    if not candidates:
        return None
    # ISO-8601 strings order chronologically; ties keep the first listed
    return max(candidates, key=lambda da: da.dt)
