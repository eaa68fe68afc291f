"""Domain models for DID linkage verification.

External documents arrive as loosely structured JSON (``alsoKnownAs`` may be
a string or a list, most fields are optional). They are normalized once into
these dataclasses so the verifier always works with lists.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.didlink.exceptions import DocumentInvalidError


def iso_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_aliases(value: Any) -> List[str]:
    """Normalize an ``alsoKnownAs`` value to a list of strings.

    Accepts a single string, a list/tuple, or nothing. Non-string entries
    are dropped.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [v for v in value if isinstance(v, str)]
    return [str(value)]


@dataclass
class DIDDocument:
    """W3C DID document, normalized.

    Attributes:
        id: The DID.
        also_known_as: Alias DIDs, always a list.
        verification_method: Verification method entries as received.
        service: Service entries as received.
        raw: The original document mapping (echoed in results).
    """
    id: str
    also_known_as: List[str] = field(default_factory=list)
    verification_method: List[Dict[str, Any]] = field(default_factory=list)
    service: List[Dict[str, Any]] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "DIDDocument":
        """Normalize a raw DID document.

        Raises:
            DocumentInvalidError: If data is not a mapping or has no string id.
        """
        if not isinstance(data, dict):
            raise DocumentInvalidError(
                f"DID document must be an object, got {type(data).__name__}"
            )
        doc_id = data.get("id")
        if not isinstance(doc_id, str) or not doc_id:
            raise DocumentInvalidError("Invalid DID document: missing id")

        methods = data.get("verificationMethod")
        services = data.get("service")
        return cls(
            id=doc_id,
            also_known_as=normalize_aliases(data.get("alsoKnownAs")),
            verification_method=[m for m in methods if isinstance(m, dict)]
            if isinstance(methods, list) else [],
            service=[s for s in services if isinstance(s, dict)]
            if isinstance(services, list) else [],
            raw=data,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to DID Core JSON (alsoKnownAs omitted when empty)."""
        doc: Dict[str, Any] = {
            "id": self.id,
            "verificationMethod": list(self.verification_method),
            "service": list(self.service),
        }
        if self.also_known_as:
            doc["alsoKnownAs"] = list(self.also_known_as)
        return doc


@dataclass(frozen=True)
class KeyStateSnapshot:
    """KERI key state as reported by KERIA.

    Attributes:
        aid: Identifier prefix (``i``).
        signing_keys: Current signing keys, qb64 (``k``).
        next_key_digests: Pre-rotated next key digests (``n``).
        sequence: Sequence number (``s``, hex in KERIA).
        digest: Latest establishment event SAID (``d``).
        witnesses: Backer AIDs (``b``).
        toad: Backer threshold (``bt``).
    """
    aid: str
    signing_keys: List[str]
    next_key_digests: List[str] = field(default_factory=list)
    sequence: int = 0
    digest: str = ""
    witnesses: List[str] = field(default_factory=list)
    toad: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyStateSnapshot":
        keys = data.get("k")
        if not isinstance(keys, list) or not keys:
            raise ValueError("key state has no current signing keys")
        return cls(
            aid=str(data.get("i", "")),
            signing_keys=[str(k) for k in keys],
            next_key_digests=[str(n) for n in data.get("n") or []],
            sequence=_parse_hex(data.get("s", "0")),
            digest=str(data.get("d", "")),
            witnesses=[str(b) for b in data.get("b") or []],
            toad=_parse_hex(data.get("bt", "0")),
        )


def _parse_hex(value: Any) -> int:
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 16)
    except ValueError:
        return 0


@dataclass(frozen=True)
class CompletedVerification:
    """Outcome of a vLEI credential-chain verification."""
    verified: bool
    revoked: bool
    le_aid: str
    le_lei: str
    credential_said: str
    timestamp: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "verified": self.verified,
            "revoked": self.revoked,
            "leAid": self.le_aid,
            "leLei": self.le_lei,
            "credentialSaid": self.credential_said,
            "timestamp": self.timestamp,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class LinkageVerificationResult:
    """Credential verification result extended with DID linking details.

    ``verified`` and ``bidirectional`` are independent: the first comes from
    the credential chain, the second from the alias cross-check.
    """
    verified: bool
    revoked: bool
    le_aid: str
    le_lei: str
    credential_said: str
    timestamp: str
    error: Optional[str] = None
    did_webs: Optional[str] = None
    linked_iota_did: Optional[str] = None
    linked_webs_did: Optional[str] = None
    bidirectional: bool = False
    keri_service_endpoint: Optional[str] = None
    webs_document: Optional[Dict[str, Any]] = None
    iota_document: Optional[Dict[str, Any]] = None
    webs_also_known_as: List[str] = field(default_factory=list)
    iota_also_known_as: Optional[List[str]] = None
    da_verified: bool = False
    vlei_verified: Optional[bool] = None

    @classmethod
    def from_completed(
        cls, completed: CompletedVerification, **linkage: Any
    ) -> "LinkageVerificationResult":
        return cls(
            verified=completed.verified,
            revoked=completed.revoked,
            le_aid=completed.le_aid,
            le_lei=completed.le_lei,
            credential_said=completed.credential_said,
            timestamp=completed.timestamp,
            error=completed.error,
            **linkage,
        )

    def with_updates(self, **changes: Any) -> "LinkageVerificationResult":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """camelCase JSON view; absent optional fields are omitted."""
        data: Dict[str, Any] = {
            "verified": self.verified,
            "revoked": self.revoked,
            "leAid": self.le_aid,
            "leLei": self.le_lei,
            "credentialSaid": self.credential_said,
            "timestamp": self.timestamp,
            "bidirectional": self.bidirectional,
            "websAlsoKnownAs": list(self.webs_also_known_as),
            "daVerified": self.da_verified,
        }
        optional = {
            "error": self.error,
            "didWebs": self.did_webs,
            "linkedIotaDid": self.linked_iota_did,
            "linkedWebsDid": self.linked_webs_did,
            "keriServiceEndpoint": self.keri_service_endpoint,
            "websDocument": self.webs_document,
            "iotaDocument": self.iota_document,
            "iotaAlsoKnownAs": self.iota_also_known_as,
            "vLeiVerified": self.vlei_verified,
        }
        for key, value in optional.items():
            if value is not None:
                data[key] = value
        return data
