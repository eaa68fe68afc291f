"""Extract linked identifiers and endpoints from DID documents."""

from typing import Optional

from app.core.config import DID_IOTA_PREFIX, DID_WEBS_PREFIX, KERI_SERVICE_TYPES
from app.didlink.models import DIDDocument


def extract_did_by_prefix(doc: DIDDocument, prefix: str) -> Optional[str]:
    """First ``alsoKnownAs`` entry starting with prefix."""
    for alias in doc.also_known_as:
        if alias.startswith(prefix):
            return alias
    return None


def extract_iota_did(doc: DIDDocument) -> Optional[str]:
    return extract_did_by_prefix(doc, DID_IOTA_PREFIX)


def extract_webs_did(doc: DIDDocument) -> Optional[str]:
    return extract_did_by_prefix(doc, DID_WEBS_PREFIX)


def extract_keri_service_endpoint(doc: DIDDocument) -> Optional[str]:
    """Find a KERI-related service endpoint in the document.

    Matches the known service types or any type mentioning KERI or vLEI.
    For an endpoint list, the first entry is returned.
    """
    for service in doc.service:
        service_type = service.get("type")
        if not isinstance(service_type, str):
            continue
        if not (
            service_type in KERI_SERVICE_TYPES
            or "KERI" in service_type
            or "vLEI" in service_type
        ):
            continue

        endpoint = service.get("serviceEndpoint")
        if isinstance(endpoint, str):
            return endpoint
        if isinstance(endpoint, list) and endpoint and isinstance(endpoint[0], str):
            return endpoint[0]
    return None


def extract_aid_from_did_webs(did_webs: str) -> Optional[str]:
    """AID of a did:webs identifier (always the last colon-separated segment)."""
    parts = did_webs.split(":")
    if len(parts) >= 3 and parts[0] == "did" and parts[1] == "webs" and parts[-1]:
        return parts[-1]
    return None
