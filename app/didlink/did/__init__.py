"""DID document handling for did:webs and did:iota."""

from .document import build_webs_did_document, did_webs_for, equivalent_aliases
from .extractors import (
    extract_aid_from_did_webs,
    extract_did_by_prefix,
    extract_iota_did,
    extract_keri_service_endpoint,
    extract_webs_did,
)
from .iota_resolver import IotaDidResolver
from .keys import VerificationKey, cesr_encode, decode_keri_key, keri_key_to_jwk
from .webs_resolver import DidWebsResolver, parse_resolution_body

__all__ = [
    # Documents
    "build_webs_did_document",
    "did_webs_for",
    "equivalent_aliases",
    # Extraction
    "extract_aid_from_did_webs",
    "extract_did_by_prefix",
    "extract_iota_did",
    "extract_keri_service_endpoint",
    "extract_webs_did",
    # Keys
    "VerificationKey",
    "cesr_encode",
    "decode_keri_key",
    "keri_key_to_jwk",
    # Resolvers
    "DidWebsResolver",
    "IotaDidResolver",
    "parse_resolution_body",
]
