"""Build did:webs DID documents from KERI key state.

Pure functions, no network calls. Each current signing key becomes a
``JsonWebKey`` verification method; aliases from the Designated Aliases
credential are completed with the namespace-equivalent ``did:keri`` and
``did:web`` forms of the same AID.
"""

from typing import List, Optional, Sequence

from app.core.config import DID_KERI_PREFIX, DID_WEB_PREFIX, DID_WEBS_PREFIX
from app.didlink.did.keys import keri_key_to_jwk
from app.didlink.models import DIDDocument, KeyStateSnapshot


def _did_suffix(aid: str, domain: str, path: Optional[str]) -> str:
    return f"{domain}:{path}:{aid}" if path else f"{domain}:{aid}"


def did_webs_for(aid: str, domain: str, path: Optional[str] = None) -> str:
    return f"{DID_WEBS_PREFIX}{_did_suffix(aid, domain, path)}"


def equivalent_aliases(aid: str, domain: str, path: Optional[str] = None) -> List[str]:
    """The did:keri and did:web forms of a did:webs AID."""
    return [
        f"{DID_KERI_PREFIX}{aid}",
        f"{DID_WEB_PREFIX}{_did_suffix(aid, domain, path)}",
    ]


def build_webs_did_document(
    aid: str,
    key_state: KeyStateSnapshot,
    domain: str,
    path: Optional[str] = None,
    also_known_as: Optional[Sequence[str]] = None,
) -> DIDDocument:
    """Build a did:webs DID document from KERI key state.

    Args:
        aid: The AID being published.
        key_state: Current key state; every key in ``signing_keys`` becomes
            a verification method.
        domain: Host the document is served under (port separator already
            percent-encoded).
        path: Optional path segment between domain and AID.
        also_known_as: Designated aliases; when non-empty the did:keri and
            did:web forms are appended if not already listed.

    Raises:
        InvalidIdentifierError: If a signing key is not a valid Ed25519 key.
    """
    did_id = did_webs_for(aid, domain, path)

    verification_method = []
    for key in key_state.signing_keys:
        jwk = keri_key_to_jwk(key)
        verification_method.append({
            "id": f"#{key}",
            "type": "JsonWebKey",
            "controller": did_id,
            "publicKeyJwk": jwk,
        })

    aliases: List[str] = []
    if also_known_as:
        aliases = list(also_known_as)
        aliases.extend(
            extra for extra in equivalent_aliases(aid, domain, path)
            if extra not in aliases
        )

    doc = DIDDocument(
        id=did_id,
        also_known_as=aliases,
        verification_method=verification_method,
        service=[],
    )
    doc.raw = doc.to_dict()
    return doc
