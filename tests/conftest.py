"""Root conftest for all tests - provides shared fixtures."""

import os

# Admin routes are exercised by the API tests (must be set before module import)
os.environ.setdefault("ADMIN_ENDPOINT_ENABLED", "true")

from typing import Any, Dict, List, Optional

import pysodium
import pytest

from app.didlink.did.keys import cesr_encode
from app.didlink.models import CompletedVerification, DIDDocument, iso_timestamp


SUBJECT_DID = "did:webs:example.com:keri:AAA111"
PAIRED_DID = "did:iota:testnet:0xBEEF"


@pytest.fixture
def ed25519_keypair():
    """Fresh Ed25519 keypair (public, secret)."""
    return pysodium.crypto_sign_keypair()


@pytest.fixture
def keri_key(ed25519_keypair):
    """The public key of ed25519_keypair as a transferable KERI key."""
    public_key, _ = ed25519_keypair
    return cesr_encode(public_key, code="D")


@pytest.fixture
def test_aid():
    """A syntactically valid 44-char AID."""
    return "E" + "A" * 43


@pytest.fixture
def subject_document():
    """did:webs document listing the paired did:iota."""
    return {
        "id": SUBJECT_DID,
        "alsoKnownAs": [PAIRED_DID],
        "verificationMethod": [],
        "service": [
            {"id": "#keri", "type": "KERIAgent", "serviceEndpoint": "https://keria.example.com"},
        ],
    }


@pytest.fixture
def paired_document():
    """did:iota document linking back to the did:webs."""
    return {"id": PAIRED_DID, "alsoKnownAs": [SUBJECT_DID]}


def make_completed(
    verified: bool = True,
    revoked: bool = False,
    credential_said: str = "ECRED",
    error: Optional[str] = None,
) -> CompletedVerification:
    return CompletedVerification(
        verified=verified,
        revoked=revoked,
        le_aid="ELEAID",
        le_lei="5493001KJTIIGC8Y1R12",
        credential_said=credential_said,
        timestamp=iso_timestamp(),
        error=error,
    )


class FakeDependencies:
    """In-memory LinkageDependencies.

    Documents keyed by DID; an Exception value makes that resolution fail.
    """

    def __init__(
        self,
        webs: Optional[Dict[str, Any]] = None,
        publisher: Optional[Dict[str, Any]] = None,
        iota: Optional[Dict[str, Any]] = None,
        credential: Any = None,
    ):
        self.webs = webs or {}
        self.publisher = publisher or {}
        self.iota = iota or {}
        self.credential = credential if credential is not None else make_completed()
        self.publisher_calls: List[tuple] = []
        self.credential_calls = 0

    async def resolve_did_webs(self, did: str) -> Dict[str, Any]:
        return self._lookup(self.webs, did)

    async def get_did_document(self, aid: str, domain: str, path: str) -> Dict[str, Any]:
        self.publisher_calls.append((aid, domain, path))
        return self._lookup(self.publisher, aid)

    async def resolve_iota_did(self, did: str) -> Dict[str, Any]:
        return self._lookup(self.iota, did)

    def extract_webs_did(self, document: DIDDocument) -> Optional[str]:
        for alias in document.also_known_as:
            if alias.startswith("did:webs:"):
                return alias
        return None

    async def verify_credential(self) -> CompletedVerification:
        self.credential_calls += 1
        if isinstance(self.credential, Exception):
            raise self.credential
        return self.credential

    @staticmethod
    def _lookup(table: Dict[str, Any], key: str) -> Dict[str, Any]:
        if key not in table:
            raise ConnectionError(f"not found: {key}")
        value = table[key]
        if isinstance(value, Exception):
            raise value
        return value
