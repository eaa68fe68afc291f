"""Tests for DID linking verification.

Resolution and credential verification are supplied by FakeDependencies
(tests/conftest.py); documents are keyed by DID, an exception value makes
that resolution fail.
"""

import pytest

from app.didlink.exceptions import (
    DocumentInvalidError,
    DocumentResolutionError,
    InvalidIdentifierError,
)
from app.didlink.verifier import DidLinkingVerifier

from conftest import PAIRED_DID, SUBJECT_DID, FakeDependencies, make_completed


class TestVerify:
    """did:webs -> did:iota direction."""

    @pytest.mark.asyncio
    async def test_bidirectional_linkage(self, subject_document, paired_document):
        deps = FakeDependencies(
            webs={SUBJECT_DID: subject_document},
            iota={PAIRED_DID: paired_document},
        )

        result = await DidLinkingVerifier(deps).verify(SUBJECT_DID)

        assert result.verified is True
        assert result.revoked is False
        assert result.bidirectional is True
        assert result.did_webs == SUBJECT_DID
        assert result.linked_iota_did == PAIRED_DID
        assert result.linked_webs_did == SUBJECT_DID
        assert result.da_verified is True
        assert result.keri_service_endpoint == "https://keria.example.com"
        assert result.webs_document == subject_document
        assert result.iota_document == paired_document
        assert result.webs_also_known_as == [PAIRED_DID]
        assert result.iota_also_known_as == [SUBJECT_DID]
        assert deps.publisher_calls == []

    @pytest.mark.asyncio
    async def test_paired_document_missing_back_link(self, subject_document):
        """verified and bidirectional are independent flags."""
        deps = FakeDependencies(
            webs={SUBJECT_DID: subject_document},
            iota={PAIRED_DID: {"id": PAIRED_DID, "alsoKnownAs": ["did:webs:other.com:keri:ZZZ"]}},
        )

        result = await DidLinkingVerifier(deps).verify(SUBJECT_DID)

        assert result.verified is True
        assert result.bidirectional is False
        assert result.iota_document is not None

    @pytest.mark.asyncio
    async def test_paired_alias_as_string(self, subject_document):
        deps = FakeDependencies(
            webs={SUBJECT_DID: subject_document},
            iota={PAIRED_DID: {"id": PAIRED_DID, "alsoKnownAs": SUBJECT_DID}},
        )

        result = await DidLinkingVerifier(deps).verify(SUBJECT_DID)

        assert result.bidirectional is True
        assert result.iota_also_known_as == [SUBJECT_DID]

    @pytest.mark.asyncio
    async def test_paired_resolution_failure_is_absorbed(self, subject_document):
        deps = FakeDependencies(
            webs={SUBJECT_DID: subject_document},
            iota={PAIRED_DID: ConnectionError("ledger unreachable")},
        )

        result = await DidLinkingVerifier(deps).verify(SUBJECT_DID)
        data = result.to_dict()

        assert result.verified is True
        assert result.bidirectional is False
        assert "iotaDocument" not in data
        assert "iotaAlsoKnownAs" not in data
        assert data["linkedIotaDid"] == PAIRED_DID

    @pytest.mark.asyncio
    async def test_no_paired_identifier(self):
        deps = FakeDependencies(webs={SUBJECT_DID: {"id": SUBJECT_DID}})

        result = await DidLinkingVerifier(deps).verify(SUBJECT_DID)

        assert result.verified is True
        assert result.bidirectional is False
        assert result.linked_iota_did is None
        assert result.da_verified is False

    @pytest.mark.asyncio
    async def test_publisher_fallback(self, subject_document, paired_document):
        deps = FakeDependencies(
            webs={SUBJECT_DID: DocumentResolutionError("dkr down")},
            publisher={"AAA111": subject_document},
            iota={PAIRED_DID: paired_document},
        )

        result = await DidLinkingVerifier(deps, publisher_domain="backend", publisher_path="keri").verify(SUBJECT_DID)

        assert deps.publisher_calls == [("AAA111", "backend", "keri")]
        assert result.bidirectional is True
        # The local publisher does not verify the DA credential
        assert result.da_verified is False

    @pytest.mark.asyncio
    async def test_both_resolutions_fail(self):
        deps = FakeDependencies(
            webs={SUBJECT_DID: DocumentResolutionError("dkr down")},
            publisher={"AAA111": RuntimeError("no key state")},
        )

        with pytest.raises(DocumentResolutionError) as exc:
            await DidLinkingVerifier(deps).verify(SUBJECT_DID)

        assert "dkr down" in exc.value.message
        assert "no key state" in exc.value.message
        assert deps.credential_calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("did", ["did:web:example.com:AAA111", "did:webs:", "AAA111"])
    async def test_malformed_identifier(self, did):
        with pytest.raises(InvalidIdentifierError):
            await DidLinkingVerifier(FakeDependencies()).verify(did)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("document", [
        {"alsoKnownAs": [PAIRED_DID]},
        {"id": "Keystore must already exist"},
        {"id": "did:webs:Keystore must already exist"},
    ])
    async def test_invalid_document(self, document):
        deps = FakeDependencies(webs={SUBJECT_DID: document})

        with pytest.raises(DocumentInvalidError):
            await DidLinkingVerifier(deps).verify(SUBJECT_DID)

    @pytest.mark.asyncio
    async def test_credential_verification_raises(self, subject_document, paired_document):
        deps = FakeDependencies(
            webs={SUBJECT_DID: subject_document},
            iota={PAIRED_DID: paired_document},
            credential=RuntimeError("Sally unreachable"),
        )

        result = await DidLinkingVerifier(deps).verify(SUBJECT_DID)

        assert result.verified is False
        assert result.error == "Verification failed: Sally unreachable"
        assert result.bidirectional is True
        assert result.linked_iota_did == PAIRED_DID
        assert result.webs_document == subject_document

    @pytest.mark.asyncio
    async def test_credential_unverified(self, subject_document, paired_document):
        deps = FakeDependencies(
            webs={SUBJECT_DID: subject_document},
            iota={PAIRED_DID: paired_document},
            credential=make_completed(verified=False, revoked=True),
        )

        result = await DidLinkingVerifier(deps).verify(SUBJECT_DID)

        assert result.verified is False
        assert result.revoked is True
        assert result.bidirectional is True


class TestVerifyFromIota:
    """did:iota -> did:webs direction."""

    @pytest.mark.asyncio
    async def test_reverse_verification(self, subject_document, paired_document):
        deps = FakeDependencies(
            webs={SUBJECT_DID: subject_document},
            iota={PAIRED_DID: paired_document},
        )

        result = await DidLinkingVerifier(deps).verify_from_iota(PAIRED_DID)

        assert result.verified is True
        assert result.vlei_verified is True
        assert result.bidirectional is True
        assert result.linked_webs_did == SUBJECT_DID
        assert result.iota_document == paired_document

    @pytest.mark.asyncio
    async def test_webs_side_links_elsewhere(self, paired_document):
        deps = FakeDependencies(
            webs={SUBJECT_DID: {"id": SUBJECT_DID, "alsoKnownAs": ["did:iota:testnet:0xCAFE"]}},
            iota={PAIRED_DID: paired_document, "did:iota:testnet:0xCAFE": {"id": "did:iota:testnet:0xCAFE"}},
        )

        result = await DidLinkingVerifier(deps).verify_from_iota(PAIRED_DID)

        assert result.vlei_verified is True
        assert result.bidirectional is False
        assert result.verified is False

    @pytest.mark.asyncio
    async def test_no_webs_did_in_iota_document(self):
        deps = FakeDependencies(iota={PAIRED_DID: {"id": PAIRED_DID, "alsoKnownAs": []}})

        result = await DidLinkingVerifier(deps).verify_from_iota(PAIRED_DID)

        assert result.verified is False
        assert result.error == "No did:webs found in IOTA DID document"
        assert deps.credential_calls == 0

    @pytest.mark.asyncio
    async def test_iota_resolution_failure(self):
        deps = FakeDependencies(iota={PAIRED_DID: ConnectionError("ledger down")})

        with pytest.raises(DocumentResolutionError, match="Failed to resolve IOTA DID"):
            await DidLinkingVerifier(deps).verify_from_iota(PAIRED_DID)

    @pytest.mark.asyncio
    async def test_rejects_non_iota(self):
        with pytest.raises(InvalidIdentifierError):
            await DidLinkingVerifier(FakeDependencies()).verify_from_iota(SUBJECT_DID)
