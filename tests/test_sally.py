"""Tests for Sally webhook parsing and credential presentation."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.didlink.registry import PendingVerificationRegistry
from app.didlink.sally import SallyCredentialVerifier, check_sally_status, parse_sally_webhook


SAID = "E" + "C" * 43


class TestParseSallyWebhook:
    """Credential SAID and outcome extraction."""

    def test_said_string_in_body(self):
        event = parse_sally_webhook({}, {"action": "iss", "data": {"credential": SAID}})

        assert event.credential_said == SAID
        assert event.verified is True
        assert event.revoked is False

    def test_said_from_credential_object(self):
        event = parse_sally_webhook({}, {"action": "rev", "data": {"credential": {"d": SAID, "i": "E1"}}})

        assert event.credential_said == SAID
        assert event.verified is False
        assert event.revoked is True

    def test_said_from_resource_header(self):
        headers = {"Sally-Resource": f"/credential/{SAID}", "Sally-Timestamp": "2025-01-01T00:00:00Z"}
        event = parse_sally_webhook(headers, {"action": "iss"})

        assert event.credential_said == SAID
        assert event.resource == f"/credential/{SAID}"
        assert event.timestamp == "2025-01-01T00:00:00Z"

    def test_body_takes_precedence_over_header(self):
        other = "E" + "H" * 43
        event = parse_sally_webhook({"sally-resource": other}, {"action": "iss", "data": {"credential": SAID}})
        assert event.credential_said == SAID

    def test_unknown_action(self):
        event = parse_sally_webhook({}, {"action": "exn", "data": {"credential": SAID}})
        assert event.verified is False
        assert event.revoked is False
        assert event.action == "exn"

    @pytest.mark.parametrize("body", [None, [], {}, {"data": {"credential": ""}}])
    def test_no_said(self, body):
        event = parse_sally_webhook({"sally-resource": "/credential/short"}, body)
        assert event.credential_said is None


class FakePresenter:
    def __init__(self, credential=None, on_present=None, error=None):
        self.credential = credential
        self.on_present = on_present
        self.error = error
        self.presented = []

    async def get_credential(self, issuee, schema):
        return self.credential

    async def present_credential(self, credential):
        if self.error:
            raise self.error
        self.presented.append(credential)
        if self.on_present:
            self.on_present()


class TestSallyCredentialVerifier:
    """Present, then await the webhook outcome."""

    @pytest.mark.asyncio
    async def test_webhook_resolves_presentation(self):
        registry = PendingVerificationRegistry(timeout_seconds=5)
        loop = asyncio.get_running_loop()
        # Webhook arrives after the grant is submitted
        presenter = FakePresenter(
            credential={"sad": {"d": SAID}},
            on_present=lambda: loop.call_soon(registry.resolve_verification, SAID, True, False),
        )
        verifier = SallyCredentialVerifier(registry, presenter, le_aid="ELEAID", le_lei="LEI123")

        result = await verifier.verify_credential()

        assert result.verified is True
        assert result.credential_said == SAID
        assert result.le_aid == "ELEAID"
        assert presenter.presented == [{"sad": {"d": SAID}}]

    @pytest.mark.asyncio
    async def test_registered_before_presenting(self):
        registry = PendingVerificationRegistry(timeout_seconds=5)
        seen = []
        presenter = FakePresenter(credential={"sad": {"d": SAID}})

        def on_present():
            seen.extend(registry.pending_saids())
            registry.resolve_verification(SAID, True, False)

        presenter.on_present = on_present
        result = await SallyCredentialVerifier(registry, presenter).verify_credential()

        assert seen == [SAID]
        assert result.verified is True

    @pytest.mark.asyncio
    async def test_timeout_result(self):
        registry = PendingVerificationRegistry(timeout_seconds=0.05)
        presenter = FakePresenter(credential={"sad": {"d": SAID}})

        result = await SallyCredentialVerifier(registry, presenter).verify_credential()

        assert result.verified is False
        assert "Verification timeout after 50ms" in result.error

    @pytest.mark.asyncio
    async def test_credential_not_found(self):
        registry = PendingVerificationRegistry(timeout_seconds=5)
        verifier = SallyCredentialVerifier(registry, FakePresenter(credential=None), le_aid="ELEAID")

        result = await verifier.verify_credential()

        assert result.verified is False
        assert result.le_aid == "ELEAID"
        assert "LE credential not found" in result.error
        assert registry.pending_saids() == []

    @pytest.mark.asyncio
    async def test_presentation_failure(self):
        registry = PendingVerificationRegistry(timeout_seconds=5)
        presenter = FakePresenter(credential={"sad": {"d": SAID}}, error=RuntimeError("grant rejected"))

        result = await SallyCredentialVerifier(registry, presenter).verify_credential()

        assert result.verified is False
        assert result.credential_said == SAID
        assert result.error == "grant rejected"


class TestCheckSallyStatus:
    """Sally health check."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response, expected", [
        (httpx.Response(200, text="ok"), True),
        (httpx.Response(503, text="down"), False),
        (httpx.ConnectError("refused"), False),
    ])
    async def test_status(self, response, expected):
        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = AsyncMock()
            mock_instance.get = AsyncMock(side_effect=[response])
            mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
            mock_instance.__aexit__ = AsyncMock(return_value=None)
            mock_client.return_value = mock_instance

            assert await check_sally_status("http://sally:9823/") is expected
            mock_instance.get.assert_called_once_with("http://sally:9823/health")
