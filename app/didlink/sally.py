"""Sally credential-chain verification.

Sally walks the vLEI chain (LE -> QVI -> GLEIF root) for credentials
presented to it over IPEX and reports the outcome by webhook. This module
covers both halves:

- ``SallyCredentialVerifier`` presents the LE credential and awaits the
  webhook outcome through the pending verification registry.
- ``parse_sally_webhook`` extracts the credential SAID and outcome from a
  webhook delivery.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from app.core.config import LE_AID, LE_LEI, LE_SCHEMA_SAID, SALLY_STATUS_TIMEOUT_SECONDS, SALLY_URL
from app.didlink.models import CompletedVerification, iso_timestamp
from app.didlink.registry import PendingVerificationRegistry

log = logging.getLogger("didlink.sally")

# Sally-Resource may be "/credential/{said}" or the bare SAID
_SAID_TOKEN = re.compile(r"([A-Za-z0-9_-]{44})")

ACTION_ISSUED = "iss"
ACTION_REVOKED = "rev"


@dataclass(frozen=True)
class SallyWebhookEvent:
    """A parsed Sally webhook delivery.

    Attributes:
        action: Sally action (``iss`` verified, ``rev`` revoked, other unknown).
        credential_said: SAID of the credential, None if not found.
        verified: True when action is ``iss``.
        revoked: True when action is ``rev``.
        resource: Raw ``sally-resource`` header.
        timestamp: Raw ``sally-timestamp`` header.
    """
    action: Optional[str]
    credential_said: Optional[str]
    verified: bool
    revoked: bool
    resource: Optional[str] = None
    timestamp: Optional[str] = None


def parse_sally_webhook(headers: Mapping[str, str], body: Any) -> SallyWebhookEvent:
    """Parse a Sally webhook delivery.

    Sally posts ``{action, actor, data: {credential, schema, ...}}``. The
    credential SAID is read from ``data.credential`` (a SAID string or a full
    credential with ``d``), falling back to the first SAID-shaped token in the
    ``sally-resource`` header.
    """
    # Starlette headers are case-insensitive; plain dicts in tests are not
    lowered = {k.lower(): v for k, v in headers.items()}
    resource = lowered.get("sally-resource")
    timestamp = lowered.get("sally-timestamp")

    body = body if isinstance(body, dict) else {}
    action = body.get("action")
    if not isinstance(action, str):
        action = None

    credential_said: Optional[str] = None
    data = body.get("data")
    if isinstance(data, dict):
        credential = data.get("credential")
        if isinstance(credential, dict):
            said = credential.get("d")
            credential_said = said if isinstance(said, str) and said else None
        elif isinstance(credential, str) and credential:
            credential_said = credential

    if credential_said is None and resource:
        match = _SAID_TOKEN.search(resource)
        if match:
            credential_said = match.group(1)

    return SallyWebhookEvent(
        action=action,
        credential_said=credential_said,
        verified=action == ACTION_ISSUED,
        revoked=action == ACTION_REVOKED,
        resource=resource,
        timestamp=timestamp,
    )


class CredentialPresenter(Protocol):
    """The LE's KERIA agent, seen from the verification side."""

    async def get_credential(self, issuee: str, schema: str) -> Optional[Dict[str, Any]]:
        """The LE credential (KERIA listing entry with ``sad``), or None."""
        ...

    async def present_credential(self, credential: Dict[str, Any]) -> None:
        """Send an IPEX grant for the credential to Sally and wait for submission."""
        ...


class SallyCredentialVerifier:
    """Present the LE credential to Sally and await the webhook outcome."""

    def __init__(
        self,
        registry: PendingVerificationRegistry,
        presenter: CredentialPresenter,
        le_aid: str = LE_AID,
        le_lei: str = LE_LEI,
        le_schema_said: str = LE_SCHEMA_SAID,
    ):
        self.registry = registry
        self.presenter = presenter
        self.le_aid = le_aid
        self.le_lei = le_lei
        self.le_schema_said = le_schema_said

    async def verify_credential(self) -> CompletedVerification:
        """Verify the LE credential chain via Sally.

        The pending entry is registered before the grant is submitted so the
        webhook cannot arrive unobserved. Failures are returned as an
        unverified result carrying the error text, never raised.
        """
        credential_said = ""
        try:
            credential = await self.presenter.get_credential(self.le_aid, self.le_schema_said)
            if not credential or not isinstance(credential.get("sad"), dict):
                raise LookupError("LE credential not found in KERIA")
            credential_said = str(credential["sad"].get("d", ""))
            if not credential_said:
                raise LookupError("LE credential has no SAID")

            log.info(
                f"Verifying credential {credential_said}",
                extra={"credential_said": credential_said},
            )
            pending = self.registry.register(credential_said, self.le_aid, self.le_lei)

            await self.presenter.present_credential(credential)
            log.info(
                "IPEX grant submitted, waiting for Sally webhook",
                extra={"credential_said": credential_said},
            )

            result = await pending
        except Exception as e:
            log.error(
                f"Verification error: {e}",
                extra={"credential_said": credential_said},
            )
            return CompletedVerification(
                verified=False,
                revoked=False,
                le_aid=self.le_aid,
                le_lei=self.le_lei,
                credential_said=credential_said,
                timestamp=iso_timestamp(),
                error=str(e),
            )

        log.info(
            f"Verification complete: verified={result.verified}, revoked={result.revoked}",
            extra={"credential_said": credential_said},
        )
        return result


async def check_sally_status(sally_url: str = SALLY_URL) -> bool:
    """True if Sally answers its health endpoint with a 2xx."""
    try:
        async with httpx.AsyncClient(timeout=SALLY_STATUS_TIMEOUT_SECONDS) as client:
            response = await client.get(f"{sally_url.rstrip('/')}/health")
        return response.is_success
    except httpx.HTTPError as e:
        log.info(f"Sally health check failed: {e}")
        return False
