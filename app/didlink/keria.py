"""KERIA agent access for the legal entity over a Signify session.

``KeriaAgent`` is the publisher's ``KeyStateSource`` and ``CredentialStore``
and the ``CredentialPresenter`` used for Sally verification, all backed by
one signifypy client for the LE's agent. signifypy is synchronous: each call
runs in a worker thread, serialized on the shared session.
"""

import asyncio
import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from signify.app.clienting import SignifyClient

from app.core.config import (
    KERIA_AGENT_URL,
    KERIA_OPERATION_POLL_SECONDS,
    KERIA_OPERATION_TIMEOUT_SECONDS,
    LE_NAME,
    LE_PASSCODE,
    SALLY_AID,
    SALLY_URL,
)

log = logging.getLogger("didlink.keria")

# Signify passcodes (brans) are exactly 21 characters
PASSCODE_LENGTH = 21

CESR_JSON_CONTENT_TYPE = "application/json+cesr"

CREDENTIAL_QUERY_LIMIT = 100


class KeriaOperationError(Exception):
    """A KERIA long-running operation failed or did not finish in time."""


def pad_passcode(passcode: str) -> str:
    return passcode.ljust(PASSCODE_LENGTH, "_")


def keri_timestamp() -> str:
    """KERI datetime: ISO-8601 with microseconds and an explicit offset."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def serialize_event(sad: Dict[str, Any]) -> bytes:
    """Compact JSON in field order, the way KERI serializes JSON events."""
    return json.dumps(sad, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _sad(credential: Dict[str, Any]) -> Dict[str, Any]:
    sad = credential.get("sad") if isinstance(credential, dict) else None
    return sad if isinstance(sad, dict) else {}


class KeriaAgent:
    """The LE's KERIA agent.

    Args:
        agent_url: Signify admin interface of the agent.
        passcode: Agent passcode, padded to 21 characters.
        le_name: Name of the LE identifier inside the agent.
        sally_aid: Sally's AID, the recipient of credential grants.
        sally_url: Sally base URL, used for its controller OOBI.
        operation_timeout: Seconds to wait for a KERIA operation.
        poll_interval: Seconds between operation status checks.
        client_factory: Returns a connected Signify client; defaults to
            connecting to ``agent_url`` on first use.
    """

    def __init__(
        self,
        agent_url: str,
        passcode: str,
        le_name: str,
        sally_aid: str = SALLY_AID,
        sally_url: str = SALLY_URL,
        operation_timeout: float = KERIA_OPERATION_TIMEOUT_SECONDS,
        poll_interval: float = KERIA_OPERATION_POLL_SECONDS,
        client_factory: Optional[Callable[[], Any]] = None,
    ):
        self.agent_url = agent_url
        self.le_name = le_name
        self.sally_aid = sally_aid
        self.sally_url = sally_url.rstrip("/")
        self.operation_timeout = operation_timeout
        self.poll_interval = poll_interval
        self._passcode = pad_passcode(passcode)
        self._client_factory = client_factory or self._connect
        self._client = None
        self._lock = threading.Lock()
        self._sally_oobi_resolved = False

    def _connect(self) -> SignifyClient:
        client = SignifyClient(passcode=self._passcode)
        client.connect(url=self.agent_url)
        return client

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(self._call, fn, *args)

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            if self._client is None:
                log.info(f"Connecting to KERIA agent at {self.agent_url}")
                self._client = self._client_factory()
            return fn(self._client, *args)

    # -------------------------------------------------------------------------
    # KeyStateSource / CredentialStore
    # -------------------------------------------------------------------------

    async def get_key_state(self, aid: str) -> Optional[Dict[str, Any]]:
        return await self._run(_fetch_key_state, aid)

    async def list_credentials(self, issuer: str, schema: str) -> List[Dict[str, Any]]:
        credentials = await self._run(_query_credentials)
        return [
            c for c in credentials
            if _sad(c).get("i") == issuer and _sad(c).get("s") == schema
        ]

    async def export_credential(self, said: str) -> Optional[str]:
        return await self._run(_export_credential, said)

    # -------------------------------------------------------------------------
    # CredentialPresenter
    # -------------------------------------------------------------------------

    async def get_credential(self, issuee: str, schema: str) -> Optional[Dict[str, Any]]:
        """First held credential with ``schema`` issued to ``issuee``."""
        for credential in await self._run(_query_credentials):
            sad = _sad(credential)
            attrs = sad.get("a") if isinstance(sad.get("a"), dict) else {}
            if sad.get("s") == schema and attrs.get("i") == issuee:
                return credential
        return None

    async def present_credential(self, credential: Dict[str, Any]) -> None:
        """Grant the credential to Sally over IPEX and wait for submission.

        Raises:
            KeriaOperationError: If Sally is not configured, the listing entry
                lacks its issuance events, or the grant operation fails.
        """
        if not self.sally_aid:
            raise KeriaOperationError("SALLY_AID is not configured")
        if not isinstance(credential.get("iss"), dict) or not isinstance(credential.get("anc"), dict):
            raise KeriaOperationError("Credential entry has no iss/anc events")
        await self._run(self._grant, credential)

    def _grant(self, client: Any, credential: Dict[str, Any]) -> None:
        self._resolve_sally_oobi(client)

        hab = client.identifiers().get(self.le_name)
        ipex = client.ipex()
        grant, sigs, end = ipex.grant(
            hab,
            recp=self.sally_aid,
            message="",
            acdc=serialize_event(credential["sad"]),
            iss=serialize_event(credential["iss"]),
            anc=serialize_event(credential["anc"]),
            dt=keri_timestamp(),
        )

        said = _sad(credential).get("d", "")
        log.info("Submitting IPEX grant to Sally", extra={"credential_said": said})
        op = ipex.submitGrant(self.le_name, exn=grant, sigs=sigs, atc=end, recp=[self.sally_aid])
        self._wait_operation(client, op)

    def _resolve_sally_oobi(self, client: Any) -> None:
        if self._sally_oobi_resolved:
            return
        oobi = f"{self.sally_url}/oobi/{self.sally_aid}/controller"
        try:
            self._wait_operation(client, client.oobis().resolve(oobi, alias="sally"))
        except Exception as e:
            # An already-known OOBI can fail to re-resolve; the grant decides
            log.info(f"Sally OOBI resolution: {e}")
            return
        self._sally_oobi_resolved = True

    def _wait_operation(self, client: Any, op: Dict[str, Any]) -> Dict[str, Any]:
        deadline = time.monotonic() + self.operation_timeout
        operations = client.operations()
        while not op.get("done"):
            if time.monotonic() >= deadline:
                raise KeriaOperationError(
                    f"KERIA operation {op.get('name')} not done after {self.operation_timeout}s"
                )
            time.sleep(self.poll_interval)
            op = operations.get(op["name"])

        if op.get("error"):
            raise KeriaOperationError(f"KERIA operation {op.get('name')} failed: {op['error']}")
        return op


def _fetch_key_state(client: Any, aid: str) -> Optional[Dict[str, Any]]:
    states = client.get(f"/states?pre={aid}").json()
    if isinstance(states, list):
        return states[0] if states else None
    return states or None


def _query_credentials(client: Any) -> List[Dict[str, Any]]:
    # KERIA mishandles combined filters; callers filter locally
    body = {"filter": {}, "sort": [], "skip": 0, "limit": CREDENTIAL_QUERY_LIMIT}
    credentials = client.post("/credentials/query", json=body).json()
    return credentials if isinstance(credentials, list) else []


def _export_credential(client: Any, said: str) -> Optional[str]:
    response = client.get(f"/credentials/{said}", headers={"accept": CESR_JSON_CONTENT_TYPE})
    return response.text or None


def agent_from_config(
    agent_url: str = KERIA_AGENT_URL,
    passcode: str = LE_PASSCODE,
    le_name: str = LE_NAME,
) -> Optional[KeriaAgent]:
    """KeriaAgent for the configured LE, or None without a Signify session.

    Does not connect; the session opens on first use.
    """
    if not (agent_url and passcode and le_name):
        log.info("No KERIA agent session configured; credential presentation disabled")
        return None
    return KeriaAgent(agent_url, passcode, le_name)
