"""KEL publisher for did:webs resolution.

Serves ``/{aid}/did.json`` and ``/{aid}/keri.cesr`` for the dkr resolver.
Key state and credentials come from KERIA: through the injected
``KeyStateSource`` / ``CredentialStore`` when an agent session exists for the
AID, otherwise through KERIA's public HTTP endpoints.

The ``alsoKnownAs`` list is taken from the self-issued Designated Aliases
credential, and the same credential is appended to ``keri.cesr`` so the
resolver can verify those aliases. Documents and DA CESR pushed by the
issuing client through ``publish`` take precedence.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import httpx

from app.core.config import (
    CESR_FETCH_TIMEOUT_SECONDS,
    DA_CACHE_TTL_SECONDS,
    DA_SCHEMA_SAID,
    KERIA_HTTP_URL,
    KEY_STATE_TIMEOUT_SECONDS,
)
from app.didlink.did.document import build_webs_did_document
from app.didlink.exceptions import (
    DocumentInvalidError,
    EventLogUnavailableError,
    InvalidIdentifierError,
    KeyStateUnavailableError,
)
from app.didlink.models import DIDDocument, KeyStateSnapshot
from app.didlink.said import DesignatedAliases, select_designated_aliases

log = logging.getLogger("didlink.publisher")

AID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{44}$")

CESR_CONTENT_TYPE = "application/cesr"


class KeyStateSource(Protocol):
    """Current key state lookup (a KERIA agent session)."""

    async def get_key_state(self, aid: str) -> Optional[Dict[str, Any]]:
        """Return the KERIA key state mapping, or None when unknown."""
        ...


class CredentialStore(Protocol):
    """Credential listing and CESR export (a KERIA agent session)."""

    async def list_credentials(self, issuer: str, schema: str) -> List[Dict[str, Any]]:
        ...

    async def export_credential(self, said: str) -> Optional[str]:
        """CESR export of a credential including its anchoring events."""
        ...


@dataclass
class _DaCacheEntry:
    aliases: DesignatedAliases
    fetched_at: float


class KelPublisher:
    """Build DID documents and KEL exports for KERI AIDs."""

    def __init__(
        self,
        keria_http_url: str = KERIA_HTTP_URL,
        key_state_source: Optional[KeyStateSource] = None,
        credential_store: Optional[CredentialStore] = None,
        da_schema_said: str = DA_SCHEMA_SAID,
        da_cache_ttl_seconds: float = DA_CACHE_TTL_SECONDS,
    ):
        self.keria_http_url = keria_http_url.rstrip("/")
        self.key_state_source = key_state_source
        self.credential_store = credential_store
        self.da_schema_said = da_schema_said
        self.da_cache_ttl_seconds = da_cache_ttl_seconds

        self._da_cache: Dict[str, _DaCacheEntry] = {}
        self._da_lock = asyncio.Lock()
        self._published_documents: Dict[str, Dict[str, Any]] = {}
        self._published_da_cesr: Dict[str, str] = {}

    @staticmethod
    def is_valid_aid(aid: str) -> bool:
        """Check that a string looks like a 44-char base64url KERI AID."""
        return isinstance(aid, str) and AID_PATTERN.match(aid) is not None

    def publish(self, aid: str, document: Dict[str, Any], da_cesr: Optional[str] = None) -> None:
        """Store a client-published DID document (and DA CESR) for an AID.

        Raises:
            InvalidIdentifierError: If aid is malformed.
            DocumentInvalidError: If document has no id.
        """
        if not self.is_valid_aid(aid):
            raise InvalidIdentifierError.invalid_aid(aid)
        DIDDocument.from_dict(document)

        self._published_documents[aid] = document
        if da_cesr:
            self._published_da_cesr[aid] = da_cesr
        log.info(f"Cached published DID data for AID: {aid} (daCesr: {bool(da_cesr)})")

    def published_aids(self) -> List[str]:
        return list(self._published_documents)

    async def invalidate(self, aid: str) -> None:
        """Drop the cached Designated Aliases credential for an AID."""
        async with self._da_lock:
            self._da_cache.pop(aid, None)

    async def get_did_document(self, aid: str, domain: str, path: Optional[str] = None) -> Dict[str, Any]:
        """Build the did:webs DID document for an AID.

        Raises:
            KeyStateUnavailableError: If neither the key state source nor the
                KERIA HTTP fallback has key state for the AID.
        """
        published = self._published_documents.get(aid)
        if published is not None:
            return published

        aliases = await self.get_designated_aliases(aid)
        also_known_as = aliases.ids if aliases is not None and aliases.ids else None

        key_state = await self._get_key_state(aid)
        if key_state is None:
            raise KeyStateUnavailableError(aid)

        return build_webs_did_document(aid, key_state, domain, path, also_known_as).to_dict()

    async def get_keri_cesr(self, aid: str) -> str:
        """KEL for an AID in CESR, followed by the DA credential when available.

        Raises:
            EventLogUnavailableError: If KERIA cannot provide the KEL.
        """
        oobi_url = f"{self.keria_http_url}/oobi/{aid}"
        try:
            async with httpx.AsyncClient(timeout=CESR_FETCH_TIMEOUT_SECONDS) as client:
                response = await client.get(oobi_url, headers={"Accept": CESR_CONTENT_TYPE})
        except httpx.TimeoutException:
            raise EventLogUnavailableError(aid, f"timeout after {CESR_FETCH_TIMEOUT_SECONDS}s")
        except httpx.RequestError as e:
            raise EventLogUnavailableError(aid, f"network error: {e}")

        if not response.is_success:
            raise EventLogUnavailableError(aid, f"KERIA returned {response.status_code}")

        kel_cesr = response.text
        if not kel_cesr:
            raise EventLogUnavailableError(aid, "Empty CESR response from KERIA")

        published_da = self._published_da_cesr.get(aid)
        if published_da:
            return kel_cesr + published_da

        da_cesr = await self._export_designated_aliases(aid)
        if da_cesr:
            return kel_cesr + da_cesr
        return kel_cesr

    async def get_designated_aliases(self, aid: str) -> Optional[DesignatedAliases]:
        """DA credential for an AID, cached for ``da_cache_ttl_seconds``.

        Lookup failures are treated as "no aliases".
        """
        async with self._da_lock:
            cached = self._da_cache.get(aid)
            if cached is not None:
                if time.monotonic() - cached.fetched_at < self.da_cache_ttl_seconds:
                    return cached.aliases
                del self._da_cache[aid]

        if self.credential_store is None:
            return None

        try:
            credentials = await self.credential_store.list_credentials(aid, self.da_schema_said)
        except Exception as e:
            log.warning(f"DA credential lookup failed for {aid}: {e}")
            return None

        aliases = select_designated_aliases(credentials, issuer=aid, schema=self.da_schema_said)
        if aliases is None:
            return None

        async with self._da_lock:
            self._da_cache[aid] = _DaCacheEntry(aliases=aliases, fetched_at=time.monotonic())
        return aliases

    async def _export_designated_aliases(self, aid: str) -> Optional[str]:
        if self.credential_store is None:
            return None
        try:
            aliases = await self.get_designated_aliases(aid)
            if aliases is None:
                return None
            exported = await self.credential_store.export_credential(aliases.said)
        except Exception as e:
            log.warning(f"DA credential export failed for {aid}, serving KEL only: {e}")
            return None
        return exported if isinstance(exported, str) and exported else None

    async def _get_key_state(self, aid: str) -> Optional[KeyStateSnapshot]:
        if self.key_state_source is not None:
            try:
                state = await self.key_state_source.get_key_state(aid)
                if state:
                    return KeyStateSnapshot.from_dict(state)
            except Exception as e:
                log.debug(f"Key state source failed for {aid}, trying HTTP: {e}")

        url = f"{self.keria_http_url}/states/{aid}"
        try:
            async with httpx.AsyncClient(timeout=KEY_STATE_TIMEOUT_SECONDS) as client:
                response = await client.get(url)
            if not response.is_success:
                log.info(f"KERIA has no key state for {aid}: HTTP {response.status_code}")
                return None
            data = response.json()
            # Some KERIA versions answer with a one-element list
            if isinstance(data, list):
                data = data[0] if data else {}
            return KeyStateSnapshot.from_dict(data)
        except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
            log.info(f"Key state HTTP fallback failed for {aid}: {e}")
            return None
