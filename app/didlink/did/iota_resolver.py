"""did:iota resolution with an in-memory document cache.

Documents are resolved through a universal-resolver endpoint backed by the
IOTA identity driver. Resolved documents are cached per DID; callers that
update a document on the ledger call ``invalidate``.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import httpx

from app.core.config import (
    DID_IOTA_PREFIX,
    IOTA_DOCUMENT_CACHE_TTL_SECONDS,
    IOTA_RESOLVER_URL,
    RESOLVER_TIMEOUT_SECONDS,
)
from app.didlink.did.webs_resolver import ACCEPT_DID_DOCUMENT, parse_resolution_body
from app.didlink.exceptions import DocumentResolutionError, InvalidIdentifierError

log = logging.getLogger("didlink.iota_resolver")


class IotaDidResolver:
    """Resolve did:iota identifiers to DID documents."""

    def __init__(
        self,
        resolver_url: str = IOTA_RESOLVER_URL,
        timeout: float = RESOLVER_TIMEOUT_SECONDS,
        cache_ttl_seconds: float = IOTA_DOCUMENT_CACHE_TTL_SECONDS,
    ):
        self.resolver_url = resolver_url.rstrip("/")
        self.timeout = timeout
        self.cache_ttl_seconds = cache_ttl_seconds
        self._cache: Dict[str, Tuple[Dict[str, Any], float]] = {}
        self._lock = asyncio.Lock()

    async def resolve(self, did: str) -> Dict[str, Any]:
        """Resolve a did:iota identifier.

        Raises:
            InvalidIdentifierError: If did is not a did:iota identifier.
            DocumentResolutionError: If the resolver cannot produce a document.
        """
        if not did.startswith(DID_IOTA_PREFIX):
            raise InvalidIdentifierError(f"Not a did:iota identifier: {did}")

        cached = await self._get_cached(did)
        if cached is not None:
            return cached

        log.info(f"Resolving {did}")
        url = f"{self.resolver_url}/1.0/identifiers/{quote(did, safe='')}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, headers={"Accept": ACCEPT_DID_DOCUMENT})
        except httpx.TimeoutException:
            raise DocumentResolutionError(
                f"DID not found: {did}. Network resolution timed out after {self.timeout}s"
            )
        except httpx.RequestError as e:
            raise DocumentResolutionError(
                f"DID not found: {did}. Network resolution failed: {e}"
            )

        if not response.is_success:
            raise DocumentResolutionError(
                f"DID not found: {did}. Network resolution failed: HTTP {response.status_code}"
            )

        document = parse_resolution_body(response.text)
        now = time.monotonic()
        async with self._lock:
            self._purge_expired_locked(now)
            self._cache[did] = (document, now)
        return document

    async def invalidate(self, did: str) -> None:
        async with self._lock:
            self._cache.pop(did, None)

    async def _get_cached(self, did: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            entry = self._cache.get(did)
            if entry is None:
                return None
            document, stored_at = entry
            if time.monotonic() - stored_at >= self.cache_ttl_seconds:
                del self._cache[did]
                return None
            return document

    def _purge_expired_locked(self, now: float) -> None:
        """Drop expired documents (caller must hold lock)."""
        expired = [
            did for did, (_, stored_at) in self._cache.items()
            if now - stored_at >= self.cache_ttl_seconds
        ]
        for did in expired:
            del self._cache[did]
