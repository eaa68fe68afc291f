"""did:webs resolution through a dkr (did:keri resolver) service.

The resolver fetches the DID document and KERI CESR stream from the AID's
host, verifies the KEL together with any Designated Aliases credential in the
stream, and returns the verified document. A document that comes back with
``alsoKnownAs`` has therefore had its aliases checked cryptographically.
"""

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from app.core.config import DID_WEBS_RESOLVER_URL, RESOLVER_ERROR_MARKERS, RESOLVER_TIMEOUT_SECONDS
from app.didlink.exceptions import DocumentResolutionError

log = logging.getLogger("didlink.webs_resolver")

ACCEPT_DID_DOCUMENT = "application/did+ld+json, application/json"


def parse_resolution_body(text: str) -> Dict[str, Any]:
    """Extract the DID document from a resolver response body.

    The dkr service interleaves debug output with the JSON result, so the
    body is scanned line by line for the first JSON object carrying ``id``,
    ``didDocument`` or ``@context``. A wrapping resolution result is unwrapped
    to its ``didDocument``.

    Raises:
        DocumentResolutionError: If no DID document is found or it has no id.
    """
    result: Optional[Dict[str, Any]] = None
    for line in text.splitlines():
        brace = line.find("{")
        if brace < 0:
            continue
        try:
            parsed = json.loads(line[brace:])
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict) and (
            parsed.get("id") or parsed.get("didDocument") or parsed.get("@context")
        ):
            result = parsed
            break

    if result is None:
        # Pretty-printed JSON spans lines; try the body as a whole
        brace = text.find("{")
        if brace >= 0:
            try:
                parsed = json.loads(text[brace:])
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, dict):
                result = parsed

    if result is None:
        raise DocumentResolutionError("DID resolver returned no DID document in response")

    document = result.get("didDocument") or result
    if not isinstance(document, dict) or not document.get("id"):
        raise DocumentResolutionError("Invalid DID document: missing id")
    return document


class DidWebsResolver:
    """Client for a universal-resolver style dkr service."""

    def __init__(
        self,
        resolver_url: str = DID_WEBS_RESOLVER_URL,
        timeout: float = RESOLVER_TIMEOUT_SECONDS,
    ):
        self.resolver_url = resolver_url.rstrip("/")
        self.timeout = timeout

    async def resolve(self, did: str) -> Dict[str, Any]:
        """Resolve a did:webs (or did:keri) identifier to its DID document.

        Raises:
            DocumentResolutionError: On transport failure, non-2xx status, a
                resolver failure reported in a 200 body, or an unusable body.
        """
        url = f"{self.resolver_url}/1.0/identifiers/{quote(did, safe='')}"
        log.debug(f"Resolving {did} via {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, headers={"Accept": ACCEPT_DID_DOCUMENT})
        except httpx.TimeoutException:
            raise DocumentResolutionError(f"DID resolution timeout after {self.timeout}s")
        except httpx.RequestError as e:
            raise DocumentResolutionError(f"DID resolver network error: {e}")

        if not response.is_success:
            raise DocumentResolutionError(
                f"DID resolution failed: {response.status_code} - {response.text[:200]}"
            )

        text = response.text
        for marker in RESOLVER_ERROR_MARKERS:
            if marker in text:
                raise DocumentResolutionError(
                    f"DID resolver returned invalid response: {text[:100]}"
                )

        return parse_resolution_body(text)
