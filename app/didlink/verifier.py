"""DID linking verification.

Full flow for a did:webs identifier:

1. Resolve the did:webs document (dkr resolver first, local KEL publisher
   as fallback)
2. Extract the linked did:iota from ``alsoKnownAs``
3. Resolve the did:iota document and check that it links back
4. Verify the legal entity credential chain through Sally
5. Return the credential result together with the linkage details

The credential result (``verified``) and the alias cross-check
(``bidirectional``) are independent flags.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

from app.core.config import (
    DID_IOTA_PREFIX,
    KEL_PUBLISHER_DOMAIN,
    KEL_PUBLISHER_PATH,
    RESOLVER_ERROR_MARKERS,
)
from app.didlink.did.extractors import (
    extract_aid_from_did_webs,
    extract_iota_did,
    extract_keri_service_endpoint,
    extract_webs_did,
)
from app.didlink.exceptions import (
    DocumentInvalidError,
    DocumentResolutionError,
    InvalidIdentifierError,
)
from app.didlink.models import (
    CompletedVerification,
    DIDDocument,
    LinkageVerificationResult,
    iso_timestamp,
)

log = logging.getLogger("didlink.verifier")


class LinkageDependencies(Protocol):
    """External capabilities the verifier relies on."""

    async def resolve_did_webs(self, did: str) -> Dict[str, Any]:
        """Resolve through a verifying resolver (DA credential checked)."""
        ...

    async def get_did_document(self, aid: str, domain: str, path: str) -> Dict[str, Any]:
        """Build the document from the local KEL publisher (DA not verified)."""
        ...

    async def resolve_iota_did(self, did: str) -> Dict[str, Any]:
        ...

    def extract_webs_did(self, document: DIDDocument) -> Optional[str]:
        ...

    async def verify_credential(self) -> CompletedVerification:
        """Present the LE credential for chain verification and await the outcome."""
        ...


class ServiceLinkageDependencies:
    """LinkageDependencies backed by the resolver clients, publisher and Sally."""

    def __init__(self, webs_resolver, publisher, iota_resolver, credential_verifier):
        self.webs_resolver = webs_resolver
        self.publisher = publisher
        self.iota_resolver = iota_resolver
        self.credential_verifier = credential_verifier

    async def resolve_did_webs(self, did: str) -> Dict[str, Any]:
        return await self.webs_resolver.resolve(did)

    async def get_did_document(self, aid: str, domain: str, path: str) -> Dict[str, Any]:
        return await self.publisher.get_did_document(aid, domain, path)

    async def resolve_iota_did(self, did: str) -> Dict[str, Any]:
        return await self.iota_resolver.resolve(did)

    def extract_webs_did(self, document: DIDDocument) -> Optional[str]:
        return extract_webs_did(document)

    async def verify_credential(self) -> CompletedVerification:
        if self.credential_verifier is None:
            raise RuntimeError("Sally credential presentation is not configured")
        return await self.credential_verifier.verify_credential()


class DidLinkingVerifier:
    """Orchestrates DID linkage verification between did:webs and did:iota.

    Args:
        deps: External resolution and verification capabilities.
        publisher_domain: Domain used for the KEL publisher fallback.
        publisher_path: Path used for the KEL publisher fallback.
    """

    def __init__(
        self,
        deps: LinkageDependencies,
        publisher_domain: str = KEL_PUBLISHER_DOMAIN,
        publisher_path: str = KEL_PUBLISHER_PATH,
    ):
        self.deps = deps
        self.publisher_domain = publisher_domain
        self.publisher_path = publisher_path

    async def verify(self, did_webs: str) -> LinkageVerificationResult:
        """Run the full linkage verification for a did:webs identifier.

        Raises:
            InvalidIdentifierError: If did_webs is not a did:webs identifier.
            DocumentResolutionError: If both resolution strategies fail.
            DocumentInvalidError: If the resolved document is unusable.
        """
        aid = extract_aid_from_did_webs(did_webs)
        if not aid:
            raise InvalidIdentifierError(f"Invalid did:webs format: {did_webs}")

        document, resolved_via_resolver = await self._resolve_webs_document(did_webs, aid)

        # Only the verifying resolver checks the DA credential in the CESR stream
        da_verified = resolved_via_resolver and len(document.also_known_as) > 0

        linked_iota_did = extract_iota_did(document)
        keri_service_endpoint = extract_keri_service_endpoint(document)

        bidirectional = False
        linked_webs_did: Optional[str] = None
        iota_document: Optional[Dict[str, Any]] = None
        iota_also_known_as: Optional[List[str]] = None

        if linked_iota_did:
            try:
                raw_iota = await self.deps.resolve_iota_did(linked_iota_did)
                iota_doc = DIDDocument.from_dict(raw_iota)
            except Exception as e:
                log.warning(
                    f"Could not resolve linked {linked_iota_did}, continuing without "
                    f"bidirectional check: {e}",
                    extra={"did": did_webs},
                )
            else:
                iota_document = iota_doc.raw
                iota_also_known_as = list(iota_doc.also_known_as)
                linked_webs_did = self.deps.extract_webs_did(iota_doc)
                bidirectional = did_webs in iota_also_known_as

        linkage = dict(
            did_webs=did_webs,
            linked_iota_did=linked_iota_did,
            linked_webs_did=linked_webs_did,
            bidirectional=bidirectional,
            keri_service_endpoint=keri_service_endpoint,
            webs_document=document.raw,
            iota_document=iota_document,
            webs_also_known_as=list(document.also_known_as),
            iota_also_known_as=iota_also_known_as,
            da_verified=da_verified,
        )

        try:
            completed = await self.deps.verify_credential()
        except Exception as e:
            log.error(f"Credential verification failed for {did_webs}: {e}", extra={"did": did_webs})
            return LinkageVerificationResult(
                verified=False,
                revoked=False,
                le_aid="",
                le_lei="",
                credential_said="",
                timestamp=iso_timestamp(),
                error=f"Verification failed: {e}",
                **linkage,
            )

        log.info(
            f"Linkage verified={completed.verified} bidirectional={bidirectional} "
            f"daVerified={da_verified}",
            extra={"did": did_webs, "credential_said": completed.credential_said},
        )
        return LinkageVerificationResult.from_completed(completed, **linkage)

    async def verify_from_iota(self, did_iota: str) -> LinkageVerificationResult:
        """Verify linkage starting from the did:iota side.

        The result is verified only when the vLEI chain verifies AND the
        did:webs found in the did:iota document links back to ``did_iota``.

        Raises:
            InvalidIdentifierError: If did_iota is not a did:iota identifier.
            DocumentResolutionError: If the did:iota document cannot be resolved.
        """
        if not did_iota.startswith(DID_IOTA_PREFIX):
            raise InvalidIdentifierError(
                f"Invalid DID format. Must be a did:iota: identifier: {did_iota}"
            )

        try:
            iota_doc = DIDDocument.from_dict(await self.deps.resolve_iota_did(did_iota))
        except Exception as e:
            log.info(f"IOTA DID resolution failed: {e}", extra={"did": did_iota})
            raise DocumentResolutionError(f"Failed to resolve IOTA DID: {e}")

        linked_webs_did = self.deps.extract_webs_did(iota_doc)
        if not linked_webs_did:
            return LinkageVerificationResult(
                verified=False,
                revoked=False,
                le_aid="",
                le_lei="",
                credential_said="",
                timestamp=iso_timestamp(),
                error="No did:webs found in IOTA DID document",
                iota_document=iota_doc.raw,
                iota_also_known_as=list(iota_doc.also_known_as),
            )

        log.info(f"Found linked {linked_webs_did}", extra={"did": did_iota})
        webs_result = await self.verify(linked_webs_did)
        bidirectional = webs_result.linked_iota_did == did_iota

        return webs_result.with_updates(
            verified=webs_result.verified and bidirectional,
            vlei_verified=webs_result.verified,
            bidirectional=bidirectional,
            linked_webs_did=linked_webs_did,
            iota_document=iota_doc.raw,
            iota_also_known_as=list(iota_doc.also_known_as),
            timestamp=iso_timestamp(),
        )

    async def _resolve_webs_document(self, did_webs: str, aid: str):
        """Resolve the did:webs document, returning (document, via_resolver)."""
        try:
            raw = await self.deps.resolve_did_webs(did_webs)
            via_resolver = True
        except Exception as resolver_error:
            log.info(f"Resolver failed for {did_webs}, using KEL publisher: {resolver_error}")
            try:
                raw = await self.deps.get_did_document(aid, self.publisher_domain, self.publisher_path)
            except Exception as publisher_error:
                raise DocumentResolutionError(
                    f"Failed to resolve {did_webs}: Resolver: {resolver_error}, "
                    f"KEL publisher: {publisher_error}"
                )
            via_resolver = False

        document = DIDDocument.from_dict(raw)
        if not document.id.startswith("did:") or any(
            marker in document.id for marker in RESOLVER_ERROR_MARKERS
        ):
            raise DocumentInvalidError(f"Invalid DID document for {did_webs}")
        return document, via_resolver
