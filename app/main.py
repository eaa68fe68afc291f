import logging
import os
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from app.core.config import DID_IOTA_PREFIX, DID_WEBS_PREFIX, KEL_PUBLISHER_PATH
from app.logging_config import configure_logging
from app.didlink.api_models import (
    ERROR_RECOVERABILITY,
    AidListing,
    AttestationResponse,
    ErrorCode,
    ErrorDetail,
    PublishDidDataRequest,
    ResolvedDidResponse,
    VerifyDidLinkingRequest,
    WebhookAck,
)
from app.didlink.attestation import Signer, sign_linkage_vc, signer_from_config
from app.didlink.did.document import did_webs_for
from app.didlink.did.extractors import (
    extract_aid_from_did_webs,
    extract_iota_did,
    extract_keri_service_endpoint,
)
from app.didlink.did.iota_resolver import IotaDidResolver
from app.didlink.did.webs_resolver import DidWebsResolver
from app.didlink.exceptions import (
    DocumentInvalidError,
    DocumentResolutionError,
    EventLogUnavailableError,
    InvalidIdentifierError,
    KeyStateUnavailableError,
    LinkageError,
)
from app.didlink.keria import KeriaAgent, agent_from_config
from app.didlink.models import DIDDocument
from app.didlink.publisher import KelPublisher
from app.didlink.registry import PendingVerificationRegistry
from app.didlink.sally import SallyCredentialVerifier, check_sally_status, parse_sally_webhook
from app.didlink.verifier import DidLinkingVerifier, ServiceLinkageDependencies

configure_logging()
log = logging.getLogger("didlink")


@dataclass
class LinkageServices:
    """Process-wide components shared by the routes."""
    registry: PendingVerificationRegistry
    publisher: KelPublisher
    webs_resolver: DidWebsResolver
    iota_resolver: IotaDidResolver
    verifier: DidLinkingVerifier
    credential_verifier: Optional[SallyCredentialVerifier] = None
    signer: Optional[Signer] = None


def build_services(
    agent: Optional[KeriaAgent] = None,
    signer: Optional[Signer] = None,
) -> LinkageServices:
    """Wire the components from configuration.

    With a KERIA agent session for the LE, served did.json documents carry
    the DA aliases and the LE credential is presented to Sally. Without one,
    linkage checks still run and report the credential as unverified.
    Attestation needs ``signer``.
    """
    registry = PendingVerificationRegistry()
    publisher = KelPublisher(key_state_source=agent, credential_store=agent)
    credential_verifier = SallyCredentialVerifier(registry, agent) if agent is not None else None
    webs_resolver = DidWebsResolver()
    iota_resolver = IotaDidResolver()
    deps = ServiceLinkageDependencies(
        webs_resolver=webs_resolver,
        publisher=publisher,
        iota_resolver=iota_resolver,
        credential_verifier=credential_verifier,
    )
    return LinkageServices(
        registry=registry,
        publisher=publisher,
        webs_resolver=webs_resolver,
        iota_resolver=iota_resolver,
        verifier=DidLinkingVerifier(deps),
        credential_verifier=credential_verifier,
        signer=signer,
    )


app = FastAPI(title="DID Linkage Verifier", version="0.1.0")
app.state.services = build_services(agent_from_config(), signer_from_config())


def _services(request: Request) -> LinkageServices:
    return request.app.state.services


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    detail = ErrorDetail(
        code=code,
        message=message,
        recoverable=ERROR_RECOVERABILITY.get(code, True),
    )
    return JSONResponse(status_code=status_code, content={"error": detail.model_dump()})


def _linkage_error(status_code: int, exc: LinkageError) -> JSONResponse:
    return _error(status_code, exc.code, exc.message)


def _check_did_webs(did_webs: Optional[str]) -> Optional[JSONResponse]:
    if not did_webs:
        return _error(400, ErrorCode.DID_INVALID, "Missing didWebs parameter")
    if not did_webs.startswith(DID_WEBS_PREFIX):
        return _error(400, ErrorCode.DID_INVALID, "Invalid did:webs format")
    return None


def _publisher_domain(request: Request) -> str:
    # did:webs encodes the port separator
    host = request.headers.get("host") or "localhost"
    return host.replace(":", "%3A")


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.middleware("http")
async def req_log(request: Request, call_next):
    start = time.time()
    route = request.url.path
    remote = request.client.host if request.client else "-"
    resp = await call_next(request)
    duration_ms = int((time.time() - start) * 1000)
    log.info(f"request_complete status={resp.status_code} duration_ms={duration_ms}",
             extra={"request_id": "-", "route": route, "remote_addr": remote})
    return resp


@app.get("/version")
def version():
    # GIT_SHA is injected at deploy time
    return {"git_sha": os.getenv("GIT_SHA", "unknown")}


@app.get("/api/status")
async def status(request: Request):
    """Sally availability and pending verification count."""
    from app.core.config import SALLY_URL
    from app.didlink.models import iso_timestamp

    services = _services(request)
    return {
        "sallyAvailable": await check_sally_status(SALLY_URL),
        "credentialPresentationConfigured": services.credential_verifier is not None,
        "pendingVerifications": len(services.registry.pending_saids()),
        "timestamp": iso_timestamp(),
    }


@app.get("/api/config")
async def public_config(request: Request):
    """Public trust chain identifiers for clients. Carries no secrets."""
    from app.core.config import (
        GLEIF_AID,
        GLEIF_OOBI,
        KEL_PUBLISHER_DOMAIN,
        LE_AID,
        LE_CREDENTIAL_SAID,
        LE_IOTA_DID,
        LE_LEI,
        LE_OOBI,
        QVI_AID,
        QVI_CREDENTIAL_SAID,
        QVI_OOBI,
        SALLY_AID,
    )

    services = _services(request)
    designated_aliases = None
    if LE_AID:
        aliases = await services.publisher.get_designated_aliases(LE_AID)
        if aliases is not None:
            designated_aliases = {"said": aliases.said, "linkedDids": list(aliases.ids)}

    return {
        "gleif": {"aid": GLEIF_AID, "oobi": GLEIF_OOBI},
        "qvi": {"aid": QVI_AID, "oobi": QVI_OOBI},
        "le": {
            "aid": LE_AID,
            "oobi": LE_OOBI,
            "lei": LE_LEI,
            "iotaDid": LE_IOTA_DID,
            "didWebs": did_webs_for(LE_AID, KEL_PUBLISHER_DOMAIN, KEL_PUBLISHER_PATH) if LE_AID else None,
        },
        "qviCredential": {"said": QVI_CREDENTIAL_SAID},
        "leCredential": {"said": LE_CREDENTIAL_SAID},
        "designatedAliasesCredential": designated_aliases,
        "sally": {"configured": services.credential_verifier is not None and bool(SALLY_AID)},
    }


# =============================================================================
# did:webs publishing (fetched by the dkr resolver)
# =============================================================================

@app.get("/keri/aids")
def list_aids(request: Request):
    """AIDs with client-published DID data, plus the configured LE."""
    from app.core.config import LE_AID

    aids = _services(request).publisher.published_aids()
    if LE_AID and LE_AID not in aids:
        aids.append(LE_AID)
    listing = AidListing(
        aids=aids,
        did_webs_format=f"{DID_WEBS_PREFIX}{_publisher_domain(request)}:{KEL_PUBLISHER_PATH}:{{AID}}",
        endpoints={
            "didJson": f"/{KEL_PUBLISHER_PATH}/{{AID}}/did.json",
            "keriCesr": f"/{KEL_PUBLISHER_PATH}/{{AID}}/keri.cesr",
        },
    )
    return listing.model_dump(by_alias=True)


@app.get("/keri/{aid}/did.json")
async def did_json(aid: str, request: Request):
    publisher = _services(request).publisher
    if not publisher.is_valid_aid(aid):
        return _linkage_error(400, InvalidIdentifierError.invalid_aid(aid))

    log.info(f"Generating did.json for AID: {aid}")
    try:
        document = await publisher.get_did_document(aid, _publisher_domain(request), KEL_PUBLISHER_PATH)
    except KeyStateUnavailableError as e:
        log.info(e.message)
        return _error(404, e.code, f"AID not found: {aid}")

    return JSONResponse(content=document, media_type="application/did+ld+json")


@app.get("/keri/{aid}/keri.cesr")
async def keri_cesr(aid: str, request: Request):
    publisher = _services(request).publisher
    if not publisher.is_valid_aid(aid):
        return _linkage_error(400, InvalidIdentifierError.invalid_aid(aid))

    log.info(f"Fetching keri.cesr for AID: {aid}")
    try:
        cesr = await publisher.get_keri_cesr(aid)
    except EventLogUnavailableError as e:
        log.warning(e.message)
        return _error(404, e.code, f"Failed to fetch CESR for AID: {aid}")

    return Response(content=cesr, media_type="application/cesr")


@app.post("/keri/{aid}/publish")
async def publish_did_data(aid: str, req: PublishDidDataRequest, request: Request):
    """Issuing client pushes the DID document and DA CESR after DA issuance."""
    publisher = _services(request).publisher
    if not publisher.is_valid_aid(aid):
        return _linkage_error(400, InvalidIdentifierError.invalid_aid(aid))
    if not req.did_document:
        return _error(400, ErrorCode.DOCUMENT_INVALID, "Missing or invalid didDocument in request body")

    try:
        publisher.publish(aid, req.did_document, req.da_cesr)
    except DocumentInvalidError as e:
        return _linkage_error(400, e)

    await publisher.invalidate(aid)
    return {"ok": True}


# =============================================================================
# Resolution and linkage verification
# =============================================================================

@app.get("/api/resolve-did/{did:path}")
async def resolve_did(did: str, request: Request):
    did = unquote(did)
    if not did.startswith("did:"):
        return _error(400, ErrorCode.DID_INVALID, 'Invalid DID format. DID must start with "did:"')

    log.info(f"Resolving DID: {did}", extra={"did": did})
    try:
        raw = await _services(request).webs_resolver.resolve(did)
        document = DIDDocument.from_dict(raw)
    except (DocumentResolutionError, DocumentInvalidError) as e:
        return _linkage_error(404, e)

    iota_did = extract_iota_did(document)
    response = ResolvedDidResponse(
        document=raw,
        iota_did=iota_did,
        keri_service_endpoint=extract_keri_service_endpoint(document),
        has_iota_linkage=iota_did is not None,
    )
    return response.model_dump(by_alias=True)


@app.post("/api/verify-did-linking")
async def verify_did_linking(req: VerifyDidLinkingRequest, request: Request):
    """Full linkage verification for a did:webs identifier.

    Resolves did:webs, extracts the linked did:iota, checks the reverse link
    and presents the LE credential to Sally for chain verification.
    """
    invalid = _check_did_webs(req.did_webs)
    if invalid is not None:
        return invalid

    log.info(f"Starting DID linking verification for: {req.did_webs}", extra={"did": req.did_webs})
    try:
        result = await _services(request).verifier.verify(req.did_webs)
    except InvalidIdentifierError as e:
        return _linkage_error(400, e)
    except (DocumentResolutionError, DocumentInvalidError) as e:
        return _linkage_error(502, e)

    return result.to_dict()


@app.post("/api/attest")
async def attest_linkage(req: VerifyDidLinkingRequest, request: Request):
    """Verify a did:webs linkage, then sign a linkage VC with the LE key.

    Only a linkage whose credential chain verified and whose aliases point
    at each other is attested.
    """
    services = _services(request)
    if services.signer is None:
        return _error(503, ErrorCode.NOT_CONFIGURED, "Linkage signing key is not configured")
    invalid = _check_did_webs(req.did_webs)
    if invalid is not None:
        return invalid

    log.info(f"Attesting DID linkage for: {req.did_webs}", extra={"did": req.did_webs})
    try:
        result = await services.verifier.verify(req.did_webs)
    except InvalidIdentifierError as e:
        return _linkage_error(400, e)
    except (DocumentResolutionError, DocumentInvalidError) as e:
        return _linkage_error(502, e)

    if not (result.verified and result.bidirectional and result.linked_iota_did):
        detail = ErrorDetail(
            code=ErrorCode.LINKAGE_NOT_VERIFIED,
            message="Cannot attest a linkage that did not verify in both directions",
            recoverable=ERROR_RECOVERABILITY[ErrorCode.LINKAGE_NOT_VERIFIED],
        )
        return JSONResponse(
            status_code=400,
            content={"error": detail.model_dump(), "verificationResult": result.to_dict()},
        )

    aid = extract_aid_from_did_webs(req.did_webs)
    aliases = await services.publisher.get_designated_aliases(aid) if aid else None
    signed = sign_linkage_vc(
        services.signer,
        req.did_webs,
        result.linked_iota_did,
        result.le_lei,
        aliases.said if aliases else "",
    )
    response = AttestationResponse(
        jwt=signed.jwt,
        verification_method=signed.verification_method,
        did_webs=req.did_webs,
        did_iota=result.linked_iota_did,
        designated_aliases_said=aliases.said if aliases else "",
    )
    return response.model_dump(by_alias=True)


@app.post("/api/verify")
async def verify_le_credential(request: Request):
    """Present the LE credential to Sally and return the chain verification outcome."""
    credential_verifier = _services(request).credential_verifier
    if credential_verifier is None:
        return _error(503, ErrorCode.NOT_CONFIGURED, "Credential presentation to Sally is not configured")

    result = await credential_verifier.verify_credential()
    return result.to_dict()


@app.get("/api/verify-linkage/from-iota/{did:path}")
async def verify_linkage_from_iota(did: str, request: Request):
    """Reverse direction: did:iota -> did:webs, with the bidirectional check."""
    did_iota = unquote(did)
    if not did_iota.startswith(DID_IOTA_PREFIX):
        return _error(400, ErrorCode.DID_INVALID, "Invalid DID format. Must be a did:iota: identifier")

    log.info(f"Starting reverse linkage verification for: {did_iota}", extra={"did": did_iota})
    try:
        result = await _services(request).verifier.verify_from_iota(did_iota)
    except InvalidIdentifierError as e:
        return _linkage_error(400, e)
    except (DocumentResolutionError, DocumentInvalidError) as e:
        return JSONResponse(
            status_code=502,
            content={"verified": False, "error": e.message, "didIota": did_iota},
        )

    body = result.to_dict()
    body["didIota"] = did_iota
    return body


# =============================================================================
# Sally webhook and result polling
# =============================================================================

@app.post("/webhook/sally")
async def sally_webhook(request: Request):
    """Sally posts here after processing a presented credential.

    Always acknowledged with 200 so Sally does not retry; outcomes without a
    pending caller are still kept for polling.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None

    event = parse_sally_webhook(request.headers, body)
    log.info(
        f"Sally webhook received action={event.action} resource={event.resource} "
        f"timestamp={event.timestamp}",
        extra={"route": "/webhook/sally", "credential_said": event.credential_said or "-"},
    )

    if not event.credential_said:
        log.warning("Could not extract credential SAID from webhook")
        return WebhookAck(warning="No credential SAID found").model_dump(by_alias=True, exclude_none=True)

    if not (event.verified or event.revoked):
        log.warning(f"Unknown action from Sally: {event.action}")

    services = _services(request)
    resolved = services.registry.resolve_verification(event.credential_said, event.verified, event.revoked)

    le_aid = services.credential_verifier.le_aid if services.credential_verifier else ""
    le_lei = services.credential_verifier.le_lei if services.credential_verifier else ""
    services.registry.store_completed(event.credential_said, event.verified, event.revoked, le_aid, le_lei)

    ack = WebhookAck(action=event.action, credential_said=event.credential_said, resolved=resolved)
    return ack.model_dump(by_alias=True, exclude_none=True)


@app.get("/api/verification/{said}")
def get_verification(said: str, request: Request):
    completed = _services(request).registry.get_completed(said)
    if completed is None:
        return JSONResponse(
            status_code=404,
            content={"detail": f"No completed verification for {said}"},
        )
    return completed.to_dict()


# =============================================================================
# Admin
# =============================================================================

@app.get("/admin")
def admin(request: Request):
    """Return all configurable items for operator visibility.

    Gated by ADMIN_ENDPOINT_ENABLED.
    """
    from app.core.config import (
        ADMIN_ENDPOINT_ENABLED,
        ALLOWED_ALGORITHMS,
        COMPLETED_RESULT_TTL_SECONDS,
        DA_CACHE_TTL_SECONDS,
        DA_SCHEMA_SAID,
        DID_WEBS_RESOLVER_URL,
        IOTA_RESOLVER_URL,
        KERIA_AGENT_URL,
        KERIA_HTTP_URL,
        KERIA_OPERATION_TIMEOUT_SECONDS,
        KEL_PUBLISHER_DOMAIN,
        RESOLVER_TIMEOUT_SECONDS,
        SALLY_URL,
        VC_VALIDITY_SECONDS,
        VERIFICATION_TIMEOUT_SECONDS,
    )

    if not ADMIN_ENDPOINT_ENABLED:
        return JSONResponse(
            status_code=404,
            content={"detail": "Admin endpoint disabled"}
        )

    registry = _services(request).registry
    return {
        "normative": {
            "vc_validity_seconds": VC_VALIDITY_SECONDS,
            "allowed_algorithms": sorted(ALLOWED_ALGORITHMS),
        },
        "policy": {
            "verification_timeout_seconds": VERIFICATION_TIMEOUT_SECONDS,
            "completed_result_ttl_seconds": COMPLETED_RESULT_TTL_SECONDS,
            "da_cache_ttl_seconds": DA_CACHE_TTL_SECONDS,
            "resolver_timeout_seconds": RESOLVER_TIMEOUT_SECONDS,
            "keria_operation_timeout_seconds": KERIA_OPERATION_TIMEOUT_SECONDS,
        },
        "operational": {
            "da_schema_said": DA_SCHEMA_SAID,
            "did_webs_resolver_url": DID_WEBS_RESOLVER_URL,
            "iota_resolver_url": IOTA_RESOLVER_URL,
            "keria_http_url": KERIA_HTTP_URL,
            "keria_agent_url": KERIA_AGENT_URL,
            "sally_url": SALLY_URL,
            "kel_publisher_domain": KEL_PUBLISHER_DOMAIN,
            "kel_publisher_path": KEL_PUBLISHER_PATH,
        },
        "environment": {
            "log_level": logging.getLogger().getEffectiveLevel(),
            "log_level_name": logging.getLevelName(logging.getLogger().getEffectiveLevel()),
        },
        "registry": {
            "pending": registry.pending_saids(),
            "completed_count": registry.completed_count,
        },
    }


class LogLevelRequest(BaseModel):
    level: str


@app.post("/admin/log-level")
def set_log_level(req: LogLevelRequest):
    """Change log level at runtime (DEBUG, INFO, WARNING, ERROR, CRITICAL).

    Gated by ADMIN_ENDPOINT_ENABLED.
    """
    from app.core.config import ADMIN_ENDPOINT_ENABLED

    if not ADMIN_ENDPOINT_ENABLED:
        return JSONResponse(
            status_code=404,
            content={"detail": "Admin endpoint disabled"}
        )

    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    level_upper = req.level.upper()

    if level_upper not in valid_levels:
        return JSONResponse(
            status_code=400,
            content={"detail": f"Invalid log level. Must be one of: {valid_levels}"}
        )

    logging.getLogger().setLevel(getattr(logging, level_upper))
    logging.getLogger("didlink").setLevel(getattr(logging, level_upper))

    log.info(f"Log level changed to {level_upper}")

    return {
        "success": True,
        "log_level": level_upper,
        "message": f"Log level set to {level_upper}"
    }
