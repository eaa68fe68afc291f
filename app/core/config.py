"""
DID linkage service configuration constants.

Constants are organized into:
- NORMATIVE: Fixed by the linkage attestation format, not deployment-tunable
- POLICY: Implementation choices (timeouts, retention windows, cache TTLs)
- OPERATIONAL: Deployment-specific settings (env vars)
"""

import os

# =============================================================================
# NORMATIVE CONSTANTS
# =============================================================================

# Linkage attestation VCs are valid for one year from issuance
VC_VALIDITY_SECONDS: int = 365 * 24 * 60 * 60

# VC JWTs are signed with the LE's KERI Ed25519 key
ALLOWED_ALGORITHMS: frozenset[str] = frozenset({"EdDSA"})

# W3C VC data model context and types for the linkage attestation
VC_CONTEXT: tuple[str, ...] = ("https://www.w3.org/2018/credentials/v1",)
VC_TYPES: tuple[str, ...] = ("VerifiableCredential", "DIDLinkageAttestation")

# DID method prefixes
DID_WEBS_PREFIX = "did:webs:"
DID_IOTA_PREFIX = "did:iota:"
DID_KERI_PREFIX = "did:keri:"
DID_WEB_PREFIX = "did:web:"

# =============================================================================
# POLICY CONSTANTS
# =============================================================================

# How long a pending verification waits for Sally's webhook
VERIFICATION_TIMEOUT_SECONDS: float = float(
    os.getenv("DIDLINK_VERIFICATION_TIMEOUT", "30")
)

# How long completed results stay available for polling
COMPLETED_RESULT_TTL_SECONDS: float = float(
    os.getenv("DIDLINK_COMPLETED_TTL", "300")
)

# TTL for the Designated Aliases credential cache in the KEL publisher
DA_CACHE_TTL_SECONDS: float = float(os.getenv("DIDLINK_DA_CACHE_TTL", "300"))

# did:webs / did:iota resolver request timeout
RESOLVER_TIMEOUT_SECONDS: float = float(os.getenv("DIDLINK_RESOLVER_TIMEOUT", "10"))

# Resolved did:iota documents are cached; a document update invalidates
IOTA_DOCUMENT_CACHE_TTL_SECONDS: float = float(
    os.getenv("DIDLINK_IOTA_CACHE_TTL", "300")
)

# KERIA HTTP fallbacks
KEY_STATE_TIMEOUT_SECONDS: float = 5.0
CESR_FETCH_TIMEOUT_SECONDS: float = 10.0

# Sally health check
SALLY_STATUS_TIMEOUT_SECONDS: float = 5.0

# KERIA long-running operations (OOBI resolution, IPEX grant submission)
KERIA_OPERATION_TIMEOUT_SECONDS: float = float(
    os.getenv("DIDLINK_KERIA_OPERATION_TIMEOUT", "30")
)
KERIA_OPERATION_POLL_SECONDS: float = 0.25

# The dkr resolver occasionally answers HTTP 200 with its own failure text.
# Known limitation: these markers are matched as substrings until the
# resolver reports failures through its status code.
RESOLVER_ERROR_MARKERS: tuple[str, ...] = ("Keystore must already exist", "exiting")

# Service types treated as KERI endpoints in a DID document
KERI_SERVICE_TYPES: frozenset[str] = frozenset({
    "KERIAgent", "KERI", "vLEICredentialService", "LinkedDomains",
})

# =============================================================================
# OPERATIONAL SETTINGS (deployment-specific, via environment variables)
# =============================================================================

# Designated Aliases ACDC schema (standard did:webs DA schema)
DA_SCHEMA_SAID: str = os.getenv(
    "DA_SCHEMA_SAID", "EN6Oh5XSD5_q2Hgu-aqpdfbVepdpYpFlgz6zvJL5b_r5"
)

# vLEI Legal Entity credential schema
LE_SCHEMA_SAID: str = os.getenv(
    "LE_SCHEMA_SAID", "ENPXp1vQzRF6JwIuS-mp2U8Uf1MoADoP_GqQ62VsDZWY"
)

DID_WEBS_RESOLVER_URL: str = os.getenv("DID_WEBS_RESOLVER_URL", "http://localhost:7677")
IOTA_RESOLVER_URL: str = os.getenv("IOTA_RESOLVER_URL", "http://localhost:8080")
KERIA_HTTP_URL: str = os.getenv("KERIA_HTTP_URL", "http://localhost:3902")
# Signify admin interface of the LE agent
KERIA_AGENT_URL: str = os.getenv("KERIA_AGENT_URL", "http://localhost:3901")
SALLY_URL: str = os.getenv("SALLY_URL", "http://localhost:9823")

# Domain/path the local KEL publisher is reachable under
KEL_PUBLISHER_DOMAIN: str = os.getenv("KEL_PUBLISHER_DOMAIN", "backend")
KEL_PUBLISHER_PATH: str = os.getenv("KEL_PUBLISHER_PATH", "keri")

# Legal entity whose credential is presented to Sally
LE_AID: str = os.getenv("LE_AID", "")
LE_LEI: str = os.getenv("LE_LEI", "")

# Signify session for the LE agent; presentation is disabled when unset
LE_NAME: str = os.getenv("LE_NAME", "")
LE_PASSCODE: str = os.getenv("LE_PASSCODE", "")
SALLY_AID: str = os.getenv("SALLY_AID", "")

# Hex Ed25519 seed of the key that signs linkage attestation VCs
LINKAGE_SIGNING_SEED: str = os.getenv("LINKAGE_SIGNING_SEED", "")

# Public trust chain description served by /api/config
GLEIF_AID: str = os.getenv("GLEIF_AID", "")
GLEIF_OOBI: str = os.getenv("GLEIF_OOBI", "")
QVI_AID: str = os.getenv("QVI_AID", "")
QVI_OOBI: str = os.getenv("QVI_OOBI", "")
LE_OOBI: str = os.getenv("LE_OOBI", "")
LE_IOTA_DID: str = os.getenv("LE_IOTA_DID", "")
QVI_CREDENTIAL_SAID: str = os.getenv("QVI_CREDENTIAL_SAID", "")
LE_CREDENTIAL_SAID: str = os.getenv("LE_CREDENTIAL_SAID", "")

# Admin endpoint visibility
ADMIN_ENDPOINT_ENABLED: bool = os.getenv("ADMIN_ENDPOINT_ENABLED", "true").lower() == "true"
