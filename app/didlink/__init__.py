"""DID linkage between did:webs (KERI) and did:iota identifiers.

Pending verification registry, linkage verifier, VC JWT codec, linkage
attestation, the did:webs publisher and the KERIA agent adapter.
"""

from .exceptions import (
    LinkageError,
    InvalidIdentifierError,
    DocumentInvalidError,
    DocumentResolutionError,
    KeyStateUnavailableError,
    EventLogUnavailableError,
    SaidMismatchError,
    VcError,
)
from .models import (
    CompletedVerification,
    DIDDocument,
    KeyStateSnapshot,
    LinkageVerificationResult,
)
from .registry import PendingVerificationRegistry
from .verifier import DidLinkingVerifier, LinkageDependencies, ServiceLinkageDependencies
from .publisher import KelPublisher, KeyStateSource, CredentialStore
from .keria import KeriaAgent, KeriaOperationError, agent_from_config
from .attestation import Ed25519Signer, SignedLinkageVc, sign_linkage_vc, signer_from_config
from .vc import (
    build_linkage_vc_payload,
    build_vc_jwt_header,
    encode_vc_as_jwt,
    assemble_signed_jwt,
    decode_vc_jwt,
    is_vc_expired,
    validate_vc_jwt,
    verify_vc_signature,
)

__all__ = [
    # Exceptions
    "LinkageError",
    "InvalidIdentifierError",
    "DocumentInvalidError",
    "DocumentResolutionError",
    "KeyStateUnavailableError",
    "EventLogUnavailableError",
    "SaidMismatchError",
    "VcError",
    # Models
    "CompletedVerification",
    "DIDDocument",
    "KeyStateSnapshot",
    "LinkageVerificationResult",
    # Components
    "PendingVerificationRegistry",
    "DidLinkingVerifier",
    "LinkageDependencies",
    "ServiceLinkageDependencies",
    "KelPublisher",
    "KeyStateSource",
    "CredentialStore",
    "KeriaAgent",
    "KeriaOperationError",
    "agent_from_config",
    # Attestation
    "Ed25519Signer",
    "SignedLinkageVc",
    "sign_linkage_vc",
    "signer_from_config",
    # VC codec
    "build_linkage_vc_payload",
    "build_vc_jwt_header",
    "encode_vc_as_jwt",
    "assemble_signed_jwt",
    "decode_vc_jwt",
    "is_vc_expired",
    "validate_vc_jwt",
    "verify_vc_signature",
]
