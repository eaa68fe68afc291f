"""Tests for the linkage VC JWT codec."""

import base64
import json

import pysodium
import pytest

from app.core.config import VC_VALIDITY_SECONDS
from app.didlink.api_models import ErrorCode
from app.didlink.exceptions import VcError
from app.didlink.vc import (
    assemble_signed_jwt,
    build_linkage_vc_payload,
    build_vc_jwt_header,
    decode_vc_jwt,
    encode_vc_as_jwt,
    is_vc_expired,
    validate_vc_jwt,
    verify_vc_signature,
)


NOW = 1_700_000_000
ISSUER = "did:webs:example.com:keri:AAA111"
SUBJECT = "did:iota:testnet:0xBEEF"


def b64url_json(data) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def b64url_decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


@pytest.fixture
def unsigned_jwt():
    payload = build_linkage_vc_payload(ISSUER, SUBJECT, "LEI123", "EDASAID", now=NOW)
    header = build_vc_jwt_header(f"{ISSUER}#DKEY")
    return encode_vc_as_jwt(header, payload)


@pytest.fixture
def signed_jwt(unsigned_jwt, ed25519_keypair):
    _, secret_key = ed25519_keypair
    signature = pysodium.crypto_sign_detached(unsigned_jwt.encode(), secret_key)
    return assemble_signed_jwt(unsigned_jwt, signature)


class TestBuildPayload:
    """Payload construction."""

    def test_validity_window(self):
        payload = build_linkage_vc_payload(ISSUER, SUBJECT, "LEI123", "EDASAID", now=NOW)
        assert payload.nbf == NOW
        assert payload.iat == NOW
        assert payload.exp == NOW + VC_VALIDITY_SECONDS
        assert payload.exp - payload.nbf == 365 * 24 * 60 * 60

    def test_claims(self):
        data = build_linkage_vc_payload(ISSUER, SUBJECT, "LEI123", "EDASAID", now=NOW).to_dict()

        assert data["iss"] == ISSUER
        assert data["sub"] == SUBJECT
        assert data["jti"].startswith("urn:uuid:")
        assert data["vc"]["type"] == ["VerifiableCredential", "DIDLinkageAttestation"]
        assert data["vc"]["@context"] == ["https://www.w3.org/2018/credentials/v1"]
        assert data["vc"]["credentialSubject"] == {
            "id": SUBJECT,
            "linkage": {
                "didWebs": ISSUER,
                "didIota": SUBJECT,
                "lei": "LEI123",
                "designatedAliasesSaid": "EDASAID",
            },
        }

    def test_unique_jti(self):
        first = build_linkage_vc_payload(ISSUER, SUBJECT, "LEI123", "EDASAID", now=NOW)
        second = build_linkage_vc_payload(ISSUER, SUBJECT, "LEI123", "EDASAID", now=NOW)
        assert first.jti != second.jti

    def test_header(self):
        header = build_vc_jwt_header(f"{ISSUER}#DKEY")
        assert header.to_dict() == {"alg": "EdDSA", "kid": f"{ISSUER}#DKEY", "typ": "JWT"}


class TestEncodeDecode:
    """Encoding and decoding the compact form."""

    def test_unsigned_has_two_unpadded_segments(self, unsigned_jwt):
        parts = unsigned_jwt.split(".")
        assert len(parts) == 2
        assert "=" not in unsigned_jwt

    def test_header_json_is_compact(self, unsigned_jwt):
        header_json = b64url_decode(unsigned_jwt.split(".")[0]).decode()
        assert " " not in header_json
        assert json.loads(header_json)["alg"] == "EdDSA"

    def test_decode_recovers_header_and_payload(self, signed_jwt):
        decoded = decode_vc_jwt(signed_jwt)

        assert decoded.header.alg == "EdDSA"
        assert decoded.header.kid == f"{ISSUER}#DKEY"
        assert decoded.header.typ == "JWT"
        assert decoded.payload.iss == ISSUER
        assert decoded.payload.linkage.did_iota == SUBJECT
        assert decoded.payload.linkage.designated_aliases_said == "EDASAID"
        assert decoded.payload.exp == NOW + VC_VALIDITY_SECONDS
        assert len(decoded.signature) == 64
        assert decoded.signing_input == signed_jwt.rsplit(".", 1)[0]

    @pytest.mark.parametrize("jwt", ["a.b", "a.b.c.d", "", "nodots"])
    def test_wrong_segment_count(self, jwt):
        with pytest.raises(VcError) as exc:
            decode_vc_jwt(jwt)
        assert exc.value.code == ErrorCode.VC_PARSE_FAILED

    def test_invalid_json_header(self):
        bad_header = base64.urlsafe_b64encode(b"not json").decode().rstrip("=")
        with pytest.raises(VcError, match="header JSON parse failed"):
            decode_vc_jwt(f"{bad_header}.{b64url_json({})}.sig")

    def test_missing_linkage(self):
        header = b64url_json({"alg": "EdDSA", "kid": "k"})
        payload = b64url_json({"iss": "a", "sub": "b", "jti": "c", "nbf": 1, "iat": 1, "exp": 2, "vc": {}})
        with pytest.raises(VcError, match="credentialSubject"):
            decode_vc_jwt(f"{header}.{payload}.sig")

    def test_non_integer_exp(self, unsigned_jwt):
        header = unsigned_jwt.split(".")[0]
        payload = json.loads(b64url_decode(unsigned_jwt.split(".")[1]))
        payload["exp"] = "tomorrow"
        with pytest.raises(VcError, match="exp must be an integer"):
            decode_vc_jwt(f"{header}.{b64url_json(payload)}.sig")


class TestExpiry:
    """Validity window checks cover both nbf and exp."""

    def test_valid_inside_window(self, signed_jwt):
        assert is_vc_expired(signed_jwt, now=NOW + 10) is False

    def test_expired_after_exp(self, signed_jwt):
        assert is_vc_expired(signed_jwt, now=NOW + VC_VALIDITY_SECONDS + 1) is True

    def test_not_yet_valid(self, signed_jwt):
        assert is_vc_expired(signed_jwt, now=NOW - 1) is True

    def test_boundaries_are_valid(self, signed_jwt):
        assert is_vc_expired(signed_jwt, now=NOW) is False
        assert is_vc_expired(signed_jwt, now=NOW + VC_VALIDITY_SECONDS) is False

    def test_malformed_raises(self):
        with pytest.raises(VcError):
            is_vc_expired("a.b")


class TestVerifySignature:
    """Ed25519 signature verification fails closed."""

    def test_valid_signature(self, signed_jwt, ed25519_keypair):
        public_key, _ = ed25519_keypair
        assert verify_vc_signature(signed_jwt, public_key, now=NOW + 10) is True

    def test_wrong_key(self, signed_jwt):
        other_public, _ = pysodium.crypto_sign_keypair()
        assert verify_vc_signature(signed_jwt, other_public, now=NOW + 10) is False

    def test_tampered_payload(self, signed_jwt, ed25519_keypair):
        public_key, _ = ed25519_keypair
        header, payload, signature = signed_jwt.split(".")
        claims = json.loads(b64url_decode(payload))
        claims["vc"]["credentialSubject"]["linkage"]["didIota"] = "did:iota:testnet:0xBAD"
        tampered = f"{header}.{b64url_json(claims)}.{signature}"

        assert verify_vc_signature(tampered, public_key, now=NOW + 10) is False

    def test_tampered_signature(self, signed_jwt, ed25519_keypair):
        public_key, _ = ed25519_keypair
        head, signature = signed_jwt.rsplit(".", 1)
        raw = bytearray(b64url_decode(signature))
        raw[0] ^= 0xFF
        tampered = f"{head}.{base64.urlsafe_b64encode(bytes(raw)).decode().rstrip('=')}"

        assert verify_vc_signature(tampered, public_key, now=NOW + 10) is False

    @pytest.mark.parametrize("segments", [2, 4])
    def test_wrong_segment_count(self, signed_jwt, ed25519_keypair, segments):
        public_key, _ = ed25519_keypair
        parts = signed_jwt.split(".")
        jwt = ".".join(parts[:2]) if segments == 2 else f"{signed_jwt}.extra"

        assert verify_vc_signature(jwt, public_key, now=NOW + 10) is False

    def test_expired_with_valid_signature(self, signed_jwt, ed25519_keypair):
        public_key, _ = ed25519_keypair
        assert verify_vc_signature(signed_jwt, public_key, now=NOW + VC_VALIDITY_SECONDS + 1) is False

    def test_forbidden_algorithm(self, ed25519_keypair):
        public_key, secret_key = ed25519_keypair
        payload = build_linkage_vc_payload(ISSUER, SUBJECT, "LEI123", "EDASAID", now=NOW)
        unsigned = f"{b64url_json({'alg': 'ES256', 'kid': 'k', 'typ': 'JWT'})}.{encode_vc_as_jwt(build_vc_jwt_header('k'), payload).split('.')[1]}"
        jwt = assemble_signed_jwt(unsigned, pysodium.crypto_sign_detached(unsigned.encode(), secret_key))

        assert verify_vc_signature(jwt, public_key, now=NOW + 10) is False

    def test_malformed_public_key(self, signed_jwt):
        assert verify_vc_signature(signed_jwt, b"short", now=NOW + 10) is False


class TestValidateVcJwt:
    """Raising validation reports which check failed."""

    def test_valid_returns_decoded(self, signed_jwt, ed25519_keypair):
        public_key, _ = ed25519_keypair
        decoded = validate_vc_jwt(signed_jwt, public_key, now=NOW + 10)
        assert decoded.payload.sub == SUBJECT

    @pytest.mark.parametrize("offset", [-1, VC_VALIDITY_SECONDS + 1])
    def test_outside_window(self, signed_jwt, ed25519_keypair, offset):
        public_key, _ = ed25519_keypair
        with pytest.raises(VcError) as exc:
            validate_vc_jwt(signed_jwt, public_key, now=NOW + offset)
        assert exc.value.code == ErrorCode.VC_EXPIRED

    def test_forbidden_algorithm(self, ed25519_keypair):
        public_key, secret_key = ed25519_keypair
        payload = build_linkage_vc_payload(ISSUER, SUBJECT, "LEI123", "EDASAID", now=NOW)
        unsigned = f"{b64url_json({'alg': 'none', 'kid': 'k'})}.{encode_vc_as_jwt(build_vc_jwt_header('k'), payload).split('.')[1]}"
        jwt = assemble_signed_jwt(unsigned, pysodium.crypto_sign_detached(unsigned.encode(), secret_key))

        with pytest.raises(VcError) as exc:
            validate_vc_jwt(jwt, public_key, now=NOW + 10)
        assert exc.value.code == ErrorCode.VC_FORBIDDEN_ALG
        assert "none" in exc.value.message

    def test_wrong_key(self, signed_jwt):
        other_public, _ = pysodium.crypto_sign_keypair()
        with pytest.raises(VcError) as exc:
            validate_vc_jwt(signed_jwt, other_public, now=NOW + 10)
        assert exc.value.code == ErrorCode.VC_SIGNATURE_INVALID

    def test_malformed_public_key(self, signed_jwt):
        with pytest.raises(VcError) as exc:
            validate_vc_jwt(signed_jwt, b"short", now=NOW + 10)
        assert exc.value.code == ErrorCode.VC_SIGNATURE_INVALID

    def test_malformed_jwt(self, ed25519_keypair):
        public_key, _ = ed25519_keypair
        with pytest.raises(VcError) as exc:
            validate_vc_jwt("only.two", public_key, now=NOW)
        assert exc.value.code == ErrorCode.VC_PARSE_FAILED
