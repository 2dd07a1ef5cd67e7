"""
Tests for the signing keypair lifecycle and RS256 access tokens.
"""
import time
import uuid

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key
from jwt.algorithms import RSAAlgorithm

from oauth_server.config import SIGNING_KEY_ID, TOKEN_AUDIENCE, TOKEN_SUBJECT
from oauth_server.database import SessionLocal, init_db
from oauth_server.keys import KeyManager
from oauth_server.models import SigningKey
from oauth_server.tokens import TokenIssuer

ISSUER = "https://auth.example.com"


@pytest.fixture
def key_manager():
    init_db()
    return KeyManager(SessionLocal)


# --- KeyManager ---


def test_generates_and_persists_key_on_first_use():
    init_db()
    kid = f"test-key-{uuid.uuid4()}"
    manager = KeyManager(SessionLocal, kid=kid)
    pair = manager.get_signing_key_pair()
    assert pair.kid == kid
    with SessionLocal() as db:
        row = db.get(SigningKey, kid)
        assert row is not None
        assert '"d"' in row.private_key_jwk


def test_second_manager_loads_stored_key(key_manager):
    first = key_manager.get_public_key_jwk()
    other = KeyManager(SessionLocal)
    assert other.get_public_key_jwk()["n"] == first["n"]


def test_clear_cache_reloads_same_key(key_manager):
    n = key_manager.get_public_key_jwk()["n"]
    key_manager.clear_cache()
    assert key_manager.get_public_key_jwk()["n"] == n


def test_jwks_exposes_public_members_only(key_manager):
    jwks = key_manager.get_jwks()
    assert len(jwks["keys"]) == 1
    key = jwks["keys"][0]
    assert key["kty"] == "RSA"
    assert key["kid"] == SIGNING_KEY_ID
    assert key["use"] == "sig"
    assert key["alg"] == "RS256"
    assert "n" in key and "e" in key
    for private_member in ("d", "p", "q", "dp", "dq", "qi"):
        assert private_member not in key


def test_key_id_accessor(key_manager):
    assert key_manager.get_key_id() == SIGNING_KEY_ID


# --- TokenIssuer ---


def test_issued_token_claims_and_header(key_manager):
    issuer = TokenIssuer(key_manager)
    issued = issuer.generate_access_token(issuer=ISSUER, scope="mcp:read mcp:write")
    assert issued.expires_in == 3600

    header = jwt.get_unverified_header(issued.token)
    assert header["alg"] == "RS256"
    assert header["kid"] == SIGNING_KEY_ID
    assert header["typ"] == "JWT"

    payload = issuer.verify_access_token(issued.token, ISSUER)
    assert payload is not None
    assert payload.iss == ISSUER
    assert payload.aud == TOKEN_AUDIENCE
    assert payload.sub == TOKEN_SUBJECT
    assert payload.exp - payload.iat == 3600
    assert abs(payload.iat - int(time.time())) <= 5
    assert payload.scopes == ["mcp:read", "mcp:write"]


def test_empty_scope_yields_no_scopes(key_manager):
    issuer = TokenIssuer(key_manager)
    issued = issuer.generate_access_token(issuer=ISSUER, scope="")
    assert issuer.verify_access_token(issued.token, ISSUER).scopes == []


def test_verification_uses_cached_key_without_reparsing_jwk(key_manager, monkeypatch):
    issuer = TokenIssuer(key_manager)
    issued = issuer.generate_access_token(issuer=ISSUER, scope="mcp:read")

    def no_parsing(*args, **kwargs):
        raise AssertionError("JWK parsed during verification")

    monkeypatch.setattr(RSAAlgorithm, "from_jwk", staticmethod(no_parsing))
    for _ in range(3):
        assert issuer.verify_access_token(issued.token, ISSUER).scopes == ["mcp:read"]


def test_wrong_issuer_rejected(key_manager):
    issuer = TokenIssuer(key_manager)
    issued = issuer.generate_access_token(issuer=ISSUER, scope="mcp:read")
    assert issuer.verify_access_token(issued.token, "https://other.example.com") is None


def test_expired_token_rejected(key_manager):
    issuer = TokenIssuer(key_manager, expires_in=-60)
    issued = issuer.generate_access_token(issuer=ISSUER, scope="mcp:read")
    assert issuer.verify_access_token(issued.token, ISSUER) is None


def test_tampered_token_rejected(key_manager):
    issuer = TokenIssuer(key_manager)
    token = issuer.generate_access_token(issuer=ISSUER, scope="mcp:read").token
    header, payload, signature = token.split(".")
    forged = jwt.encode(
        {"iss": ISSUER, "aud": TOKEN_AUDIENCE, "sub": "admin", "iat": 0, "exp": 9999999999, "scope": "mcp:write"},
        "x" * 32,
        algorithm="HS256",
    )
    assert issuer.verify_access_token(f"{header}.{forged.split('.')[1]}.{signature}", ISSUER) is None
    assert issuer.verify_access_token("not-a-jwt", ISSUER) is None


def test_token_signed_by_foreign_key_rejected(key_manager):
    foreign = generate_private_key(65537, 2048)
    now = int(time.time())
    token = jwt.encode(
        {"iss": ISSUER, "aud": TOKEN_AUDIENCE, "sub": TOKEN_SUBJECT, "iat": now, "exp": now + 60, "scope": ""},
        foreign,
        algorithm="RS256",
        headers={"kid": SIGNING_KEY_ID},
    )
    assert TokenIssuer(key_manager).verify_access_token(token, ISSUER) is None


def test_wrong_audience_rejected(key_manager):
    now = int(time.time())
    token = jwt.encode(
        {"iss": ISSUER, "aud": "someone-else", "sub": TOKEN_SUBJECT, "iat": now, "exp": now + 60},
        key_manager.get_private_key(),
        algorithm="RS256",
    )
    assert TokenIssuer(key_manager).verify_access_token(token, ISSUER) is None
