"""
Tests for client resolution (static registry vs metadata document URL) and the client registry.
"""
import json
import uuid

import httpx
import pytest

from oauth_server.client_metadata import ClientMetadataCache
from oauth_server.clients import ClientRegistry
from oauth_server.codes import AuthorizationCodeStore
from oauth_server.config import DEFAULT_CLIENT_ID, DEFAULT_CLIENT_REDIRECT_URIS
from oauth_server.database import SessionLocal, init_db
from oauth_server.models import OAuthClient
from oauth_server.resolver import ClientResolver, is_valid_redirect_uri, supports_grant_type

REDIRECT = "http://127.0.0.1:3000/callback"


@pytest.fixture
def db():
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def _resolver(documents: dict[str, dict], requests: list | None = None) -> ClientResolver:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        doc = documents.get(str(request.url))
        if doc is None:
            return httpx.Response(404)
        return httpx.Response(200, json=doc)

    cache = ClientMetadataCache(SessionLocal, http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    return ClientResolver(cache)


def _url() -> str:
    return f"https://{uuid.uuid4().hex[:12]}.example.com/client"


# --- static clients ---


def test_static_client_resolves_without_fetch(db):
    ClientRegistry(db).ensure_default_client()
    requests = []
    client = _resolver({}, requests).resolve_client(db, DEFAULT_CLIENT_ID)
    assert client is not None
    assert client.id == DEFAULT_CLIENT_ID
    assert client.redirect_uris == DEFAULT_CLIENT_REDIRECT_URIS
    assert client.grant_types == ("authorization_code",)
    assert client.is_metadata_client is False
    assert requests == []


def test_unknown_static_client(db):
    requests = []
    assert _resolver({}, requests).resolve_client(db, "no-such-client") is None
    # http:// ids are plain strings to the registry, never fetched
    assert _resolver({}, requests).resolve_client(db, "http://example.com/client") is None
    assert requests == []


# --- metadata document clients ---


def test_metadata_client_resolves(db):
    url = _url()
    doc = {
        "client_id": url,
        "client_name": "Remote Tool",
        "redirect_uris": [REDIRECT],
        "grant_types": ["authorization_code", "refresh_token"],
    }
    client = _resolver({url: doc}).resolve_client(db, url)
    assert client.id == url
    assert client.name == "Remote Tool"
    assert client.redirect_uris == (REDIRECT,)
    assert client.grant_types == ("authorization_code", "refresh_token")
    assert client.is_metadata_client is True


def test_metadata_client_defaults(db):
    url = _url()
    client = _resolver({url: {"client_id": url, "redirect_uris": [REDIRECT]}}).resolve_client(db, url)
    assert client.name == url.split("/")[2]
    assert client.grant_types == ("authorization_code",)


def test_metadata_client_explicit_empty_values_kept(db):
    """Empty strings and lists in the document are not replaced by defaults."""
    url = _url()
    doc = {"client_id": url, "client_name": "", "redirect_uris": [REDIRECT], "grant_types": []}
    client = _resolver({url: doc}).resolve_client(db, url)
    assert client.name == ""
    assert client.grant_types == ()
    assert not supports_grant_type(client, "authorization_code")


def test_unfetchable_metadata_client(db):
    assert _resolver({}).resolve_client(db, _url()) is None


def test_url_shaped_id_never_consults_registry(db):
    """A row whose id is an HTTPS URL cannot shadow the metadata document."""
    url = _url()
    db.add(OAuthClient(id=url, name="Shadow", redirect_uris=json.dumps([REDIRECT]), created_at=0))
    db.commit()
    assert _resolver({}).resolve_client(db, url) is None


# --- redirect and grant checks ---


def test_redirect_uri_exact_match(db):
    ClientRegistry(db).ensure_default_client()
    client = _resolver({}).resolve_client(db, DEFAULT_CLIENT_ID)
    assert is_valid_redirect_uri(client, "http://localhost:3000/callback")
    assert not is_valid_redirect_uri(client, "http://localhost:3000/callback/")
    assert not is_valid_redirect_uri(client, "http://localhost:3000/callback?x=1")
    assert not is_valid_redirect_uri(client, "HTTP://localhost:3000/callback")
    assert not is_valid_redirect_uri(client, "")


def test_supports_grant_type(db):
    ClientRegistry(db).ensure_default_client()
    client = _resolver({}).resolve_client(db, DEFAULT_CLIENT_ID)
    assert supports_grant_type(client, "authorization_code")
    assert not supports_grant_type(client, "client_credentials")


# --- registry ---


def test_registry_create_dedupes_and_validates(db):
    registry = ClientRegistry(db)
    client = registry.create("Tool", [REDIRECT, REDIRECT, "myapp:/callback"])
    assert client.get_redirect_uris_list() == [REDIRECT, "myapp:/callback"]
    assert registry.get(client.id) is not None
    assert any(c.id == client.id for c in registry.list_clients())


@pytest.mark.parametrize(
    "uris",
    [[], ["not a uri"], ["/relative"], ["http://"]],
)
def test_registry_rejects_bad_redirect_uris(db, uris):
    with pytest.raises(ValueError):
        ClientRegistry(db).create("Bad", uris)


def test_registry_rejects_https_url_ids(db):
    with pytest.raises(ValueError):
        ClientRegistry(db).create("Bad", [REDIRECT], client_id="https://example.com/client")


def test_registry_delete_removes_pending_codes(db):
    registry = ClientRegistry(db)
    client = registry.create("Temp", [REDIRECT])
    code = AuthorizationCodeStore(db).create(
        client_id=client.id,
        redirect_uri=REDIRECT,
        scope="",
        code_challenge="E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM",
        code_challenge_method="S256",
    )
    code_value = code.code
    assert registry.delete(client.id) is True
    assert registry.get(client.id) is None
    with SessionLocal() as other:
        assert AuthorizationCodeStore(other).get(code_value) is None
    assert registry.delete(client.id) is False


def test_ensure_default_client_is_idempotent(db):
    registry = ClientRegistry(db)
    first = registry.ensure_default_client()
    second = registry.ensure_default_client()
    assert first.id == second.id == DEFAULT_CLIENT_ID
