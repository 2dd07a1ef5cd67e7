"""
Authorization endpoint.
GET /authorize: validate the request and show an approval page naming the client.
POST /authorize: re-validate, issue an authorization code bound to the PKCE challenge, redirect.
The single user is authenticated by the proxy in front of this server; there is no login here.
Invalid requests never redirect: the redirect_uri cannot be trusted until the client is resolved.
"""
import html
import logging
from dataclasses import asdict, dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from oauth_server.codes import AuthorizationCodeStore
from oauth_server.database import get_db
from oauth_server.dependencies import get_services
from oauth_server.pkce import is_valid_code_challenge
from oauth_server.rate_limit import get_client_ip
from oauth_server.resolver import ResolvedClient, is_valid_redirect_uri, supports_grant_type
from oauth_server.services import OAuthServices

logger = logging.getLogger(__name__)
router = APIRouter()


@dataclass
class AuthorizeParams:
    response_type: str = ""
    client_id: str = ""
    redirect_uri: str = ""
    scope: str = ""
    state: str = ""
    code_challenge: str = ""
    code_challenge_method: str = ""


def _params_from_request(request: Request) -> AuthorizeParams:
    q = request.query_params
    return AuthorizeParams(**{name: q.get(name, "") for name in AuthorizeParams.__dataclass_fields__})


def _e(s: str) -> str:
    return html.escape(s or "")


def _render_error(title: str, message: str, status_code: int = 400) -> HTMLResponse:
    body = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Authorization Error</title></head>
<body>
  <h1>{_e(title)}</h1>
  <p>{_e(message)}</p>
</body>
</html>"""
    return HTMLResponse(body, status_code=status_code)


def _validate(
    services: OAuthServices, db: Session, params: AuthorizeParams
) -> tuple[ResolvedClient | None, HTMLResponse | None]:
    """Return (client, None) for a valid request, else (None, error page)."""
    if params.response_type != "code":
        return None, _render_error("Invalid Request", 'Only "code" response_type is supported.')
    if not params.client_id:
        return None, _render_error("Invalid Request", "client_id is required.")

    client = services.resolver.resolve_client(db, params.client_id)
    if client is None:
        return None, _render_error("Invalid Client", "The specified client_id is not registered.")
    if not supports_grant_type(client, "authorization_code"):
        return None, _render_error("Unauthorized Client", "This client may not use the authorization code grant.")

    if not params.redirect_uri or not is_valid_redirect_uri(client, params.redirect_uri):
        return None, _render_error("Invalid Redirect URI", "The redirect_uri is not registered for this client.")

    if not params.code_challenge:
        return None, _render_error("PKCE Required", "The code_challenge parameter is required.")
    if params.code_challenge_method != "S256":
        return None, _render_error("Invalid PKCE Method", "Only S256 code_challenge_method is supported.")
    if not is_valid_code_challenge(params.code_challenge):
        return None, _render_error("Invalid Code Challenge", "The code_challenge is malformed.")

    return client, None


def _redirect_with_code(redirect_uri: str, code: str, state: str) -> RedirectResponse:
    """Append code (and state when given) to the redirect URI, keeping any existing query."""
    parts = urlsplit(redirect_uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("code", code))
    if state:
        query.append(("state", state))
    location = urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
    return RedirectResponse(url=location, status_code=302)


@router.get("/authorize", response_class=HTMLResponse)
def authorize_get(
    request: Request,
    services: OAuthServices = Depends(get_services),
    db: Session = Depends(get_db),
):
    """Show the approval page for a valid authorization request."""
    params = _params_from_request(request)
    client, error = _validate(services, db, params)
    if error is not None:
        return error

    form_action = "/authorize?" + urlencode(asdict(params))
    source = (
        f"<p>Client metadata published at <code>{_e(client.id)}</code></p>" if client.is_metadata_client else ""
    )
    scope_html = f"<p>Requested permissions: {_e(params.scope)}</p>" if params.scope else ""
    body = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Authorize Application</title></head>
<body>
  <h1>Authorize Application</h1>
  <p><strong>{_e(client.name)}</strong> wants to access your account</p>
  {source}
  {scope_html}
  <form method="post" action="{_e(form_action)}">
    <button type="submit">Authorize</button>
  </form>
  <p>You will be redirected to <code>{_e(params.redirect_uri)}</code></p>
</body>
</html>"""
    return HTMLResponse(body)


@router.post("/authorize")
def authorize_post(
    request: Request,
    services: OAuthServices = Depends(get_services),
    db: Session = Depends(get_db),
):
    """Approve: create the authorization code and redirect back to the client."""
    allowed, retry_after = services.authorize_limiter.check_and_consume(get_client_ip(request))
    if not allowed:
        response = _render_error("Too Many Requests", "Please retry later.", status_code=429)
        response.headers["Retry-After"] = str(retry_after)
        return response

    params = _params_from_request(request)
    client, error = _validate(services, db, params)
    if error is not None:
        return error

    auth_code = AuthorizationCodeStore(db).create(
        client_id=client.id,
        redirect_uri=params.redirect_uri,
        scope=params.scope,
        code_challenge=params.code_challenge,
        code_challenge_method=params.code_challenge_method,
    )
    logger.info("Issued authorization code for client_id=%s (metadata=%s)", client.id, client.is_metadata_client)
    return _redirect_with_code(params.redirect_uri, auth_code.code, params.state)
