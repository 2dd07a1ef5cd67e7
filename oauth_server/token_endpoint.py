"""
Token endpoint (POST /oauth/token). Authorization code exchange for public clients with PKCE.
"""
import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from oauth_server.codes import AuthorizationCodeStore
from oauth_server.config import ISSUER
from oauth_server.database import get_db
from oauth_server.dependencies import get_services
from oauth_server.pkce import is_valid_code_verifier, verify_code_challenge
from oauth_server.rate_limit import get_client_ip
from oauth_server.resolver import supports_grant_type
from oauth_server.services import OAuthServices

logger = logging.getLogger(__name__)
router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}
# Same description for every code and verifier failure
INVALID_GRANT_DESCRIPTION = "Authorization code is invalid, expired, or has already been used."


class TokenError(Exception):
    def __init__(self, error: str, description: str, status_code: int = 400):
        super().__init__(description)
        self.error = error
        self.description = description
        self.status_code = status_code


def _invalid_grant(reason: str) -> TokenError:
    logger.info("Token request rejected (invalid_grant): %s", reason)
    return TokenError("invalid_grant", INVALID_GRANT_DESCRIPTION)


def _error_response(err: TokenError, extra_headers: dict | None = None) -> JSONResponse:
    headers = dict(_NO_STORE)
    if err.status_code == 401:
        headers["WWW-Authenticate"] = 'Bearer error="invalid_client"'
    if extra_headers:
        headers.update(extra_headers)
    return JSONResponse(
        {"error": err.error, "error_description": err.description},
        status_code=err.status_code,
        headers=headers,
    )


def _is_form_encoded(request: Request) -> bool:
    content_type = request.headers.get("content-type", "")
    return content_type.split(";", 1)[0].strip().lower() == "application/x-www-form-urlencoded"


@router.post("/oauth/token")
def token(
    request: Request,
    grant_type: str | None = Form(None),
    code: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    client_id: str | None = Form(None),
    code_verifier: str | None = Form(None),
    services: OAuthServices = Depends(get_services),
    db: Session = Depends(get_db),
):
    """authorization_code grant only; no client secret, PKCE S256 required."""
    ip = get_client_ip(request)
    allowed, retry_after = services.token_limiter.check_and_consume(ip)
    if not allowed:
        return _error_response(
            TokenError("temporarily_unavailable", "Too many token requests", status_code=429),
            {"Retry-After": str(retry_after)},
        )

    try:
        if not _is_form_encoded(request):
            raise TokenError("invalid_request", "Content-Type must be application/x-www-form-urlencoded")
        body = _exchange_code(
            services,
            db,
            grant_type=grant_type,
            code=code,
            redirect_uri=redirect_uri,
            client_id=client_id,
            code_verifier=code_verifier,
        )
    except TokenError as err:
        services.token_limiter.record_failure(ip)
        return _error_response(err)
    return JSONResponse(body, headers=_NO_STORE)


def _exchange_code(
    services: OAuthServices,
    db: Session,
    *,
    grant_type: str | None,
    code: str | None,
    redirect_uri: str | None,
    client_id: str | None,
    code_verifier: str | None,
) -> dict:
    if not grant_type:
        raise TokenError("invalid_request", "grant_type is required")
    if grant_type != "authorization_code":
        raise TokenError("unsupported_grant_type", "Only authorization_code is supported")
    if not client_id:
        raise TokenError("invalid_request", "client_id is required")

    client = services.resolver.resolve_client(db, client_id)
    if client is None:
        raise TokenError("invalid_client", "Unknown client", status_code=401)
    if not supports_grant_type(client, grant_type):
        raise TokenError("unauthorized_client", "Client is not allowed to use this grant type")

    if not code:
        raise TokenError("invalid_request", "code is required")

    store = AuthorizationCodeStore(db)
    auth_code = store.get_valid(code)
    if auth_code is None:
        raise _invalid_grant("unknown, expired or used code")
    if auth_code.client_id != client.id:
        raise _invalid_grant(f"code issued to another client (presented by {client.id})")
    if auth_code.redirect_uri != redirect_uri:
        raise _invalid_grant(f"redirect_uri mismatch for client {client.id}")
    if not code_verifier or not is_valid_code_verifier(code_verifier):
        raise _invalid_grant(f"missing or malformed code_verifier for client {client.id}")
    if not verify_code_challenge(code_verifier, auth_code.code_challenge, auth_code.code_challenge_method):
        raise _invalid_grant(f"PKCE verification failed for client {client.id}")

    # Enforcement point: loses to any concurrent exchange of the same code
    consumed = store.consume(code)
    if consumed is None:
        raise _invalid_grant(f"code consumed concurrently for client {client.id}")

    issued = services.token_issuer.generate_access_token(issuer=ISSUER, scope=consumed.scope)
    logger.info("Access token issued for client_id=%s scope=%r", client.id, consumed.scope)

    body = {
        "access_token": issued.token,
        "token_type": "Bearer",
        "expires_in": issued.expires_in,
    }
    if consumed.scope:
        body["scope"] = consumed.scope
    return body
