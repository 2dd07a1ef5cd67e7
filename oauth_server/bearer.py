"""
Bearer token validation for routes protected by this server's access tokens (the MCP endpoint).
Tokens are verified locally against the signing key; no introspection round trip.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from oauth_server.config import ISSUER
from oauth_server.dependencies import get_services
from oauth_server.services import OAuthServices
from oauth_server.tokens import AccessTokenPayload, TokenIssuer

logger = logging.getLogger(__name__)

REALM = "oauth_server"
_BEARER_PREFIX = re.compile(r"^Bearer\s+", re.IGNORECASE)


@dataclass
class AuthInfo:
    token: str
    sub: str
    scopes: list[str] = field(default_factory=list)
    payload: AccessTokenPayload | None = None

    def has_scope(self, *required: str) -> bool:
        return all(s in self.scopes for s in required)


def resolve_auth_info(
    token_issuer: TokenIssuer, authorization_header: str | None, issuer: str = ISSUER
) -> AuthInfo | None:
    """AuthInfo for a valid "Bearer <jwt>" header, else None."""
    if not authorization_header:
        return None
    token = _BEARER_PREFIX.sub("", authorization_header, count=1).strip()
    if not token:
        return None
    return _auth_info_for_token(token_issuer, token, issuer)


def _auth_info_for_token(token_issuer: TokenIssuer, token: str, issuer: str) -> AuthInfo | None:
    payload = token_issuer.verify_access_token(token, issuer)
    if payload is None:
        return None
    return AuthInfo(token=token, sub=payload.sub, scopes=payload.scopes, payload=payload)


def resource_metadata_url(issuer: str = ISSUER) -> str:
    return f"{issuer}/.well-known/oauth-protected-resource/mcp"


def unauthorized_exception(has_auth_header: bool) -> HTTPException:
    """401 pointing the client at protected resource metadata for discovery."""
    parts = [f'Bearer realm="{REALM}"']
    if has_auth_header:
        parts.append('error="invalid_token"')
        parts.append('error_description="The access token is invalid or expired"')
    parts.append(f'resource_metadata="{resource_metadata_url()}"')
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": ", ".join(parts)},
    )


def insufficient_scope_exception(required: tuple[str, ...]) -> HTTPException:
    scope = " ".join(required)
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"error": "insufficient_scope", "error_description": f"Required scope(s): {scope}"},
        headers={
            "WWW-Authenticate": (
                f'Bearer realm="{REALM}", error="insufficient_scope", '
                f'error_description="Required scope(s): {scope}", scope="{scope}"'
            )
        },
    )


security = HTTPBearer(auto_error=False)


def require_auth(*scopes: str):
    """Dependency factory: a valid access token carrying every scope in scopes."""

    def _check(
        request: Request,
        credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
        services: Annotated[OAuthServices, Depends(get_services)],
    ) -> AuthInfo:
        # HTTPBearer yields None both for no header and for another scheme
        if credentials is None:
            raise unauthorized_exception(has_auth_header="authorization" in request.headers)
        auth_info = _auth_info_for_token(services.token_issuer, credentials.credentials, ISSUER)
        if auth_info is None:
            raise unauthorized_exception(has_auth_header=True)
        if not auth_info.has_scope(*scopes):
            logger.info("Bearer token lacks scope(s) %s (has %s)", scopes, auth_info.scopes)
            raise insufficient_scope_exception(scopes)
        return auth_info

    return Depends(_check)
