"""
Discovery endpoints: authorization server metadata (RFC 8414), JWKS, and protected resource
metadata for the MCP endpoint (RFC 9728).
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from oauth_server.config import ISSUER, MCP_SCOPES
from oauth_server.dependencies import get_services
from oauth_server.services import OAuthServices

router = APIRouter()

_DISCOVERY_HEADERS = {"Cache-Control": "public, max-age=3600", "Access-Control-Allow-Origin": "*"}


def authorization_server_metadata(issuer: str = ISSUER) -> dict:
    """No registration_endpoint: clients are registered statically or identified by metadata URL."""
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/authorize",
        "token_endpoint": f"{issuer}/oauth/token",
        "jwks_uri": f"{issuer}/oauth/jwks",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code"],
        "code_challenge_methods_supported": ["S256"],
        "token_endpoint_auth_methods_supported": ["none"],
        "scopes_supported": list(MCP_SCOPES),
        "client_id_metadata_document_supported": True,
    }


def protected_resource_metadata(issuer: str = ISSUER) -> dict:
    return {
        "resource": f"{issuer}/mcp",
        "authorization_servers": [issuer],
        "scopes_supported": list(MCP_SCOPES),
    }


@router.get("/.well-known/oauth-authorization-server")
def oauth_authorization_server():
    """OAuth 2.0 Authorization Server Metadata."""
    return JSONResponse(authorization_server_metadata(), headers=_DISCOVERY_HEADERS)


@router.get("/oauth/jwks")
def jwks(services: OAuthServices = Depends(get_services)):
    """JSON Web Key Set for access token signature verification. Public members only."""
    return JSONResponse(services.key_manager.get_jwks(), headers=_DISCOVERY_HEADERS)


@router.get("/.well-known/oauth-protected-resource")
@router.get("/.well-known/oauth-protected-resource/mcp")
def oauth_protected_resource():
    """Where MCP clients should obtain tokens for the /mcp resource."""
    return JSONResponse(protected_resource_metadata(), headers=_DISCOVERY_HEADERS)
