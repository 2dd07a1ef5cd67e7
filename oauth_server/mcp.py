"""
The protected MCP resource. Only the authorization surface lives here: the route answers with the
caller's token identity, which is what a client needs to confirm its access token works.
"""
from typing import Annotated

from fastapi import APIRouter

from oauth_server.bearer import AuthInfo, require_auth
from oauth_server.config import ISSUER

router = APIRouter()


@router.get("/mcp")
def mcp_identity(auth: Annotated[AuthInfo, require_auth("mcp:read")]):
    return {"resource": f"{ISSUER}/mcp", "sub": auth.sub, "scopes": auth.scopes}
