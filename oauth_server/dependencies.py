"""
FastAPI dependencies exposing the application's shared OAuthServices.
"""
from fastapi import Request

from oauth_server.services import OAuthServices


def get_services(request: Request) -> OAuthServices:
    """Dependency: the OAuthServices built by create_app()."""
    return request.app.state.services
