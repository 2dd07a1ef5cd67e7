"""
Statically registered OAuth clients (administrative registry, not RFC 7591 dynamic registration).
"""
import json
import logging
import time
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from oauth_server.codes import AuthorizationCodeStore
from oauth_server.config import DEFAULT_CLIENT_ID, DEFAULT_CLIENT_NAME, DEFAULT_CLIENT_REDIRECT_URIS
from oauth_server.models import OAuthClient
from oauth_server.uris import is_absolute_uri, is_url_client_id

logger = logging.getLogger(__name__)


class ClientRegistry:
    def __init__(self, db: Session):
        self.db = db

    def get(self, client_id: str) -> OAuthClient | None:
        return self.db.get(OAuthClient, client_id)

    def list_clients(self) -> list[OAuthClient]:
        """All clients, newest first."""
        return list(self.db.scalars(select(OAuthClient).order_by(OAuthClient.created_at.desc())))

    def create(self, name: str, redirect_uris: list[str], client_id: str | None = None) -> OAuthClient:
        """
        Register a client. Redirect URIs must be absolute; duplicates are dropped keeping order.
        Raises ValueError for an HTTPS-URL id (those belong to metadata document clients) or bad URIs.
        """
        if client_id is not None and is_url_client_id(client_id):
            raise ValueError("Static client ids must not be HTTPS URLs")
        uris = list(dict.fromkeys(redirect_uris))
        if not uris:
            raise ValueError("At least one redirect URI is required")
        invalid = [u for u in uris if not is_absolute_uri(u)]
        if invalid:
            raise ValueError(f"Invalid redirect URI(s): {', '.join(invalid)}")
        client = OAuthClient(
            id=client_id or str(uuid.uuid4()),
            name=name,
            redirect_uris=json.dumps(uris),
            created_at=int(time.time()),
        )
        self.db.add(client)
        self.db.commit()
        logger.info("Registered client: %s (%s)", client.id, name)
        return client

    def delete(self, client_id: str) -> bool:
        """Delete the client and any outstanding authorization codes issued to it."""
        client = self.get(client_id)
        if client is None:
            return False
        self.db.delete(client)
        self.db.commit()
        removed = AuthorizationCodeStore(self.db).delete_for_client(client_id)
        logger.info("Deleted client %s (%d pending codes removed)", client_id, removed)
        return True

    def ensure_default_client(self) -> OAuthClient:
        """Create the default MCP client for local development if it does not exist."""
        client = self.get(DEFAULT_CLIENT_ID)
        if client is None:
            client = self.create(DEFAULT_CLIENT_NAME, list(DEFAULT_CLIENT_REDIRECT_URIS), client_id=DEFAULT_CLIENT_ID)
        return client
