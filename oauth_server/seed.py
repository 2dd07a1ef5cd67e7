"""
Seed OAuth clients at startup. The default MCP client always exists; one more static client
can be added from env: OAUTH_SEED_CLIENT_ID + OAUTH_SEED_REDIRECT_URIS (comma-separated),
optional OAUTH_SEED_CLIENT_NAME.
"""
import logging
import os

from sqlalchemy.orm import Session

from oauth_server.clients import ClientRegistry

logger = logging.getLogger(__name__)


def seed_from_env(db: Session) -> None:
    registry = ClientRegistry(db)
    registry.ensure_default_client()

    client_id = os.environ.get("OAUTH_SEED_CLIENT_ID")
    redirect_uris_str = os.environ.get("OAUTH_SEED_REDIRECT_URIS")
    if not client_id or not redirect_uris_str:
        return
    if registry.get(client_id) is not None:
        logger.debug("Client already exists: %s", client_id)
        return
    uris = [u.strip() for u in redirect_uris_str.split(",") if u.strip()]
    name = os.environ.get("OAUTH_SEED_CLIENT_NAME") or client_id
    try:
        registry.create(name, uris, client_id=client_id)
    except ValueError as e:
        logger.error("Not seeding client %s: %s", client_id, e)
