"""
Client resolution: a client_id is either a statically registered client or the HTTPS URL of a
Client ID Metadata Document. Both resolve to the same ResolvedClient view.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from oauth_server.client_metadata import ClientMetadataCache
from oauth_server.clients import ClientRegistry
from oauth_server.uris import is_url_client_id, url_hostname

logger = logging.getLogger(__name__)

DEFAULT_GRANT_TYPES = ("authorization_code",)


@dataclass(frozen=True)
class ResolvedClient:
    id: str
    name: str
    redirect_uris: tuple[str, ...]
    grant_types: tuple[str, ...]
    is_metadata_client: bool


class ClientResolver:
    def __init__(self, metadata_cache: ClientMetadataCache):
        self._metadata_cache = metadata_cache

    def resolve_client(self, db: Session, client_id: str) -> ResolvedClient | None:
        """
        HTTPS URL ids go through the metadata cache; every other id is a static registry lookup
        and never triggers a fetch. Returns None when the client cannot be resolved.
        """
        if is_url_client_id(client_id):
            document = self._metadata_cache.get_client_metadata(client_id)
            if document is None:
                return None
            return ResolvedClient(
                id=document.client_id,
                name=document.client_name if document.client_name is not None else url_hostname(client_id),
                redirect_uris=tuple(document.redirect_uris),
                grant_types=tuple(document.grant_types) if document.grant_types is not None else DEFAULT_GRANT_TYPES,
                is_metadata_client=True,
            )

        client = ClientRegistry(db).get(client_id)
        if client is None:
            return None
        # Static clients only support the authorization code grant
        return ResolvedClient(
            id=client.id,
            name=client.name,
            redirect_uris=tuple(client.get_redirect_uris_list()),
            grant_types=DEFAULT_GRANT_TYPES,
            is_metadata_client=False,
        )


def is_valid_redirect_uri(client: ResolvedClient, redirect_uri: str) -> bool:
    """Exact string match against the client's registered redirect URIs."""
    return redirect_uri in client.redirect_uris


def supports_grant_type(client: ResolvedClient, grant_type: str) -> bool:
    return grant_type in client.grant_types
