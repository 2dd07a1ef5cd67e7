"""
Long-lived server objects, built once per application and shared by reference.
"""
from dataclasses import dataclass

import httpx
from sqlalchemy.orm import sessionmaker

from oauth_server.client_metadata import ClientMetadataCache
from oauth_server.codes import AuthorizationCodeStore
from oauth_server.config import RATE_LIMIT_AUTHORIZE_PER_MINUTE, RATE_LIMIT_TOKEN_PER_MINUTE
from oauth_server.keys import KeyManager
from oauth_server.rate_limit import RateLimiter
from oauth_server.resolver import ClientResolver
from oauth_server.tokens import TokenIssuer


@dataclass
class OAuthServices:
    session_factory: sessionmaker
    key_manager: KeyManager
    token_issuer: TokenIssuer
    metadata_cache: ClientMetadataCache
    resolver: ClientResolver
    authorize_limiter: RateLimiter
    token_limiter: RateLimiter

    def cleanup_expired(self) -> tuple[int, int]:
        """
        Purge expired authorization codes and cached metadata, and forget idle rate limit keys.
        Returns (codes, metadata) deleted.
        """
        with self.session_factory() as db:
            codes = AuthorizationCodeStore(db).cleanup_expired()
        self.authorize_limiter.prune()
        self.token_limiter.prune()
        return codes, self.metadata_cache.cleanup_expired()

    def reset_caches(self) -> None:
        """Drop in-memory state (tests); durable rows are untouched."""
        self.key_manager.clear_cache()
        self.metadata_cache.clear_memory_cache()
        self.authorize_limiter.reset()
        self.token_limiter.reset()

    def close(self) -> None:
        self.metadata_cache.close()


def build_services(session_factory: sessionmaker, http_client: httpx.Client | None = None) -> OAuthServices:
    key_manager = KeyManager(session_factory)
    metadata_cache = ClientMetadataCache(session_factory, http_client=http_client)
    return OAuthServices(
        session_factory=session_factory,
        key_manager=key_manager,
        token_issuer=TokenIssuer(key_manager),
        metadata_cache=metadata_cache,
        resolver=ClientResolver(metadata_cache),
        authorize_limiter=RateLimiter("authorize", RATE_LIMIT_AUTHORIZE_PER_MINUTE),
        token_limiter=RateLimiter("token", RATE_LIMIT_TOKEN_PER_MINUTE),
    )
