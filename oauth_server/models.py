"""
SQLAlchemy models for the Authorization Server: registered clients, authorization codes,
the signing keypair and the Client ID Metadata Document cache.
Timestamps are integer UNIX seconds.
"""
import json
import time

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _unix_now() -> int:
    return int(time.time())


class Base(DeclarativeBase):
    pass


class OAuthClient(Base):
    __tablename__ = "oauth_clients"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # JSON array of allowed redirect URIs; exact match required
    redirect_uris: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(Integer, default=_unix_now, nullable=False)

    def get_redirect_uris_list(self) -> list[str]:
        return json.loads(self.redirect_uris)


class AuthorizationCode(Base):
    __tablename__ = "authorization_codes"

    code: Mapped[str] = mapped_column(String(255), primary_key=True)
    client_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    redirect_uri: Mapped[str] = mapped_column(Text, nullable=False)
    scope: Mapped[str] = mapped_column(Text, nullable=False, default="")  # space-separated
    code_challenge: Mapped[str] = mapped_column(String(255), nullable=False)
    code_challenge_method: Mapped[str] = mapped_column(String(16), nullable=False)
    expires_at: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    used_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[int] = mapped_column(Integer, default=_unix_now, nullable=False)

    def is_valid(self, now: int) -> bool:
        return self.used_at is None and now < self.expires_at


class SigningKey(Base):
    __tablename__ = "oauth_signing_keys"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    public_key_jwk: Mapped[str] = mapped_column(Text, nullable=False)
    private_key_jwk: Mapped[str] = mapped_column(Text, nullable=False)


class ClientMetadataCacheEntry(Base):
    __tablename__ = "client_metadata_cache"

    # The client_id is the HTTPS URL of the metadata document
    client_id: Mapped[str] = mapped_column(String(2048), primary_key=True)
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False)
    cached_at: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
