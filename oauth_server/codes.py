"""
Authorization code storage. Codes are opaque, short-lived and single-use.
"""
import logging
import secrets
import time

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from oauth_server.config import CODE_TTL_SECONDS
from oauth_server.models import AuthorizationCode

logger = logging.getLogger(__name__)


def _now() -> int:
    return int(time.time())


class AuthorizationCodeStore:
    """Codes for one request's DB session."""

    def __init__(self, db: Session, ttl_seconds: int = CODE_TTL_SECONDS):
        self.db = db
        self.ttl_seconds = ttl_seconds

    def create(
        self,
        *,
        client_id: str,
        redirect_uri: str,
        scope: str,
        code_challenge: str,
        code_challenge_method: str,
    ) -> AuthorizationCode:
        now = _now()
        auth_code = AuthorizationCode(
            code=secrets.token_urlsafe(32),
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            expires_at=now + self.ttl_seconds,
            used_at=None,
            created_at=now,
        )
        self.db.add(auth_code)
        self.db.commit()
        return auth_code

    def get(self, code: str) -> AuthorizationCode | None:
        """Lookup by code regardless of expiry or use."""
        return self.db.get(AuthorizationCode, code)

    def get_valid(self, code: str) -> AuthorizationCode | None:
        """
        The code if it exists, is unused and unexpired. Does not consume it, so the caller
        can check client, redirect_uri and PKCE first; consume() remains the enforcement point.
        """
        auth_code = self.get(code)
        if auth_code is None or not auth_code.is_valid(_now()):
            return None
        return auth_code

    def consume(self, code: str) -> AuthorizationCode | None:
        """
        Mark the code used and return it, or None if unknown, expired or already used.
        A single conditional UPDATE decides; of two concurrent callers only one sees a row change.
        """
        now = _now()
        result = self.db.execute(
            update(AuthorizationCode)
            .where(
                AuthorizationCode.code == code,
                AuthorizationCode.used_at.is_(None),
                AuthorizationCode.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount != 1:
            return None
        # Re-read so identity-mapped instances reflect used_at
        return self.db.scalars(
            select(AuthorizationCode)
            .where(AuthorizationCode.code == code)
            .execution_options(populate_existing=True)
        ).first()

    def cleanup_expired(self) -> int:
        result = self.db.execute(delete(AuthorizationCode).where(AuthorizationCode.expires_at < _now()))
        self.db.commit()
        if result.rowcount:
            logger.info("Deleted %d expired authorization codes", result.rowcount)
        return result.rowcount

    def delete_for_client(self, client_id: str) -> int:
        """Bulk delete, used when a client is revoked."""
        result = self.db.execute(delete(AuthorizationCode).where(AuthorizationCode.client_id == client_id))
        self.db.commit()
        return result.rowcount
