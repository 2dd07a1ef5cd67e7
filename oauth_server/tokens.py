"""
RS256 JWT access tokens. Stateless: nothing is stored server-side, verification is by signature.
"""
import logging
import time
from dataclasses import dataclass

import jwt

from oauth_server.config import ACCESS_TOKEN_EXPIRES, TOKEN_AUDIENCE, TOKEN_SUBJECT
from oauth_server.keys import KeyManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedAccessToken:
    token: str
    expires_in: int


@dataclass(frozen=True)
class AccessTokenPayload:
    iss: str
    aud: str
    sub: str
    iat: int
    exp: int
    scope: str

    @property
    def scopes(self) -> list[str]:
        return self.scope.split() if self.scope else []


class TokenIssuer:
    def __init__(self, key_manager: KeyManager, expires_in: int = ACCESS_TOKEN_EXPIRES):
        self._key_manager = key_manager
        self._expires_in = expires_in

    def generate_access_token(self, *, issuer: str, scope: str) -> IssuedAccessToken:
        """Sign an access token for the fixed subject."""
        pair = self._key_manager.get_signing_key_pair()
        now = int(time.time())
        payload = {
            "iss": issuer,
            "aud": TOKEN_AUDIENCE,
            "sub": TOKEN_SUBJECT,
            "iat": now,
            "exp": now + self._expires_in,
            "scope": scope,
        }
        token = jwt.encode(
            payload,
            pair.private_key,
            algorithm="RS256",
            headers={"kid": pair.kid, "typ": "JWT"},
        )
        return IssuedAccessToken(token=token, expires_in=self._expires_in)

    def verify_access_token(self, token: str, issuer: str) -> AccessTokenPayload | None:
        """
        Verify signature, issuer, audience and expiry. Returns None on any failure so callers
        cannot tell a bad signature from an expired or foreign token.
        """
        public_key = self._key_manager.get_signing_key_pair().private_key.public_key()
        try:
            claims = jwt.decode(
                token,
                public_key,
                algorithms=["RS256"],
                issuer=issuer,
                audience=TOKEN_AUDIENCE,
                options={"require": ["exp", "iat", "iss", "aud", "sub"]},
            )
        except jwt.InvalidTokenError as e:
            logger.debug("Access token rejected: %s", e)
            return None
        aud = claims["aud"]
        if isinstance(aud, list):
            aud = TOKEN_AUDIENCE
        scope = claims.get("scope")
        return AccessTokenPayload(
            iss=claims["iss"],
            aud=aud,
            sub=str(claims["sub"]),
            iat=int(claims["iat"]),
            exp=int(claims["exp"]),
            scope=scope if isinstance(scope, str) else "",
        )
