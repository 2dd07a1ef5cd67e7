"""
RS256 signing keypair for access tokens.
Loaded from the database, or generated once and persisted there as a pair of JWKs.
The keypair is cached in process memory for the process lifetime; there is no automatic rotation.
"""
import json
import logging
import threading
from dataclasses import dataclass

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, generate_private_key
from jwt.algorithms import RSAAlgorithm
from sqlalchemy.orm import Session, sessionmaker

from oauth_server.config import SIGNING_KEY_ID
from oauth_server.models import SigningKey

logger = logging.getLogger(__name__)

_KEY_BITS = 2048


@dataclass(frozen=True)
class SigningKeyPair:
    kid: str
    public_jwk: dict
    private_key: RSAPrivateKey


def _generate_key() -> RSAPrivateKey:
    return generate_private_key(65537, _KEY_BITS, default_backend())


def private_key_to_jwk(private_key: RSAPrivateKey) -> dict:
    return RSAAlgorithm.to_jwk(private_key, as_dict=True)


def public_key_to_jwk(private_key: RSAPrivateKey, kid: str) -> dict:
    """Public half as a JWK annotated for the JWKS endpoint."""
    jwk = RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    jwk["kid"] = kid
    jwk["use"] = "sig"
    jwk["alg"] = "RS256"
    return jwk


class KeyManager:
    """
    Owns the signing keypair. Construct once at startup and share it.
    States: uncached -> loaded (from DB), or uncached -> generated + stored -> loaded.
    """

    def __init__(self, session_factory: sessionmaker, kid: str = SIGNING_KEY_ID):
        self._session_factory = session_factory
        self._kid = kid
        self._cached: SigningKeyPair | None = None
        self._lock = threading.Lock()

    def get_signing_key_pair(self) -> SigningKeyPair:
        cached = self._cached
        if cached is not None:
            return cached
        # Lock so concurrent first requests generate at most one key
        with self._lock:
            if self._cached is None:
                with self._session_factory() as db:
                    pair = self._load(db)
                    if pair is None:
                        pair = self._generate_and_store(db)
                self._cached = pair
            return self._cached

    def _load(self, db: Session) -> SigningKeyPair | None:
        row = db.get(SigningKey, self._kid)
        if row is None:
            return None
        public_jwk = json.loads(row.public_key_jwk)
        private_key = RSAAlgorithm.from_jwk(row.private_key_jwk)
        if not isinstance(private_key, RSAPrivateKey):
            raise ValueError(f"Stored key {self._kid} has no private component")
        logger.debug("Loaded signing key (kid=%s) from database", self._kid)
        return SigningKeyPair(kid=self._kid, public_jwk=public_jwk, private_key=private_key)

    def _generate_and_store(self, db: Session) -> SigningKeyPair:
        private_key = _generate_key()
        public_jwk = public_key_to_jwk(private_key, self._kid)
        # merge() overwrites a row another worker may have written meanwhile
        db.merge(
            SigningKey(
                id=self._kid,
                public_key_jwk=json.dumps(public_jwk),
                private_key_jwk=json.dumps(private_key_to_jwk(private_key)),
            )
        )
        db.commit()
        logger.info("Generated and stored new signing key (kid=%s)", self._kid)
        return SigningKeyPair(kid=self._kid, public_jwk=public_jwk, private_key=private_key)

    def get_public_key_jwk(self) -> dict:
        return self.get_signing_key_pair().public_jwk

    def get_private_key(self) -> RSAPrivateKey:
        return self.get_signing_key_pair().private_key

    def get_key_id(self) -> str:
        return self.get_signing_key_pair().kid

    def get_jwks(self) -> dict:
        """JWKS with the single current public key."""
        return {"keys": [self.get_public_key_jwk()]}

    def clear_cache(self) -> None:
        """Drop the in-memory keypair; the stored copy stays."""
        with self._lock:
            self._cached = None
