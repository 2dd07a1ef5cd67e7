"""
PKCE (RFC 7636) verification for the token endpoint.
S256 only; plain is refused.
"""
import hashlib
import hmac
import re
import secrets
from base64 import urlsafe_b64encode

# RFC 7636 section 4.1: unreserved characters
_VERIFIER_RE = re.compile(r"[A-Za-z0-9\-._~]{43,128}")
# base64url of a 32-byte SHA-256 digest, no padding
_CHALLENGE_RE = re.compile(r"[A-Za-z0-9\-_]{43}")


def compute_s256_challenge(code_verifier: str) -> str:
    """S256: BASE64URL(SHA256(code_verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_challenge(code_verifier: str, code_challenge: str, method: str | None) -> bool:
    """Verify a verifier against the challenge stored with the code. Any method but S256 fails."""
    if method != "S256":
        return False
    computed = compute_s256_challenge(code_verifier)
    return hmac.compare_digest(computed.encode("ascii"), code_challenge.encode("utf-8"))


def is_valid_code_verifier(code_verifier: str) -> bool:
    return bool(_VERIFIER_RE.fullmatch(code_verifier))


def is_valid_code_challenge(code_challenge: str) -> bool:
    return bool(_CHALLENGE_RE.fullmatch(code_challenge))


def generate_code_verifier() -> str:
    """32 random bytes -> 43 chars base64url (RFC 7636 recommendation)."""
    return secrets.token_urlsafe(32)
