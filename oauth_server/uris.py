"""
URI checks shared by client registration and metadata document validation.
"""
import re
from urllib.parse import urlsplit

# RFC 3986 section 3.1
_SCHEME_RE = re.compile(r"[A-Za-z][A-Za-z0-9+.\-]*")


def is_url_client_id(client_id: str | None) -> bool:
    """True for an absolute https URL with a host: such ids name a Client ID Metadata Document."""
    if not client_id:
        return False
    try:
        parts = urlsplit(client_id)
    except ValueError:
        return False
    return parts.scheme == "https" and bool(parts.hostname)


def is_absolute_uri(uri: str) -> bool:
    """Syntactic check: a scheme followed by a non-empty hierarchical part or path, no whitespace."""
    if not uri or any(c.isspace() for c in uri):
        return False
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    if not parts.scheme or not _SCHEME_RE.fullmatch(parts.scheme):
        return False
    if uri[len(parts.scheme) + 1:].startswith("//"):
        return bool(parts.netloc)
    return bool(parts.path)


def url_hostname(url: str) -> str:
    return urlsplit(url).hostname or url
