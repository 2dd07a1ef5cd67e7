"""
Client ID Metadata Documents (CIMD).

When a client_id is an HTTPS URL, the client's metadata is the JSON document served at that URL.
Documents are looked up in three tiers: process memory, the client_metadata_cache table, then a
fresh fetch. Fetched documents are parsed strictly into ClientMetadataDocument and cached for a
duration derived from the response's Cache-Control / Expires headers, clamped to [5 min, 24 h].
Failed fetches and invalid documents are never cached.
"""
import json
import logging
import re
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from oauth_server.config import (
    METADATA_CACHE_DEFAULT_SECONDS,
    METADATA_CACHE_MAX_SECONDS,
    METADATA_CACHE_MIN_SECONDS,
    METADATA_FETCH_TIMEOUT,
)
from oauth_server.models import ClientMetadataCacheEntry
from oauth_server.uris import is_absolute_uri, is_url_client_id

logger = logging.getLogger(__name__)

_MAX_AGE_RE = re.compile(r"max-age=(\d+)", re.IGNORECASE)
# Metadata documents are small; anything larger is refused while streaming
MAX_DOCUMENT_BYTES = 5120
# Optional fields that may be omitted but must not be JSON null when present
_NON_NULL_OPTIONAL_FIELDS = ("client_name", "grant_types", "response_types")


class MetadataError(Exception):
    """Base for metadata document failures. Handled inside this module."""


class MetadataFetchError(MetadataError):
    """Network failure, timeout, non-2xx status or wrong content type."""


class MetadataValidationError(MetadataError):
    """The document is not valid client metadata for the URL it was fetched from."""


class ClientMetadataDocument(BaseModel):
    """Client metadata (RFC 7591 field names) hosted at the client_id URL."""

    model_config = ConfigDict(strict=True, frozen=True, extra="ignore")

    client_id: str
    client_name: str | None = None
    redirect_uris: list[str] = Field(min_length=1)
    grant_types: list[str] | None = None
    response_types: list[str] | None = None
    token_endpoint_auth_method: str | None = None
    scope: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _present_fields_not_null(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for name in _NON_NULL_OPTIONAL_FIELDS:
                if name in data and data[name] is None:
                    raise ValueError(f"{name} must not be null")
        return data

    @field_validator("redirect_uris")
    @classmethod
    def _redirect_uris_absolute(cls, value: list[str]) -> list[str]:
        for uri in value:
            if not is_absolute_uri(uri):
                raise ValueError(f"Invalid redirect URI: {uri}")
        return value


@dataclass(frozen=True)
class CachedMetadataEntry:
    client_id: str
    document: ClientMetadataDocument
    cached_at: float
    expires_at: float


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'document'}: {err['msg']}" for err in error.errors()
    )


def parse_client_metadata(client_id_url: str, data: Any) -> ClientMetadataDocument:
    """
    Strictly parse a decoded JSON document fetched from client_id_url.
    Raises MetadataValidationError describing the first problem class found.
    """
    if not isinstance(data, dict):
        raise MetadataValidationError("Metadata document must be a JSON object")
    # client_id must be the exact URL, otherwise any host could claim another client's identity
    claimed = data.get("client_id")
    if claimed != client_id_url:
        raise MetadataValidationError(f"client_id in metadata ({claimed!r}) must match the URL ({client_id_url})")
    try:
        return ClientMetadataDocument.model_validate(data)
    except ValidationError as e:
        raise MetadataValidationError(_describe(e)) from e


def _clamp_duration(seconds: int) -> int:
    return max(METADATA_CACHE_MIN_SECONDS, min(METADATA_CACHE_MAX_SECONDS, seconds))


def parse_cache_duration(headers: Mapping[str, str], now: float) -> int:
    """Cache lifetime in seconds from Cache-Control, then Expires, else the default."""
    cache_control = headers.get("cache-control")
    if cache_control:
        lowered = cache_control.lower()
        if "no-store" in lowered or "no-cache" in lowered:
            return METADATA_CACHE_MIN_SECONDS
        match = _MAX_AGE_RE.search(cache_control)
        if match:
            return _clamp_duration(int(match.group(1)))

    expires = headers.get("expires")
    if expires:
        try:
            expires_at = parsedate_to_datetime(expires)
        except (TypeError, ValueError):
            expires_at = None
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            remaining = expires_at.timestamp() - now
            if remaining > 0:
                return _clamp_duration(int(remaining))

    return METADATA_CACHE_DEFAULT_SECONDS


class ClientMetadataCache:
    """
    Process-wide cache of metadata documents. Construct once at startup and share it.
    Concurrent lookups of the same uncached client_id share one outbound fetch.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        http_client: httpx.Client | None = None,
        timeout: float = METADATA_FETCH_TIMEOUT,
    ):
        self._session_factory = session_factory
        self._owns_http_client = http_client is None
        self._http = http_client if http_client is not None else httpx.Client()
        self._timeout = timeout
        self._memory: dict[str, CachedMetadataEntry] = {}
        self._in_flight: dict[str, Future] = {}
        self._lock = threading.Lock()

    def get_client_metadata(self, client_id_url: str) -> ClientMetadataDocument | None:
        """
        Document for an HTTPS client_id, or None if the id is not an HTTPS URL or the
        document cannot be fetched or validated. Storage errors propagate.
        """
        if not is_url_client_id(client_id_url):
            return None

        now = time.time()
        with self._lock:
            entry = self._memory.get(client_id_url)
        if entry is not None and entry.expires_at > now:
            return entry.document

        document = self._load_from_store(client_id_url, now)
        if document is not None:
            self._remember(client_id_url, document, now, METADATA_CACHE_DEFAULT_SECONDS)
            return document

        return self._fetch_coalesced(client_id_url)

    def _remember(self, client_id_url: str, document: ClientMetadataDocument, now: float, duration: int) -> None:
        with self._lock:
            self._memory[client_id_url] = CachedMetadataEntry(
                client_id=client_id_url,
                document=document,
                cached_at=now,
                expires_at=now + duration,
            )

    def _load_from_store(self, client_id_url: str, now: float) -> ClientMetadataDocument | None:
        with self._session_factory() as db:
            row = db.scalars(
                select(ClientMetadataCacheEntry).where(
                    ClientMetadataCacheEntry.client_id == client_id_url,
                    ClientMetadataCacheEntry.expires_at > int(now),
                )
            ).first()
            if row is None:
                return None
            metadata_json = row.metadata_json
        try:
            return parse_client_metadata(client_id_url, json.loads(metadata_json))
        except (ValueError, MetadataValidationError) as e:
            logger.error("Discarding unreadable cached metadata for %s: %s", client_id_url, e)
            return None

    def _save_to_store(self, client_id_url: str, document: ClientMetadataDocument, now: float, duration: int) -> None:
        with self._session_factory() as db:
            db.merge(
                ClientMetadataCacheEntry(
                    client_id=client_id_url,
                    metadata_json=json.dumps(document.model_dump(exclude_none=True)),
                    cached_at=int(now),
                    expires_at=int(now) + duration,
                )
            )
            db.commit()

    def _fetch_coalesced(self, client_id_url: str) -> ClientMetadataDocument | None:
        with self._lock:
            pending = self._in_flight.get(client_id_url)
            if pending is None:
                future: Future = Future()
                self._in_flight[client_id_url] = future
        if pending is not None:
            logger.debug("Joining in-flight metadata fetch for %s", client_id_url)
            # The leader's fetch is bounded by the deadline plus at most one stalled read
            try:
                return pending.result(timeout=2 * self._timeout)
            except FutureTimeoutError:
                logger.warning("Gave up waiting for in-flight metadata fetch for %s", client_id_url)
                return None

        try:
            document = self._fetch_and_store(client_id_url)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(document)
            return document
        finally:
            with self._lock:
                self._in_flight.pop(client_id_url, None)

    def _fetch_and_store(self, client_id_url: str) -> ClientMetadataDocument | None:
        try:
            document, duration = self._fetch_document(client_id_url)
        except MetadataError as e:
            logger.warning("Failed to fetch client metadata for %s: %s", client_id_url, e)
            return None
        now = time.time()
        self._save_to_store(client_id_url, document, now, duration)
        self._remember(client_id_url, document, now, duration)
        logger.info("Cached client metadata for %s (%ds)", client_id_url, duration)
        return document

    def _fetch_document(self, client_id_url: str) -> tuple[ClientMetadataDocument, int]:
        """
        Stream the document with an overall deadline and a size cap. httpx's timeout bounds
        each network operation; the deadline bounds the whole transfer.
        """
        started = time.monotonic()
        try:
            with self._http.stream(
                "GET",
                client_id_url,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
                follow_redirects=False,
            ) as response:
                if not response.is_success:
                    raise MetadataFetchError(
                        f"Client metadata endpoint returned {response.status_code}: {client_id_url}"
                    )

                content_type = response.headers.get("content-type", "")
                if "application/json" not in content_type:
                    raise MetadataFetchError(
                        f"Client metadata endpoint must return application/json, got: {content_type!r}"
                    )

                content_length = response.headers.get("content-length", "")
                if content_length.isdigit() and int(content_length) > MAX_DOCUMENT_BYTES:
                    raise MetadataFetchError(
                        f"Client metadata too large: {content_length} bytes (max {MAX_DOCUMENT_BYTES})"
                    )

                chunks = []
                size = 0
                for chunk in response.iter_bytes():
                    if time.monotonic() - started > self._timeout:
                        raise MetadataFetchError(
                            f"Client metadata fetch exceeded {self._timeout}s: {client_id_url}"
                        )
                    size += len(chunk)
                    if size > MAX_DOCUMENT_BYTES:
                        raise MetadataFetchError(f"Client metadata too large: over {MAX_DOCUMENT_BYTES} bytes")
                    chunks.append(chunk)
                headers = response.headers
        except httpx.TimeoutException as e:
            raise MetadataFetchError(f"Timeout fetching client metadata from {client_id_url}") from e
        except httpx.HTTPError as e:
            raise MetadataFetchError(f"Failed to fetch client metadata from {client_id_url}: {e}") from e

        try:
            data = json.loads(b"".join(chunks))
        except ValueError as e:
            raise MetadataValidationError("Client metadata document is not valid JSON") from e

        document = parse_client_metadata(client_id_url, data)
        return document, parse_cache_duration(headers, time.time())

    def clear_memory_cache(self) -> None:
        """Drop in-memory entries only (tests)."""
        with self._lock:
            self._memory.clear()

    def cleanup_expired(self) -> int:
        """Delete expired rows from the durable tier and prune expired memory entries."""
        now = time.time()
        with self._lock:
            for client_id_url in [k for k, e in self._memory.items() if e.expires_at <= now]:
                del self._memory[client_id_url]
        with self._session_factory() as db:
            result = db.execute(
                delete(ClientMetadataCacheEntry).where(ClientMetadataCacheEntry.expires_at < int(now))
            )
            db.commit()
        if result.rowcount:
            logger.info("Deleted %d expired client metadata entries", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        if self._owns_http_client:
            self._http.close()
