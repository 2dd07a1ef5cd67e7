"""
Authorization Server configuration.
Deployment values come from env; protocol constants are fixed here. No key material in this file.
"""
import os

# Issuer URL (public identifier); also the base for discovery endpoint URLs
ISSUER = os.environ.get("OAUTH_ISSUER", "http://127.0.0.1:9000").rstrip("/")

# SQLite by default; any SQLAlchemy URL works
DATABASE_URL = os.environ.get("AUTH_DATABASE_URL", "sqlite:///./oauth_server.db")

LOG_LEVEL = os.environ.get("OAUTH_LOG_LEVEL", "INFO").upper()

# Authorization code lifetime (seconds). RFC 6749 recommends at most 10 minutes.
CODE_TTL_SECONDS = 600

# Access token lifetime (seconds)
ACCESS_TOKEN_EXPIRES = 3600

# Audience and the single fixed subject carried in every access token
TOKEN_AUDIENCE = "mcp-server"
TOKEN_SUBJECT = "user"

# Fixed identifier of the persisted signing keypair; also the JWT kid
SIGNING_KEY_ID = "oauth-signing-key"

# Scopes advertised for the MCP resource
MCP_SCOPES = ("mcp:read", "mcp:write")

# Client ID Metadata Document fetch and cache bounds (seconds)
METADATA_FETCH_TIMEOUT = float(os.environ.get("OAUTH_METADATA_FETCH_TIMEOUT", "10"))
METADATA_CACHE_DEFAULT_SECONDS = 3600
METADATA_CACHE_MIN_SECONDS = 300
METADATA_CACHE_MAX_SECONDS = 86400

# Rate limiting: per-IP, per minute
RATE_LIMIT_TOKEN_PER_MINUTE = int(os.environ.get("OAUTH_RATE_LIMIT_TOKEN_PER_MINUTE", "60"))
RATE_LIMIT_AUTHORIZE_PER_MINUTE = int(os.environ.get("OAUTH_RATE_LIMIT_AUTHORIZE_PER_MINUTE", "30"))

# Interval for purging expired codes and cached metadata; 0 disables the background task
CLEANUP_INTERVAL_SECONDS = int(os.environ.get("OAUTH_CLEANUP_INTERVAL_SECONDS", "300"))

# Default static client created at startup for local MCP tooling
DEFAULT_CLIENT_ID = "mcp-client"
DEFAULT_CLIENT_NAME = "MCP Client"
DEFAULT_CLIENT_REDIRECT_URIS = (
    "http://localhost:3000/callback",
    "http://localhost:8080/callback",
    "http://127.0.0.1:3000/callback",
    "http://127.0.0.1:8080/callback",
)
