"""
Pytest configuration for oauth_server. Use in-memory SQLite so tests don't touch the filesystem.
"""
import os

# In-memory SQLite; database.py uses StaticPool so all connections share the same DB
os.environ["AUTH_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["OAUTH_ISSUER"] = "http://testserver"
# No background cleanup task while the lifespan runs in tests
os.environ["OAUTH_CLEANUP_INTERVAL_SECONDS"] = "0"
for name in ("OAUTH_SEED_CLIENT_ID", "OAUTH_SEED_CLIENT_NAME", "OAUTH_SEED_REDIRECT_URIS"):
    os.environ.pop(name, None)

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_app_state():
    """Rate limiter windows and memory caches are per process; start every test clean."""
    from oauth_server.main import app

    app.state.services.reset_caches()
    yield
