"""
OAuth 2.0 Authorization Server for MCP clients.
Discovery, JWKS, GET/POST /authorize, POST /oauth/token, and the bearer-protected /mcp resource.
Public clients only, PKCE S256 required.
Clients are either statically registered or identified by a Client ID Metadata Document URL.
"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress

import httpx
from fastapi import FastAPI

from oauth_server.authorize import router as authorize_router
from oauth_server.config import CLEANUP_INTERVAL_SECONDS, LOG_LEVEL
from oauth_server.database import SessionLocal, init_db
from oauth_server.mcp import router as mcp_router
from oauth_server.seed import seed_from_env
from oauth_server.services import OAuthServices, build_services
from oauth_server.token_endpoint import router as token_router
from oauth_server.well_known import router as well_known_router

logger = logging.getLogger(__name__)


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run_cleanup(services: OAuthServices) -> None:
    codes, metadata = services.cleanup_expired()
    logger.debug("Cleanup removed %d codes and %d cached metadata entries", codes, metadata)


async def _cleanup_loop(services: OAuthServices, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(_run_cleanup, services)
        except Exception:
            # Keep the loop alive; the next pass retries
            logger.exception("Periodic cleanup failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, load signing key, seed clients, purge expired rows; then clean up periodically."""
    configure_logging()
    services: OAuthServices = app.state.services
    init_db()
    services.key_manager.get_signing_key_pair()
    with SessionLocal() as db:
        seed_from_env(db)
    _run_cleanup(services)

    task = None
    if CLEANUP_INTERVAL_SECONDS > 0:
        task = asyncio.create_task(_cleanup_loop(services, CLEANUP_INTERVAL_SECONDS))
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        services.close()


def create_app(http_client: httpx.Client | None = None) -> FastAPI:
    """Build the app. http_client is used for metadata document fetches (tests pass a mock transport)."""
    app = FastAPI(title="OAuth Server", version="1.0.0", lifespan=lifespan)
    app.state.services = build_services(SessionLocal, http_client=http_client)
    app.include_router(well_known_router, tags=["well-known"])
    app.include_router(authorize_router, tags=["authorize"])
    app.include_router(token_router, tags=["token"])
    app.include_router(mcp_router, tags=["mcp"])

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "oauth_server"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "oauth_server.main:app",
        host="127.0.0.1",
        port=9000,
        reload=True,
    )
