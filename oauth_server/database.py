"""
Storage wiring: one engine per process, built from AUTH_DATABASE_URL.

Every store takes a Session or a session factory rather than reaching for the module globals,
so tests can point a component at its own engine via create_db_engine().
"""
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from oauth_server.config import DATABASE_URL
from oauth_server.models import Base

_MEMORY_SQLITE = "sqlite:///:memory:"


def create_db_engine(url: str, *, sqlite_timeout: float | None = None) -> Engine:
    """
    Engine for url. SQLite connections are shared across FastAPI's worker threads, and an
    in-memory database is pinned to a single connection or each checkout would see an empty DB.
    sqlite_timeout sets how long a writer waits on a locked database file.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    connect_args: dict = {"check_same_thread": False}
    if sqlite_timeout is not None:
        connect_args["timeout"] = sqlite_timeout
    if url.startswith(_MEMORY_SQLITE):
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, connect_args=connect_args)


def session_factory_for(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, autoflush=False)


engine = create_db_engine(DATABASE_URL)
SessionLocal = session_factory_for(engine)


def init_db(bind: Engine | None = None) -> None:
    """Create any missing tables on bind (the process engine by default). Existing tables are left as is."""
    Base.metadata.create_all(bind=bind if bind is not None else engine)


def get_db():
    """Dependency: one Session per request, closed when the response is done."""
    with SessionLocal() as db:
        yield db
