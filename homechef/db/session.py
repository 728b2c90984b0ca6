from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from homechef.core.config import settings


def build_engine(url: str):
    """Create an engine with per-backend connection settings."""
    backend = make_url(url).get_backend_name()
    connect_args: dict = {}
    kwargs: dict = {"pool_pre_ping": True}
    if backend.startswith("postgresql"):
        # UTC sessions and a per-statement deadline for every transaction.
        connect_args["options"] = (
            f"-c timezone=utc -c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}"
        )
    elif backend == "sqlite":
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = settings.DB_STATEMENT_TIMEOUT_MS / 1000
        if make_url(url).database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, connect_args=connect_args, **kwargs)


engine = build_engine(settings.DB_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
