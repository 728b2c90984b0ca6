"""HomeChef order core command line."""

import logging
import sys

import click
from pydantic import ValidationError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_STORE = 2
EXIT_RUNTIME = 3


@click.group()
def cli():
    """HomeChef order core."""
    pass


@cli.command()
@click.option("--auto-migrate/--no-auto-migrate", default=None, help="Override AUTO_MIGRATE")
def serve(auto_migrate: bool | None):
    """
    Run the HTTP/WebSocket server.

    Exit codes: 0 clean shutdown, 1 configuration error, 2 store unreachable
    or migrations failed, 3 fatal runtime error.

    Example:
        DB_URL=postgresql+psycopg://homechef@localhost/homechef homechef serve
    """
    try:
        from homechef.core.config import settings
    except ValidationError as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Invalid configuration:\n%s", exc)
        sys.exit(EXIT_CONFIG)

    from homechef.core.structured_logging import configure_logging

    configure_logging()

    from homechef.core.encryption import check_key

    if not settings.WEBHOOK_SECRET_KEY or not check_key(settings.WEBHOOK_SECRET_KEY):
        logger.error("WEBHOOK_SECRET_KEY must be set to a valid Fernet key")
        sys.exit(EXIT_CONFIG)

    from sqlalchemy.exc import SQLAlchemyError

    from homechef.core.migrations import MigrationError, check_store, ensure_migrations
    from homechef.db.session import engine

    try:
        check_store(engine)
    except SQLAlchemyError as exc:
        logger.error("Cannot connect to store: %s", type(exc).__name__)
        sys.exit(EXIT_STORE)

    migrate = settings.AUTO_MIGRATE if auto_migrate is None else auto_migrate
    try:
        status = ensure_migrations(engine, migrate)
    except (MigrationError, SQLAlchemyError) as exc:
        logger.error("Store migration failed: %s", exc)
        sys.exit(EXIT_STORE)
    if not status.is_up_to_date:
        logger.error(
            "Store schema at %s but code expects %s; run with AUTO_MIGRATE=true",
            status.current_heads,
            status.head_revisions,
        )
        sys.exit(EXIT_STORE)

    import uvicorn

    try:
        uvicorn.run(
            "homechef.main:app",
            host=settings.http_host,
            port=settings.http_port,
            ssl_certfile=settings.TLS_CERT or None,
            ssl_keyfile=settings.TLS_KEY or None,
            log_config=None,
            timeout_graceful_shutdown=int(settings.SHUTDOWN_DRAIN_SEC) + 5,
        )
    except Exception:
        logger.exception("Server crashed")
        sys.exit(EXIT_RUNTIME)
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    cli()
