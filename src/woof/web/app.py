"""FastAPI application serving the Woof query API.

Creates the FastAPI app with a lifespan context manager that:
- Loads config
- Opens the record store
- Starts the mailbox monitor (APScheduler BackgroundScheduler) when an
  imap section is configured

Routes only read store snapshots, so they never block ingestion.

Usage:
    from woof.web.app import create_app

    app = create_app()
    # Run with: uvicorn.run(app, host="127.0.0.1", port=3000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from woof import __version__
from woof.core.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize dependencies on startup, clean up on shutdown.

    On startup:
    1. Load config
    2. Open the record store
    3. Build the ingest engine and start the mailbox monitor

    On shutdown:
    - Stop the mailbox monitor
    """
    from woof.config import get_config
    from woof.config_schema import WoofConfig
    from woof.core.errors import ConfigLoadError, ConfigValidationError, PersistenceError
    from woof.db.store import RecordStore
    from woof.engine.ingest import IngestEngine
    from woof.mail.imap import ImapMailSource, MailboxMonitor

    app.state.store = None
    app.state.config = None
    app.state.engine = None
    app.state.monitor = None

    # 1. Load config
    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        logger.error("config_load_failed", error=str(e))
        yield
        return

    app.state.config = config

    # 2. Open store
    db_path = Path(config.storage.db_path)
    try:
        store = RecordStore.open(db_path)
    except PersistenceError as e:
        logger.error("store_open_failed", path=str(db_path), error=str(e))
        yield
        return

    app.state.store = store
    engine = IngestEngine.from_config(store, config)
    app.state.engine = engine

    # 3. Start mailbox monitor
    monitor = None
    if config.imap is not None:

        def publish_config(new_config: WoofConfig) -> None:
            app.state.config = new_config

        monitor = MailboxMonitor(
            ImapMailSource.from_config(config.imap),
            engine,
            poll_seconds=config.imap.poll_seconds,
            recycle_minutes=config.imap.recycle_minutes,
            on_reload=publish_config,
        )
        monitor.start()
    else:
        logger.info("mailbox_monitor_disabled", reason="no imap section in config")
    app.state.monitor = monitor

    yield

    # Shutdown
    if monitor is not None:
        monitor.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    from woof.web.routes import api_router

    app = FastAPI(
        title="Woof",
        description="Bugs, changes, releases, help requests and patches from a mailing list",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(api_router)
    return app
