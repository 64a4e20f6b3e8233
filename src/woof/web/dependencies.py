"""FastAPI dependency injection helpers.

Extracts shared dependencies from app.state for use in route handlers.
All dependencies are initialized during the FastAPI lifespan.

Usage:
    from woof.web.dependencies import get_store

    @router.get("/bugs")
    async def bugs(store: RecordStore = Depends(get_store)):
        return store.unfixed_bugs()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

if TYPE_CHECKING:
    from woof.config_schema import WoofConfig
    from woof.db.store import RecordStore
    from woof.mail.imap import MailboxMonitor


def get_store(request: Request) -> RecordStore:
    """Get the shared RecordStore from app state."""
    store = request.app.state.store
    if store is None:
        raise HTTPException(status_code=503, detail="Record store is not available")
    return store


def get_config(request: Request) -> WoofConfig:
    """Get the current WoofConfig from app state."""
    config = request.app.state.config
    if config is None:
        raise HTTPException(status_code=503, detail="Configuration is not loaded")
    return config


def get_monitor(request: Request) -> MailboxMonitor | None:
    """Get the MailboxMonitor from app state (None when the listener is off)."""
    return getattr(request.app.state, "monitor", None)
