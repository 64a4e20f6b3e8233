"""Query API routes.

Read-only JSON projections of the record store:
- /api/bugs      unfixed bugs
- /api/changes   unreleased changes
- /api/releases  all releases
- /api/versions  released version numbers
- /api/help      pending calls for help
- /api/patches   unapplied patches
- /api/health    store and listener status

Each record carries a mail_url built from web.mail_url_format; changes
with a commit also carry commit_url and an 8-character short_commit.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from fastapi import APIRouter, Depends, Request

from woof.config_schema import WoofConfig
from woof.db.records import Change, Record, record_to_dict
from woof.db.store import RecordStore
from woof.web.dependencies import get_config, get_monitor, get_store

api_router = APIRouter(prefix="/api")

SHORT_COMMIT_LENGTH = 8


def short_commit(commit: str) -> str:
    return commit[:SHORT_COMMIT_LENGTH]


def serialize_record(record: Record, config: WoofConfig) -> dict[str, Any]:
    """Record as JSON with its mail (and commit) links."""
    data: dict[str, Any] = {"id": record.id, **record_to_dict(record)}
    data["mail_url"] = config.web.mail_url_format % record.id
    if isinstance(record, Change) and record.commit:
        data["short_commit"] = short_commit(record.commit)
        data["commit_url"] = config.web.commit_url_format % record.commit
    return data


def _serialize_all(records: Iterable[Record], config: WoofConfig) -> list[dict[str, Any]]:
    return [serialize_record(r, config) for r in records]


@api_router.get("/bugs")
async def list_unfixed_bugs(
    store: RecordStore = Depends(get_store),
    config: WoofConfig = Depends(get_config),
) -> list[dict[str, Any]]:
    return _serialize_all(store.unfixed_bugs(), config)


@api_router.get("/changes")
async def list_unreleased_changes(
    store: RecordStore = Depends(get_store),
    config: WoofConfig = Depends(get_config),
) -> list[dict[str, Any]]:
    return _serialize_all(store.unreleased_changes(), config)


@api_router.get("/releases")
async def list_releases(
    store: RecordStore = Depends(get_store),
    config: WoofConfig = Depends(get_config),
) -> list[dict[str, Any]]:
    return _serialize_all(store.releases(), config)


@api_router.get("/versions")
async def list_released_versions(store: RecordStore = Depends(get_store)) -> list[str]:
    return sorted(store.released_versions())


@api_router.get("/help")
async def list_pending_help(
    store: RecordStore = Depends(get_store),
    config: WoofConfig = Depends(get_config),
) -> list[dict[str, Any]]:
    return _serialize_all(store.pending_help(), config)


@api_router.get("/patches")
async def list_unapplied_patches(
    store: RecordStore = Depends(get_store),
    config: WoofConfig = Depends(get_config),
) -> list[dict[str, Any]]:
    return _serialize_all(store.unapplied_patches(), config)


@api_router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Store and listener status; never fails, so it works before config loads."""
    store: RecordStore | None = getattr(request.app.state, "store", None)
    monitor = get_monitor(request)
    persist_error = store.last_persist_error if store is not None else None
    return {
        "status": "ok" if store is not None and persist_error is None else "degraded",
        "records": len(store) if store is not None else 0,
        "persist_error": str(persist_error) if persist_error else None,
        "listener": monitor is not None and monitor.running,
    }
