"""IMAP mailbox source and the scheduler that feeds it into the engine.

The source keeps one read-only IMAP4-SSL session on the configured folder
and remembers the highest UID it has seen. The first poll only records the
current high-water mark, so only mail arriving after startup is ingested.

MailboxMonitor runs two APScheduler jobs:
- poll: fetch new messages and ingest them one at a time (max_instances=1)
- recycle: drop the IMAP session every recycle_minutes; the next poll
  reconnects. Recycling never touches the store.

Usage:
    from woof.mail.imap import ImapMailSource, MailboxMonitor

    source = ImapMailSource.from_config(config.imap)
    monitor = MailboxMonitor(source, engine, poll_seconds=60, recycle_minutes=20)
    monitor.start()
"""

from __future__ import annotations

import imaplib
import threading
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from woof.config import ConfigReload, reload_config_if_changed
from woof.core.errors import MailSourceError
from woof.core.logging import get_logger
from woof.mail.parser import parse_message

if TYPE_CHECKING:
    from apscheduler.schedulers.base import BaseScheduler

    from woof.config_schema import ImapConfig, WoofConfig
    from woof.engine.ingest import IngestEngine, IngestSummary

logger = get_logger(__name__)


class ImapMailSource:
    """Read new messages from one IMAP folder.

    Attributes:
        server: IMAP host
        user: IMAP login
        folder: Folder opened read-only
        last_uid: Highest UID already handed out (None before the first poll)
    """

    def __init__(
        self,
        server: str,
        user: str,
        password: str | None,
        folder: str = "INBOX",
        port: int = 993,
        client_factory: Callable[..., imaplib.IMAP4] = imaplib.IMAP4_SSL,
    ):
        self.server = server
        self.port = port
        self.folder = folder
        self.user = user
        self._password = password
        self._client_factory = client_factory
        self._client: imaplib.IMAP4 | None = None
        self._lock = threading.Lock()
        self.last_uid: int | None = None

    @classmethod
    def from_config(cls, config: ImapConfig) -> ImapMailSource:
        return cls(
            server=config.server,
            user=config.user,
            password=config.resolved_password(),
            folder=config.folder,
            port=config.port,
        )

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _connect(self) -> imaplib.IMAP4:
        if self._client is not None:
            return self._client
        if not self._password:
            raise MailSourceError(
                "No IMAP password configured (set imap.password or WOOF_IMAP_PASSWORD)",
                server=self.server,
            )

        client = self._client_factory(self.server, self.port)
        client.login(self.user, self._password)
        status, data = client.select(self.folder, readonly=True)
        if status != "OK":
            client.logout()
            raise MailSourceError(
                f"Cannot open folder {self.folder!r}: {data!r}",
                server=self.server,
                folder=self.folder,
            )

        logger.info("imap_connected", server=self.server, folder=self.folder)
        self._client = client
        return client

    def _disconnect(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug("imap_logout_failed", server=self.server, error=str(e))

    def _search_uids(self, client: imaplib.IMAP4, criteria: str) -> list[int]:
        status, data = client.uid("SEARCH", None, criteria)
        if status != "OK":
            raise MailSourceError(
                f"UID SEARCH {criteria} failed: {data!r}", server=self.server, folder=self.folder
            )
        if not data or not data[0]:
            return []
        return sorted(int(uid) for uid in data[0].split())

    def _fetch_raw(self, client: imaplib.IMAP4, uid: int) -> bytes | None:
        status, data = client.uid("FETCH", str(uid), "(RFC822)")
        if status != "OK":
            raise MailSourceError(
                f"UID FETCH {uid} failed: {data!r}", server=self.server, folder=self.folder
            )
        for part in data or ():
            if isinstance(part, tuple) and len(part) > 1 and isinstance(part[1], bytes):
                return part[1]
        return None

    def fetch_new(self) -> list[dict[str, Any]]:
        """Return raw envelopes for messages that arrived since the last call.

        Raises:
            MailSourceError: If the server cannot be reached or read
        """
        with self._lock:
            try:
                client = self._connect()

                if self.last_uid is None:
                    uids = self._search_uids(client, "ALL")
                    self.last_uid = uids[-1] if uids else 0
                    logger.info("imap_high_water_mark", folder=self.folder, last_uid=self.last_uid)
                    return []

                # "n:*" always matches the newest message, even if it is older than n
                uids = [
                    uid
                    for uid in self._search_uids(client, f"UID {self.last_uid + 1}:*")
                    if uid > self.last_uid
                ]

                messages: list[dict[str, Any]] = []
                for uid in uids:
                    raw_bytes = self._fetch_raw(client, uid)
                    if raw_bytes is not None:
                        messages.append(parse_message(raw_bytes))

                # Advance only once the whole batch is in hand; a failed poll is retried
                if uids:
                    self.last_uid = uids[-1]

                if messages:
                    logger.info("imap_fetched", folder=self.folder, count=len(messages))
                return messages

            except (imaplib.IMAP4.error, OSError) as e:
                self._disconnect()
                raise MailSourceError(
                    f"IMAP error on {self.server}/{self.folder}: {e}",
                    server=self.server,
                    folder=self.folder,
                ) from e
            except MailSourceError:
                self._disconnect()
                raise

    def recycle(self) -> None:
        """Drop the session; the next fetch reconnects."""
        with self._lock:
            self._disconnect()
        logger.info("imap_connection_recycled", server=self.server)

    def close(self) -> None:
        with self._lock:
            self._disconnect()


class MailboxMonitor:
    """Poll a mail source on a schedule and ingest what it returns.

    Before each poll the config file is checked for edits. List and release
    manager changes go to the engine, imap changes reconnect the source and
    reschedule the jobs, and on_reload (if given) sees every new config.
    """

    def __init__(
        self,
        source: ImapMailSource,
        engine: IngestEngine,
        poll_seconds: int = 60,
        recycle_minutes: int = 20,
        on_reload: Callable[[WoofConfig], None] | None = None,
    ):
        self._source = source
        self._engine = engine
        self._poll_seconds = poll_seconds
        self._recycle_minutes = recycle_minutes
        self._on_reload = on_reload
        self._scheduler: BaseScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    @property
    def source(self) -> ImapMailSource:
        return self._source

    def poll_once(self) -> IngestSummary | None:
        """Fetch and ingest new messages; None if the mailbox was unreachable."""
        reload = reload_config_if_changed()
        if reload is not None:
            self.apply_reload(reload)

        try:
            raws = self._source.fetch_new()
        except MailSourceError as e:
            logger.error("mailbox_poll_failed", server=e.server, folder=e.folder, error=str(e))
            return None

        if not raws:
            return None
        return self._engine.process_messages(raws)

    def apply_reload(self, reload: ConfigReload) -> None:
        """Bring the engine, the source and the schedule in line with a new config."""
        self._engine.update_config(reload.current)

        imap = reload.current.imap
        if reload.touches("imap"):
            if imap is None:
                logger.warning("config_imap_removed", action="listener keeps its last mailbox until restart")
            else:
                self._replace_source(imap)
                self._reschedule(imap.poll_seconds, imap.recycle_minutes)

        for field_path in reload.restart_required:
            logger.warning("config_change_needs_restart", field=field_path)

        if self._on_reload is not None:
            self._on_reload(reload.current)

    def _replace_source(self, imap: ImapConfig) -> None:
        old = self._source
        new = ImapMailSource.from_config(imap)
        same_folder = (old.server, old.user, old.folder) == (new.server, new.user, new.folder)
        if same_folder:
            new.last_uid = old.last_uid
        old.close()
        self._source = new
        logger.info(
            "mailbox_source_replaced",
            server=new.server,
            folder=new.folder,
            kept_position=same_folder,
        )

    def _reschedule(self, poll_seconds: int, recycle_minutes: int) -> None:
        if (poll_seconds, recycle_minutes) == (self._poll_seconds, self._recycle_minutes):
            return
        self._poll_seconds = poll_seconds
        self._recycle_minutes = recycle_minutes
        if self._scheduler is not None:
            self._scheduler.reschedule_job("mailbox_poll", trigger="interval", seconds=poll_seconds)
            self._scheduler.reschedule_job(
                "mailbox_recycle", trigger="interval", minutes=recycle_minutes
            )
        logger.info("mailbox_rescheduled", poll_seconds=poll_seconds, recycle_minutes=recycle_minutes)

    def recycle(self) -> None:
        self._source.recycle()

    def start(self, scheduler: BaseScheduler | None = None) -> None:
        """Schedule the poll and recycle jobs and start the scheduler."""
        if scheduler is None:
            from apscheduler.schedulers.background import BackgroundScheduler

            scheduler = BackgroundScheduler()

        scheduler.add_job(
            self.poll_once,
            "interval",
            seconds=self._poll_seconds,
            id="mailbox_poll",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(),
        )
        scheduler.add_job(
            self.recycle,
            "interval",
            minutes=self._recycle_minutes,
            id="mailbox_recycle",
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "mailbox_monitor_started",
            poll_seconds=self._poll_seconds,
            recycle_minutes=self._recycle_minutes,
        )

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        self._source.close()
        logger.info("mailbox_monitor_stopped")
