"""Pytest fixtures and configuration for Woof tests.

Provides common fixtures for configuration, the record store and
message construction.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator

import pytest

from woof.config import reset_config
from woof.config_schema import WoofConfig
from woof.db.store import RecordStore
from woof.engine.ingest import IngestEngine

MAILING_LIST = "list@woof.example"
RELEASE_MANAGER = "rm@woof.example"
USER = "dev@woof.example"

MessageFactory = Callable[..., dict[str, Any]]


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def sample_config_yaml(data_dir: Path) -> str:
    """Return a minimal valid config.yaml content."""
    return f"""
mailing_list: "{MAILING_LIST}"
release_manager: "{RELEASE_MANAGER}"

storage:
  db_path: "{data_dir / 'db.json'}"

web:
  mail_url_format: "https://lists.woof.example/mail/%s"
  commit_url_format: "https://git.woof.example/commit/%s"
"""


@pytest.fixture
def sample_config_dict(data_dir: Path) -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "mailing_list": MAILING_LIST,
        "release_manager": RELEASE_MANAGER,
        "storage": {"db_path": str(data_dir / "db.json")},
        "web": {
            "mail_url_format": "https://lists.woof.example/mail/%s",
            "commit_url_format": "https://git.woof.example/commit/%s",
        },
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> WoofConfig:
    """Return a minimal valid WoofConfig instance."""
    return WoofConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point WOOF_CONFIG_PATH at the temporary config file."""
    monkeypatch.setenv("WOOF_CONFIG_PATH", str(config_file))
    return config_file


@pytest.fixture
def db_path(data_dir: Path) -> Path:
    """Path of the store document."""
    return data_dir / "db.json"


@pytest.fixture
def store(db_path: Path) -> RecordStore:
    """An empty store persisted under the temporary data directory."""
    return RecordStore.open(db_path)


@pytest.fixture
def engine(store: RecordStore) -> IngestEngine:
    """Ingest engine wired to the test list and release manager."""
    return IngestEngine(store, mailing_list=MAILING_LIST, release_manager=RELEASE_MANAGER)


@pytest.fixture
def make_message() -> MessageFactory:
    """Factory for raw list messages in the shape the mail source produces."""

    def _make(
        id: str,
        subject: str = "A message",
        sender: str = USER,
        references: str | None = None,
        body: Any = None,
        date: datetime | None = None,
        to_list: bool = True,
        **triggers: str,
    ) -> dict[str, Any]:
        headers: list[dict[str, str]] = []
        if to_list:
            headers.append({"X-Original-To": MAILING_LIST})
        if references is not None:
            headers.append({"References": references})
        for name, value in triggers.items():
            # X_Woof_Bug="confirmed" -> {"X-Woof-Bug": "confirmed"}
            headers.append({name.replace("_", "-"): value})
        message: dict[str, Any] = {
            "id": id,
            "subject": subject,
            "from": [{"address": sender}],
            "date_sent": date or datetime(2020, 5, 27, 0, 13, 11, tzinfo=UTC),
            "headers": headers,
        }
        if body is not None:
            message["body"] = body
        return message

    return _make
