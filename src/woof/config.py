"""Woof configuration: one YAML file, validated by config_schema.

The file is read once into a process-wide WoofConfig. The mailbox monitor
calls reload_config_if_changed() before every poll; when the file's mtime
moved it is re-read and the result comes back as a ConfigReload naming the
dotted fields that differ, so the caller can apply exactly those:

    reload = reload_config_if_changed()
    if reload is not None:
        engine.update_config(reload.current)
        if reload.touches("imap"):
            ...reconnect the mailbox...
        for field in reload.restart_required:
            logger.warning("config_change_needs_restart", field=field)

A file that no longer parses or validates is reported once and the running
config stays in force.
"""

import os
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from woof.config_schema import WoofConfig
from woof.core.errors import ConfigLoadError, ConfigValidationError
from woof.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV = "WOOF_CONFIG_PATH"

# Bound once at startup: the open store and the API socket
RESTART_FIELDS = frozenset({"storage.db_path", "web.host", "web.port"})


@dataclass(frozen=True)
class ConfigReload:
    """A config file change that was read and validated.

    Attributes:
        previous: Config in force before the reload
        current: Config in force now
        changed: Dotted paths of every field whose value differs
            ("imap" alone when the whole section was added or removed)
    """

    previous: WoofConfig
    current: WoofConfig
    changed: frozenset[str]

    def touches(self, section: str) -> bool:
        prefix = f"{section}."
        return any(path == section or path.startswith(prefix) for path in self.changed)

    @property
    def restart_required(self) -> list[str]:
        return sorted(self.changed & RESTART_FIELDS)


class _ConfigState:
    """The loaded config, where it came from and the mtime it was read at."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.config: WoofConfig | None = None
        self.path: Path | None = None
        self.mtime = 0.0


_state = _ConfigState()


def config_path() -> Path:
    """$WOOF_CONFIG_PATH, or config/config.yaml relative to the working directory."""
    return Path(os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)


def _flatten(data: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    for key, value in data.items():
        if isinstance(value, Mapping):
            yield from _flatten(value, f"{prefix}{key}.")
        else:
            yield f"{prefix}{key}", value


def changed_fields(old: WoofConfig, new: WoofConfig) -> frozenset[str]:
    """Dotted paths of the fields that differ between two configs.

    A section that is present on one side only shows up under its own name.
    """
    before = dict(_flatten(old.model_dump()))
    after = dict(_flatten(new.model_dump()))
    changed = set()
    for path in before.keys() | after.keys():
        if before.get(path) == after.get(path):
            continue
        section = path.split(".", 1)[0]
        if before.get(section, ...) is None or after.get(section, ...) is None:
            changed.add(section)
        else:
            changed.add(path)
    return frozenset(changed)


def _describe(error: ValidationError) -> str:
    lines = []
    for err in error.errors():
        where = ".".join(str(part) for part in err["loc"]) or "(top level)"
        if err["type"] == "missing":
            lines.append(f"  - {where}: required")
        else:
            lines.append(f"  - {where}: {err['msg']}")
    return "\n".join(lines)


def _read_document(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            "It needs at least 'mailing_list' and 'release_manager'."
        ) from e
    except OSError as e:
        raise ConfigLoadError(f"Cannot read {path}: {e}") from e

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigLoadError(
            f"{path} must be a YAML mapping, not a {type(document).__name__}"
        )
    return document


def load_config(path: Path | None = None) -> WoofConfig:
    """Read and validate a config file, bypassing the process-wide copy.

    Raises:
        ConfigLoadError: The file is missing or is not a YAML mapping
        ConfigValidationError: The mapping does not fit WoofConfig
    """
    path = path or config_path()
    document = _read_document(path)
    try:
        config = WoofConfig(**document)
    except ValidationError as e:
        raise ConfigValidationError(f"Invalid configuration in {path}:\n{_describe(e)}") from e

    logger.debug(
        "config_loaded",
        path=str(path),
        mailing_list=config.mailing_list,
        listener=config.imap is not None,
    )
    return config


def get_config() -> WoofConfig:
    """The process-wide config, loaded from config_path() on first use.

    Raises:
        ConfigLoadError: First load failed to read the file
        ConfigValidationError: First load failed validation
    """
    with _state.lock:
        if _state.config is None:
            path = config_path()
            _state.config = load_config(path)
            _state.path = path
            _state.mtime = path.stat().st_mtime
        return _state.config


def reload_config_if_changed() -> ConfigReload | None:
    """Re-read the config file if it was modified since the last read.

    Returns:
        The applied change, or None when nothing was loaded yet, the file is
        untouched, the new content is identical, or it failed to validate
    """
    with _state.lock:
        if _state.config is None or _state.path is None:
            return None

        path = _state.path
        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            logger.warning("config_stat_failed", path=str(path), error=str(e))
            return None
        if mtime <= _state.mtime:
            return None
        # Bad content is reported once per write, not on every poll
        _state.mtime = mtime

        try:
            current = load_config(path)
        except (ConfigLoadError, ConfigValidationError) as e:
            logger.warning("config_reload_rejected", path=str(path), error=str(e))
            return None

        previous = _state.config
        changed = changed_fields(previous, current)
        if not changed:
            return None

        _state.config = current
        reload = ConfigReload(previous, current, changed)
        logger.info("config_reloaded", path=str(path), changed=sorted(changed))
        return reload


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Check a config file and summarize it for `woof validate-config`."""
    try:
        config = load_config(path or config_path())
    except ConfigLoadError as e:
        return False, f"Load error: {e}"
    except ConfigValidationError as e:
        return False, f"Validation error: {e}"

    imap = config.imap
    listener = f"{imap.user}@{imap.server}/{imap.folder}" if imap else "disabled"
    summary = [
        "Configuration valid",
        f"  - mailing list: {config.mailing_list}",
        f"  - release manager: {config.release_manager}",
        f"  - listener: {listener}",
        f"  - store: {config.storage.db_path}",
        f"  - api: {config.web.host}:{config.web.port}",
    ]
    return True, "\n".join(summary)


def reset_config() -> None:
    """Forget the loaded config so the next get_config() reads the file again."""
    with _state.lock:
        _state.config = None
        _state.path = None
        _state.mtime = 0.0
