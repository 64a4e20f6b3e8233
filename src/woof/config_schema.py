"""Pydantic configuration schema for Woof.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup and hot-reload.

Usage:
    from woof.config_schema import WoofConfig

    # Validate a config dict
    config = WoofConfig(**yaml_data)
"""

import os

from pydantic import BaseModel, Field, field_validator

# Environment variable consulted when imap.password is not set in the file
IMAP_PASSWORD_ENV = "WOOF_IMAP_PASSWORD"


def _validate_address(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Address cannot be empty")
    if "@" not in v:
        raise ValueError(f"'{v}' is not an email address")
    return v


class ImapConfig(BaseModel):
    """IMAP mailbox the listener watches for list traffic."""

    server: str = Field(description="IMAP server hostname")
    port: int = Field(default=993, ge=1, le=65535, description="IMAPS port")
    user: str = Field(description="IMAP login")
    password: str | None = Field(
        default=None,
        description=f"IMAP password (falls back to ${IMAP_PASSWORD_ENV})",
    )
    folder: str = Field(default="INBOX", description="Folder to watch (opened read-only)")
    poll_seconds: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="How often to check the folder for new messages (seconds)",
    )
    recycle_minutes: int = Field(
        default=20,
        ge=1,
        le=1440,
        description="Drop and reopen the IMAP connection every N minutes",
    )

    @field_validator("folder")
    @classmethod
    def validate_folder(cls, v: str) -> str:
        """Ensure folder name is not empty."""
        if not v or not v.strip():
            raise ValueError("Folder name cannot be empty")
        return v

    def resolved_password(self) -> str | None:
        """Password from the config file, or from the environment."""
        return self.password or os.environ.get(IMAP_PASSWORD_ENV)


class StorageConfig(BaseModel):
    """Record store persistence configuration."""

    db_path: str = Field(
        default="data/db.json",
        description="Path to the JSON document holding all records",
    )

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        """Ensure store path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Store path cannot be empty")
        if ".." in v:
            raise ValueError("Store path cannot contain '..' (path traversal)")
        return v


class WebConfig(BaseModel):
    """Query API and link formatting configuration."""

    project_name: str = Field(default="Woof", description="Project display name")
    project_url: str | None = Field(default=None, description="Project home page")
    title: str = Field(default="Woof!", description="Page and feed title")
    base_url: str = Field(default="http://localhost:3000", description="Public base URL")
    mail_url_format: str = Field(
        default="https://lists.example.org/mail/%s",
        description="printf-style URL for a message id (one %s)",
    )
    commit_url_format: str = Field(
        default="https://git.example.org/commit/%s",
        description="printf-style URL for a commit (one %s)",
    )
    host: str = Field(default="127.0.0.1", description="Host the API binds to")
    port: int = Field(default=3000, ge=1, le=65535, description="Port the API binds to")

    @field_validator("mail_url_format", "commit_url_format")
    @classmethod
    def validate_url_format(cls, v: str) -> str:
        """Ensure URL formats take exactly one substitution."""
        if v.count("%s") != 1:
            raise ValueError("URL format must contain exactly one '%s'")
        return v


class WoofConfig(BaseModel):
    """Root configuration schema for Woof.

    If validation fails on startup, the application exits with a clear error.
    If validation fails on hot-reload, the previous valid config is kept.
    """

    mailing_list: str = Field(description="Address of the monitored mailing list")
    release_manager: str = Field(description="Only sender allowed to announce releases")

    imap: ImapConfig | None = Field(
        default=None,
        description="Mailbox to listen on (listener disabled when absent)",
    )
    storage: StorageConfig = Field(default_factory=StorageConfig)
    web: WebConfig = Field(default_factory=WebConfig)

    @field_validator("mailing_list", "release_manager")
    @classmethod
    def validate_addresses(cls, v: str) -> str:
        """Ensure list and release manager are plain addresses."""
        return _validate_address(v)
