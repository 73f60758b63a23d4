"""Configuration management with Pydantic and XDG base directory support."""

import logging
import os
import sys
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, PrivateAttr, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from tracevault.utils.crypto import (
    generate_ephemeral_key,
    load_key_file,
    load_or_create_fernet_key,
    load_or_create_hmac_key,
)

logger = logging.getLogger(__name__)


def get_xdg_data_home() -> Path:
    """Get XDG_DATA_HOME directory, defaulting to ~/.local/share."""
    xdg_data = os.getenv("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data)
    return Path.home() / ".local" / "share"


def get_xdg_config_home() -> Path:
    """Get XDG_CONFIG_HOME directory, defaulting to ~/.config."""
    xdg_config = os.getenv("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config)
    return Path.home() / ".config"


class Settings(BaseSettings):
    """TraceVault configuration settings.

    Precedence: CLI flag > environment variable > config file > defaults.
    Values are read once at startup and treated as immutable for the life of
    the process.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRACEVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "production"] = Field(
        default="development",
        description="Deployment environment; wildcard admin access is refused in production",
    )

    # Data directories
    data_dir: Path | None = Field(
        default=None,
        description="Override data directory (defaults to XDG_DATA_HOME/tracevault)",
    )

    config_dir: Path | None = Field(
        default=None,
        description="Override config directory (defaults to XDG_CONFIG_HOME/tracevault)",
    )

    # Signature ceremony
    signing_secret: SecretStr | None = Field(
        default=None,
        description="Server-held secret for audit record signatures",
    )

    signing_key_path: Path | None = Field(
        default=None,
        description="File holding the audit signing secret (must already exist)",
    )

    max_auth_age_seconds: int = Field(
        default=300,
        ge=0,
        description="Maximum age of the signer's authentication event for a signature",
    )

    # Snapshot store
    snapshot_url_expiry_seconds: int = Field(
        default=3600,
        ge=1,
        description="Default lifetime of snapshot retrieval URLs",
    )

    archival_url_expiry_seconds: int = Field(
        default=60 * 60 * 24 * 30,
        ge=1,
        description="Retrieval URL lifetime for archival snapshots (generated test cases)",
    )

    url_signing_key_path: Path | None = Field(
        default=None,
        description="Location of the HMAC key used to sign retrieval URLs",
    )

    # History ledger
    history_strict: bool = Field(
        default=True,
        description="Fail on history collisions (False skips and flags the scope instead)",
    )

    # Access control
    admin_emails: str = Field(
        default="",
        description="Comma-separated allow-list of identities with audit access ('*' outside production)",
    )

    identity_key_path: Path | None = Field(
        default=None,
        description="Location of the Fernet key used to issue and verify identity tokens",
    )

    identity_token_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Maximum age of an identity token",
    )

    # Ledger
    verify_limit: int = Field(
        default=100,
        ge=1,
        description="Default number of recent records examined by chain verification",
    )

    query_limit: int = Field(
        default=100,
        ge=1,
        description="Default maximum number of audit records returned by queries",
    )

    mirror_enabled: bool = Field(
        default=False,
        description="Mirror audit events to the secondary analytics store (best effort)",
    )

    lock_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Maximum wait for a document store transaction lock",
    )

    _resolved_data_dir: Path | None = PrivateAttr(default=None)
    _data_dir_warning_emitted: bool = PrivateAttr(default=False)
    _signing_key: bytes | None = PrivateAttr(default=None)
    _signing_key_ephemeral: bool = PrivateAttr(default=False)

    def get_data_dir(self) -> Path:
        """Get the data directory, creating if necessary."""
        if self._resolved_data_dir is not None:
            return self._resolved_data_dir

        if self.data_dir:
            data_dir = self.data_dir
            data_dir.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = data_dir
            return data_dir

        primary_dir = get_xdg_data_home() / "tracevault"
        try:
            primary_dir.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = primary_dir
            return primary_dir
        except PermissionError as exc:
            fallback = Path.cwd() / ".tracevault-data"
            fallback.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = fallback
            if not self._data_dir_warning_emitted:
                print(
                    f"Warning: cannot create data directory at {primary_dir} ({exc}). "
                    f"Using local '{fallback}' instead. Pass --data-dir to override.",
                    file=sys.stderr,
                )
                self._data_dir_warning_emitted = True
            return fallback

    def get_config_dir(self) -> Path:
        """Get the config directory, creating if necessary."""
        if self.config_dir:
            config_dir = self.config_dir
        else:
            config_dir = get_xdg_config_home() / "tracevault"

        config_dir.mkdir(parents=True, exist_ok=True)
        return config_dir

    def get_documents_dir(self) -> Path:
        """Root directory of the file-system document store."""
        return self.get_data_dir() / "documents"

    def get_blobs_dir(self) -> Path:
        """Root directory of the file-system blob store."""
        return self.get_data_dir() / "blobs"

    def get_mirror_path(self) -> Path:
        """JSONL file receiving mirrored audit events."""
        return self.get_data_dir() / "mirror" / "audit_events.jsonl"

    def get_url_signing_key(self) -> bytes:
        """Return the HMAC key used to sign retrieval URLs."""
        key_path = (
            self.url_signing_key_path
            if self.url_signing_key_path is not None
            else self.get_config_dir() / "url-signing.key"
        )
        return load_or_create_hmac_key(key_path, length=32)

    def get_identity_key(self) -> bytes:
        """Return the Fernet key used for identity tokens."""
        key_path = (
            self.identity_key_path
            if self.identity_key_path is not None
            else self.get_config_dir() / "identity.key"
        )
        return load_or_create_fernet_key(key_path)

    def get_signing_key(self) -> bytes:
        """Return the audit signing secret.

        Resolution order: ``signing_secret``, then ``signing_key_path``. When
        neither is configured an ephemeral key is generated once per process;
        signatures made with it cannot be verified after a restart.
        """
        if self._signing_key is not None:
            return self._signing_key

        if self.signing_secret is not None:
            self._signing_key = self.signing_secret.get_secret_value().encode("utf-8")
        elif self.signing_key_path is not None:
            self._signing_key = load_key_file(self.signing_key_path)
        else:
            logger.warning(
                "No signing secret configured - generating ephemeral key "
                "(NOT suitable for production verification)"
            )
            self._signing_key = generate_ephemeral_key()
            self._signing_key_ephemeral = True

        return self._signing_key

    def uses_ephemeral_signing_key(self) -> bool:
        """True when signatures are produced with a process-lifetime key."""
        self.get_signing_key()
        return self._signing_key_ephemeral

    def get_admin_emails(self) -> set[str]:
        """Return the lower-cased admin allow-list."""
        return {item.strip().lower() for item in self.admin_emails.split(",") if item.strip()}

    def wildcard_admin_allowed(self) -> bool:
        """True when ``admin_emails='*'`` should admit any verified identity."""
        return "*" in self.get_admin_emails() and self.environment != "production"

    def model_post_init(self, __context: Any) -> None:
        super().model_post_init(__context)
        if self.environment == "production" and "*" in self.get_admin_emails():
            logger.warning("Wildcard admin allow-list ignored in production")


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Set the global settings instance (useful for testing)."""
    global _settings
    _settings = settings
