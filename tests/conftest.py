"""Pytest configuration and fixtures."""

import gc
import shutil
import tempfile
import time
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from tracevault.app.adapters import (
    FernetIdentityAdapter,
    FileSystemBlobStore,
    FileSystemDocumentStore,
)
from tracevault.bootstrap import ApplicationContainer, bootstrap_application
from tracevault.config import Settings

TEST_SIGNING_SECRET = "test-signing-secret"


class FakeClock:
    """Manually advanced clock for deterministic timestamps."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    try:
        yield Path(tmpdir)
    finally:
        # Force garbage collection to release any file handles
        gc.collect()
        # Small delay to allow OS to release file locks
        time.sleep(0.1)
        # Retry cleanup with ignore_errors for better cross-platform support
        shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def override_settings(temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide isolated TraceVault settings scoped to tests."""

    import tracevault.config as config_module

    original_settings = getattr(config_module, "_settings", None)

    data_dir = temp_dir / "appdata"
    config_dir = temp_dir / "appconfig"
    data_dir.mkdir(parents=True, exist_ok=True)
    config_dir.mkdir(parents=True, exist_ok=True)

    settings = config_module.Settings(
        data_dir=data_dir,
        config_dir=config_dir,
        signing_secret=TEST_SIGNING_SECRET,
        admin_emails="auditor@example.com",
    )

    config_module._settings = settings

    try:
        yield settings
    finally:
        config_module._settings = original_settings


@pytest.fixture
def container(override_settings: Settings) -> ApplicationContainer:
    """Fully wired application backed by the temporary directories."""
    return bootstrap_application(override_settings)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def document_store(temp_dir: Path) -> FileSystemDocumentStore:
    return FileSystemDocumentStore(temp_dir / "documents", lock_timeout=1.0)


@pytest.fixture
def blob_store(temp_dir: Path) -> FileSystemBlobStore:
    return FileSystemBlobStore(temp_dir / "blobs", url_key=b"u" * 32)


@pytest.fixture
def identity() -> FernetIdentityAdapter:
    from cryptography.fernet import Fernet

    return FernetIdentityAdapter(Fernet.generate_key(), ttl_seconds=3600)


@pytest.fixture
def admin_token(container: ApplicationContainer) -> str:
    """Freshly issued token carrying the admin claim."""
    return container.identity.issue_token("admin-1", "admin@example.com", {"admin": True})


@pytest.fixture
def issue_token(container: ApplicationContainer) -> Callable[..., str]:
    return container.identity.issue_token
