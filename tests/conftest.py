"""
MediaHost Backend — Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment variables are set before any `app` import so the
       settings singleton picks up test values (SQLite, temp storage, no
       retry back-off).

Function-scoped fixtures:
    ├── mock_db_session:  AsyncSession stand-in (savepoints supported)
    ├── chunk_store:      ChunkStore over a fresh temp directory
    ├── object_storage:   in-memory ObjectStorage
    ├── pipeline:         both of the above patched into the services
    ├── current_user / auth_headers
    └── test_client:      HTTPX AsyncClient bound to the FastAPI app
"""

import os
import tempfile

# Override settings for testing BEFORE any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="mediahost_test_")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["S3_BUCKET"] = "test-bucket"
os.environ["S3_PUBLIC_URL"] = "https://cdn.example.test"
os.environ["AUTH_SECRET_KEY"] = "test-secret-not-real"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"

from pathlib import Path
from typing import Dict, Union
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.auth import CurrentUser, token_verifier
from app.exceptions import StorageError
from app.services.chunk_store import ChunkStore
from app.services.storage_base import ObjectStorage


class FakeObjectStorage(ObjectStorage):
    """
    In-memory object store.

    Set `fail_puts` / `fail_deletes` to make the corresponding calls raise
    StorageError, the way S3ObjectStorage does once retries are exhausted.
    """

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.deleted = []
        self.fail_puts = False
        self.fail_deletes = False
        self.healthy = True

    def _url(self, key: str) -> str:
        return f"https://cdn.example.test/{key}"

    async def put_file(self, local_path: Union[str, Path], key: str, content_type: str) -> str:
        if self.fail_puts:
            raise StorageError(context={"key": key})
        self.objects[key] = Path(local_path).read_bytes()
        self.content_types[key] = content_type
        return self._url(key)

    async def put_bytes(self, content: bytes, key: str, content_type: str) -> str:
        if self.fail_puts:
            raise StorageError(context={"key": key})
        self.objects[key] = content
        self.content_types[key] = content_type
        return self._url(key)

    async def delete_object(self, key: str) -> None:
        if self.fail_deletes:
            raise StorageError(context={"key": key})
        self.objects.pop(key, None)
        self.deleted.append(key)

    async def health_check(self) -> bool:
        return self.healthy


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_db_session():
    """
    A mock async database session.

    begin_nested() returns a MagicMock, which works as an async context
    manager and does not swallow exceptions raised inside it.

    Usage:
        mock_db_session.flush = AsyncMock(side_effect=SQLAlchemyError("boom"))
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.begin_nested = MagicMock()
    return session


@pytest.fixture
def chunk_store(tmp_path):
    return ChunkStore(tmp_path / "chunks")


@pytest.fixture
def object_storage():
    return FakeObjectStorage()


@pytest.fixture
def pipeline(chunk_store, object_storage):
    """Patch the fragment store and object store used by the upload services."""
    with patch("app.services.upload_service.chunk_store", chunk_store), \
         patch("app.services.image_service.object_storage", object_storage):
        yield chunk_store, object_storage


@pytest.fixture
def current_user():
    return CurrentUser(id="u-1", username="alice")


@pytest.fixture
def auth_headers(current_user):
    token = token_verifier.issue(current_user.id, current_user.username)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def sample_image_bytes():
    """Smallest valid JPEG: SOI + JFIF header + EOI."""
    return (
        b'\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00'
        b'\xff\xd9'
    )


@pytest_asyncio.fixture
async def test_client(mock_db_session):
    """
    HTTPX AsyncClient talking to the FastAPI app, with the database
    dependency replaced by `mock_db_session`.
    """
    from app.database import dispose_engine, get_db_session
    from app.main import app

    async def override_db():
        yield mock_db_session

    app.dependency_overrides[get_db_session] = override_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
    # Pooled connections are bound to this test's event loop
    await dispose_engine()
