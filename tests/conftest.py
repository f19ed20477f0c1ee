import io

import pytest
from fastapi.testclient import TestClient
from starlette.datastructures import UploadFile

from lanshare.config import Settings
from lanshare.file_service import FileService
from lanshare.metadata_store import MetadataStore
from lanshare.models import GuestActor, UserActor
from lanshare.notifier import Notifier
from lanshare.paths import PathResolver
from lanshare.server import create_app


@pytest.fixture
def settings(tmp_path):
    s = Settings(
        storage_root=tmp_path / "storage",
        data_dir=tmp_path / "data",
        jwt_secret="test-secret",
        max_upload_bytes=1024 * 1024,
        upload_chunk_size=4,
        trust_forwarded_for=True,
    )
    s.ensure_dirs()
    return s


@pytest.fixture
def store(settings):
    return MetadataStore(settings.metadata_file)


@pytest.fixture
def resolver(settings):
    return PathResolver(settings.storage_root)


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def service(settings, store, resolver, notifier):
    return FileService(settings, store, resolver, notifier)


@pytest.fixture
def alice():
    return UserActor(id="u-alice", username="alice", name="Alice", role="user", ip="10.0.0.5")


@pytest.fixture
def bob():
    return UserActor(id="u-bob", username="bob", name="Bob", role="user", ip="10.0.0.6")


@pytest.fixture
def admin():
    return UserActor(id="u-root", username="root", name="Root", role="admin", ip="10.0.0.1")


@pytest.fixture
def guest():
    return GuestActor(ip="10.0.0.42")


@pytest.fixture
def upload():
    def make(name: str, data: bytes) -> UploadFile:
        return UploadFile(file=io.BytesIO(data), filename=name, size=len(data))

    return make


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c
