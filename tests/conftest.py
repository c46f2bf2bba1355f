import asyncio
import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image as PILImage

import pipeline  # noqa: F401  registers the HEIF opener/saver
from app import create_app
from config import Settings
from credentials import CredentialStore
from database import make_engine
from registry import RealmRegistry

TEST_ROUNDS = 1000


def image_bytes(size=(1200, 800), fmt="JPEG", color=(200, 80, 40)) -> bytes:
    buf = io.BytesIO()
    mode = "RGBA" if fmt == "PNG" else "RGB"
    PILImage.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def heic_bytes(size=(640, 480)) -> bytes:
    return image_bytes(size, fmt="HEIF")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        token_secret="test-secret",
        password_rounds=TEST_ROUNDS,
        default_username="admin",
        default_password="changeme",
        reconcile_on_startup=False,
    )


@pytest.fixture
def credentials(tmp_path):
    engine = make_engine(tmp_path / "users.db")
    store = CredentialStore(engine, "admin", "changeme", rounds=TEST_ROUNDS)
    yield store
    engine.dispose()


@pytest.fixture
def registry(tmp_path):
    reg = RealmRegistry(tmp_path / "users")
    yield reg
    reg.close()


@pytest.fixture
def realm(registry):
    return asyncio.run(registry.get("alice"))


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(client):
    res = client.post(
        "/api/auth/register", json={"loginId": "alice", "password": "secret123"}
    )
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['token']}"}
