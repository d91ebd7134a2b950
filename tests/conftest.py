import os
import shutil
import tempfile

# Set environment variables for testing before the application modules import.
_TMP_DIR = tempfile.mkdtemp(prefix="wedding-album-tests-")
os.environ["ALBUM_DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'album.db')}"
os.environ["ALBUM_STORAGE_DIR"] = os.path.join(_TMP_DIR, "storage")
os.environ["ALBUM_JWT_SECRET"] = "test-secret"
os.environ["ALBUM_LOG_LEVEL"] = "DEBUG"
for _key in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_UPLOAD_PRESET", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
    os.environ.pop(_key, None)

import httpx
import pytest
from fastapi.testclient import TestClient

from wedding_album.api.media import get_media_host
from wedding_album.db import Base, SessionLocal, engine
from wedding_album.main import app
from wedding_album.services.media_host import MediaHostClient, MediaHostConfig
from wedding_album.services.storage import MEDIA_DIR, ensure_storage


class FakeCloudinary:
    """Stands in for the Cloudinary API behind an httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.configured = True
        self.api_secret: str | None = None
        self.unreachable = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="remote exploded")

        _, _, cloud, resource_type, action = request.url.path.split("/")
        if action == "destroy":
            return httpx.Response(200, json={"result": "ok"})

        n = len(self.requests)
        payload = {
            "public_id": f"wedding-photos/asset-{n}",
            "secure_url": f"https://res.cloudinary.com/{cloud}/{resource_type}/upload/v1/wedding-photos/asset-{n}",
            "format": "webm" if resource_type == "video" else "jpg",
            "resource_type": resource_type,
            "bytes": 2048,
            "width": 800,
            "height": 600,
            "created_at": "2026-10-17T12:00:00Z",
        }
        if resource_type == "video":
            payload["duration"] = 12.4
        return httpx.Response(200, json=payload)

    def client(self) -> MediaHostClient:
        config = MediaHostConfig(
            cloud_name="demo" if self.configured else "",
            upload_preset="wedding" if self.configured else "",
            api_key="key-123" if self.api_secret else None,
            api_secret=self.api_secret,
        )
        return MediaHostClient(config, transport=httpx.MockTransport(self.handler))


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    shutil.rmtree(MEDIA_DIR, ignore_errors=True)
    ensure_storage()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def cloudinary():
    return FakeCloudinary()


@pytest.fixture
def client(cloudinary):
    app.dependency_overrides[get_media_host] = cloudinary.client
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(client):
    response = client.post("/auth/sign-up", json={"email": "bride@example.com", "password": "s3cret-pass"})
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
