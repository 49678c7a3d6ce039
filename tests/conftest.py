import io
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

import jwt
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from spamscan.blob_store import BlobStore
from spamscan.broadcaster import EventBroadcaster
from spamscan.config import Settings
from spamscan.database import create_engine, create_session_factory, init_models
from spamscan.exceptions import BlobStoreError
from spamscan.lifecycle import ScreenshotLifecycle
from spamscan.main import create_app
from spamscan.ocr_engine import OCREngine, PageSegMode
from spamscan.repository import ScreenshotRepository

JWT_SECRET = "test-secret"
SPAM_MESSAGE = "Hi, this message is SPAM, call 987-654-3210"


# =============================================================================
# FAKES
# =============================================================================

class FakeRecognizer:
    """Recognizer con respuestas por modo; registra cada llamada."""

    def __init__(self, responses: Optional[Dict[PageSegMode, Any]] = None, default: Any = ""):
        self.responses = responses or {}
        self.default = default
        self.calls: List[Tuple[Tuple[int, int], PageSegMode]] = []

    def __call__(self, image: Image.Image, mode: PageSegMode) -> str:
        self.calls.append((image.size, mode))
        response = self.responses.get(mode, self.default)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(image)
        return response


class MemoryBlobStore(BlobStore):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.blobs: Dict[str, bytes] = {}

    async def upload(self, data: bytes, folder: str) -> str:
        if self.fail:
            raise BlobStoreError("upload rechazado", "MemoryBlobStore")
        url = f"memory://{folder}/{len(self.blobs)}.jpg"
        self.blobs[url] = data
        return url


class RecordingBroadcaster(EventBroadcaster):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, kind: str, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("transport down")
        self.events.append((kind, payload))

    def kinds(self) -> List[str]:
        return [kind for kind, _ in self.events]


# =============================================================================
# IMÁGENES
# =============================================================================

def make_image(
    width: int,
    height: int,
    noise: bool = False,
    fmt: str = "PNG",
    color: Tuple[int, int, int] = (240, 240, 240),
) -> bytes:
    if noise:
        image = Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))
    else:
        image = Image.new("RGB", (width, height), color)
    out = io.BytesIO()
    image.save(out, format=fmt)
    return out.getvalue()


def make_oversized_png() -> bytes:
    """PNG pequeño en disco cuyas dimensiones superan el límite de Pillow."""
    side = 14000  # 196M píxeles > 2 * Image.MAX_IMAGE_PIXELS
    out = io.BytesIO()
    Image.new("1", (side, side)).save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def screenshot_png() -> bytes:
    # Ruido: el JPEG resultante siempre es distinto (y menor) que el PNG
    return make_image(360, 640, noise=True)


# =============================================================================
# AUTENTICACIÓN
# =============================================================================

def make_token(
    user_id: str = "user-1",
    email: Optional[str] = "ana@example.com",
    name: Optional[str] = "Ana",
    role: str = "user",
    secret: str = JWT_SECRET,
) -> str:
    claims = {"id": user_id, "role": role}
    if email:
        claims["email"] = email
    if name:
        claims["name"] = name
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(**kwargs) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(**kwargs)}"}


# =============================================================================
# PERSISTENCIA Y APLICACIÓN
# =============================================================================

@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'spamscan.db'}"


@pytest.fixture
def open_lifecycle(database_url):
    """Abre un ScreenshotLifecycle sobre una base SQLite nueva (dentro del loop)."""

    @asynccontextmanager
    async def _open(broadcaster: Optional[EventBroadcaster] = None):
        engine = create_engine(database_url)
        await init_models(engine)
        try:
            repository = ScreenshotRepository(create_session_factory(engine))
            yield ScreenshotLifecycle(repository, broadcaster)
        finally:
            await engine.dispose()

    return _open


@pytest.fixture
def settings(tmp_path, database_url) -> Settings:
    return Settings(
        DATABASE_URL=database_url,
        JWT_SECRET=JWT_SECRET,
        BLOB_STORAGE_DIR=tmp_path / "media",
        REALTIME_ENABLED=False,
        OCR_TIMEOUT_SECONDS=2.0,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def recognizer() -> FakeRecognizer:
    return FakeRecognizer(default=SPAM_MESSAGE)


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def client(settings, recognizer, blob_store, broadcaster):
    app = create_app(
        settings,
        ocr_engine=OCREngine(timeout_seconds=settings.OCR_TIMEOUT_SECONDS, recognizer=recognizer),
        blob_store=blob_store,
        broadcaster=broadcaster,
    )
    with TestClient(app) as test_client:
        yield test_client
