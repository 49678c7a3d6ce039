import pytesseract
from fastapi.testclient import TestClient

from conftest import (
    SPAM_MESSAGE,
    RecordingBroadcaster,
    auth_headers,
    make_image,
    make_oversized_png,
)
from spamscan.blob_store import BlobStore
from spamscan.main import create_app
from spamscan.ocr_engine import OCREngine

UPLOAD_URL = "/api/v1/screenshots"


def _upload(client, image_bytes, headers=None, params=None, **form):
    return client.post(
        UPLOAD_URL,
        files={"image": ("shot.png", image_bytes, "image/png")},
        data=form,
        headers=headers if headers is not None else auth_headers(),
        params=params,
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_upload_detects_spam_and_number(client, screenshot_png, blob_store, broadcaster):
    response = _upload(client, screenshot_png, toNumber="+51999888777", carrier="Claro")

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["isSpam"] is True
    assert data["extractedNumber"] == "987-654-3210"
    assert data["toNumber"] == "+51999888777"
    assert data["carrier"] == "Claro"
    assert data["user"] == "user-1"
    assert data["email"] == "ana@example.com"
    assert data["name"] == "Ana"
    assert data["screenshotUrl"] in blob_store.blobs
    assert "rawOCR" not in data

    assert broadcaster.kinds() == ["screenshots:new"]
    assert broadcaster.events[0][1]["id"] == data["id"]


def test_upload_defaults_unknown_metadata(client, screenshot_png):
    data = _upload(client, screenshot_png).json()["data"]
    assert data["toNumber"] == "Unknown"
    assert data["carrier"] == "Unknown"


def test_upload_with_explicit_time(client, screenshot_png):
    data = _upload(client, screenshot_png, time="2024-05-01T12:30:00Z").json()["data"]
    assert data["time"].startswith("2024-05-01T12:30:00")


def test_upload_debug_fields(client, screenshot_png):
    response = _upload(client, screenshot_png, params={"debug": "1"})

    data = response.json()["data"]
    assert data["rawOCR"] == SPAM_MESSAGE
    assert data["normalized"].startswith("hithismessageisspam")
    assert data["matchedLayer"] == "EXACT"
    assert data["ocrAttempts"][0]["psm"] == 6
    assert data["ocrErrors"] == []
    assert data["env"]["modes"] == [6, 7, 3]
    assert set(data["timings"]) >= {"compress", "upload", "ocr", "total"}


def test_upload_without_text_is_not_spam(client, screenshot_png, recognizer):
    recognizer.default = ""
    data = _upload(client, screenshot_png, params={"debug": "1"}).json()["data"]

    assert data["isSpam"] is False
    assert data["extractedNumber"] == "Not Found"
    assert len(data["ocrAttempts"]) == 4


def test_upload_requires_authentication(client, screenshot_png):
    response = _upload(client, screenshot_png, headers={})
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_upload_rejects_invalid_token(client, screenshot_png):
    response = _upload(client, screenshot_png, headers=auth_headers(secret="wrong-secret"))
    assert response.status_code == 401


def test_upload_requires_file(client):
    response = client.post(UPLOAD_URL, data={"carrier": "Claro"}, headers=auth_headers())
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_upload_requires_email_and_name(client, screenshot_png):
    response = _upload(client, screenshot_png, headers=auth_headers(email=None))
    assert response.status_code == 400


def test_upload_rejects_non_image_content_type(client):
    response = client.post(
        UPLOAD_URL,
        files={"image": ("notes.txt", b"hello", "text/plain")},
        headers=auth_headers(),
    )
    assert response.status_code == 400


def test_upload_rejects_oversized_file(client, settings):
    settings.MAX_UPLOAD_BYTES = 1024
    response = _upload(client, make_image(300, 300, noise=True))
    assert response.status_code == 400


def test_upload_rejects_undecodable_image(client):
    response = _upload(client, b"\x89PNG but not really")
    assert response.status_code == 400


def test_upload_rejects_oversized_dimensions(client):
    response = _upload(client, make_oversized_png())

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_blob_store_failure_is_fatal(client, screenshot_png, blob_store, broadcaster):
    blob_store.fail = True
    response = _upload(client, screenshot_png)

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert broadcaster.events == []
    assert client.get(UPLOAD_URL).json()["count"] == 0


class _BrokenBlobStore(BlobStore):
    async def upload(self, data: bytes, folder: str) -> str:
        raise RuntimeError("disk on fire")


def test_unexpected_error_renders_json(settings, recognizer, screenshot_png):
    app = create_app(
        settings,
        ocr_engine=OCREngine(timeout_seconds=settings.OCR_TIMEOUT_SECONDS, recognizer=recognizer),
        blob_store=_BrokenBlobStore(),
        broadcaster=RecordingBroadcaster(),
    )
    with TestClient(app, raise_server_exceptions=False) as test_client:
        response = _upload(test_client, screenshot_png)

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Error interno del servidor"}


def test_upload_folder_ignores_path_characters_in_user_id(client, screenshot_png, blob_store):
    response = _upload(client, screenshot_png, headers=auth_headers(user_id="../../etc/x"))

    assert response.status_code == 201
    url = response.json()["data"]["screenshotUrl"]
    assert ".." not in url
    assert url.startswith("memory://screenshots/______etc_x/")
    assert list(blob_store.blobs) == [url]


def test_injected_engine_leaves_tesseract_cmd_alone(settings, recognizer, monkeypatch):
    monkeypatch.setattr(pytesseract.pytesseract, "tesseract_cmd", "tesseract")
    settings.TESSERACT_CMD = "/opt/custom/tesseract"

    create_app(settings, ocr_engine=OCREngine(recognizer=recognizer))
    assert pytesseract.pytesseract.tesseract_cmd == "tesseract"

    create_app(settings)
    assert pytesseract.pytesseract.tesseract_cmd == "/opt/custom/tesseract"


def test_listings(client, screenshot_png):
    ana = auth_headers()
    luis = auth_headers(user_id="user-2", email="luis@example.com", name="Luis")
    for _ in range(3):
        _upload(client, screenshot_png, headers=ana)
    _upload(client, screenshot_png, headers=luis)

    everything = client.get(UPLOAD_URL).json()
    assert everything["success"] is True
    assert everything["count"] == 4

    mine = client.get(f"{UPLOAD_URL}/mine", params={"page": 1, "limit": 2}, headers=ana).json()
    assert (mine["page"], mine["limit"], mine["total"]) == (1, 2, 3)
    assert len(mine["data"]) == 2
    assert all(item["user"] == "user-1" for item in mine["data"])

    by_email = client.get(f"{UPLOAD_URL}/by-email", params={"email": "luis@example.com"}).json()
    assert by_email["count"] == 1

    own_email = client.get(f"{UPLOAD_URL}/by-email", headers=ana).json()
    assert own_email["count"] == 3

    by_name = client.get(f"{UPLOAD_URL}/by-name", params={"name": "Luis"}).json()
    assert by_name["count"] == 1


def test_listing_filters_need_a_value(client):
    assert client.get(f"{UPLOAD_URL}/by-email").status_code == 400
    assert client.get(f"{UPLOAD_URL}/by-name").status_code == 400


def test_mine_requires_authentication(client):
    assert client.get(f"{UPLOAD_URL}/mine").status_code == 401


def test_lifecycle_endpoints(client, screenshot_png, broadcaster):
    headers = auth_headers()
    admin = auth_headers(user_id="admin-1", role="admin")
    screenshot_id = _upload(client, screenshot_png).json()["data"]["id"]
    url = f"{UPLOAD_URL}/{screenshot_id}"

    deleted = client.delete(url, headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["data"]["isDeleted"] is True
    assert client.get(UPLOAD_URL).json()["count"] == 0

    trash = client.get(f"{UPLOAD_URL}/recently-deleted", headers=admin).json()
    assert [item["id"] for item in trash["data"]] == [screenshot_id]

    restored = client.post(f"{url}/restore", headers=headers)
    assert restored.json()["data"]["isDeleted"] is False
    assert restored.json()["data"]["deletedAt"] is None

    removed = client.delete(f"{url}/permanent", headers=headers)
    assert removed.status_code == 200
    assert client.get(url).status_code == 404
    assert client.delete(f"{url}/permanent", headers=headers).status_code == 404

    assert broadcaster.kinds() == [
        "screenshots:new",
        "screenshots:delete:soft",
        "screenshots:update",
        "screenshots:delete:permanent",
    ]


def test_lifecycle_endpoints_require_authentication(client, screenshot_png):
    screenshot_id = _upload(client, screenshot_png).json()["data"]["id"]
    url = f"{UPLOAD_URL}/{screenshot_id}"

    assert client.delete(url).status_code == 401
    assert client.post(f"{url}/restore").status_code == 401
    assert client.delete(f"{url}/permanent").status_code == 401


def test_recently_deleted_is_admin_only(client):
    assert client.get(f"{UPLOAD_URL}/recently-deleted").status_code == 401
    assert client.get(f"{UPLOAD_URL}/recently-deleted", headers=auth_headers()).status_code == 401


def test_unknown_id_is_not_found(client):
    response = client.get(f"{UPLOAD_URL}/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": "Captura no encontrada: does-not-exist",
    }
