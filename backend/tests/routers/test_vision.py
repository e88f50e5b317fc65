from __future__ import annotations

import io
import json

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy.orm import Session

from backend.models.vision import VisionAnalysis


def _jpeg_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 30, 30)).save(buf, format="JPEG")
    return buf.getvalue()


def _upload(client: TestClient, path: str, headers: dict, image: bytes, result: dict, **form):
    return client.post(
        f"/vision/{path}",
        headers=headers,
        files={"image": ("photo.png", image, "image/png")},
        data={"result": json.dumps(result), **form},
    )


DESCRIPTION = {
    "model_name": "llava",
    "prompt": "Describe the image.",
    "max_new_tokens": 150,
    "temperature": 0.7,
    "description": "A cup on a table.",
    "processing_time_ms": 830,
}


class TestRecordObjectDetection:
    def test_records_detection(self, client: TestClient, auth_headers: dict, sample_image_bytes, sample_detections):
        resp = _upload(
            client, "object-detection", auth_headers, sample_image_bytes,
            {"model_name": "yolos", "model_settings": {"threshold": 0.5}, "detections": sample_detections,
             "processing_time_ms": 120},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["analysis_type"] == "OBJECT_DETECTION"
        assert body["image_format"] == "png"
        assert body["file_name"] == "photo.png"
        assert len(body["image_hash"]) == 64
        assert body["image_description"] is None
        detection = body["object_detection"]
        assert detection["model_settings"] == {"threshold": 0.5}
        assert {o["label"] for o in detection["detected_objects"]} == {"cup", "table"}

    def test_out_of_range_confidence_is_422(self, client: TestClient, auth_headers: dict, sample_image_bytes):
        bad = {"label": "cup", "confidence": 2.0, "bounding_box": {"x_min": 0, "y_min": 0, "x_max": 1, "y_max": 1}}
        resp = _upload(
            client, "object-detection", auth_headers, sample_image_bytes,
            {"model_name": "yolos", "detections": [bad], "processing_time_ms": 1},
        )
        assert resp.status_code == 422

    def test_result_must_be_json(self, client: TestClient, auth_headers: dict, sample_image_bytes):
        resp = client.post(
            "/vision/object-detection",
            headers=auth_headers,
            files={"image": ("photo.png", sample_image_bytes, "image/png")},
            data={"result": "{not json"},
        )
        assert resp.status_code == 422


class TestRecordImageDescription:
    def test_records_description(self, client: TestClient, auth_headers: dict, sample_image_bytes):
        resp = _upload(client, "image-description", auth_headers, sample_image_bytes, DESCRIPTION)
        assert resp.status_code == 201
        description = resp.json()["image_description"]
        assert description["description"] == "A cup on a table."
        assert description["max_new_tokens"] == 150
        assert description["temperature"] == 0.7

    def test_format_sniffed_from_content(self, client: TestClient, auth_headers: dict):
        resp = client.post(
            "/vision/image-description",
            headers=auth_headers,
            files={"image": ("photo.png", _jpeg_bytes(), "image/png")},
            data={"result": json.dumps(DESCRIPTION)},
        )
        assert resp.status_code == 201
        assert resp.json()["image_format"] == "jpeg"

    def test_session_id_attached(self, client: TestClient, auth_headers: dict, sample_image_bytes):
        resp = _upload(
            client, "image-description", auth_headers, sample_image_bytes, DESCRIPTION,
            session_id="client-session",
        )
        assert resp.status_code == 201
        assert resp.json()["session_id"] == "client-session"
        assert resp.json()["session"] is None


class TestRecordFaceRecognition:
    def test_records_faces(self, client: TestClient, auth_headers: dict, sample_image_bytes):
        resp = _upload(
            client, "face-recognition", auth_headers, sample_image_bytes,
            {
                "threshold": 0.6,
                "recognized_faces": [
                    {"person_id": "p-1", "person_name": "Ada", "confidence": 0.93},
                    {"confidence": 0.2},
                ],
                "processing_time_ms": 300,
            },
        )
        assert resp.status_code == 201
        faces = resp.json()["face_recognition"]["recognized_faces"]
        assert sorted(f["person_name"] or "" for f in faces) == ["", "Ada"]
        assert sorted(f["is_matched"] for f in faces) == [False, True]


class TestUploadValidation:
    def test_unauthenticated_is_401(self, client: TestClient, sample_image_bytes):
        resp = _upload(client, "image-description", {}, sample_image_bytes, DESCRIPTION)
        assert resp.status_code == 401

    def test_invalid_image_is_400(self, client: TestClient, auth_headers: dict, test_db: Session):
        resp = _upload(client, "image-description", auth_headers, b"not-an-image", DESCRIPTION)
        assert resp.status_code == 400
        assert test_db.query(VisionAnalysis).count() == 0

    def test_unsupported_extension_is_400(self, client: TestClient, auth_headers: dict, sample_image_bytes):
        resp = client.post(
            "/vision/image-description",
            headers=auth_headers,
            files={"image": ("notes.txt", sample_image_bytes, "text/plain")},
            data={"result": json.dumps(DESCRIPTION)},
        )
        assert resp.status_code == 400

    def test_empty_image_is_400(self, client: TestClient, auth_headers: dict):
        resp = _upload(client, "image-description", auth_headers, b"", DESCRIPTION)
        assert resp.status_code == 400

    def test_oversized_image_is_413(self, client: TestClient, auth_headers: dict, sample_image_bytes, monkeypatch):
        from backend.core.config import settings

        monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 16)
        resp = _upload(client, "image-description", auth_headers, sample_image_bytes, DESCRIPTION)
        assert resp.status_code == 413


class TestHistory:
    @pytest.fixture
    def three_descriptions(self, client: TestClient, auth_headers: dict, sample_image_bytes) -> list[str]:
        ids = []
        for text in ("first", "second", "third"):
            resp = _upload(
                client, "image-description", auth_headers, sample_image_bytes,
                {**DESCRIPTION, "description": text},
            )
            assert resp.status_code == 201
            ids.append(resp.json()["id"])
        return ids

    def test_newest_first_with_pagination(self, client: TestClient, auth_headers: dict, three_descriptions):
        resp = client.get("/vision/history", headers=auth_headers, params={"limit": 2})
        assert resp.status_code == 200
        body = resp.json()
        assert [a["image_description"]["description"] for a in body["data"]] == ["third", "second"]
        assert body["pagination"] == {"total": 3, "limit": 2, "offset": 0, "has_more": True}

    def test_last_page(self, client: TestClient, auth_headers: dict, three_descriptions):
        resp = client.get("/vision/history", headers=auth_headers, params={"limit": 2, "offset": 2})
        body = resp.json()
        assert len(body["data"]) == 1
        assert body["pagination"]["has_more"] is False

    def test_default_limit(self, client: TestClient, auth_headers: dict, three_descriptions):
        from backend.core.config import settings

        resp = client.get("/vision/history", headers=auth_headers)
        assert resp.json()["pagination"]["limit"] == settings.HISTORY_DEFAULT_LIMIT

    def test_zero_limit_is_400(self, client: TestClient, auth_headers: dict):
        resp = client.get("/vision/history", headers=auth_headers, params={"limit": 0})
        assert resp.status_code == 400

    def test_negative_offset_is_400(self, client: TestClient, auth_headers: dict):
        resp = client.get("/vision/history", headers=auth_headers, params={"offset": -1})
        assert resp.status_code == 400

    def test_other_users_history_is_empty(self, client: TestClient, other_headers: dict, three_descriptions):
        resp = client.get("/vision/history", headers=other_headers)
        assert resp.json()["data"] == []
        assert resp.json()["pagination"]["total"] == 0

    def test_history_requires_auth(self, client: TestClient):
        assert client.get("/vision/history").status_code == 401


class TestAnalysisDetail:
    def test_owner_reads_analysis(self, client: TestClient, auth_headers: dict, sample_image_bytes):
        created = _upload(client, "image-description", auth_headers, sample_image_bytes, DESCRIPTION).json()

        resp = client.get(f"/vision/history/{created['id']}", headers=auth_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == created["id"]
        assert body["created_at"] == created["created_at"]
        assert created["created_at"].endswith(("Z", "+00:00"))
        assert body["image_hash"] == created["image_hash"]
        assert body["image_description"] == created["image_description"]

    def test_other_user_gets_404(self, client: TestClient, auth_headers: dict, other_headers: dict, sample_image_bytes):
        created = _upload(client, "image-description", auth_headers, sample_image_bytes, DESCRIPTION).json()

        foreign = client.get(f"/vision/history/{created['id']}", headers=other_headers)
        missing = client.get("/vision/history/does-not-exist", headers=other_headers)

        assert foreign.status_code == missing.status_code == 404
        assert foreign.json() == missing.json()


class TestSessionHistory:
    def test_lists_session_analyses_with_summary(self, client: TestClient, auth_headers: dict, sample_image_bytes):
        session_id = client.post("/sessions", headers=auth_headers, json={}).json()["id"]
        for text in ("in-1", "in-2"):
            _upload(
                client, "image-description", auth_headers, sample_image_bytes,
                {**DESCRIPTION, "description": text}, session_id=session_id,
            )
        _upload(client, "image-description", auth_headers, sample_image_bytes, DESCRIPTION)

        resp = client.get(f"/vision/history/session/{session_id}", headers=auth_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert [a["image_description"]["description"] for a in body] == ["in-2", "in-1"]
        assert all(a["session"]["id"] == session_id for a in body)

    def test_other_users_analyses_hidden(
        self, client: TestClient, auth_headers: dict, other_headers: dict, sample_image_bytes
    ):
        _upload(client, "image-description", auth_headers, sample_image_bytes, DESCRIPTION, session_id="shared")

        resp = client.get("/vision/history/session/shared", headers=other_headers)
        assert resp.status_code == 200
        assert resp.json() == []
