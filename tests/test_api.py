import json

import pytest
from fastapi.testclient import TestClient

from docscan.api import scan as scan_api
from docscan.api.scan import get_pool
from docscan.main import create_app
from docscan.services.errors import RecognitionEngineError
from docscan.services.recognizer import RecognizerPool

CARD_TEXT = (
    "NOMBRE COMPLETO Juan Perez\n"
    "CC 12345678\n"
    "Diagnóstico: Caries\n"
    "\n"
    "Limpieza dental"
)


@pytest.fixture
def client_for():
    """Build a TestClient whose scans run on the given engine."""

    def build(engine):
        app = create_app()
        pool = RecognizerPool(factory=lambda: engine, size=1)
        app.dependency_overrides[get_pool] = lambda: pool
        return TestClient(app)

    return build


def _upload(name, data, content_type="image/png"):
    return {"file": (name, data, content_type)}


def test_health(client_for, fake_engine, png_bytes):
    client = client_for(fake_engine(text="x"))
    assert client.get("/health").json()["pool"] == {"size": 1, "created": 0, "idle": 0}

    client.post("/scan", files=_upload("card.png", png_bytes))

    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["pool"] == {"size": 1, "created": 1, "idle": 1}


def test_scan_returns_record(client_for, fake_engine, png_bytes):
    engine = fake_engine(text=CARD_TEXT, confidence=87.6)

    response = client_for(engine).post("/scan", files=_upload("card.png", png_bytes))

    assert response.status_code == 200
    assert response.json() == {
        "name": "Juan Perez",
        "nationalId": "12345678",
        "attentionType": "Dental Review",
        "clinicalNotes": "Diagnóstico: Caries",
        "confidence": 88,
    }


def test_scan_language_query(client_for, fake_engine, png_bytes):
    engine = fake_engine(text=CARD_TEXT)

    response = client_for(engine).post(
        "/scan",
        params={"language": "eng", "contrast": 10},
        files=_upload("card.jpg", png_bytes, "image/jpeg"),
    )

    assert response.status_code == 200
    assert engine.calls[0][1] == "eng"


def test_scan_pdf_upload(client_for, fake_engine, pdf_bytes):
    engine = fake_engine(text="CC 12345678")

    response = client_for(engine).post(
        "/scan", files=_upload("scan.pdf", pdf_bytes, "application/pdf")
    )

    assert response.status_code == 200
    assert response.json()["nationalId"] == "12345678"
    assert engine.calls[0][0].startswith(b"\x89PNG")


@pytest.mark.parametrize(
    "name, data",
    [
        ("notes.txt", b"plain text"),
        ("empty.png", b""),
        ("broken.png", b"definitely not an image"),
        ("broken.pdf", b"%PDF-1.4 garbage"),
    ],
)
def test_scan_rejects_bad_uploads(client_for, fake_engine, name, data):
    engine = fake_engine(text=CARD_TEXT)

    response = client_for(engine).post("/scan", files=_upload(name, data))

    assert response.status_code == 400
    assert engine.calls == []


def test_scan_rejects_out_of_range_contrast(client_for, fake_engine, png_bytes):
    response = client_for(fake_engine()).post(
        "/scan", params={"contrast": 300}, files=_upload("card.png", png_bytes)
    )
    assert response.status_code == 422


def test_scan_engine_failure(client_for, fake_engine, png_bytes):
    engine = fake_engine(error=RecognitionEngineError("engine down"))

    response = client_for(engine).post("/scan", files=_upload("card.png", png_bytes))

    assert response.status_code == 502
    assert "engine down" in response.json()["detail"]


def test_scan_timeout(monkeypatch, client_for, fake_engine, png_bytes):
    monkeypatch.setattr(scan_api, "OCR_SCAN_TIMEOUT", 0.05)
    engine = fake_engine(text=CARD_TEXT, delay=0.5, steps=())

    response = client_for(engine).post("/scan", files=_upload("card.png", png_bytes))

    assert response.status_code == 504


def test_scan_engine_cannot_be_created(png_bytes):
    def factory():
        raise ValueError("OCR_ENGINE=vision requires OPENAI_API_KEY")

    app = create_app()
    pool = RecognizerPool(factory=factory, size=1)
    app.dependency_overrides[get_pool] = lambda: pool

    response = TestClient(app).post("/scan", files=_upload("card.png", png_bytes))

    assert response.status_code == 502
    assert "OPENAI_API_KEY" in response.json()["detail"]


def _lines(response):
    return [json.loads(line) for line in response.text.splitlines() if line]


def test_scan_stream(client_for, fake_engine, png_bytes):
    engine = fake_engine(text=CARD_TEXT, confidence=87.6)

    response = client_for(engine).post("/scan/stream", files=_upload("card.png", png_bytes))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")

    events = _lines(response)
    progress = [event["progress"] for event in events]
    assert progress == sorted(progress)
    assert all("record" not in event for event in events[:-1])

    last = events[-1]
    assert last["stage"] == "done"
    assert last["progress"] == 100
    assert last["record"]["nationalId"] == "12345678"
    assert last["record"]["attentionType"] == "Dental Review"


def test_scan_stream_error_event(client_for, fake_engine, png_bytes):
    engine = fake_engine(error=RecognitionEngineError("engine down"), steps=())

    response = client_for(engine).post("/scan/stream", files=_upload("card.png", png_bytes))

    events = _lines(response)
    last = events[-1]
    assert last["stage"] == "error"
    assert last["progress"] == 10
    assert "engine down" in last["error"]


def test_scan_stream_timeout(monkeypatch, client_for, fake_engine, png_bytes):
    monkeypatch.setattr(scan_api, "OCR_SCAN_TIMEOUT", 0.05)
    engine = fake_engine(text=CARD_TEXT, delay=0.5, steps=())

    response = client_for(engine).post("/scan/stream", files=_upload("card.png", png_bytes))

    events = _lines(response)
    assert all(event["stage"] != "done" for event in events)
    last = events[-1]
    assert last["stage"] == "error"
    assert last["error"] == "Scan timed out"
    assert "record" not in last


def test_scan_stream_rejects_bad_upload(client_for, fake_engine):
    response = client_for(fake_engine()).post(
        "/scan/stream", files=_upload("notes.txt", b"plain text")
    )
    assert response.status_code == 400


def test_extract_from_text(client_for, fake_engine):
    response = client_for(fake_engine()).post(
        "/scan/extract",
        json={"raw_text": "Nombre: Maria  Lopez\nDNI: 44556677 |", "confidence": 64.5},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Maria Lopez"
    assert body["nationalId"] == "44556677"
    assert body["attentionType"] == "General Consultation"
    assert body["confidence"] == 64


def test_extract_requires_text(client_for, fake_engine):
    response = client_for(fake_engine()).post("/scan/extract", json={"confidence": 10})
    assert response.status_code == 422
