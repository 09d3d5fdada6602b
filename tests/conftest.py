import io
import threading
import time

import fitz
import pytest
from PIL import Image

from docscan.schemas.scan import RecognitionResult
from docscan.services.recognizer import RecognitionEngine


class FakeEngine(RecognitionEngine):
    """Scripted engine: fixed text, optional failure, optional blocking."""

    name = "fake"

    def __init__(
        self,
        text="",
        confidence=90.0,
        error=None,
        steps=(0.25, 0.5, 1.0),
        gate=None,
        delay=0.0,
    ):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.steps = steps
        self.gate = gate
        self.delay = delay
        self.calls = []
        self.started = threading.Event()
        self.closed = False

    def recognize(self, image, language, on_progress=None):
        self.calls.append((image, language))
        self.started.set()

        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.delay:
            time.sleep(self.delay)

        for step in self.steps:
            if on_progress is not None:
                on_progress(step)

        if self.error is not None:
            raise self.error
        return RecognitionResult(text=self.text, confidence=self.confidence)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_engine():
    """Factory fixture: fake_engine(text=..., confidence=...)."""
    return FakeEngine


def _png(size=(40, 20), color=(200, 100, 50), mode="RGB"):
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return _png()


@pytest.fixture
def make_png():
    return _png


@pytest.fixture
def pdf_bytes():
    document = fitz.open()
    page = document.new_page(width=200, height=100)
    page.insert_text((20, 50), "CC 12345678")
    data = document.tobytes()
    document.close()
    return data
