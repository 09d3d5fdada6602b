"""
recognizer.py

Text-recognition boundary of the scan pipeline.

The pipeline never talks to an OCR library directly. It checks out a
RecognizerContext (one engine, used by one scan at a time), runs the
engine in a worker thread and gets back a RecognitionResult.

Engines:
1. TesseractEngine - pytesseract (default, offline)
2. VisionEngine    - OpenAI vision model (optional, needs an API key)

Engine progress is reported as a fraction 0.0-1.0; pipeline.py maps
it onto the overall 0-100 scan progress.
"""

import asyncio
import base64
import io
import logging
import math
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional

import pytesseract
from openai import OpenAI
from PIL import Image

from docscan.config import (
    OCR_ENGINE,
    OCR_POOL_SIZE,
    OPENAI_API_KEY,
    OPENAI_VISION_MODEL,
    TESSERACT_CMD,
    TESSERACT_TIMEOUT,
)
from docscan.schemas.scan import RecognitionResult
from docscan.services.errors import RecognitionEngineError, ScanFailed

logger = logging.getLogger(__name__)

# Called with the engine-internal progress, 0.0-1.0
ProgressCallback = Callable[[float], None]


def _report(on_progress: Optional[ProgressCallback], fraction: float) -> None:
    if on_progress is not None:
        on_progress(fraction)


def _clamp_confidence(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


class RecognitionEngine(ABC):
    """
    A text-recognition engine.

    recognize() is synchronous and may block for seconds; callers run
    it off the event loop. An instance is used by one scan at a time.
    """

    name = "engine"

    @abstractmethod
    def recognize(
        self,
        image: bytes,
        language: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RecognitionResult:
        """Return recognized text plus a 0-100 confidence."""

    def close(self) -> None:
        """Release engine resources. Default: nothing to release."""


class TesseractEngine(RecognitionEngine):
    """
    Tesseract OCR through pytesseract.

    Two passes over the same image:
    - image_to_string for the text (keeps tesseract's line layout)
    - image_to_data for per-word confidences
    """

    name = "tesseract"

    def __init__(
        self,
        tesseract_cmd: Optional[str] = TESSERACT_CMD,
        timeout: float = TESSERACT_TIMEOUT,
        config: str = "--oem 3 --psm 3",
    ):
        # pytesseract keeps the binary path as module state
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

        self.timeout = timeout
        self.config = config

    def recognize(
        self,
        image: bytes,
        language: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RecognitionResult:

        _report(on_progress, 0.0)

        try:
            picture = Image.open(io.BytesIO(image))

            text = pytesseract.image_to_string(
                picture,
                lang=language,
                config=self.config,
                timeout=self.timeout,
            )
            _report(on_progress, 0.5)

            data = pytesseract.image_to_data(
                picture,
                lang=language,
                config=self.config,
                timeout=self.timeout,
                output_type=pytesseract.Output.DICT,
            )
        except Exception as error:
            raise RecognitionEngineError(f"Tesseract recognition failed: {error}") from error

        _report(on_progress, 1.0)

        confidence = self._average_confidence(data.get("conf", []))
        logger.info(f"Tesseract recognized {len(text)} characters, confidence {confidence:.1f}")

        return RecognitionResult(text=text, confidence=confidence)

    @staticmethod
    def _average_confidence(values: List) -> float:
        # -1 marks layout rows (blocks, paragraphs) without a word
        confidences = []
        for value in values:
            try:
                conf = float(value)
            except (TypeError, ValueError):
                continue
            if conf >= 0:
                confidences.append(conf)

        if not confidences:
            return 0.0
        return _clamp_confidence(sum(confidences) / len(confidences))


class VisionEngine(RecognitionEngine):
    """
    OpenAI vision model used as an OCR engine.

    Better than tesseract on handwriting. Confidence is the mean
    probability of the generated tokens, taken from logprobs.
    """

    name = "vision"

    def __init__(self, api_key: str, model: str = OPENAI_VISION_MODEL):
        self.client = OpenAI(api_key=api_key)
        self.model = model

    def recognize(
        self,
        image: bytes,
        language: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RecognitionResult:

        _report(on_progress, 0.0)

        base64_image = base64.b64encode(image).decode("utf-8")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "text",
                                "text": (
                                    "Transcribe ALL text from this document image exactly as printed, "
                                    f"line by line. The document language code is '{language}'. "
                                    "Do not translate, summarize or add commentary."
                                ),
                            },
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:image/png;base64,{base64_image}"},
                            },
                        ],
                    }
                ],
                max_tokens=1500,
                temperature=0,
                logprobs=True,
            )
        except Exception as error:
            raise RecognitionEngineError(f"Vision recognition failed: {error}") from error

        _report(on_progress, 1.0)

        choice = response.choices[0]
        text = (choice.message.content or "").strip()

        tokens = choice.logprobs.content if choice.logprobs and choice.logprobs.content else []
        if tokens:
            confidence = _clamp_confidence(
                100.0 * sum(math.exp(token.logprob) for token in tokens) / len(tokens)
            )
        else:
            confidence = 0.0

        logger.info(f"Vision model recognized {len(text)} characters, confidence {confidence:.1f}")

        return RecognitionResult(text=text, confidence=confidence)

    def close(self) -> None:
        self.client.close()


def create_engine(name: str = OCR_ENGINE) -> RecognitionEngine:
    """Build an engine from its configured name."""
    name = (name or "tesseract").lower().strip()

    if name == "tesseract":
        return TesseractEngine()

    if name == "vision":
        if not OPENAI_API_KEY:
            raise ValueError("OCR_ENGINE=vision requires OPENAI_API_KEY")
        return VisionEngine(api_key=OPENAI_API_KEY)

    raise ValueError(f"Unknown OCR engine '{name}'. Use 'tesseract' or 'vision'.")


class RecognizerContext:
    """
    One engine checked out for one scan.

    The engine goes back to its owner (pool or caller) only after the
    worker thread running it has finished, even if the scan itself was
    cancelled earlier. That keeps non-reentrant engines exclusive.
    """

    def __init__(self, engine: RecognitionEngine, release: Callable[[RecognitionEngine], None]):
        self.engine = engine
        self._release = release
        self._pending: Optional[asyncio.Future] = None
        self._finished = False

    async def recognize(
        self,
        image: bytes,
        language: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RecognitionResult:
        loop = asyncio.get_running_loop()
        self._pending = loop.run_in_executor(
            None, self.engine.recognize, image, language, on_progress
        )

        try:
            # shield: a cancelled scan must not mark the thread's future done
            return await asyncio.shield(self._pending)
        except (ScanFailed, asyncio.CancelledError):
            raise
        except Exception as error:
            raise RecognitionEngineError(f"{self.engine.name} engine crashed: {error}") from error

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True

        pending = self._pending
        if pending is None or pending.done():
            self._release(self.engine)
            return

        logger.info(f"Scan abandoned while {self.engine.name} is running; result will be discarded")

        def _on_done(future: asyncio.Future) -> None:
            if not future.cancelled() and future.exception() is not None:
                logger.debug(f"Discarded engine failure: {future.exception()}")
            self._release(self.engine)

        pending.add_done_callback(_on_done)


@asynccontextmanager
async def single_use(engine: RecognitionEngine, close: bool = False) -> AsyncIterator[RecognizerContext]:
    """
    Context for an engine owned by the caller.

    With close=True the engine is disposed once recognition is over.
    """
    release = (lambda e: e.close()) if close else (lambda e: None)
    context = RecognizerContext(engine, release)
    try:
        yield context
    finally:
        context.finish()


class RecognizerPool:
    """
    Fixed-size pool of recognition engines.

    Engines are created lazily by `factory`, up to `size`. A scan
    checks one out with `async with pool.acquire() as context:` and it
    is returned automatically, on success, failure or cancellation.
    """

    def __init__(self, factory: Callable[[], RecognitionEngine] = create_engine, size: int = OCR_POOL_SIZE):
        if size < 1:
            raise ValueError("Recognizer pool size must be at least 1")

        self._factory = factory
        self.size = size
        self._idle: "asyncio.Queue[RecognitionEngine]" = asyncio.Queue()
        self._engines: List[RecognitionEngine] = []
        self._closed = False

    @property
    def created(self) -> int:
        return len(self._engines)

    @property
    def idle(self) -> int:
        return self._idle.qsize()

    async def _checkout(self) -> RecognitionEngine:
        if self._idle.empty() and len(self._engines) < self.size:
            try:
                engine = self._factory()
            except Exception as error:
                raise RecognitionEngineError(f"Cannot create recognition engine: {error}") from error
            self._engines.append(engine)
            logger.info(f"Created {engine.name} engine {len(self._engines)}/{self.size}")
            return engine
        return await self._idle.get()

    def _checkin(self, engine: RecognitionEngine) -> None:
        if self._closed:
            engine.close()
            return
        self._idle.put_nowait(engine)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[RecognizerContext]:
        if self._closed:
            raise RuntimeError("Recognizer pool is closed")

        engine = await self._checkout()
        context = RecognizerContext(engine, self._checkin)
        try:
            yield context
        finally:
            context.finish()

    def close(self) -> None:
        """Dispose idle engines; busy ones are disposed when returned."""
        if self._closed:
            return
        self._closed = True

        while not self._idle.empty():
            self._idle.get_nowait().close()
        self._engines.clear()
