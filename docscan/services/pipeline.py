"""
pipeline.py

End-to-end scan: image source in, ExtractedRecord out.

Flow:
source → ImagePreprocessor → RecognitionEngine (worker thread)
       → clean_text → extract_fields → ExtractedRecord

This file:
- Reports progress on a single 0-100 scale, never going backwards
- Guarantees engine release on success, failure and cancellation
- Does NOT store, send or render the record (callers do that)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

from docscan.schemas.scan import ExtractedRecord, ProgressEvent, ScanOptions
from docscan.services.cleaner import clean_text
from docscan.services.errors import RecognitionEngineError
from docscan.services.extractor import extract_fields
from docscan.services.preprocess import ImagePreprocessor, ImageSource
from docscan.services.recognizer import (
    RecognitionEngine,
    RecognizerContext,
    RecognizerPool,
    create_engine,
    single_use,
)

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]

PREPROCESSING = "preprocessing"
RECOGNIZING = "recognizing"
EXTRACTING = "extracting"
DONE = "done"
ERROR = "error"

# Share of the overall progress bar owned by each stage
STAGE_WINDOWS: Dict[str, Tuple[int, int]] = {
    PREPROCESSING: (0, 10),
    RECOGNIZING: (10, 90),
    EXTRACTING: (90, 100),
    DONE: (100, 100),
}


class ProgressReporter:
    """
    Maps stage-local fractions onto one monotonic 0-100 scale.

    Events that would move progress backwards, and events arriving
    after the scan is over (an abandoned engine thread), are dropped.
    """

    def __init__(self, listener: Optional[ProgressListener] = None):
        self._listener = listener
        self.value: Optional[int] = None
        self.closed = False

    def report(self, stage: str, fraction: float = 0.0) -> None:
        if self.closed:
            return

        low, high = STAGE_WINDOWS[stage]
        fraction = max(0.0, min(1.0, fraction))
        value = int(low + (high - low) * fraction)

        if self.value is not None and value <= self.value:
            return

        self.value = value
        if self._listener is not None:
            self._listener(ProgressEvent(stage=stage, progress=value))

    def close(self) -> None:
        self.closed = True


@asynccontextmanager
async def _recognizer(
    engine: Optional[RecognitionEngine],
    pool: Optional[RecognizerPool],
) -> AsyncIterator[RecognizerContext]:
    if engine is not None and pool is not None:
        raise ValueError("Pass either an engine or a pool, not both")

    if pool is not None:
        async with pool.acquire() as context:
            yield context
    elif engine is not None:
        async with single_use(engine) as context:
            yield context
    else:
        # One throwaway engine per scan, disposed afterwards
        try:
            fresh = create_engine()
        except ValueError as error:
            raise RecognitionEngineError(f"Cannot create recognition engine: {error}") from error
        async with single_use(fresh, close=True) as context:
            yield context


async def scan_document(
    image_source: ImageSource,
    options: Optional[ScanOptions] = None,
    *,
    engine: Optional[RecognitionEngine] = None,
    pool: Optional[RecognizerPool] = None,
    on_progress: Optional[ProgressListener] = None,
) -> ExtractedRecord:
    """
    Scan one document image.

    Parameters:
    - image_source: bytes, path, http(s) URL or data URI of a raster image
    - options: language and contrast (defaults from configuration)
    - engine: caller-owned engine, or
    - pool: RecognizerPool to check an engine out of
      (neither: a fresh engine is created and closed for this scan)
    - on_progress: receives ProgressEvent, monotonic, ending at 100

    Returns:
    - ExtractedRecord (sentinels for fields that were not found)

    Raises:
    - ImageDecodeError: the source could not be decoded
    - RecognitionEngineError: the engine failed or timed out
    - asyncio.CancelledError: the caller abandoned the scan
    """

    options = options or ScanOptions()
    reporter = ProgressReporter(on_progress)
    loop = asyncio.get_running_loop()

    def engine_progress(fraction: float) -> None:
        # Called from the engine's worker thread
        loop.call_soon_threadsafe(reporter.report, RECOGNIZING, fraction)

    try:
        reporter.report(PREPROCESSING, 0.0)

        preprocessor = ImagePreprocessor(options.contrast_factor)
        image = await asyncio.to_thread(preprocessor.preprocess, image_source)

        reporter.report(PREPROCESSING, 1.0)

        async with _recognizer(engine, pool) as context:
            logger.info(
                f"Recognizing with {context.engine.name} "
                f"(language={options.recognition_language})"
            )
            result = await context.recognize(image, options.recognition_language, engine_progress)

        reporter.report(EXTRACTING, 0.0)

        cleaned = clean_text(result.text)
        logger.debug(f"Cleaned OCR text:\n{cleaned}")

        record = extract_fields(cleaned, result.confidence)

        reporter.report(DONE, 1.0)
        return record

    except asyncio.CancelledError:
        logger.info("Scan cancelled; no record produced")
        raise

    finally:
        reporter.close()


async def iter_scan_progress(
    image_source: ImageSource,
    options: Optional[ScanOptions] = None,
    *,
    engine: Optional[RecognitionEngine] = None,
    pool: Optional[RecognizerPool] = None,
) -> AsyncIterator[ProgressEvent]:
    """
    The same scan as an async stream of ProgressEvent.

    The last event has stage "done", progress 100 and the record.
    Scan errors are raised from the iterator after the progress that
    preceded them. Closing the iterator early cancels the scan.
    """

    queue: "asyncio.Queue[ProgressEvent]" = asyncio.Queue()

    task = asyncio.ensure_future(
        scan_document(image_source, options, engine=engine, pool=pool, on_progress=queue.put_nowait)
    )

    getter: Optional[asyncio.Future] = None

    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)

            if getter not in done:
                getter.cancel()
                break

            event = getter.result()
            if event.stage != DONE:
                yield event

        while not queue.empty():
            event = queue.get_nowait()
            if event.stage != DONE:
                yield event

        record = task.result()
        yield ProgressEvent(stage=DONE, progress=100, record=record)

    finally:
        if getter is not None and not getter.done():
            getter.cancel()
        if not task.done():
            task.cancel()
