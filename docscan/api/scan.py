"""
scan.py (API Route)

Scan endpoints of the document scan service.

What this file does:
- POST /scan          upload an image or PDF, get an ExtractedRecord
- POST /scan/stream   same scan, streamed as NDJSON progress events
- POST /scan/extract  cleaning + field extraction on already recognized text

What this file does NOT do:
- Save files to disk (everything stays in memory)
- Store the record or notify anyone (the caller's workflow does that)
- Parse text itself (delegates to the services)

Flow:
User uploads file → This API → (PDF: render page 1) → scan pipeline → JSON
"""

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import StreamingResponse

from docscan.config import OCR_SCAN_TIMEOUT, PDF_RENDER_SCALE
from docscan.schemas.scan import ExtractedRecord, ProgressEvent, RawTextRequest, ScanOptions
from docscan.services.cleaner import clean_text
from docscan.services.errors import (
    DocumentRenderError,
    ImageDecodeError,
    RecognitionEngineError,
    ScanFailed,
)
from docscan.services.extractor import extract_fields
from docscan.services.pipeline import ERROR, iter_scan_progress, scan_document
from docscan.services.rasterize import is_pdf, render_first_page
from docscan.services.recognizer import RecognizerPool

logger = logging.getLogger(__name__)

# Create a router for scan endpoints
# This router will be registered in main.py
router = APIRouter()

ALLOWED_SUFFIXES = {".pdf", ".png", ".jpg", ".jpeg", ".webp", ".bmp", ".tif", ".tiff"}


def get_pool(request: Request) -> Optional[RecognizerPool]:
    """Recognizer pool created in the app lifespan (None outside the app)."""
    return getattr(request.app.state, "pool", None)


def _validate_suffix(filename: str) -> None:
    suffix = Path(filename or "").suffix.lower()
    if suffix not in ALLOWED_SUFFIXES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported file type: '{suffix or filename}'. Upload a PDF or an image.",
        )


def _build_options(language: Optional[str], contrast: Optional[float]) -> ScanOptions:
    values = {}
    if language:
        values["recognition_language"] = language
    if contrast is not None:
        values["contrast_factor"] = contrast
    return ScanOptions(**values)


async def _read_raster(file: UploadFile) -> bytes:
    """
    Validate the upload and return raster image bytes.

    PDFs are rendered to a PNG of their first page; images pass through.
    """

    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Document file is required",
        )

    _validate_suffix(file.filename)

    file_bytes = await file.read()
    if not file_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded document is empty",
        )

    if not is_pdf(file_bytes, file.filename):
        return file_bytes

    try:
        return await asyncio.to_thread(render_first_page, file_bytes, PDF_RENDER_SCALE)
    except DocumentRenderError as error:
        logger.error(f"PDF rendering failed for {file.filename}: {error}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(error),
        )


def _http_error(error: ScanFailed) -> HTTPException:
    if isinstance(error, (ImageDecodeError, DocumentRenderError)):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Could not read the image: {error}",
        )
    if isinstance(error, RecognitionEngineError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Text recognition failed: {error}",
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Scan failed: {error}",
    )


@router.post(
    "",
    response_model=ExtractedRecord,
    status_code=status.HTTP_200_OK,
    summary="Scan a document and extract patient fields",
    description=(
        "Upload an ID card or medical document (image or PDF). The first page is "
        "preprocessed, recognized and parsed into name, national ID, attention type "
        "and clinical notes. Fields that cannot be found carry sentinel values."
    ),
)
async def scan_uploaded_document(
    file: UploadFile = File(...),
    language: Optional[str] = Query(default=None, description="Recognition language, e.g. 'spa'"),
    contrast: Optional[float] = Query(default=None, gt=-255, lt=255, description="Contrast constant"),
    pool: Optional[RecognizerPool] = Depends(get_pool),
):
    """
    Scan endpoint.

    Errors:
    - 400: missing/empty/unsupported file, undecodable image or PDF
    - 502: the recognition engine failed
    - 504: the scan exceeded OCR_SCAN_TIMEOUT
    """

    image_bytes = await _read_raster(file)
    options = _build_options(language, contrast)

    scan = scan_document(image_bytes, options, pool=pool)

    try:
        if OCR_SCAN_TIMEOUT > 0:
            record = await asyncio.wait_for(scan, timeout=OCR_SCAN_TIMEOUT)
        else:
            record = await scan

    except ScanFailed as error:
        logger.error(f"Scan of {file.filename} failed: {error}")
        raise _http_error(error)

    except asyncio.TimeoutError:
        logger.error(f"Scan of {file.filename} timed out after {OCR_SCAN_TIMEOUT}s")
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Scan timed out",
        )

    return record


@router.post(
    "/stream",
    status_code=status.HTTP_200_OK,
    summary="Scan a document with streamed progress",
    description=(
        "Same as POST /scan but responds with newline-delimited JSON: progress "
        "events (0-100) followed by a final 'done' event carrying the record, or "
        "an 'error' event. Disconnecting cancels the scan."
    ),
)
async def scan_uploaded_document_stream(
    file: UploadFile = File(...),
    language: Optional[str] = Query(default=None),
    contrast: Optional[float] = Query(default=None, gt=-255, lt=255),
    pool: Optional[RecognizerPool] = Depends(get_pool),
):
    image_bytes = await _read_raster(file)
    options = _build_options(language, contrast)

    async def events() -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + OCR_SCAN_TIMEOUT if OCR_SCAN_TIMEOUT > 0 else None

        stream = iter_scan_progress(image_bytes, options, pool=pool)
        last_progress = 0
        failure = None

        try:
            while True:
                try:
                    if deadline is None:
                        event = await stream.__anext__()
                    else:
                        remaining = max(0.0, deadline - loop.time())
                        event = await asyncio.wait_for(stream.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break

                last_progress = event.progress
                yield event.model_dump_json(by_alias=True, exclude_none=True) + "\n"

        except ScanFailed as error:
            logger.error(f"Streamed scan of {file.filename} failed: {error}")
            failure = ProgressEvent(stage=ERROR, progress=last_progress, error=_http_error(error).detail)

        except asyncio.TimeoutError:
            logger.error(f"Streamed scan of {file.filename} timed out after {OCR_SCAN_TIMEOUT}s")
            failure = ProgressEvent(stage=ERROR, progress=last_progress, error="Scan timed out")

        finally:
            # cancels the scan if it is still running
            await stream.aclose()

        if failure is not None:
            yield failure.model_dump_json(by_alias=True, exclude_none=True) + "\n"

    return StreamingResponse(events(), media_type="application/x-ndjson")


@router.post(
    "/extract",
    response_model=ExtractedRecord,
    status_code=status.HTTP_200_OK,
    summary="Extract patient fields from recognized text",
    description=(
        "Send text produced by any OCR engine and receive the structured record. "
        "No image processing or recognition happens here."
    ),
)
async def extract_from_text(request: RawTextRequest):
    cleaned = clean_text(request.raw_text)
    return extract_fields(cleaned, request.confidence)
