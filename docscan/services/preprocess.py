"""
preprocess.py

Prepares a scanned document image for text recognition.

What this file does:
- Resolves the caller's image source (bytes, path, URL or data URI)
- Decodes it into an RGBA pixel buffer
- Converts every pixel to grayscale and applies a fixed contrast boost
- Re-encodes the result as PNG with the same dimensions

This file:
- Never parses PDFs (see rasterize.py, which runs before the pipeline)
- Does NOT run OCR
- Has no side effects beyond reading the source
"""

import base64
import io
import logging
from pathlib import Path
from typing import Union
from urllib.parse import unquote_to_bytes

import numpy as np
import requests
from PIL import Image, UnidentifiedImageError

from docscan.config import OCR_CONTRAST, SOURCE_FETCH_TIMEOUT
from docscan.services.errors import ImageDecodeError

logger = logging.getLogger(__name__)

ImageSource = Union[bytes, bytearray, str, Path]


def contrast_factor(contrast: float) -> float:
    """Classic contrast-correction factor for a contrast constant C."""
    return (259 * (contrast + 255)) / (255 * (259 - contrast))


def apply_contrast(pixels: np.ndarray, contrast: float = OCR_CONTRAST) -> np.ndarray:
    """
    Grayscale + contrast transform on an RGBA uint8 array (H x W x 4).

    Luminance is the plain mean of R, G and B. The boosted value is
    rounded and clamped to 0..255, then written to all three color
    channels. Alpha is copied unchanged.
    """
    if pixels.ndim != 3 or pixels.shape[2] != 4:
        raise ValueError("Expected an RGBA pixel array of shape (H, W, 4)")

    factor = contrast_factor(contrast)

    rgb = pixels[..., :3].astype(np.float64)
    luminance = rgb.sum(axis=2) / 3.0

    value = factor * (luminance - 128.0) + 128.0
    value = np.clip(np.rint(value), 0, 255).astype(np.uint8)

    out = np.empty_like(pixels)
    out[..., 0] = value
    out[..., 1] = value
    out[..., 2] = value
    out[..., 3] = pixels[..., 3]
    return out


def _decode_data_uri(uri: str) -> bytes:
    header, sep, payload = uri.partition(",")
    if not sep:
        raise ImageDecodeError("Malformed data URI: missing ',' separator")

    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False)
        except ValueError as error:
            raise ImageDecodeError(f"Invalid base64 payload in data URI: {error}") from error

    return unquote_to_bytes(payload)


def load_source(source: ImageSource, timeout: float = SOURCE_FETCH_TIMEOUT) -> bytes:
    """
    Turn any supported image reference into raw encoded bytes.

    Supported sources:
    - bytes / bytearray (returned as-is)
    - "data:" URIs
    - "http://" and "https://" URLs (fetched with requests)
    - filesystem paths (str or Path)

    Raises:
    - ImageDecodeError when the source cannot be read
    """

    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)

    elif isinstance(source, Path):
        try:
            data = source.read_bytes()
        except OSError as error:
            raise ImageDecodeError(f"Cannot read image file {source}: {error}") from error

    elif isinstance(source, str):
        if source.startswith("data:"):
            data = _decode_data_uri(source)

        elif source.startswith(("http://", "https://")):
            try:
                response = requests.get(source, timeout=timeout)
                response.raise_for_status()
            except requests.RequestException as error:
                raise ImageDecodeError(f"Failed to fetch image from {source}: {error}") from error
            data = response.content

        else:
            try:
                data = Path(source).read_bytes()
            except OSError as error:
                raise ImageDecodeError(f"Cannot read image file {source}: {error}") from error

    else:
        raise ImageDecodeError(f"Unsupported image source type: {type(source).__name__}")

    if not data:
        raise ImageDecodeError("Image source is empty")

    return data


def decode_image(data: bytes) -> Image.Image:
    """Decode encoded image bytes into an RGBA Pillow image."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as error:
        raise ImageDecodeError(f"Cannot decode image: {error}") from error

    return image.convert("RGBA")


class ImagePreprocessor:
    """
    ImagePreprocessor improves OCR accuracy by normalizing the image:
    true grayscale plus a fixed contrast boost.

    One instance can be shared freely; it holds no per-scan state.
    """

    def __init__(self, contrast: float = OCR_CONTRAST):
        self.contrast = contrast

    def preprocess(self, source: ImageSource) -> bytes:
        """
        Load, transform and re-encode an image.

        Parameters:
        - source: image bytes, path, URL or data URI

        Returns:
        - PNG bytes with the same width and height as the source

        Raises:
        - ImageDecodeError if the source cannot be loaded or decoded
        """

        raw = load_source(source)
        image = decode_image(raw)

        logger.info(
            f"Preprocessing image {image.width}x{image.height} "
            f"({len(raw)} bytes, contrast={self.contrast})"
        )

        pixels = np.asarray(image, dtype=np.uint8)
        processed = Image.fromarray(apply_contrast(pixels, self.contrast))

        buffer = io.BytesIO()
        processed.save(buffer, format="PNG")
        return buffer.getvalue()


def preprocess_image(source: ImageSource, contrast: float = OCR_CONTRAST) -> bytes:
    """Shortcut for ImagePreprocessor(contrast).preprocess(source)."""
    return ImagePreprocessor(contrast).preprocess(source)
