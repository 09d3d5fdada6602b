"""
config.py

Central place to load environment variables.

Every setting has a sensible default so the service runs with an
empty environment. Values are read once at import time.
"""

from dotenv import load_dotenv
import os

# Load variables from .env file into environment
load_dotenv()


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


# Recognition defaults (overridable per scan through ScanOptions)
OCR_LANGUAGE = os.getenv("OCR_LANGUAGE", "spa")
OCR_CONTRAST = _float_env("OCR_CONTRAST", 1.5)

# Which recognition engine the API pool is built from: "tesseract" or "vision"
OCR_ENGINE = os.getenv("OCR_ENGINE", "tesseract").lower().strip()
OCR_POOL_SIZE = _int_env("OCR_POOL_SIZE", 2)

# Seconds; 0 or unset means the API does not bound a scan
OCR_SCAN_TIMEOUT = _float_env("OCR_SCAN_TIMEOUT", 0.0)

# Tesseract binary location and per-call subprocess timeout (0 = none)
TESSERACT_CMD = os.getenv("TESSERACT_CMD")
TESSERACT_TIMEOUT = _float_env("TESSERACT_TIMEOUT", 0.0)

# Timeout for fetching http(s) image sources
SOURCE_FETCH_TIMEOUT = _float_env("SOURCE_FETCH_TIMEOUT", 10.0)

# Zoom used when rendering page 1 of a PDF upload
PDF_RENDER_SCALE = _float_env("PDF_RENDER_SCALE", 2.0)

# Optional vision engine
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_VISION_MODEL = os.getenv("OPENAI_VISION_MODEL", "gpt-4.1")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
