"""
cleaner.py

Deterministic normalization of recognized text before field extraction.

Line structure is kept intact: the name fallback heuristic in
extractor.py works line by line.
"""

import re

# Stray symbols tesseract produces from table borders and scan noise
_NOISE_RE = re.compile(r"[|\\/_]")

# Horizontal whitespace only; newlines are never collapsed
_HSPACE_RE = re.compile(r"[ \t]+")


def clean_text(text: str) -> str:
    """
    Remove OCR noise characters and normalize horizontal whitespace.

    1. delete every '|', '\\', '/' and '_'
    2. collapse runs of spaces/tabs into a single space
    3. trim spaces/tabs at both ends of the whole string

    Idempotent, total over str, and the number of '\\n'-delimited
    lines of the output equals that of the input.
    """
    if not text:
        return ""

    cleaned = _NOISE_RE.sub("", text)
    cleaned = _HSPACE_RE.sub(" ", cleaned)
    return cleaned.strip(" \t")
