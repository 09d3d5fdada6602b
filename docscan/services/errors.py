"""
errors.py

Failure taxonomy of the scan pipeline.

"Nothing extracted" is never an error: missing fields are
represented by sentinel values on the ExtractedRecord.
"""


class ScanFailed(Exception):
    """A scan could not produce a record. No partial result exists."""


class ImageDecodeError(ScanFailed):
    """The source could not be loaded or decoded into pixels."""


class RecognitionEngineError(ScanFailed):
    """The text-recognition engine crashed, timed out or is missing."""


class DocumentRenderError(ScanFailed):
    """A paginated document could not be rendered to a raster image."""
