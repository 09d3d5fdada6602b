"""
scan.py (Schemas)

Data structures shared by the scan pipeline and the scan API.

Purpose of this file:
- Define what a scan accepts (ScanOptions)
- Define what the recognition engine hands back (RecognitionResult)
- Define the final structured record (ExtractedRecord)
- Define progress events streamed to clients (ProgressEvent)

This file does NOT:
- Perform OCR
- Parse text
- Call any services
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from docscan.config import OCR_CONTRAST, OCR_LANGUAGE

# Sentinel values returned when a field cannot be determined
UNKNOWN_PATIENT = "Unknown Patient"
NOT_DETECTED = "Not detected"

# Initials used for the sentinel name in anonymized notifications
UNKNOWN_INITIALS = "P. D."


class AttentionType(str, Enum):
    """Kind of care the scanned document refers to."""

    DENTAL = "Dental Review"
    ACOUSTIC = "Acoustic Evaluation"
    SURGICAL = "Surgery"
    GENERAL = "General Consultation"


class ScanOptions(BaseModel):
    """
    ScanOptions

    Per-scan configuration. Both keys default to the service
    configuration (OCR_LANGUAGE, OCR_CONTRAST).
    """

    model_config = ConfigDict(populate_by_name=True)

    recognition_language: str = Field(
        default=OCR_LANGUAGE,
        alias="recognitionLanguage",
        min_length=1,
        description="Engine language code, e.g. 'spa' or 'spa+eng'",
        examples=["spa"],
    )

    contrast_factor: float = Field(
        default=OCR_CONTRAST,
        alias="contrastFactor",
        gt=-255,
        lt=255,
        description="Contrast constant used by the image preprocessor",
        examples=[1.5],
    )


class RecognitionResult(BaseModel):
    """
    RecognitionResult

    Raw output of a recognition engine. Confidence is a calibration
    signal only and never causes a scan to be rejected.
    """

    text: str = Field(
        default="",
        description="Text exactly as recognized by the engine",
    )

    confidence: float = Field(
        default=0.0,
        ge=0,
        le=100,
        description="Engine confidence, 0-100",
    )


class ExtractedRecord(BaseModel):
    """
    ExtractedRecord

    Terminal output of a scan. Handed to record creation, report
    rendering and notification workflows for human review.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(
        default=UNKNOWN_PATIENT,
        description="Patient full name",
        examples=["Juan Perez"],
    )

    national_id: str = Field(
        default=NOT_DETECTED,
        alias="nationalId",
        description="National identity document number",
        examples=["12345678"],
    )

    attention_type: AttentionType = Field(
        default=AttentionType.GENERAL,
        alias="attentionType",
        description="Attention-type classification",
    )

    clinical_notes: str = Field(
        default="",
        alias="clinicalNotes",
        description="Merged diagnostic sections or a best-effort text excerpt",
        examples=["Diagnóstico: Gripe común\n\nObservaciones: Reposo"],
    )

    confidence: int = Field(
        default=0,
        ge=0,
        le=100,
        description="Rounded recognition confidence, 0-100",
    )

    def initials(self) -> str:
        """
        Anonymized initials for chat notifications.

        "Juan Perez" -> "J. P."; the sentinel name -> "P. D."
        """
        if not self.name or self.name == UNKNOWN_PATIENT:
            return UNKNOWN_INITIALS

        letters = [word[0].upper() for word in self.name.split(" ") if word]
        if not letters:
            return UNKNOWN_INITIALS
        return ". ".join(letters) + "."


class ProgressEvent(BaseModel):
    """One line of the /scan/stream response."""

    stage: str = Field(
        ...,
        description="preprocessing, recognizing, extracting, done or error",
        examples=["recognizing"],
    )

    progress: int = Field(
        ...,
        ge=0,
        le=100,
        description="Overall scan progress, monotonic within one scan",
    )

    record: Optional[ExtractedRecord] = Field(
        default=None,
        description="Present on the final 'done' event",
    )

    error: Optional[str] = Field(
        default=None,
        description="Present on an 'error' event",
    )


class RawTextRequest(BaseModel):
    """
    Request body for /scan/extract.

    Used when text was already recognized elsewhere and only
    cleaning + field extraction is needed.
    """

    raw_text: str = Field(
        ...,
        description="Unstructured recognized text",
        examples=["NOMBRE COMPLETO Juan Perez\nCC 12345678"],
    )

    confidence: float = Field(
        default=0.0,
        ge=0,
        le=100,
        description="Confidence reported by the external engine",
    )
