"""
extractor.py

Heuristic field extractor that converts cleaned OCR text from
Spanish-language medical documents and ID cards into an
ExtractedRecord.

Every heuristic is a rule record in one of the ordered tables below:
- NAME_RULES / ID_RULES     labeled patterns ("Nombre: ...", "CC 123...")
- ATTENTION_RULES           keyword classification, first match wins
- SECTION_RULES             labeled clinical sections merged into notes

Adding a synonym means editing a table, not the control flow.

Extraction never raises: when a field cannot be found the record
keeps its sentinel/default value.
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from docscan.schemas.scan import (
    AttentionType,
    ExtractedRecord,
    NOT_DETECTED,
    UNKNOWN_PATIENT,
)

logger = logging.getLogger(__name__)

# Letter classes. Accented Latin letters are listed explicitly;
# the Latin-1 block also contains '×' and '÷' which are skipped.
_LETTER = "A-Za-zÀ-ÖØ-öø-ÿ"
_UPPER = "A-ZÀ-ÖØ-Þ"

NOTES_FALLBACK_LENGTH = 300
NAME_FALLBACK_MAX_LINES = 8
NAME_FALLBACK_MIN_LENGTH = 5


def _fold(text: str) -> str:
    """Upper-case and strip diacritics ("Cédula" -> "CEDULA")."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).upper()


def _strip_value(value: str) -> Optional[str]:
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class LabeledRule:
    """
    A label (any synonym, case-insensitive) followed by an optional
    colon/whitespace separator and a value.

    post_process receives the raw captured value and returns the
    final value, or None to reject the match and keep searching.
    """

    name: str
    labels: Tuple[str, ...]
    value_pattern: str
    terminator: str = ""
    post_process: Callable[[str], Optional[str]] = _strip_value
    pattern: "re.Pattern[str]" = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        # Longest synonym first so "Nombres" is never read as "Nombre" + "s"
        ordered = sorted(self.labels, key=len, reverse=True)
        alternation = "|".join(re.escape(label) for label in ordered)
        # No leading word boundary: short labels ("CC", "ID") also match
        # at the end of a word, e.g. "Acc 12345678"
        regex = rf"(?:{alternation})[:\s]*({self.value_pattern}){self.terminator}"
        object.__setattr__(self, "pattern", re.compile(regex, re.IGNORECASE))

    def search(self, text: str) -> Optional[str]:
        for match in self.pattern.finditer(text):
            value = self.post_process(match.group(1))
            if value:
                return value
        return None


@dataclass(frozen=True)
class KeywordRule:
    """Classify text as `category` when any keyword occurs (case-insensitive)."""

    category: AttentionType
    keywords: Tuple[str, ...]
    pattern: "re.Pattern[str]" = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        alternation = "|".join(re.escape(k) for k in self.keywords)
        object.__setattr__(self, "pattern", re.compile(alternation, re.IGNORECASE))

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


@dataclass(frozen=True)
class SectionRule:
    """
    A labeled clinical section: "<label>:" then text up to a blank
    line, a new line starting with a capitalized "Word:" label, or
    the end of the text. Rendered under the canonical `key`.
    """

    key: str
    labels: Tuple[str, ...]
    pattern: "re.Pattern[str]" = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        alternation = "|".join(re.escape(label) for label in self.labels)
        regex = (
            rf"(?:{alternation}):\s*([\s\S]+?)"
            rf"(?=\n\n|\n(?-i:[{_UPPER}])[{_LETTER}]+:|\Z)"
        )
        object.__setattr__(self, "pattern", re.compile(regex, re.IGNORECASE))

    def search(self, text: str) -> Optional[str]:
        match = self.pattern.search(text)
        if not match:
            return None
        body = match.group(1).strip()
        return f"{self.key}: {body}" if body else None


# ------------------------------------------------------------------
# Name
# ------------------------------------------------------------------

NAME_LABELS = (
    "NOMBRE COMPLETO",
    "Nombre",
    "Paciente",
    "A nombre de",
    "Sr/Sra",
    # "/" is removed by the cleaner before extraction
    "SrSra",
    "Sr Sra",
    "Atención",
    "Nombres",
    "Apellidos",
)

# Words that only ever appear as part of a label. A capture made
# solely of these is the tail of a longer label, not a name.
_LABEL_VOCABULARY = frozenset(
    word for label in NAME_LABELS for word in re.findall(r"[^\W\d_]+", label.upper())
)


def _is_label_text(value: str) -> bool:
    return all(word in _LABEL_VOCABULARY for word in value.upper().split())


def _name_value(value: str) -> Optional[str]:
    value = value.strip()
    if not value or _is_label_text(value):
        return None
    return value


NAME_RULES: List[LabeledRule] = [
    LabeledRule(
        name="labeled_name",
        labels=NAME_LABELS,
        value_pattern=rf"[{_LETTER} \t]{{2,50}}",
        terminator=r"(?=\r?\n|\Z)",
        post_process=_name_value,
    ),
]

# Document boilerplate printed on ID cards in capitals
NAME_BLOCKLIST = (
    "REPUBLICA",
    "NACIMIENTO",
    "EXPEDICION",
    "IDENTIDAD",
    "CEDULA",
    "DOCUMENTO",
    "FOLIO",
    "PAGINA",
)

_UPPERCASE_LINE_RE = re.compile(rf"[{_UPPER} ]{{5,40}}")
_CAPITALIZED_WORDS_RE = re.compile(
    rf"[{_UPPER}][a-zß-öø-ÿ]+(?: +[{_UPPER}][a-zß-öø-ÿ]+){{1,2}}"
)


def _looks_like_name_line(line: str) -> bool:
    if not (_UPPERCASE_LINE_RE.fullmatch(line) or _CAPITALIZED_WORDS_RE.fullmatch(line)):
        return False
    # A bare label such as "NOMBRE COMPLETO" is not the holder's name
    if _is_label_text(line):
        return False
    folded = _fold(line)
    return not any(token in folded for token in NAME_BLOCKLIST)


def fallback_name(text: str) -> Optional[str]:
    """
    ID-card heuristic: the holder's name is usually one of the first
    lines, printed in capitals or as 2-3 capitalized words.
    """
    lines = [line.strip() for line in text.split("\n")]
    candidates = [line for line in lines if len(line) > NAME_FALLBACK_MIN_LENGTH]

    for line in candidates[:NAME_FALLBACK_MAX_LINES]:
        if _looks_like_name_line(line):
            return line
    return None


def extract_name(text: str) -> str:
    for rule in NAME_RULES:
        value = rule.search(text)
        if value:
            return value

    value = fallback_name(text)
    if value:
        return value

    return UNKNOWN_PATIENT


# ------------------------------------------------------------------
# National ID
# ------------------------------------------------------------------

ID_LABELS = (
    "CC",
    "DNI",
    "Cédula",
    "ID",
    "Documento",
    "Identificación",
    "D.N.I",
    "CEDULA",
    "NUMERO",
)

ID_RULES: List[LabeledRule] = [
    LabeledRule(
        name="labeled_id",
        labels=ID_LABELS,
        value_pattern=r"[0-9]{7,12}",
    ),
]

_BARE_ID_RE = re.compile(r"\b([0-9]{7,12})\b")


def extract_national_id(text: str) -> str:
    for rule in ID_RULES:
        value = rule.search(text)
        if value:
            return value

    match = _BARE_ID_RE.search(text)
    if match:
        return match.group(1)

    return NOT_DETECTED


# ------------------------------------------------------------------
# Attention type
# ------------------------------------------------------------------

# Order matters: a document mentioning both "dental" and "cirugía"
# is classified as dental.
ATTENTION_RULES: List[KeywordRule] = [
    KeywordRule(AttentionType.DENTAL, ("dental", "diente", "limpieza", "extracción", "ortodoncia")),
    KeywordRule(AttentionType.ACOUSTIC, ("acústica", "oído", "audiometría", "audición")),
    KeywordRule(AttentionType.SURGICAL, ("cirugía", "quirúrgico", "operación", "sala")),
]


def classify_attention(text: str) -> AttentionType:
    for rule in ATTENTION_RULES:
        if rule.matches(text):
            return rule.category
    return AttentionType.GENERAL


# ------------------------------------------------------------------
# Clinical notes
# ------------------------------------------------------------------

# Accent-less spellings are what tesseract usually returns for
# low-resolution photos.
SECTION_RULES: List[SectionRule] = [
    SectionRule("Diagnóstico", ("Diagnóstico", "Diagnostico", "Dx")),
    SectionRule("Observaciones", ("Observaciones",)),
    SectionRule("Análisis", ("Análisis", "Analisis")),
    SectionRule("Resultados", ("Resultados",)),
    SectionRule("Evolución", ("Evolución", "Evolucion")),
]


def collect_sections(text: str, rules: Sequence[SectionRule] = SECTION_RULES) -> List[str]:
    sections = []
    for rule in rules:
        section = rule.search(text)
        if section:
            sections.append(section)
    return sections


def extract_clinical_notes(text: str) -> str:
    sections = collect_sections(text)
    if sections:
        return "\n\n".join(sections)

    excerpt = text[:NOTES_FALLBACK_LENGTH]
    if len(text) > NOTES_FALLBACK_LENGTH:
        excerpt += "..."
    return excerpt


# ------------------------------------------------------------------
# Record assembly
# ------------------------------------------------------------------

def extract_fields(text: str, confidence: float = 0.0) -> ExtractedRecord:
    """
    Build an ExtractedRecord from cleaned text.

    Parameters:
    - text: output of cleaner.clean_text
    - confidence: engine confidence 0-100, rounded into the record

    Returns:
    - ExtractedRecord; missing fields carry their sentinel values
    """

    text = text or ""

    record = ExtractedRecord(
        name=extract_name(text),
        national_id=extract_national_id(text),
        attention_type=classify_attention(text),
        clinical_notes=extract_clinical_notes(text),
        confidence=max(0, min(100, round(confidence))),
    )

    if record.name == UNKNOWN_PATIENT:
        logger.warning("Patient name not detected")
    if record.national_id == NOT_DETECTED:
        logger.warning("National ID not detected")

    logger.info(
        f"Extracted record: attention={record.attention_type.value}, "
        f"confidence={record.confidence}"
    )

    return record
