import pytest

from docscan.schemas.scan import AttentionType, NOT_DETECTED, UNKNOWN_PATIENT
from docscan.services.cleaner import clean_text
from docscan.services.extractor import (
    ID_RULES,
    NAME_RULES,
    SECTION_RULES,
    classify_attention,
    extract_clinical_notes,
    extract_fields,
    extract_name,
    extract_national_id,
    fallback_name,
)


# ------------------------------------------------------------------
# National ID
# ------------------------------------------------------------------

@pytest.mark.parametrize(
    "text, expected",
    [
        ("DOCUMENTO 12345678", "12345678"),
        ("CC 87654321", "87654321"),
        ("Documento: 11223344", "11223344"),
        ("CC: 99887766", "99887766"),
        ("DNI:\n4455667788", "4455667788"),
        ("Cédula 1020304050", "1020304050"),
    ],
)
def test_labeled_national_id(text, expected):
    assert extract_national_id(text) == expected


def test_labeled_id_wins_over_earlier_bare_number():
    text = "Referencia 987654321\nCC 12345678"
    assert extract_national_id(text) == "12345678"


def test_bare_number_fallback():
    assert extract_national_id("Registro 1234567890 del paciente") == "1234567890"


def test_short_numbers_are_not_ids():
    assert extract_national_id("Codigo 123456") == NOT_DETECTED


def test_no_id():
    assert extract_national_id("Random text without ID") == NOT_DETECTED


def test_id_rule_can_be_used_alone():
    assert ID_RULES[0].search("Identificación: 55544433") == "55544433"
    assert ID_RULES[0].search("sin documento") is None


def test_short_id_label_matches_at_word_end():
    assert ID_RULES[0].search("Acc 12345678") == "12345678"


# ------------------------------------------------------------------
# Name
# ------------------------------------------------------------------

@pytest.mark.parametrize(
    "text, expected",
    [
        ("NOMBRE COMPLETO Juan Perez\n", "Juan Perez"),
        ("Nombre: Maria Lopez", "Maria Lopez"),
        ("Nombres: Ana Ruiz\nCC 12345678", "Ana Ruiz"),
        ("Paciente:\nLuis Rojas\n", "Luis Rojas"),
        ("Apellidos: Gómez Núñez", "Gómez Núñez"),
        ("Sr/Sra: Ana Gil", "Ana Gil"),
        ("Sr / Sra: Ana Gil\n", "Ana Gil"),
    ],
)
def test_labeled_name(text, expected):
    assert extract_name(clean_text(text)) == expected


def test_bare_label_is_not_a_name():
    assert extract_name("NOMBRE COMPLETO") == UNKNOWN_PATIENT


def test_labeled_name_requires_end_of_line():
    # digits after the name break the letter run
    assert NAME_RULES[0].search("Paciente: Juan Perez 45 años") is None


def test_name_rule_can_be_used_alone():
    assert NAME_RULES[0].search("Paciente: Luis Rojas\n") == "Luis Rojas"


def test_fallback_skips_boilerplate_lines():
    text = (
        "REPÚBLICA DE COLOMBIA\n"
        "CÉDULA DE CIUDADANÍA\n"
        "NÚMERO 1.020.304.050\n"
        "PEREZ GOMEZ\n"
        "JUAN CARLOS"
    )
    assert extract_name(text) == "PEREZ GOMEZ"


def test_fallback_mixed_case_name():
    text = "constancia medica\n12 03 2024\nAna María Torres"
    assert extract_name(text) == "Ana María Torres"


def test_fallback_ignores_short_lines():
    assert fallback_name("ANA\nPEREZ GOMEZ") == "PEREZ GOMEZ"


def test_fallback_only_scans_first_eight_lines():
    junk = "\n".join(f"linea {i} sin nombre" for i in range(8))
    assert fallback_name(junk + "\nPEREZ GOMEZ") is None


@pytest.mark.parametrize("text", ["", "   ", "\n\n\n", " \n \t\n"])
def test_name_on_empty_text(text):
    assert extract_name(text) == UNKNOWN_PATIENT


# ------------------------------------------------------------------
# Attention type
# ------------------------------------------------------------------

@pytest.mark.parametrize(
    "text, expected",
    [
        ("Limpieza dental programada", AttentionType.DENTAL),
        ("Tratamiento de ORTODONCIA", AttentionType.DENTAL),
        ("Audiometría de control", AttentionType.ACOUSTIC),
        ("Dolor de OÍDO", AttentionType.ACOUSTIC),
        ("Cirugía menor ambulatoria", AttentionType.SURGICAL),
        ("Paciente pasa a sala de recuperación", AttentionType.SURGICAL),
        ("Control de presión arterial", AttentionType.GENERAL),
        ("", AttentionType.GENERAL),
    ],
)
def test_classify_attention(text, expected):
    assert classify_attention(text) == expected


def test_dental_checked_before_surgical():
    assert classify_attention("Programar cirugía tras revisión dental") == AttentionType.DENTAL


def test_acoustic_checked_before_surgical():
    assert classify_attention("Operación de oído") == AttentionType.ACOUSTIC


# ------------------------------------------------------------------
# Clinical notes
# ------------------------------------------------------------------

def test_sections_merged():
    text = "Diagnóstico: Gripe común\n\nObservaciones: Reposo"
    assert extract_clinical_notes(text) == "Diagnóstico: Gripe común\n\nObservaciones: Reposo"


def test_sections_in_fixed_order():
    text = "Evolución: Favorable\n\nDiagnóstico: Gripe"
    assert extract_clinical_notes(text) == "Diagnóstico: Gripe\n\nEvolución: Favorable"


def test_section_stops_at_next_label():
    text = "Dx: Otitis media\nTratamiento: amoxicilina"
    assert extract_clinical_notes(text) == "Diagnóstico: Otitis media"


def test_section_spans_lines_until_blank_line():
    text = "Resultados: glucosa 95\ncolesterol 180\n\nfirma"
    assert extract_clinical_notes(text) == "Resultados: glucosa 95\ncolesterol 180"


def test_accentless_label():
    assert extract_clinical_notes("Diagnostico: Migraña") == "Diagnóstico: Migraña"


def test_section_rules_cover_all_sections():
    assert [rule.key for rule in SECTION_RULES] == [
        "Diagnóstico",
        "Observaciones",
        "Análisis",
        "Resultados",
        "Evolución",
    ]


def test_notes_fallback_short_text():
    assert extract_clinical_notes("texto sin secciones") == "texto sin secciones"


def test_notes_fallback_truncates():
    text = "a" * 400
    assert extract_clinical_notes(text) == "a" * 300 + "..."


def test_notes_fallback_exactly_300():
    text = "b" * 300
    assert extract_clinical_notes(text) == text


# ------------------------------------------------------------------
# Record
# ------------------------------------------------------------------

def test_extract_fields_full_record():
    text = (
        "NOMBRE COMPLETO Juan Perez\n"
        "CC 12345678\n"
        "Diagnóstico: Caries\n"
        "\n"
        "Limpieza dental"
    )
    record = extract_fields(text, 87.6)

    assert record.name == "Juan Perez"
    assert record.national_id == "12345678"
    assert record.attention_type == AttentionType.DENTAL
    assert record.clinical_notes == "Diagnóstico: Caries"
    assert record.confidence == 88


def test_extract_fields_defaults_on_empty_text():
    record = extract_fields("", 0)

    assert record.name == UNKNOWN_PATIENT
    assert record.national_id == NOT_DETECTED
    assert record.attention_type == AttentionType.GENERAL
    assert record.clinical_notes == ""
    assert record.confidence == 0


def test_extract_fields_garbage_never_raises():
    record = extract_fields("@@ ## ~~ 12 ::: ñ\n\n\n%%", 4.2)
    assert record.name == UNKNOWN_PATIENT
    assert record.confidence == 4
