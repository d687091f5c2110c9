"""
Field-level comparison of workbook values against catalog values.

Each compare_* function returns a Comparison(verdict, comment):

    MATCH       both sides present and equal after normalization
    MISMATCH    both sides present but different (ambiguous counts as different)
    UNRESOLVED  one or both sides missing

The comment is written into the comparison row of the output workbook, so it
must make sense to a reviewer reading the sheet.
"""

from typing import NamedTuple, Optional

from rapidfuzz import fuzz

from normalizer import (
    Dimensions,
    classify_material,
    clean_text,
    normalize_identifier,
    normalize_weight_kg,
    parse_decimal,
    parse_dimensions,
    within_tolerance,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
VERDICT_MATCH = "MATCH"
VERDICT_MISMATCH = "MISMATCH"
VERDICT_UNRESOLVED = "UNRESOLVED"

VERDICTS = (VERDICT_MATCH, VERDICT_MISMATCH, VERDICT_UNRESOLVED)

COMMENT_BOTH_MISSING = "both missing"
COMMENT_SOURCE_MISSING = "source missing"
COMMENT_WEB_MISSING = "web missing"
COMMENT_WEB_UNCLEAR = "web missing/unclear"

# Dimensions are whole millimetres after parsing
DIMENSION_EPSILON = 1e-6
# Floor for the reference weight when computing the relative delta
WEIGHT_DELTA_FLOOR = 1e-9


class Comparison(NamedTuple):
    verdict: str
    comment: str


def _missing(source_missing: bool, web_missing: bool, web_comment: str = COMMENT_WEB_MISSING) -> Optional[Comparison]:
    """Shared absence handling; None when both sides are present."""
    if source_missing and web_missing:
        return Comparison(VERDICT_UNRESOLVED, COMMENT_BOTH_MISSING)
    if source_missing:
        return Comparison(VERDICT_UNRESOLVED, COMMENT_SOURCE_MISSING)
    if web_missing:
        return Comparison(VERDICT_UNRESOLVED, web_comment)
    return None


def _collapse(text: str) -> str:
    return ' '.join(text.lower().split())


# ---------------------------------------------------------------------------
# Comparisons
# ---------------------------------------------------------------------------

def compare_text(source, web) -> Comparison:
    """
    Case-insensitive comparison with whitespace collapsed.

    The mismatch comment quotes both values and their token-sort similarity
    so near-identical titles ('Bolt M8 x 40' vs 'Bolt M8x40') stand out.
    """
    a, b = clean_text(source), clean_text(web)
    missing = _missing(not a, not b)
    if missing:
        return missing

    a_norm, b_norm = _collapse(a), _collapse(b)
    if a_norm == b_norm:
        return Comparison(VERDICT_MATCH, "identical")
    similarity = fuzz.token_sort_ratio(a_norm, b_norm)
    return Comparison(
        VERDICT_MISMATCH,
        f"different: source '{a}' vs. web '{b}' (similarity {similarity:.0f}%)",
    )


def compare_identifier(source, web) -> Comparison:
    """Compare article numbers ignoring case, whitespace, '-', '/' and '_'."""
    a, b = clean_text(source), clean_text(web)
    missing = _missing(not a, not b)
    if missing:
        return missing
    if normalize_identifier(a) == normalize_identifier(b):
        return Comparison(VERDICT_MATCH, "identical (normalized)")
    return Comparison(VERDICT_MISMATCH, f"different: source {a} vs. web {b}")


def weight_delta_pct(source_kg: float, web_kg: float) -> float:
    """Relative difference of the web weight against the source weight, in percent."""
    return (web_kg - source_kg) / max(WEIGHT_DELTA_FLOOR, abs(source_kg)) * 100


def compare_weight(source, web, tolerance_pct: float = 0) -> Comparison:
    """
    Compare weights after converting both sides to kilograms.

    tolerance_pct = 0 requires an exact match. The comment always reports the
    percentage delta of web against source.
    """
    source_kg = normalize_weight_kg(source)
    web_kg = normalize_weight_kg(web)
    missing = _missing(source_kg is None, web_kg is None, COMMENT_WEB_UNCLEAR)
    if missing:
        return missing

    delta = weight_delta_pct(source_kg, web_kg)
    if within_tolerance(source_kg, web_kg, tolerance_pct):
        return Comparison(VERDICT_MATCH, f"Δ {delta:.1f}%")
    return Comparison(
        VERDICT_MISMATCH,
        f"source {source_kg:.3f} kg vs. web {web_kg:.3f} kg ({delta:.1f}%)",
    )


def _format_axis(value) -> str:
    if value is None:
        return ''
    return clean_text(float(value))


def _format_dimensions(dims: Dimensions) -> str:
    return '×'.join(_format_axis(v) for v in dims)


def _same_axis(a, b) -> bool:
    return a is not None and b is not None and abs(a - b) < DIMENSION_EPSILON


def compare_dimensions(length, width, height, web_text) -> Comparison:
    """
    Compare the workbook's separate L/B/H cells with the catalog's combined text.

    A side counts as missing only when all three axes are missing. Otherwise
    every axis has to be equal for a match, so a partially filled side is a
    mismatch rather than unresolved.
    """
    source = Dimensions(parse_decimal(length), parse_decimal(width), parse_decimal(height))
    web = parse_dimensions(web_text)
    missing = _missing(source.is_empty(), web.is_empty(), COMMENT_WEB_UNCLEAR)
    if missing:
        return missing

    if all(_same_axis(a, b) for a, b in zip(source, web)):
        return Comparison(VERDICT_MATCH, "L×B×H identical (mm)")
    return Comparison(
        VERDICT_MISMATCH,
        f"source {_format_dimensions(source)} mm vs. web {_format_dimensions(web)} mm",
    )


def compare_material_code(source_note, web_classification) -> Comparison:
    """Compare the workbook's material code with the code derived from the catalog text."""
    mapped = classify_material(web_classification)
    return compare_text(clean_text(source_note).upper(), mapped.upper())
