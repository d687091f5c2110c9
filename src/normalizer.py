"""
Normalization helpers for product attribute reconciliation.

Turns the loosely formatted text found in the master workbook and on the
product catalog pages into comparable canonical values:

    - Decimal numbers: '12,3 kg' -> 12.3 (comma is a decimal separator)
    - Weights in kg:   '500 mg' -> 0.0005, '2.5 t' -> 2500.0, '3,2' -> 3.2
    - Dimensions (mm): '0.3 x 0.2 x 0.1 m' -> (300, 200, 100)
    - Identifiers:     'a2v-1234 56/7' -> 'A2V1234567'
    - Material class:  'Nicht Schweiss-/Guss-/Klebe-/Schmiede relevant' -> 'OHNE/N/N/N/N'

Parsing is lenient: text that does not contain a usable number
degrades to None (or '' for identifiers/codes) and never raises. Downstream
comparison treats those values as missing.

Unit policy:
    - Weights without a recognizable unit are taken as kilograms.
    - Dimensions without a recognizable unit are taken as millimetres.
    - The gram/kilogram check is a substring heuristic ("a g not preceded by k,
      and no kg anywhere"), not a tokenizer. Contrived strings can fool it.
"""

import math
import re
from typing import NamedTuple, Optional

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
DEFAULT_WEIGHT_UNIT = 'kg'
DEFAULT_LENGTH_UNIT = 'mm'

# unit -> (factor, multiply); divides by the factor when multiply is False
WEIGHT_UNIT_TO_KG = {
    'mg': (1e6, False),
    'g': (1e3, False),
    'kg': (1.0, True),
    't': (1e3, True),
}

LENGTH_UNIT_TO_MM = {
    'mm': 1,
    'cm': 10,
    'm': 1000,
}

# Tolerance used for "exact" float equality
EXACT_EPSILON = 1e-9

MATERIAL_CODE_NOT_RELEVANT = 'OHNE/N/N/N/N'

_NUMBER_PATTERN = re.compile(r'-?\d+(?:\.\d+)?')
_WHITESPACE_PATTERN = re.compile(r'\s+')
_IDENTIFIER_STRIP_PATTERN = re.compile(r'[\s\-/_]+')
_DIMENSION_SEPARATOR_PATTERN = re.compile(r'[×x]', re.IGNORECASE)
# 'x' is the dimension separator, so it may sit next to a unit: '30mmx20mm'
_LENGTH_UNIT_PATTERN = re.compile(r'(?<![a-wyz])(mm|cm|m)(?![a-wyz])')
_TON_PATTERN = re.compile(r'(?<![a-z])t(?![a-z])')

_NEGATION_PATTERN = re.compile(r'nicht')
_PROCESS_PATTERNS = (
    re.compile(r'schwei|schweiß|schweiss'),   # welding
    re.compile(r'guss'),                       # casting
    re.compile(r'klebe'),                      # adhesive bonding
    re.compile(r'schmiede'),                   # forging
)
_RELEVANCE_PATTERN = re.compile(r'relev')


class ParsedQuantity(NamedTuple):
    """Numeric value plus the unit it was read with.

    ``assumed`` is True when the text carried no unit and the default unit
    policy supplied one.
    """
    value: Optional[float]
    unit: str
    assumed: bool


class Dimensions(NamedTuple):
    """Length, width and height in millimetres (raw numbers if no unit was found)."""
    length: Optional[float]
    width: Optional[float]
    height: Optional[float]

    def is_empty(self) -> bool:
        return self.length is None and self.width is None and self.height is None


EMPTY_DIMENSIONS = Dimensions(None, None, None)


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def clean_text(value) -> str:
    """
    Convert a cell or record value to a trimmed string.

    None becomes ''. Whole floats lose their '.0' so a numeric cell holding
    12.0 reads as '12', which is how it is displayed in Excel.
    """
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _compact(value) -> str:
    """String form with all whitespace removed and commas as decimal points."""
    return _WHITESPACE_PATTERN.sub('', str(value)).replace(',', '.')


# ---------------------------------------------------------------------------
# Numbers and weights
# ---------------------------------------------------------------------------

def parse_decimal(raw) -> Optional[float]:
    """
    Extract the first signed decimal number from a value.

    Examples:
        '12,3'        -> 12.3
        ' 1 234 kg '  -> 1234.0
        'approx. -4'  -> -4.0
        'n/a'         -> None
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return None if math.isnan(raw) else float(raw)
    match = _NUMBER_PATTERN.search(_compact(raw))
    if not match:
        return None
    return float(match.group())


def _detect_weight_unit(compact_lower: str) -> Optional[str]:
    if 'mg' in compact_lower:
        return 'mg'
    if re.search(r'[^k]g', compact_lower) and 'kg' not in compact_lower:
        return 'g'
    if 'kg' in compact_lower:
        return 'kg'
    if _TON_PATTERN.search(compact_lower):
        return 't'
    return None


def parse_weight(raw) -> ParsedQuantity:
    """
    Parse a weight into its magnitude and unit without converting it.

    Returns ParsedQuantity(None, DEFAULT_WEIGHT_UNIT, True) if there is no number.
    """
    value = parse_decimal(raw)
    if value is None:
        return ParsedQuantity(None, DEFAULT_WEIGHT_UNIT, True)
    if isinstance(raw, (int, float)):
        return ParsedQuantity(value, DEFAULT_WEIGHT_UNIT, True)

    unit = _detect_weight_unit(_compact(raw).lower())
    if unit is None:
        return ParsedQuantity(value, DEFAULT_WEIGHT_UNIT, True)
    return ParsedQuantity(value, unit, False)


def normalize_weight_kg(raw) -> Optional[float]:
    """
    Normalize a weight to kilograms. Accepts mg, g, kg and t.

    Examples:
        '500 mg'  -> 0.0005
        '250 g'   -> 0.25
        '1,5 kg'  -> 1.5
        '2.5 t'   -> 2500.0
        '3,2'     -> 3.2   (no unit: kg assumed)
    """
    parsed = parse_weight(raw)
    if parsed.value is None:
        return None
    factor, multiply = WEIGHT_UNIT_TO_KG[parsed.unit]
    return parsed.value * factor if multiply else parsed.value / factor


def within_tolerance(a: Optional[float], b: Optional[float], tolerance_pct: Optional[float] = 0) -> bool:
    """
    True if b lies within tolerance_pct percent of a.

    A tolerance of 0 (or None) means exact equality.
    """
    if a is None or b is None:
        return False
    diff = abs(a - b)
    if not tolerance_pct or tolerance_pct <= 0:
        return diff < EXACT_EPSILON
    return diff <= abs(a) * (tolerance_pct / 100)


# ---------------------------------------------------------------------------
# Dimensions
# ---------------------------------------------------------------------------

def _dimension_text(raw) -> str:
    text = str(raw).strip().lower()
    text = _DIMENSION_SEPARATOR_PATTERN.sub('x', text)
    return _compact(text)


def dimension_unit(raw) -> ParsedQuantity:
    """
    Detect the length unit of a dimension string.

    The value field carries the scale factor to millimetres.
    """
    if raw is None or not str(raw).strip():
        return ParsedQuantity(None, DEFAULT_LENGTH_UNIT, True)
    match = _LENGTH_UNIT_PATTERN.search(_dimension_text(raw))
    if not match:
        return ParsedQuantity(LENGTH_UNIT_TO_MM[DEFAULT_LENGTH_UNIT], DEFAULT_LENGTH_UNIT, True)
    unit = match.group(1)
    return ParsedQuantity(LENGTH_UNIT_TO_MM[unit], unit, False)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_dimensions(raw) -> Dimensions:
    """
    Parse an 'L x B x H' string into millimetres.

    Accepts 'L×B×H', 'LxBxH', '3X30X107,3X228', '30x20x10 mm',
    '0.3 x 0.2 x 0.1 m', ...

    The first, second and third number are taken as length, width and height.
    Nothing in the text says which axis a number belongs to, so this is a
    convention, not a check. Missing numbers leave the later axes as None.
    """
    if raw is None or not str(raw).strip():
        return EMPTY_DIMENSIONS

    scale = dimension_unit(raw).value
    numbers = [float(n) for n in _NUMBER_PATTERN.findall(_dimension_text(raw))]
    axes = [_round_half_up(n * scale) for n in numbers[:3]]
    axes += [None] * (3 - len(axes))
    return Dimensions(*axes)


# ---------------------------------------------------------------------------
# Identifiers and categorical values
# ---------------------------------------------------------------------------

def normalize_identifier(raw) -> str:
    """
    Normalize an article number for comparison.

    Uppercases and removes whitespace, '-', '/' and '_':
        'a2v-1234 56/7' -> 'A2V1234567'
    """
    if raw is None:
        return ''
    return _IDENTIFIER_STRIP_PATTERN.sub('', clean_text(raw).upper())


def classify_material(text) -> str:
    """
    Map a catalog material classification to the workbook's material code.

    Only the "not relevant for welding/casting/bonding/forging" statement is
    mapped. It needs a negation, at least one process keyword and the
    relevance keyword together; anything else returns '' (no guess).

    Examples:
        'Nicht Schweiss-/Guss-/Klebe-/Schmiede relevant' -> 'OHNE/N/N/N/N'
        'Schweiss relevant'                              -> ''
    """
    if not text:
        return ''
    lowered = str(text).lower()
    has_negation = bool(_NEGATION_PATTERN.search(lowered))
    has_process = any(p.search(lowered) for p in _PROCESS_PATTERNS)
    has_relevance = bool(_RELEVANCE_PATTERN.search(lowered))
    if has_negation and has_process and has_relevance:
        return MATERIAL_CODE_NOT_RELEVANT
    return ''
