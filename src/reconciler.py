"""
Workbook reconciliation: writes catalog data and verdicts back into the master workbook.

Layout of the master workbook (fixed, not detected):
    - Header in row 3, product data from row 4
    - Z: A2V key, E: alternate article number, C: title, S: weight,
      U/V/W: length/width/height, P: material, N: material code

For every product row two rows are inserted directly below it:

    row r      original product row (never modified)
    row r + 1  web data row: the catalog values in the same columns
    row r + 2  comparison row: one comment per attribute, filled
               green (MATCH), red (MISMATCH) or amber (UNRESOLVED)

Row insertion works from a plan computed once per worksheet: candidate rows
are collected before anything moves, each gets its final position, and the
blocks of original rows are then shifted down to those positions.

Running the reconciliation twice on the same workbook adds another pair of
rows under every product row (and under the previous web rows); already
processed workbooks are not detected.
"""

import io
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd
from openpyxl import load_workbook
from openpyxl.styles import PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from comparator import (
    VERDICT_MATCH,
    VERDICT_MISMATCH,
    VERDICT_UNRESOLVED,
    VERDICTS,
    Comparison,
    compare_dimensions,
    compare_identifier,
    compare_material_code,
    compare_text,
    compare_weight,
)
from config import ReconcileConfig, WorkbookLoadError
from normalizer import classify_material, clean_text, parse_dimensions
from retrieval import (
    FetchOne,
    ProductRecord,
    RetrievalOutcome,
    fetch_all,
    is_eligible_key,
    normalize_key,
    outcome_record,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Layout constants
# ---------------------------------------------------------------------------
COLUMNS = {
    'key': 'Z',
    'alternate_id': 'E',
    'title': 'C',
    'weight': 'S',
    'length': 'U',
    'width': 'V',
    'height': 'W',
    'material': 'P',
    'note': 'N',
}
HEADER_ROW = 3
FIRST_DATA_ROW = 4
# A row is a product row if any of these columns holds text
MARKER_COLUMNS = ('A', 'B', 'C', 'Z')

# Attribute -> column of the comparison comment (dimensions share the length column)
COMPARISON_COLUMNS = {
    'key': COLUMNS['key'],
    'alternate_id': COLUMNS['alternate_id'],
    'title': COLUMNS['title'],
    'weight': COLUMNS['weight'],
    'dimensions': COLUMNS['length'],
    'material': COLUMNS['material'],
    'note': COLUMNS['note'],
}

STATUS_COLORS = {
    VERDICT_MATCH: 'FFD5F4E6',       # green
    VERDICT_MISMATCH: 'FFFDEAEA',    # red
    VERDICT_UNRESOLVED: 'FFFFF3CD',  # amber
}

OUTPUT_FILENAME = 'DB_Produktvergleich_verarbeitet.xlsx'
XLSX_MIME = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
MAX_UPLOAD_BYTES = 50 * 1024 * 1024


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceRow:
    """The reconciled columns of one original product row."""

    row: int
    key: str
    alternate_id: object = None
    title: object = None
    weight: object = None
    length: object = None
    width: object = None
    height: object = None
    material: object = None
    note: object = None


@dataclass(frozen=True)
class PlannedInsert:
    """Final positions of one product row and its two inserted rows."""

    source_row: int
    target_row: int

    @property
    def web_row(self) -> int:
        return self.target_row + 1

    @property
    def comparison_row(self) -> int:
        return self.target_row + 2


@dataclass
class RowResult:
    sheet: str
    source_row: int
    target_row: int
    key: str
    fetch_error: Optional[str]
    comparisons: Dict[str, Comparison] = field(default_factory=dict)


@dataclass
class ReconciliationReport:
    rows: List[RowResult] = field(default_factory=list)
    outcomes: Dict[str, RetrievalOutcome] = field(default_factory=dict)

    @property
    def fetched(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes.values() if not o.ok)


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def _value(ws: Worksheet, column: str, row: int):
    return ws[f'{column}{row}'].value


def extract_product_keys(workbook: Workbook) -> List[str]:
    """
    Collect the eligible A2V keys of all worksheets (key column, data rows only).

    Keys are trimmed and uppercased; duplicates are kept.
    """
    keys = []
    for ws in workbook.worksheets:
        for row in range(FIRST_DATA_ROW, ws.max_row + 1):
            key = normalize_key(_value(ws, COLUMNS['key'], row))
            if is_eligible_key(key):
                keys.append(key)
    return keys


def find_candidate_rows(ws: Worksheet) -> List[int]:
    """Rows from FIRST_DATA_ROW to the last row with text in any marker column."""
    last_row = ws.max_row
    if last_row < HEADER_ROW:
        return []
    return [
        row for row in range(FIRST_DATA_ROW, last_row + 1)
        if any(clean_text(_value(ws, col, row)) for col in MARKER_COLUMNS)
    ]


def read_source_row(ws: Worksheet, row: int) -> SourceRow:
    values = {name: _value(ws, col, row) for name, col in COLUMNS.items()}
    values['key'] = normalize_key(values['key'])
    return SourceRow(row=row, **values)


# ---------------------------------------------------------------------------
# Row plan
# ---------------------------------------------------------------------------

def plan_rows(candidates: List[int]) -> List[PlannedInsert]:
    """
    Final positions for each candidate row after two rows go under every one of them.

    The i-th candidate (ascending) moves down by 2 * i.
    """
    return [
        PlannedInsert(source_row=row, target_row=row + 2 * i)
        for i, row in enumerate(sorted(set(candidates)))
    ]


def _shift_row_dimensions(ws: Worksheet, start: int, end: Optional[int], shift: int) -> None:
    """Move height, hidden and the other row attributes along with their rows (end=None: open)."""
    rows = sorted(
        (n for n in ws.row_dimensions if n >= start and (end is None or n <= end)),
        reverse=True,
    )
    for n in rows:
        dim = ws.row_dimensions.pop(n)
        dim.index = n + shift
        ws.row_dimensions[n + shift] = dim


def _shift_merged_ranges(ws: Worksheet, start: int, end: int, shift: int) -> None:
    """Move merged ranges whose top row lies in start..end."""
    moved = [rng for rng in ws.merged_cells.ranges if start <= rng.min_row <= end]
    for rng in moved:
        # the range set is keyed by coordinates
        ws.merged_cells.remove(rng)
        rng.shift(row_shift=shift)
        ws.merged_cells.add(rng)


def apply_row_plan(ws: Worksheet, plan: List[PlannedInsert]) -> None:
    """
    Shift the original rows to their planned positions, leaving two blank rows
    under every planned product row.

    Rows after the i-th candidate up to and including the next candidate form
    one block that moves down by 2 * (i + 1). Blocks are moved bottom first so
    that no block lands on rows that have not been moved yet. Row attributes
    (height, hidden, outline level) and merged ranges travel with their block.
    """
    if not plan:
        return
    last_row = ws.max_row
    last_col = get_column_letter(ws.max_column)

    for i in range(len(plan) - 1, -1, -1):
        shift = 2 * (i + 1)
        start = plan[i].source_row + 1
        is_last = i + 1 == len(plan)
        end = last_row if is_last else plan[i + 1].source_row
        _shift_row_dimensions(ws, start, None if is_last else end, shift)
        if start > end:
            continue
        _shift_merged_ranges(ws, start, end, shift)
        ws.move_range(f'A{start}:{last_col}{end}', rows=shift)


# ---------------------------------------------------------------------------
# Synthetic rows
# ---------------------------------------------------------------------------

def status_fill(verdict: str) -> PatternFill:
    color = STATUS_COLORS.get(verdict, STATUS_COLORS[VERDICT_UNRESOLVED])
    return PatternFill(fill_type='solid', fgColor=color)


def web_row_values(record: ProductRecord) -> Dict[str, object]:
    """Catalog values mapped to the workbook columns; empty values are left out."""
    dims = parse_dimensions(record.dimensions)
    values = {
        COLUMNS['key']: record.key,
        COLUMNS['alternate_id']: record.alternate_id,
        COLUMNS['title']: record.title,
        COLUMNS['weight']: record.weight,
        COLUMNS['length']: dims.length,
        COLUMNS['width']: dims.width,
        COLUMNS['height']: dims.height,
        COLUMNS['material']: record.material,
        COLUMNS['note']: classify_material(record.material_classification),
    }
    return {col: v for col, v in values.items() if v is not None and v != ''}


def comparison_row_values(
    source: SourceRow,
    record: ProductRecord,
    tolerance_pct: float = 0,
) -> Dict[str, Comparison]:
    """Per-attribute comparisons of a source row against its catalog record."""
    return {
        'key': compare_text(source.key, record.key or source.key),
        'alternate_id': compare_identifier(source.alternate_id, record.alternate_id),
        'title': compare_text(source.title, record.title),
        'weight': compare_weight(source.weight, record.weight, tolerance_pct),
        'dimensions': compare_dimensions(source.length, source.width, source.height, record.dimensions),
        'material': compare_text(source.material, record.material),
        'note': compare_material_code(source.note, record.material_classification),
    }


def _write_web_row(ws: Worksheet, row: int, record: ProductRecord) -> None:
    for col, value in web_row_values(record).items():
        ws[f'{col}{row}'].value = value


def _write_comparison_row(ws: Worksheet, row: int, comparisons: Dict[str, Comparison]) -> None:
    for attribute, comparison in comparisons.items():
        cell = ws[f'{COMPARISON_COLUMNS[attribute]}{row}']
        cell.value = comparison.comment
        cell.fill = status_fill(comparison.verdict)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def reconcile_worksheet(
    ws: Worksheet,
    outcomes: Dict[str, RetrievalOutcome],
    config: ReconcileConfig,
) -> List[RowResult]:
    """Insert and fill the web and comparison rows for every product row of one sheet."""
    candidates = find_candidate_rows(ws)
    if not candidates:
        return []
    logger.info("Sheet %r: %d product row(s)", ws.title, len(candidates))

    sources = {row: read_source_row(ws, row) for row in candidates}
    plan = plan_rows(candidates)
    apply_row_plan(ws, plan)

    results = []
    for entry in plan:
        source = sources[entry.source_row]
        record = outcome_record(outcomes, source.key)
        outcome = outcomes.get(source.key)
        comparisons = comparison_row_values(source, record, config.weight_tolerance_pct)

        _write_web_row(ws, entry.web_row, record)
        _write_comparison_row(ws, entry.comparison_row, comparisons)

        results.append(RowResult(
            sheet=ws.title,
            source_row=entry.source_row,
            target_row=entry.target_row,
            key=source.key,
            fetch_error=outcome.error if outcome is not None else None,
            comparisons=comparisons,
        ))
    return results


def reconcile_workbook(
    workbook: Workbook,
    outcomes: Dict[str, RetrievalOutcome],
    config: ReconcileConfig,
) -> ReconciliationReport:
    """Reconcile every worksheet in place, one after another."""
    report = ReconciliationReport(outcomes=dict(outcomes))
    for ws in workbook.worksheets:
        report.rows.extend(reconcile_worksheet(ws, outcomes, config))
    return report


# ---------------------------------------------------------------------------
# Workbook I/O
# ---------------------------------------------------------------------------

def load_workbook_bytes(data: bytes) -> Workbook:
    """Open an uploaded .xlsx; any problem is reported as WorkbookLoadError."""
    if not data:
        raise WorkbookLoadError("Please upload an Excel file (.xlsx).")
    if len(data) > MAX_UPLOAD_BYTES:
        raise WorkbookLoadError(
            f"File is too large ({len(data) / 1024 / 1024:.1f} MB, limit {MAX_UPLOAD_BYTES // 1024 // 1024} MB)."
        )
    try:
        return load_workbook(io.BytesIO(data))
    except Exception as e:
        logger.exception("Could not read uploaded workbook")
        raise WorkbookLoadError(f"Could not read workbook: {e}") from e


def workbook_to_bytes(workbook: Workbook) -> bytes:
    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


def process_workbook(
    data: bytes,
    fetch_one: FetchOne,
    config: ReconcileConfig,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> Tuple[bytes, ReconciliationReport]:
    """
    Full batch run: load, fetch all keys, reconcile, serialize.

    Returns the augmented workbook as bytes (offer it as OUTPUT_FILENAME with
    XLSX_MIME) together with the report.
    """
    workbook = load_workbook_bytes(data)
    keys = extract_product_keys(workbook)
    outcomes = fetch_all(keys, fetch_one, config.concurrency, progress_callback)
    report = reconcile_workbook(workbook, outcomes, config)
    return workbook_to_bytes(workbook), report


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def summarize_report(report: ReconciliationReport) -> pd.DataFrame:
    """One row per reconciled product with the verdict of every attribute."""
    records = []
    for result in report.rows:
        entry = {
            'Sheet': result.sheet,
            'Row': result.source_row,
            'Key': result.key,
            'Fetch Error': result.fetch_error or '',
        }
        for attribute in COMPARISON_COLUMNS:
            comparison = result.comparisons.get(attribute)
            entry[attribute] = comparison.verdict if comparison else ''
        records.append(entry)
    columns = ['Sheet', 'Row', 'Key', 'Fetch Error'] + list(COMPARISON_COLUMNS)
    return pd.DataFrame(records, columns=columns)


def verdict_counts(df_summary: pd.DataFrame) -> Dict[str, int]:
    """Totals of MATCH / MISMATCH / UNRESOLVED over all attribute columns."""
    attribute_cols = [c for c in COMPARISON_COLUMNS if c in df_summary.columns]
    if df_summary.empty or not attribute_cols:
        return {v: 0 for v in VERDICTS}
    stacked = df_summary[attribute_cols].stack()
    return {v: int((stacked == v).sum()) for v in VERDICTS}


def failed_lookup_notice(report: ReconciliationReport) -> str:
    """Warning text for failed catalog lookups ('' when every lookup succeeded)."""
    if not report.failed:
        return ''
    return (f"{report.failed} of {len(report.outcomes)} catalog lookups failed; "
            "their catalog attributes are marked UNRESOLVED.")
