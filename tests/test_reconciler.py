"""
Reconciliation tests on a small master workbook (see conftest.master_workbook).

Expected layout after one run:

    source row  4 -> 4   (web 5,  comparison 6)
    source row  5 -> 7   (web 8,  comparison 9)
    blank row   6 -> 10
    source row  7 -> 11  (web 12, comparison 13)
    source row  8 -> 14  (web 15, comparison 16)
"""
import io

import pytest
from openpyxl import Workbook, load_workbook

import reconciler
from comparator import VERDICT_MATCH, VERDICT_MISMATCH, VERDICT_UNRESOLVED
from config import ReconcileConfig, WorkbookLoadError
from reconciler import (
    OUTPUT_FILENAME,
    STATUS_COLORS,
    apply_row_plan,
    extract_product_keys,
    failed_lookup_notice,
    find_candidate_rows,
    load_workbook_bytes,
    plan_rows,
    process_workbook,
    reconcile_workbook,
    summarize_report,
    verdict_counts,
    web_row_values,
    workbook_to_bytes,
)
from retrieval import ProductRecord, fetch_all

CONFIG = ReconcileConfig(concurrency=2)


def _run(workbook, fetch, config=CONFIG):
    outcomes = fetch_all(extract_product_keys(workbook), fetch, config.concurrency)
    return reconcile_workbook(workbook, outcomes, config)


def _row_values(ws, row, columns='ACENPSUVWZ'):
    return {col: ws[f'{col}{row}'].value for col in columns}


def _fill(ws, ref):
    return ws[ref].fill.fgColor.rgb


# ---------------------------------------------------------------------------
# Reading and planning
# ---------------------------------------------------------------------------

def test_extract_product_keys(master_workbook):
    assert extract_product_keys(master_workbook) == ['A2V001', 'A2V002', 'A2V003']


def test_find_candidate_rows_skips_blank_rows(master_workbook):
    assert find_candidate_rows(master_workbook.active) == [4, 5, 7, 8]


def test_find_candidate_rows_on_header_only_sheet():
    ws = Workbook().active
    ws['A1'] = 'Produktvergleich'
    assert find_candidate_rows(ws) == []


def test_plan_rows_targets():
    plan = plan_rows([8, 4, 7, 5])
    assert [(p.source_row, p.target_row) for p in plan] == [(4, 4), (5, 7), (7, 11), (8, 14)]
    assert (plan[1].web_row, plan[1].comparison_row) == (8, 9)


def test_apply_row_plan_moves_original_rows(master_workbook):
    ws = master_workbook.active
    before = {row: _row_values(ws, row) for row in range(4, 9)}

    apply_row_plan(ws, plan_rows(find_candidate_rows(ws)))

    for source, target in [(4, 4), (5, 7), (6, 10), (7, 11), (8, 14)]:
        assert _row_values(ws, target) == before[source]
    for row in (5, 6, 8, 9, 12, 13, 15, 16):
        assert all(v is None for v in _row_values(ws, row).values())
    assert ws.max_row == 16


def test_apply_row_plan_empty_plan_is_noop(master_workbook):
    ws = master_workbook.active
    apply_row_plan(ws, [])
    assert ws.max_row == 8


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def test_reconcile_keeps_headers_and_original_rows(master_workbook, fetch_stub):
    ws = master_workbook.active
    header = _row_values(ws, 3)
    originals = {row: _row_values(ws, row) for row in (4, 5, 7, 8)}

    _run(master_workbook, fetch_stub)

    assert ws['A1'].value == 'Produktvergleich'
    assert _row_values(ws, 3) == header
    for source, target in [(4, 4), (5, 7), (7, 11), (8, 14)]:
        assert _row_values(ws, target) == originals[source]
    assert ws.max_row == 16


def test_web_row_for_matching_product(master_workbook, fetch_stub):
    ws = master_workbook.active
    _run(master_workbook, fetch_stub)

    assert _row_values(ws, 5) == {
        'A': None,
        'C': 'Sechskantschraube M8x40',
        'E': 'DIN933-M8 40',
        'N': 'OHNE/N/N/N/N',
        'P': 'Stahl 8.8',
        'S': '20 g',
        'U': 40,
        'V': 13,
        'W': 8,
        'Z': 'A2V001',
    }


def test_comparison_row_for_matching_product(master_workbook, fetch_stub):
    ws = master_workbook.active
    report = _run(master_workbook, fetch_stub)

    first = report.rows[0]
    assert first.key == 'A2V001'
    assert first.fetch_error is None
    assert {c.verdict for c in first.comparisons.values()} == {VERDICT_MATCH}

    for col in 'CENPSUZ':
        assert _fill(ws, f'{col}6') == STATUS_COLORS[VERDICT_MATCH]
    assert ws['E6'].value == 'identical (normalized)'
    assert ws['U6'].value == 'L×B×H identical (mm)'
    assert ws['S6'].value == 'Δ 0.0%'


def test_failed_fetch_is_unresolved(master_workbook, fetch_stub):
    ws = master_workbook.active
    report = _run(master_workbook, fetch_stub)

    failed = report.rows[1]
    assert (failed.source_row, failed.target_row, failed.key) == (5, 7, 'A2V002')
    assert 'A2V002' in failed.fetch_error
    assert failed.comparisons['title'].verdict == VERDICT_UNRESOLVED
    assert failed.comparisons['weight'].verdict == VERDICT_UNRESOLVED

    assert ws['Z8'].value == 'A2V002'
    assert ws['C8'].value is None
    assert ws['C9'].value == 'web missing'
    assert ws['S9'].value == 'web missing/unclear'
    assert _fill(ws, 'S9') == STATUS_COLORS[VERDICT_UNRESOLVED]
    assert report.failed == 1
    assert report.fetched == 2


def test_ineligible_key_gets_placeholder_rows(master_workbook, fetch_stub):
    ws = master_workbook.active
    report = _run(master_workbook, fetch_stub)

    row = report.rows[2]
    assert (row.key, row.target_row, row.fetch_error) == ('XYZ-77', 11, None)
    assert 'XYZ-77' not in fetch_stub.calls
    assert ws['Z12'].value == 'XYZ-77'
    assert ws['C13'].value == 'web missing'


def test_weight_mismatch_and_tolerance(master_workbook, fetch_stub):
    ws = master_workbook.active
    report = _run(master_workbook, fetch_stub)

    weight = report.rows[3].comparisons['weight']
    assert weight.verdict == VERDICT_MISMATCH
    assert 'source 0.006 kg vs. web 0.005 kg' in weight.comment
    assert _fill(ws, 'S16') == STATUS_COLORS[VERDICT_MISMATCH]
    assert report.rows[3].comparisons['dimensions'].verdict == VERDICT_MATCH


def test_weight_tolerance_from_config(master_workbook, fetch_stub):
    report = _run(master_workbook, fetch_stub, ReconcileConfig(concurrency=2, weight_tolerance_pct=20))
    assert report.rows[3].comparisons['weight'].verdict == VERDICT_MATCH


def test_contiguous_rows_triple(fetch_stub):
    wb = Workbook()
    ws = wb.active
    for i, row in enumerate((4, 5, 6), start=1):
        ws[f'A{row}'] = i
        ws[f'Z{row}'] = 'A2V001'

    report = _run(wb, fetch_stub)

    assert [r.target_row for r in report.rows] == [4, 7, 10]
    assert ws.max_row == 12
    assert [ws[f'A{row}'].value for row in (4, 7, 10)] == [1, 2, 3]
    assert fetch_stub.calls == ['A2V001']


def test_every_sheet_is_processed(master_workbook, fetch_stub):
    second = master_workbook.create_sheet('Ersatzteile')
    second['C4'] = 'Scheibe 8,4'
    second['Z4'] = 'A2V003'

    report = _run(master_workbook, fetch_stub)

    assert [r.sheet for r in report.rows] == ['Produkte'] * 4 + ['Ersatzteile']
    assert second['C5'].value == 'Scheibe 8,4'
    assert second['C6'].value == 'identical'


def test_second_run_adds_rows_again(master_workbook, fetch_stub):
    _run(master_workbook, fetch_stub)
    report = _run(master_workbook, fetch_stub)

    # the first run's web and comparison rows are product rows now too
    assert len(report.rows) == 12
    assert master_workbook.active.max_row == 16 + 2 * 12


def test_web_row_values_skip_empty_fields():
    values = web_row_values(ProductRecord(key='A2V009', title='Bolzen', dimensions='10 x 5'))
    assert values == {'Z': 'A2V009', 'C': 'Bolzen', 'U': 10, 'V': 5}


# ---------------------------------------------------------------------------
# Workbook I/O and summary
# ---------------------------------------------------------------------------

def test_process_workbook_round_trip(master_workbook, fetch_stub):
    progress = []
    output, report = process_workbook(
        workbook_to_bytes(master_workbook), fetch_stub, CONFIG,
        progress_callback=lambda done, total: progress.append((done, total)),
    )

    ws = load_workbook(io.BytesIO(output)).active
    assert ws['Z4'].value == 'A2V001'
    assert ws['E5'].value == 'DIN933-M8 40'
    assert ws['C14'].value == 'Scheibe 8,4'
    assert _fill(ws, 'C6') == STATUS_COLORS[VERDICT_MATCH]
    assert len(report.rows) == 4
    assert len(progress) == 3
    assert OUTPUT_FILENAME.endswith('.xlsx')


@pytest.mark.parametrize('data', [b'', b'not an excel file'])
def test_load_workbook_bytes_rejects_bad_input(data):
    with pytest.raises(WorkbookLoadError):
        load_workbook_bytes(data)


def test_load_workbook_bytes_rejects_large_files(monkeypatch):
    monkeypatch.setattr(reconciler, 'MAX_UPLOAD_BYTES', 10)
    with pytest.raises(WorkbookLoadError, match='too large'):
        load_workbook_bytes(b'x' * 11)


def test_summary_and_counts(master_workbook, fetch_stub):
    report = _run(master_workbook, fetch_stub)
    df = summarize_report(report)

    assert list(df['Row']) == [4, 5, 7, 8]
    assert list(df['Key']) == ['A2V001', 'A2V002', 'XYZ-77', 'A2V003']
    assert df.loc[0, 'weight'] == VERDICT_MATCH
    assert df.loc[3, 'weight'] == VERDICT_MISMATCH
    assert df.loc[1, 'Fetch Error'] != ''

    counts = verdict_counts(df)
    assert sum(counts.values()) == 4 * 7
    assert counts[VERDICT_MATCH] >= 7
    assert counts[VERDICT_MISMATCH] == 1


def test_counts_of_empty_summary():
    df = summarize_report(reconciler.ReconciliationReport())
    assert df.empty
    assert verdict_counts(df) == {VERDICT_MATCH: 0, VERDICT_MISMATCH: 0, VERDICT_UNRESOLVED: 0}


# ---------------------------------------------------------------------------
# Row layout
# ---------------------------------------------------------------------------

@pytest.fixture
def styled_workbook():
    """Two adjacent product rows; the second one is tall, hidden and carries a merged note."""
    wb = Workbook()
    ws = wb.active
    ws['C4'], ws['Z4'] = 'Sechskantschraube M8x40', 'A2V001'
    ws['C5'], ws['Z5'] = 'Scheibe 8,4', 'A2V003'
    ws['F5'] = 'merged note'
    ws.merge_cells('F5:H5')
    ws.row_dimensions[5].height = 40
    ws.row_dimensions[5].hidden = True
    ws.row_dimensions[4].height = 25
    return wb


def test_row_attributes_follow_moved_rows(styled_workbook, fetch_stub):
    ws = styled_workbook.active
    _run(styled_workbook, fetch_stub)

    assert ws['C7'].value == 'Scheibe 8,4'
    assert ws.row_dimensions[7].height == 40
    assert ws.row_dimensions[7].hidden
    assert ws.row_dimensions[4].height == 25
    assert ws.row_dimensions[5].height is None
    assert not ws.row_dimensions[5].hidden


def test_merged_ranges_follow_moved_rows(styled_workbook, fetch_stub):
    ws = styled_workbook.active
    _run(styled_workbook, fetch_stub)

    assert [str(r) for r in ws.merged_cells.ranges] == ['F7:H7']
    assert ws['F7'].value == 'merged note'
    assert ws['F5'].value is None


def test_row_layout_survives_saving(styled_workbook, fetch_stub):
    output, _ = process_workbook(workbook_to_bytes(styled_workbook), fetch_stub, CONFIG)

    ws = load_workbook(io.BytesIO(output)).active
    assert [str(r) for r in ws.merged_cells.ranges] == ['F7:H7']
    assert ws.row_dimensions[7].height == 40
    assert ws.row_dimensions[7].hidden


def test_row_attributes_below_last_product_row(master_workbook):
    ws = master_workbook.active
    ws.row_dimensions[9].height = 30

    apply_row_plan(ws, plan_rows(find_candidate_rows(ws)))

    assert ws.row_dimensions[17].height == 30
    assert ws.row_dimensions[9].height is None


def test_failed_lookup_notice(master_workbook, fetch_stub):
    report = _run(master_workbook, fetch_stub)
    notice = failed_lookup_notice(report)
    assert notice.startswith('1 of 3 catalog lookups failed')
    assert 'catalog attributes are marked UNRESOLVED' in notice
    assert failed_lookup_notice(reconciler.ReconciliationReport()) == ''
