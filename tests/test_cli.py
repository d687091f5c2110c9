"""
Command-line script tests; the fetcher is replaced by the catalog stub.
"""
import importlib.util
import os

import pytest
from openpyxl import load_workbook

from reconciler import OUTPUT_FILENAME, workbook_to_bytes

SCRIPT = os.path.join(os.path.dirname(__file__), '..', 'scripts', 'reconcile_workbook.py')


@pytest.fixture
def cli(monkeypatch, fetch_stub):
    found = importlib.util.spec_from_file_location('reconcile_workbook', SCRIPT)
    module = importlib.util.module_from_spec(found)
    found.loader.exec_module(module)

    class StubFetcher:
        def __init__(self, timeout=None):
            self.timeout = timeout

        def __call__(self, key):
            return fetch_stub(key)

        def close(self):
            pass

    monkeypatch.setattr(module, 'ProductPageFetcher', StubFetcher)
    for name in ('SCRAPE_CONCURRENCY', 'WEIGHT_TOL_PCT', 'FETCH_TIMEOUT_SECONDS', 'LOG_LEVEL'):
        monkeypatch.delenv(name, raising=False)
    return module


def test_workbook_run_writes_output(cli, tmp_path, master_workbook, capsys):
    source = tmp_path / 'master.xlsx'
    source.write_bytes(workbook_to_bytes(master_workbook))

    assert cli.main([str(source), '--concurrency', '2']) == 0

    output = tmp_path / OUTPUT_FILENAME
    ws = load_workbook(output).active
    assert ws['Z5'].value == 'A2V001'
    out = capsys.readouterr().out
    assert 'Catalog lookups: 2 ok, 1 failed' in out
    assert 'MISMATCH: 1' in out


def test_single_key(cli, capsys):
    assert cli.main(['--key', 'a2v003']) == 0
    assert 'Scheibe 8,4' in capsys.readouterr().out


def test_invalid_key_fails(cli):
    assert cli.main(['--key', 'XYZ-77']) == 1


def test_missing_input_fails(cli, tmp_path):
    assert cli.main([str(tmp_path / 'missing.xlsx')]) == 1


def test_input_or_key_required(cli):
    with pytest.raises(SystemExit):
        cli.parse_args([])
