"""Shared fixtures. The modules live flat in src/, like the app itself imports them."""
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest
from openpyxl import Workbook

from retrieval import ProductRecord

NOT_RELEVANT_TEXT = 'Nicht Schweiss-/Guss-/Klebe-/Schmiede relevant'


@pytest.fixture
def catalog():
    """Catalog records keyed by A2V number."""
    return {
        'A2V001': ProductRecord(
            key='A2V001',
            url='https://www.mymobase.com/de/p/A2V001',
            title='Sechskantschraube M8x40',
            alternate_id='DIN933-M8 40',
            weight='20 g',
            dimensions='4 x 1,3 x 0,8 cm',
            material='Stahl 8.8',
            material_classification=NOT_RELEVANT_TEXT,
        ),
        'A2V003': ProductRecord(
            key='A2V003',
            title='Scheibe 8,4',
            weight='5 g',
            dimensions='16 x 16 x 2 mm',
        ),
    }


@pytest.fixture
def fetch_stub(catalog):
    """Fetch capability backed by the catalog fixture; unknown keys fail."""
    calls = []

    def fetch(key):
        calls.append(key)
        if key not in catalog:
            raise LookupError(f"{key} not in catalog")
        return catalog[key]

    fetch.calls = calls
    return fetch


def _write_row(ws, row, values):
    for col, value in values.items():
        ws[f'{col}{row}'] = value


@pytest.fixture
def master_workbook():
    """
    Master workbook with the fixed layout: title rows 1-2, header row 3, data from row 4.

        row 4  A2V001  fully matching product
        row 5  a2v002  key the catalog does not know (lowercase, padded)
        row 6  (blank)
        row 7  XYZ-77  key without the A2V prefix
        row 8  A2V003  weight differs from the catalog
    """
    wb = Workbook()
    ws = wb.active
    ws.title = 'Produkte'
    ws['A1'] = 'Produktvergleich'
    _write_row(ws, 3, {'A': 'Pos', 'C': 'Titel', 'E': 'Artikelnummer', 'N': 'Hinweis', 'P': 'Werkstoff',
                       'S': 'Gewicht', 'U': 'L', 'V': 'B', 'W': 'H', 'Z': 'A2V'})
    _write_row(ws, 4, {'A': 1, 'C': 'Sechskantschraube  M8x40', 'E': 'din 933-m8/40', 'N': 'OHNE/N/N/N/N',
                       'P': 'Stahl 8.8', 'S': '0,02 kg', 'U': 40, 'V': 13, 'W': 8, 'Z': 'A2V001'})
    _write_row(ws, 5, {'A': 2, 'C': 'Mutter M8', 'S': '7 g', 'Z': ' a2v002 '})
    _write_row(ws, 7, {'A': 3, 'C': 'Federring', 'Z': 'XYZ-77'})
    _write_row(ws, 8, {'A': 4, 'C': 'Scheibe 8,4', 'S': '6 g', 'U': 16, 'V': 16, 'W': 2, 'Z': 'A2V003'})
    return wb
