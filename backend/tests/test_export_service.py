"""
CardSync Pro Backend — Export Service Unit Tests
=================================================

What:  Tests for CSV and XLSX rendering of a contact list.
How:   Plain objects with the contact attributes; the XLSX output is read
       back with pandas.
"""

import io
from types import SimpleNamespace

import pandas as pd

from cardsync.services.export_service import CSV_HEADERS, XLSX_HEADERS, ExportService


def _contact(**fields):
    values = {name: None for name in (
        "full_name", "job_title", "company_name", "phone_number", "email_address", "physical_address"
    )}
    values.update(fields)
    return SimpleNamespace(**values)


class TestCsv:

    def test_header_and_quoting(self):
        csv_text = ExportService().to_csv([
            _contact(full_name="Jane Doe", job_title="CTO", email_address="jane@acme.com"),
        ])
        lines = csv_text.splitlines()
        assert lines[0] == ",".join(CSV_HEADERS)
        assert lines[1] == '"Jane Doe","CTO","","","jane@acme.com",""'

    def test_embedded_quotes_commas_and_newlines(self):
        csv_text = ExportService().to_csv([
            _contact(full_name='Jane "JD" Doe', physical_address="1 Main St, Springfield"),
        ])
        assert '"Jane ""JD"" Doe"' in csv_text
        assert '"1 Main St, Springfield"' in csv_text

    def test_empty_list_is_header_only(self):
        assert ExportService().to_csv([]) == ",".join(CSV_HEADERS) + "\n"


class TestXlsx:

    def test_round_trip_through_pandas(self):
        data = ExportService().to_xlsx([
            _contact(full_name="Jane Doe", company_name="Acme"),
            _contact(full_name="Bob", phone_number="555-123-4567"),
        ])
        df = pd.read_excel(io.BytesIO(data), sheet_name="Contacts", dtype=str, keep_default_na=False)

        assert list(df.columns) == XLSX_HEADERS
        assert df["Full Name"].tolist() == ["Jane Doe", "Bob"]
        assert df["Company Name"].tolist() == ["Acme", ""]
        assert df["Phone Number"].tolist() == ["", "555-123-4567"]
