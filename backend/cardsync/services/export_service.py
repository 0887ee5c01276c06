"""
CardSync Pro Backend — Contact Export
======================================

What:  Renders a contact list as CSV text or an XLSX workbook.
Who:   GET /api/contacts/export.

CSV: camelCase header, every value double-quoted (embedded quotes doubled),
missing values as "". XLSX: one "Contacts" sheet with readable headers,
written with pandas through openpyxl.
"""

import csv
import io
from typing import Iterable

import pandas as pd

from cardsync.models.contact import CONTACT_INFO_FIELDS

CSV_HEADERS = ["fullName", "jobTitle", "companyName", "phoneNumber", "emailAddress", "physicalAddress"]
XLSX_HEADERS = ["Full Name", "Job Title", "Company Name", "Phone Number", "Email Address", "Physical Address"]
XLSX_SHEET = "Contacts"


def _values(contact):
    return [getattr(contact, name) or "" for name in CONTACT_INFO_FIELDS]


class ExportService:

    def to_csv(self, contacts: Iterable) -> str:
        buffer = io.StringIO()
        # Header unquoted, every data cell quoted
        buffer.write(",".join(CSV_HEADERS) + "\n")
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        for contact in contacts:
            writer.writerow(_values(contact))
        return buffer.getvalue()

    def to_xlsx(self, contacts: Iterable) -> bytes:
        df = pd.DataFrame([_values(c) for c in contacts], columns=XLSX_HEADERS)
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name=XLSX_SHEET)
        return buffer.getvalue()
