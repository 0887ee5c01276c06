"""
CardSync Pro Backend — Heuristic Extractor Unit Tests
======================================================

What:  Tests for extract_contact_fields (card text → ContactInfo).
How:   Pure function, so plain inputs and expected fields; no fixtures.

What we test:
    ✅ A typical card yields name, title, email, phone and address
    ✅ Empty and single-line input
    ✅ Title/company selection by position and length
    ✅ "Last match wins" for email and phone
    ✅ Address lines are joined, phone/email lines are excluded
"""

from cardsync.services.extractor import (
    EMAIL_PATTERN,
    PHONE_PATTERN,
    extract_contact_fields,
    split_lines,
)

CARD_TEXT = (
    "Jane Doe\n"
    "Software Engineer\n"
    "Acme Corp\n"
    "jane@acme.com\n"
    "555-123-4567\n"
    "123 Main St Springfield"
)


class TestTypicalCard:

    def test_extracts_all_recognizable_fields(self):
        info = extract_contact_fields(CARD_TEXT)
        assert info.full_name == "Jane Doe"
        assert info.job_title == "Software Engineer"
        assert info.email_address == "jane@acme.com"
        assert info.phone_number == "555-123-4567"
        assert "123 Main St Springfield" in info.physical_address

    def test_company_not_guessed_when_title_found(self):
        """Line 1 becomes the company only when no title was selected."""
        info = extract_contact_fields(CARD_TEXT)
        assert info.company_name is None

    def test_is_deterministic(self):
        assert extract_contact_fields(CARD_TEXT) == extract_contact_fields(CARD_TEXT)


class TestEdgeCases:

    def test_empty_input_sets_nothing(self):
        info = extract_contact_fields("")
        assert info.is_empty()

    def test_single_line_sets_only_name(self):
        info = extract_contact_fields("Jane Doe")
        assert info.full_name == "Jane Doe"
        assert info.model_dump(exclude={"full_name"}) == {
            "job_title": None,
            "company_name": None,
            "phone_number": None,
            "email_address": None,
            "physical_address": None,
        }

    def test_undetected_fields_are_none_not_empty(self):
        info = extract_contact_fields("Jane Doe\nCEO")
        assert info.email_address is None
        assert info.phone_number is None

    def test_crlf_line_breaks(self):
        info = extract_contact_fields("Jane Doe\r\nChief Executive\r\njane@acme.com")
        assert info.full_name == "Jane Doe"
        assert info.job_title == "Chief Executive"
        assert info.email_address == "jane@acme.com"

    def test_blank_lines_keep_positions(self):
        assert split_lines("a\n\nb") == ["a", "", "b"]
        info = extract_contact_fields("Jane Doe\n\nDesigner")
        assert info.job_title == "Designer"

    def test_blank_first_line_gives_no_name(self):
        info = extract_contact_fields("\nDesigner")
        assert info.full_name is None


class TestTitleOrCompany:

    def test_title_from_line_two_when_line_one_is_email(self):
        info = extract_contact_fields("Jane Doe\njane@acme.com\nCTO")
        assert info.job_title == "CTO"
        assert info.email_address == "jane@acme.com"

    def test_long_name_line_sends_line_one_to_company(self):
        long_first = "Jane Doe, Principal Consultant for Enterprise Solutions"
        assert len(long_first) >= 50
        info = extract_contact_fields(f"{long_first}\nAcme Corp\nSomething")
        assert info.job_title is None
        assert info.company_name == "Acme Corp"

    def test_long_lines_are_not_titles(self):
        long_line = "x" * 50
        info = extract_contact_fields(f"Jane Doe\n{long_line}\n{long_line}")
        assert info.job_title is None
        assert info.company_name == long_line

    def test_very_long_first_line_is_kept_verbatim(self):
        first = "A" * 300
        info = extract_contact_fields(first)
        assert info.full_name == first

    def test_very_long_second_line_becomes_company(self):
        company = "Acme " * 60
        info = extract_contact_fields(f"Jane Doe\n{company}")
        assert info.job_title is None
        assert info.company_name == company


class TestPatternScans:

    def test_last_email_wins(self):
        info = extract_contact_fields("Jane Doe\nCEO\nfirst@acme.com\nsecond@acme.com")
        assert info.email_address == "second@acme.com"

    def test_last_phone_wins(self):
        info = extract_contact_fields("Jane Doe\nCEO\n(555) 123-4567\n+1 555.987.6543")
        assert info.phone_number == "+1 555.987.6543"

    def test_phone_layouts(self):
        for phone in ("555-123-4567", "555.123.4567", "(555) 123-4567", "5551234567", "+1 555 123 4567"):
            assert PHONE_PATTERN.search(phone), phone

    def test_email_pattern(self):
        assert EMAIL_PATTERN.search("mail: j.doe+cards@mail.acme.co.uk").group() == "j.doe+cards@mail.acme.co.uk"
        assert EMAIL_PATTERN.search("not an email @ all") is None


class TestAddress:

    def test_joins_qualifying_lines(self):
        text = "Jane Doe\nCEO\n123 Main Street\nSuite 400, Floor 4\nSpringfield IL 62701"
        info = extract_contact_fields(text)
        assert info.physical_address == "123 Main Street, Suite 400, Floor 4, Springfield IL 62701"

    def test_phone_and_email_lines_excluded(self):
        text = "Jane Doe\nCEO\nTel 555-123-4567\njane2024@acme.com"
        info = extract_contact_fields(text)
        assert info.physical_address is None

    def test_short_lines_excluded(self):
        # "Apt 4B" has a digit and a letter but is not longer than 10 characters
        info = extract_contact_fields("Jane Doe\nCEO\nApt 4B")
        assert info.physical_address is None
