"""
CardSync Pro Backend — Heuristic Contact-Field Extractor
=========================================================

What:  Maps newline-delimited text read off a business card to ContactInfo.
Why:   The deterministic path that works without any AI call. Used for
       POST /api/extract/text and as the fallback when Gemini answers with
       plain text instead of JSON.
How:   Positional guesses for name/title/company, regex scans for email and
       phone, a shape test for address lines.

Caveat:
    "First line is the name" and "line 1 or 2 is the title, else line 1 is
    the company" are positional guesses with no confidence scoring. They are
    a last resort, not a definition of correct parsing; prefer the Gemini
    extractor whenever an image is available.
"""

import re
from typing import List, Optional

from cardsync.schemas.contact import ContactInfo

# local-part@domain.tld
EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w.-]+\.\w+")

# Optional country code, optional parenthesized area code, then 3-3-4 digits
# separated by space, dot or hyphen (NANP-style layouts)
PHONE_PATTERN = re.compile(
    r"(?:\+?\d{1,3}[\s.-]?)?(?:\(\d{3}\)|\d{3})[\s.-]?\d{3}[\s.-]?\d{4}"
)

LINE_BREAK = re.compile(r"\r\n|\r|\n")

# Lines at or above this length are never taken as a job title
TITLE_MAX_LENGTH = 50
# Address lines must be strictly longer than this
ADDRESS_MIN_LENGTH = 10


def split_lines(text: str) -> List[str]:
    """Split on any line break, keeping blank lines so indexes stay positional."""
    if not text:
        return []
    return LINE_BREAK.split(text)


def _is_blank(line: str) -> bool:
    return not line.strip()


def _last_match(pattern: re.Pattern, lines: List[str]) -> Optional[str]:
    found = None
    for line in lines:
        matches = pattern.findall(line)
        if matches:
            found = matches[-1]
    return found


def _is_title_candidate(line: str) -> bool:
    return (
        not _is_blank(line)
        and len(line) < TITLE_MAX_LENGTH
        and not EMAIL_PATTERN.search(line)
        and not PHONE_PATTERN.search(line)
    )


def _is_address_line(line: str) -> bool:
    return (
        len(line) > ADDRESS_MIN_LENGTH
        and any(ch.isdigit() for ch in line)
        and any(ch.isalpha() for ch in line)
        and not PHONE_PATTERN.search(line)
        and not EMAIL_PATTERN.search(line)
    )


def extract_contact_fields(text: str) -> ContactInfo:
    """
    Extract contact fields from card text.

    Pure and deterministic. Undetected fields are left as None.

    Example:
        >>> info = extract_contact_fields("Jane Doe\\nSoftware Engineer\\njane@acme.com")
        >>> info.full_name, info.job_title, info.email_address
        ('Jane Doe', 'Software Engineer', 'jane@acme.com')
    """
    lines = split_lines(text)
    fields = {}

    if lines and not _is_blank(lines[0]):
        fields["full_name"] = lines[0]

    if len(lines) >= 2:
        title = None
        if len(lines[0]) < TITLE_MAX_LENGTH:
            title = next((line for line in lines[1:3] if _is_title_candidate(line)), None)
        if title is not None:
            fields["job_title"] = title
        elif not _is_blank(lines[1]):
            fields["company_name"] = lines[1]

    email = _last_match(EMAIL_PATTERN, lines)
    if email:
        fields["email_address"] = email

    phone = _last_match(PHONE_PATTERN, lines)
    if phone:
        fields["phone_number"] = phone

    address_lines = [line for line in lines if _is_address_line(line)]
    if address_lines:
        fields["physical_address"] = ", ".join(address_lines)

    return ContactInfo(**fields)
