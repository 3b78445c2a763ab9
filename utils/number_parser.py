"""
Number Parsing Utility

Converts count labels rendered by the catalog (e.g. "Found: 1,234",
"12 345 items") to integers, and formats counts for messages.
"""

import re

# Digits optionally grouped by commas, dots, spaces or narrow no-break spaces
_NUMBER_RE = re.compile(r"\d{1,3}(?:[,. \u00a0\u202f]\d{3})+|\d+")
_FOUND_RE = re.compile(r"(?:Found|Найдено)\s*:?\s*(\d[\d,. \u00a0\u202f]*)", re.IGNORECASE)


def parse_count_text(text):
    """
    Extract the first integer from a count label.

    Args:
        text (str): Text such as "1,234" or "Found: 56"

    Returns:
        int or None: Parsed value with thousands separators stripped, None if no digits
    """
    if not text:
        return None

    match = _NUMBER_RE.search(text)
    if not match:
        return None

    return int(re.sub(r"\D", "", match.group(0)))


def parse_found_text(text):
    """
    Extract N from a "Found: N" / "Найдено: N" phrase.

    Returns:
        int or None: Parsed value, None if the phrase is absent
    """
    if not text:
        return None

    match = _FOUND_RE.search(text)
    if not match:
        return None

    return parse_count_text(match.group(1))


def format_count(value):
    """
    Format a count with thousands separators (1234 -> "1,234").
    """
    return f"{int(value):,}"
