"""Tests for utils.number_parser."""
import pytest

from utils.number_parser import format_count, parse_count_text, parse_found_text


@pytest.mark.parametrize("text,expected", [
    ("1,234", 1234),
    ("12 345 items", 12345),
    ("1.234.567", 1234567),
    ("7", 7),
    ("1 000", 1000),
    ("about 42 gifts", 42),
])
def test_parse_count_text(text, expected):
    assert parse_count_text(text) == expected


@pytest.mark.parametrize("text", ["", None, "no digits here"])
def test_parse_count_text_without_digits(text):
    assert parse_count_text(text) is None


def test_parse_found_text():
    assert parse_found_text("Results Found: 1,024 gifts") == 1024
    assert parse_found_text("found 9") == 9
    assert parse_found_text("Найдено: 15") == 15
    assert parse_found_text("Showing 20 gifts") is None


def test_format_count():
    assert format_count(0) == "0"
    assert format_count(1234567) == "1,234,567"
