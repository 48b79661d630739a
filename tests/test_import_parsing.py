from datetime import date

import pytest

from medbill.exceptions import ValidationFailed
from medbill.services.import_service import parse_date, parse_value, read_csv, render_template


def test_read_csv_semicolon_with_bom_and_line_numbers():
    content = "\ufeffDocument Number;First Name\n123;ANA\n;\n456;LUIS\n".encode("utf-8")
    rows = read_csv(content)
    assert rows == [
        (2, {"document_number": "123", "first_name": "ANA"}),
        (4, {"document_number": "456", "first_name": "LUIS"}),
    ]


def test_read_csv_latin1_fallback():
    rows = read_csv("code,description\n1A00,Cólera\n".encode("latin-1"))
    assert rows[0][1]["description"] == "Cólera"


@pytest.mark.parametrize("content", [b"", b"   \n", b"document_number,first_name\n"])
def test_read_csv_rejects_empty(content):
    with pytest.raises(ValidationFailed):
        read_csv(content)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("35000", 35000.0),
        ("35.000", 35000.0),
        ("1.235.000", 1235000.0),
        ("35.000,50", 35000.5),
        ("35000,5", 35000.5),
        ("35000.5", 35000.5),
        ("$ 12.500", 12500.0),
        ("", 0.0),
        (None, 0.0),
    ],
)
def test_parse_value(raw, expected):
    assert parse_value(raw) == expected


def test_parse_value_invalid():
    with pytest.raises(ValueError):
        parse_value("abc")


def test_parse_date_formats():
    assert parse_date("2024-05-02") == date(2024, 5, 2)
    assert parse_date("02/05/2024") == date(2024, 5, 2)
    with pytest.raises(ValueError):
        parse_date("2024-13-40")
    with pytest.raises(ValueError):
        parse_date("")


def test_templates_have_header_and_example():
    lines = render_template("patients").strip().splitlines()
    assert lines[0].startswith("document_type,document_number")
    assert len(lines) == 2
