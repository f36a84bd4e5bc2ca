from datetime import date

import pytest

from csv_utils import (
    missing_columns,
    normalize_header,
    parse_amount,
    parse_bool,
    parse_date,
    parse_quantity,
    parse_rate_bps,
    read_csv,
    split_tags,
)


def test_headers_are_normalized() -> None:
    assert normalize_header(" Purchase Price ") == "purchaseprice"
    assert normalize_header("Interest_Rate (%)") == "interestrate"
    assert normalize_header("Bank-Name") == "bankname"


def test_read_csv_numbers_rows_by_record_and_skips_blanks() -> None:
    parsed = read_csv("\ufeffTitle,Amount\n\nLunch, 12.50 \n,\nDinner,30\n")

    assert parsed.headers == ["title", "amount"]
    assert parsed.rows == [
        (3, {"title": "Lunch", "amount": "12.50"}),
        (5, {"title": "Dinner", "amount": "30"}),
    ]
    assert parsed.skipped == 2


def test_read_csv_rejects_empty_content() -> None:
    with pytest.raises(ValueError, match="empty"):
        read_csv(" \n\n")


def test_missing_columns_accept_aliases() -> None:
    required = {"category": ("category", "categoryname"), "date": ("date",)}
    assert missing_columns(["categoryname", "date"], required) == []
    assert missing_columns(["title"], required) == ["category", "date"]


def test_parse_amount_formats() -> None:
    assert parse_amount("12") == 1_200
    assert parse_amount("$1,234.56") == 123_456
    assert parse_amount("1,234") == 123_400
    assert parse_amount("12,5") == 1_250
    assert parse_amount("1.234,56") == 123_456
    assert parse_amount("-25.50", allow_negative=True) == -2_550
    with pytest.raises(ValueError, match="positive"):
        parse_amount("-1")
    with pytest.raises(ValueError, match="Invalid number"):
        parse_amount("twelve")


def test_parse_amount_rounds_half_up() -> None:
    assert parse_amount("0.125") == 13
    assert parse_amount("0.005") == 1
    assert parse_amount("-0.125", allow_negative=True) == -13
    assert parse_quantity("0.0000005") == 1
    assert parse_rate_bps("7.125") == 713


@pytest.mark.parametrize("cell", ["Infinity", "-inf", "NaN", "sNaN"])
def test_non_finite_numbers_are_invalid(cell) -> None:
    with pytest.raises(ValueError, match="Invalid number"):
        parse_amount(cell, allow_negative=True)
    with pytest.raises(ValueError, match="Invalid number"):
        parse_quantity(cell)


@pytest.mark.parametrize("cell", ["1e30", "99999999999999999999", "-1e30"])
def test_oversized_numbers_are_rejected(cell) -> None:
    with pytest.raises(ValueError, match="too large"):
        parse_amount(cell, allow_negative=True)
    with pytest.raises(ValueError, match="too large|positive"):
        parse_quantity(cell)
    with pytest.raises(ValueError, match="too large|positive"):
        parse_rate_bps(cell)


def test_parse_quantity_and_rate() -> None:
    assert parse_quantity("2.5") == 2_500_000
    assert parse_quantity("0.000001") == 1
    assert parse_rate_bps("7.25%") == 725
    assert parse_rate_bps("10") == 1_000


def test_parse_date_formats() -> None:
    assert parse_date("2025-03-02") == date(2025, 3, 2)
    assert parse_date("03/02/2025") == date(2025, 3, 2)
    assert parse_date("02.03.2025") == date(2025, 3, 2)
    assert parse_date("2025-03-02T10:00:00Z") == date(2025, 3, 2)
    with pytest.raises(ValueError, match="Invalid date"):
        parse_date("yesterday")


def test_bools_and_tags() -> None:
    assert parse_bool(" Yes ")
    assert not parse_bool("0")
    assert split_tags("food; Food, travel;;") == ["food", "travel"]
    assert split_tags("") == []
