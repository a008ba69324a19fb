"""Tests for the SIE line tokenizer and field parsers."""

from datetime import date
from decimal import Decimal

import pytest

from sie_parser import parse_date, parse_decimal, parse_year_index, tokenize_line, unquote


class TestTokenizeLine:
    """Tests for tokenize_line."""

    def test_plain_fields(self):
        assert tokenize_line("#KONTO 1910 Kassa") == ["#KONTO", "1910", "Kassa"]

    def test_quoted_field_keeps_quotes(self):
        assert tokenize_line('#KONTO 3041 "Försäljning tjänst 25%"') == [
            "#KONTO",
            "3041",
            '"Försäljning tjänst 25%"',
        ]

    def test_tabs_and_repeated_spaces(self):
        assert tokenize_line("#KONTO\t1910   \t Kassa") == ["#KONTO", "1910", "Kassa"]

    def test_empty_quoted_field(self):
        assert tokenize_line('#TRANS 1910 {} 10.00 ""') == ["#TRANS", "1910", "{}", "10.00", '""']

    def test_unterminated_quote_runs_to_end_of_line(self):
        assert tokenize_line('#FNAMN "Bolaget AB  Filial') == ["#FNAMN", '"Bolaget AB  Filial']

    def test_quote_inside_token(self):
        assert tokenize_line('a"b c"d e') == ['a"b c"d', "e"]

    def test_brace_group_splits_on_whitespace(self):
        assert tokenize_line("#TRANS 7010 {1 Nord} 30962.80") == ["#TRANS", "7010", "{1", "Nord}", "30962.80"]

    @pytest.mark.parametrize("line", ["", "   ", "\t \t"])
    def test_blank_line_yields_no_tokens(self, line):
        assert tokenize_line(line) == []


class TestUnquote:
    """Tests for unquote."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ('"Kassa"', "Kassa"),
            ('""', ""),
            ("Kassa", "Kassa"),
            ('"', '"'),
            ('"Kassa', '"Kassa'),
            ('"a "b" c"', 'a "b" c'),
        ],
    )
    def test_unquote(self, raw, expected):
        assert unquote(raw) == expected


class TestFieldParsers:
    """Tests for the strict numeric and date field parsers."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("30962.80", Decimal("30962.80")),
            ("-195.00", Decimal("-195.00")),
            ("+12", Decimal("12")),
            ("100", Decimal("100")),
            (".5", Decimal("0.5")),
            ('"42.10"', Decimal("42.10")),
        ],
    )
    def test_decimal_accepts(self, raw, expected):
        assert parse_decimal(raw) == expected

    @pytest.mark.parametrize("raw", ["30962,80", "1 000.00", "1e5", "NaN", "Infinity", "", "-", "12.3.4", "kr100"])
    def test_decimal_rejects(self, raw):
        assert parse_decimal(raw) is None

    @pytest.mark.parametrize("raw,expected", [("0", 0), ("-1", -1), ("3", 3), ("+2", 2)])
    def test_year_index_accepts(self, raw, expected):
        assert parse_year_index(raw) == expected

    @pytest.mark.parametrize("raw", ["", "1.0", "x", "- 1"])
    def test_year_index_rejects(self, raw):
        assert parse_year_index(raw) is None

    def test_date_accepts_eight_digits(self):
        assert parse_date("20210123") == date(2021, 1, 23)
        assert parse_date('"20210123"') == date(2021, 1, 23)

    @pytest.mark.parametrize("raw", ["2021-01-23", "210123", "20211301", "20210230", "", '""', "2021012A"])
    def test_date_rejects(self, raw):
        assert parse_date(raw) is None
