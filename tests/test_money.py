"""Primitives monétaires: arrondis, TVA, valorisation du temps, formats."""
import pytest

from flowassist.services.money import (
    format_amount,
    format_cents,
    format_hours,
    format_minutes,
    round_half_up,
    round_minutes,
    split_ttc,
    time_amount_ht,
    vat_from_ht,
    weighted_rate,
)


class TestRoundMinutes:
    @pytest.mark.parametrize("raw,expected", [(0, 15), (-5, 15), (1, 15), (15, 15), (16, 30), (61, 75)])
    def test_rounds_up_to_quarter_hour(self, raw, expected):
        assert round_minutes(raw) == expected

    def test_idempotent(self):
        for m in (1, 14, 29, 44, 100):
            once = round_minutes(m)
            assert round_minutes(once) == once


class TestRounding:
    def test_half_goes_up(self):
        assert round_half_up(5, 2) == 3
        assert round_half_up(7, 2) == 4
        assert round_half_up(1, 3) == 0

    def test_zero_denominator(self):
        with pytest.raises(ZeroDivisionError):
            round_half_up(1, 0)


class TestVat:
    def test_vat_from_ht(self):
        assert vat_from_ht(36000, 20) == (7200, 43200)
        assert vat_from_ht(1234, 20) == (247, 1481)
        assert vat_from_ht(1000, 0) == (0, 1000)

    def test_split_ttc_sums_exactly(self):
        assert split_ttc(12000, 20) == (10000, 2000)
        ht, vat = split_ttc(1000, 20)
        assert (ht, vat) == (833, 167)
        assert ht + vat == 1000

    def test_split_ttc_without_vat(self):
        assert split_ttc(999, 0) == (999, 0)


class TestTimeAmount:
    def test_one_hour(self):
        assert time_amount_ht(60, 20000) == 20000

    def test_partial_hour_rounds_half_up(self):
        assert time_amount_ht(45, 20000) == 15000
        assert time_amount_ht(50, 10001) == 8334

    def test_weighted_rate(self):
        assert weighted_rate([(20000, 60), (16000, 60)]) == 18000
        assert weighted_rate([(20000, 30), (10000, 60)]) == 13333
        assert weighted_rate([]) == 0


class TestFormats:
    def test_format_cents(self):
        assert format_cents(12345) == "123.45"
        assert format_cents(5) == "0.05"
        assert format_cents(-250) == "-2.50"

    def test_format_amount(self):
        assert format_amount(1234567) == "12 345,67 MAD"
        assert format_amount(-100000, "EUR") == "-1 000,00 EUR"
        assert format_amount(0) == "0,00 MAD"

    def test_format_minutes(self):
        assert format_minutes(45) == "45 min"
        assert format_minutes(120) == "2 h"
        assert format_minutes(90) == "1 h 30"

    def test_format_hours(self):
        assert format_hours(135) == "2.25"
        assert format_hours(50) == "0.83"
