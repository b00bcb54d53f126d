"""Tests for Decimal helpers, operating parameters and column types."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from settlement_kernel.db.base import UTCDateTime
from settlement_kernel.domain.control import SystemControl
from settlement_kernel.domain.values import non_negative, quantize_amount, round_cents, to_amount
from settlement_kernel.exceptions import ValidationError


class TestToAmount:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            (Decimal("1.5"), Decimal("1.5")),
            (3, Decimal("3")),
            ("12.25", Decimal("12.25")),
            (0.1, Decimal("0.1")),
        ],
    )
    def test_coercion(self, raw, expected):
        assert to_amount(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", True, None, "NaN", "Infinity"])
    def test_rejects_non_numbers(self, raw):
        with pytest.raises(ValidationError):
            to_amount(raw, field="price")


class TestRounding:
    def test_quantize_to_storage_scale(self):
        assert str(quantize_amount(Decimal("1") / Decimal("3"))) == "0.333333333"

    def test_round_cents_half_up(self):
        assert round_cents(Decimal("2.345")) == Decimal("2.35")

    def test_non_negative(self):
        assert non_negative(Decimal("-3")) == Decimal("0")
        assert non_negative(Decimal("3")) == Decimal("3")


class TestSystemControl:
    def test_defaults(self):
        control = SystemControl()
        assert control.payout_epsilon == Decimal("0.0001")
        assert control.inventory_code_range == (100, 999)

    def test_single_digit_codes_include_zero(self):
        assert SystemControl(inventory_code_digits=1).inventory_code_range == (0, 9)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"payout_epsilon": Decimal("-1")},
            {"inventory_code_digits": 0},
            {"inventory_code_ttl_minutes": 0},
            {"inventory_code_attempts": 0},
            {"planned_monthly_expenses_usd": Decimal("-5")},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            SystemControl(**overrides)


class TestUTCDateTime:
    def test_naive_rejected(self):
        with pytest.raises(ValueError):
            UTCDateTime().process_bind_param(datetime(2024, 1, 1), None)

    def test_aware_normalized_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        bound = UTCDateTime().process_bind_param(datetime(2024, 1, 1, 14, tzinfo=plus_two), None)
        assert bound == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        assert bound.tzinfo == timezone.utc

    def test_loaded_naive_value_is_utc(self):
        loaded = UTCDateTime().process_result_value(datetime(2024, 1, 1, 12), None)
        assert loaded.tzinfo == timezone.utc
