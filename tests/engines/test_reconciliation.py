"""
Tests for count classification and confirmation code checks.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from settlement_engines.reconciliation import (
    CountLine,
    classify_count,
    is_code_expired,
    normalize_code,
)
from settlement_kernel.domain.statuses import InventorySessionStatus
from settlement_kernel.exceptions import ValidationError


def _line(system: int, actual: int, item_id=None) -> CountLine:
    return CountLine(item_id or uuid4(), uuid4(), uuid4(), system, actual)


class TestClassifyCount:
    def test_matching_count_is_pending(self):
        result = classify_count([_line(10, 10), _line(5, 5)])

        assert result.status is InventorySessionStatus.PENDING
        assert result.discrepancy_count == 0
        assert not result.is_discrepancy

    def test_any_difference_is_discrepancy(self):
        result = classify_count([_line(10, 10), _line(5, 3), _line(1, 2)])

        assert result.is_discrepancy
        assert result.discrepancy_count == 2
        assert [line.difference for line in result.lines] == [0, -2, 1]

    def test_empty_count_rejected(self):
        with pytest.raises(ValidationError):
            classify_count([])

    def test_negative_count_rejected(self):
        with pytest.raises(ValidationError):
            classify_count([_line(1, -1)])

    def test_duplicate_item_rejected(self):
        item_id = uuid4()
        with pytest.raises(ValidationError):
            classify_count([_line(1, 1, item_id), _line(1, 1, item_id)])


class TestConfirmationCodes:
    def test_normalize_strips_whitespace(self):
        assert normalize_code(" 123 ", 3) == "123"

    @pytest.mark.parametrize("raw", [None, "", "12", "1234", "12a"])
    def test_normalize_rejects_bad_format(self, raw):
        assert normalize_code(raw, 3) is None

    def test_code_within_ttl(self):
        issued = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
        assert not is_code_expired(issued, issued + timedelta(minutes=10), 10)

    def test_code_after_ttl(self):
        issued = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
        assert is_code_expired(issued, issued + timedelta(minutes=10, seconds=1), 10)

    def test_missing_issue_time_is_expired(self):
        assert is_code_expired(None, datetime(2024, 1, 15, tzinfo=timezone.utc), 10)
