from datetime import datetime, timezone

import pytest

from pulsesync.core.days import (
    day_key_for,
    shift_day_key,
    validate_day_key,
    window_day_keys,
)


@pytest.mark.parametrize("value", ["2025-06-01", "2024-02-29"])
def test_valid_day_keys_pass_through(value):
    assert validate_day_key(value) == value


@pytest.mark.parametrize(
    "value",
    [None, "", "2025-6-1", "2025-06-1", "2025-13-01", "2025-02-30", "20250601", " 2025-06-01"],
)
def test_invalid_day_keys_rejected(value):
    assert validate_day_key(value) is None


def test_day_key_uses_fixed_timezone():
    moment = datetime(2025, 5, 31, 15, 30, tzinfo=timezone.utc)

    assert day_key_for(moment, "Asia/Seoul") == "2025-06-01"
    assert day_key_for(moment, "UTC") == "2025-05-31"


def test_window_crosses_month_boundary():
    assert window_day_keys("2025-03-02", 3) == ["2025-02-28", "2025-03-01", "2025-03-02"]
    assert window_day_keys("2025-03-02", 0) == []
    assert shift_day_key("2024-12-31", 1) == "2025-01-01"
