import re
from datetime import datetime, timedelta, timezone

import pytest

from k8ssummary.timeutil import humanize_duration

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_same_instant_is_zero():
    assert humanize_duration(START, START) == "0s"


def test_end_before_start_is_zero():
    assert humanize_duration(START, START - timedelta(hours=3)) == "0s"


@pytest.mark.parametrize("seconds", [1, 30, 59])
def test_whole_seconds(seconds):
    assert humanize_duration(START, START + timedelta(seconds=seconds)) == f"{seconds}s"


def test_seconds_round_half_up():
    assert humanize_duration(START, START + timedelta(seconds=1.5)) == "2s"


def test_sub_half_second_rounds_down():
    assert humanize_duration(START, START + timedelta(seconds=0.4)) == "0s"


def test_minutes_and_seconds():
    assert humanize_duration(START, START + timedelta(minutes=5, seconds=7)) == "5m 7s"


def test_hours_format():
    result = humanize_duration(START, START + timedelta(hours=4, minutes=12, seconds=50))
    assert re.fullmatch(r"4h \d+m", result)
    assert result.split()[1] == "12m"


def test_days_and_hours():
    assert humanize_duration(START, START + timedelta(days=2, hours=3, minutes=59)) == "2d 3h"


def test_other_timezones_compare_by_instant():
    end = datetime(2024, 1, 1, 2, 0, 30, tzinfo=timezone(timedelta(hours=2)))
    assert humanize_duration(START, end) == "30s"