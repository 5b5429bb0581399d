"""Pure streak derivation tests (UTC calendar days)."""

from datetime import date, datetime, timedelta, timezone

from xpl.progress.streak_service import compute_streak, day_bounds, utc_day

TODAY = date(2026, 3, 10)


def days_ago(*offsets: int) -> list[date]:
    return [TODAY - timedelta(days=n) for n in offsets]


class TestComputeStreak:

    def test_no_entries(self):
        assert compute_streak([], TODAY) == 0

    def test_only_today(self):
        assert compute_streak(days_ago(0), TODAY) == 1

    def test_only_yesterday_is_still_alive(self):
        assert compute_streak(days_ago(1), TODAY) == 1

    def test_two_days_ago_breaks(self):
        assert compute_streak(days_ago(2), TODAY) == 0

    def test_three_days_ago_only(self):
        assert compute_streak(days_ago(3), TODAY) == 0

    def test_three_consecutive_ending_today(self):
        assert compute_streak(days_ago(2, 1, 0), TODAY) == 3

    def test_consecutive_ending_yesterday(self):
        assert compute_streak(days_ago(3, 2, 1), TODAY) == 3

    def test_same_day_counts_once(self):
        assert compute_streak(days_ago(0, 0), TODAY) == 1

    def test_gap_truncates_older_run(self):
        # today, yesterday, then a gap, then an older run
        assert compute_streak(days_ago(0, 1, 3, 4, 5), TODAY) == 2

    def test_unsorted_input(self):
        assert compute_streak(days_ago(1, 0, 2), TODAY) == 3


class TestDayTruncation:

    def test_naive_is_utc(self):
        assert utc_day(datetime(2026, 3, 10, 23, 59)) == date(2026, 3, 10)

    def test_aware_converted_to_utc(self):
        tz = timezone(timedelta(hours=-5))
        # 22:00 at UTC-5 is 03:00 UTC the next day
        assert utc_day(datetime(2026, 3, 10, 22, 0, tzinfo=tz)) == date(2026, 3, 11)

    def test_day_bounds_half_open(self):
        start, end = day_bounds(date(2026, 3, 10))
        assert start == datetime(2026, 3, 10, tzinfo=timezone.utc)
        assert end - start == timedelta(days=1)
