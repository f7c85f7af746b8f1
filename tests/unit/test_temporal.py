"""Unit tests for croupier.temporal."""

from datetime import date

import pytest

from croupier.temporal import extract_temporal
from croupier.types import EntityType

# Saturday
TODAY = date(2024, 6, 15)


def _range(text: str):
    mentions = extract_temporal(text, TODAY)
    assert len(mentions) == 1, mentions
    r = mentions[0].temporal_range
    return r.start, r.end


class TestNamedPeriods:
    @pytest.mark.parametrize(
        "text, start, end",
        [
            ("GGR last month", date(2024, 5, 1), date(2024, 5, 31)),
            ("GGR this month", date(2024, 6, 1), date(2024, 6, 15)),
            ("deposits last week", date(2024, 6, 3), date(2024, 6, 9)),
            ("deposits this week", date(2024, 6, 10), date(2024, 6, 15)),
            ("bets last quarter", date(2024, 1, 1), date(2024, 3, 31)),
            ("bets this quarter", date(2024, 4, 1), date(2024, 6, 15)),
            ("wins last year", date(2023, 1, 1), date(2023, 12, 31)),
            ("wins year to date", date(2024, 1, 1), date(2024, 6, 15)),
            ("ngr MTD", date(2024, 6, 1), date(2024, 6, 15)),
        ],
    )
    def test_ranges(self, text, start, end):
        assert _range(text) == (start, end)

    def test_last_month_in_january(self):
        mentions = extract_temporal("last month", date(2024, 1, 20))
        r = mentions[0].temporal_range
        assert (r.start, r.end) == (date(2023, 12, 1), date(2023, 12, 31))

    def test_last_month_is_february_in_leap_year(self):
        mentions = extract_temporal("last month", date(2024, 3, 31))
        assert mentions[0].temporal_range.end == date(2024, 2, 29)


class TestRelativeCounts:
    def test_last_n_days(self):
        assert _range("GGR for the last 30 days") == (date(2024, 5, 16), date(2024, 6, 15))

    def test_past_n_weeks(self):
        assert _range("deposits past 2 weeks") == (date(2024, 6, 1), date(2024, 6, 15))

    def test_last_n_months_clamps_day(self):
        mentions = extract_temporal("last 3 months", date(2024, 5, 31))
        r = mentions[0].temporal_range
        assert r.start == date(2024, 2, 29)


class TestAbsoluteDates:
    def test_iso_date(self):
        mentions = extract_temporal("bets on 2024-05-03", TODAY)
        assert mentions[0].temporal_range.start == date(2024, 5, 3)
        assert mentions[0].temporal_range.is_relative is False
        assert mentions[0].confidence == 0.95

    def test_day_first_date(self):
        assert _range("bets on 03/05/2024") == (date(2024, 5, 3), date(2024, 5, 3))

    def test_invalid_date_skipped(self):
        assert extract_temporal("bets on 31/02/2024", TODAY) == []

    def test_calendar_year(self):
        assert _range("GGR in 2023") == (date(2023, 1, 1), date(2023, 12, 31))

    def test_yesterday_and_today(self):
        mentions = extract_temporal("today versus yesterday", TODAY)
        assert sorted(m.temporal_range.start for m in mentions) == [date(2024, 6, 14), TODAY]


class TestMentions:
    def test_mention_fields(self):
        text = "Total GGR last month"
        m = extract_temporal(text, TODAY)[0]
        assert m.entity_type == EntityType.TEMPORAL
        assert text[m.start : m.end] == "last month"
        assert m.normalized_value == "2024-05-01..2024-05-31"
        assert m.subtype == "month"

    def test_no_expression(self):
        assert extract_temporal("Total GGR for VIP players", TODAY) == []
