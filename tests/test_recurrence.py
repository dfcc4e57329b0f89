"""Tests for next-occurrence math and RecurrenceExpander."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from postpilot.scheduler.models import Frequency, RecurrencePolicy
from postpilot.scheduler.recurrence import RecurrenceExpander, add_months, next_occurrence
from tests.factories import at, make_content, make_item

# 2025-06-01 is a Sunday.


def _weekly(*days: int) -> RecurrencePolicy:
    return RecurrencePolicy(enabled=True, frequency=Frequency.WEEKLY, days_of_week=list(days))


# -- next_occurrence -----------------------------------------------------------


class TestDaily:
    def test_adds_one_day(self):
        policy = RecurrencePolicy(enabled=True, frequency=Frequency.DAILY)
        assert next_occurrence(at(1, 9), policy) == at(2, 9)

    def test_crosses_month_end(self):
        policy = RecurrencePolicy(enabled=True, frequency=Frequency.DAILY)
        assert next_occurrence(at(30, 9), policy) == at(1, 9, month=7)


class TestWeekly:
    def test_no_days_adds_a_week(self):
        assert next_occurrence(at(2), _weekly()) == at(9)

    def test_next_listed_day_in_same_week(self):
        # Monday -> Wednesday
        assert next_occurrence(at(2), _weekly(1, 3)) == at(4)

    def test_wraps_to_first_day_of_next_week(self):
        # Wednesday -> next Monday, five days on
        assert next_occurrence(at(4), _weekly(1, 3)) == at(9)

    def test_sunday_is_day_zero(self):
        # Saturday -> Sunday
        assert next_occurrence(at(7), _weekly(0)) == at(8)

    def test_same_single_day_is_a_week_later(self):
        assert next_occurrence(at(2), _weekly(1)) == at(9)

    def test_keeps_time_of_day(self):
        assert next_occurrence(at(2, 17), _weekly(5)) == at(6, 17)


class TestMonthly:
    def test_same_day_next_month(self):
        policy = RecurrencePolicy(enabled=True, frequency=Frequency.MONTHLY)
        assert next_occurrence(at(15), policy) == at(15, month=7)

    def test_clamps_to_month_end(self):
        jan_31 = datetime(2025, 1, 31, 9, tzinfo=UTC)
        policy = RecurrencePolicy(enabled=True, frequency=Frequency.MONTHLY, anchor_day=31)
        feb = next_occurrence(jan_31, policy)
        assert feb == datetime(2025, 2, 28, 9, tzinfo=UTC)
        assert next_occurrence(feb, policy) == datetime(2025, 3, 31, 9, tzinfo=UTC)

    def test_leap_year(self):
        assert add_months(datetime(2024, 1, 31, tzinfo=UTC), 1) == datetime(2024, 2, 29, tzinfo=UTC)

    def test_year_rollover(self):
        assert add_months(datetime(2025, 12, 10, tzinfo=UTC), 1) == datetime(2026, 1, 10, tzinfo=UTC)


def test_unknown_frequency_returns_none():
    assert next_occurrence(at(1), RecurrencePolicy(enabled=True, frequency="hourly")) is None


# -- RecurrenceExpander --------------------------------------------------------


@pytest.fixture
def repo() -> AsyncMock:
    r = AsyncMock()
    r.clone = AsyncMock(side_effect=lambda content: make_content("c-clone"))
    return r


async def test_prepare_builds_next_item(repo: AsyncMock) -> None:
    item = make_item(recurring=_weekly(1, 3), scheduled_for=at(4))
    content = make_content()

    nxt = await RecurrenceExpander(repo).prepare(item, content)

    assert nxt is not None
    assert nxt.scheduled_for == at(9)
    assert nxt.content_id == "c-clone"
    assert nxt.recurring == item.recurring
    repo.clone.assert_awaited_once_with(content)


async def test_prepare_sets_monthly_anchor(repo: AsyncMock) -> None:
    jan_31 = datetime(2025, 1, 31, 9, tzinfo=UTC)
    item = make_item(
        recurring=RecurrencePolicy(enabled=True, frequency=Frequency.MONTHLY),
        scheduled_for=jan_31,
    )

    nxt = await RecurrenceExpander(repo).prepare(item, make_content())

    assert nxt.scheduled_for == datetime(2025, 2, 28, 9, tzinfo=UTC)
    assert nxt.recurring.anchor_day == 31
    assert item.recurring.anchor_day is None


async def test_prepare_stops_after_end_date(repo: AsyncMock) -> None:
    policy = RecurrencePolicy(enabled=True, frequency=Frequency.DAILY, end_date=at(1, 12))
    item = make_item(recurring=policy, scheduled_for=at(1))

    assert await RecurrenceExpander(repo).prepare(item, make_content()) is None
    repo.clone.assert_not_awaited()


async def test_prepare_allows_occurrence_on_end_date(repo: AsyncMock) -> None:
    policy = RecurrencePolicy(enabled=True, frequency=Frequency.DAILY, end_date=at(2))
    item = make_item(recurring=policy, scheduled_for=at(1))

    nxt = await RecurrenceExpander(repo).prepare(item, make_content())
    assert nxt.scheduled_for == at(2)


async def test_prepare_ignores_disabled_policy(repo: AsyncMock) -> None:
    item = make_item(recurring=RecurrencePolicy(enabled=False, frequency=Frequency.DAILY))
    assert await RecurrenceExpander(repo).prepare(item, make_content()) is None


async def test_prepare_unknown_frequency(repo: AsyncMock) -> None:
    item = make_item(recurring=RecurrencePolicy(enabled=True, frequency="hourly"))
    assert await RecurrenceExpander(repo).prepare(item, make_content()) is None
