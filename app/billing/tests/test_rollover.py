"""
Tests for session rollover between billing periods.
"""

import pytest

from billing.services.rollover import (
    PeriodAllocation,
    calculate_rollover,
    max_rollover,
    next_period_allocation,
)
from billing.tests.factories import SubscriptionFactory


class TestMaxRollover:
    def test_package_4_caps_at_one(self):
        assert max_rollover(4) == 1

    def test_package_8_caps_at_two(self):
        assert max_rollover(8) == 2

    def test_rounds_half_up(self):
        # 2 * 0.25 = 0.5 -> 1; 6 * 0.25 = 1.5 -> 2
        assert max_rollover(2) == 1
        assert max_rollover(6) == 2

    def test_rejects_non_positive_base(self):
        with pytest.raises(ValueError):
            max_rollover(0)


class TestCalculateRollover:
    @pytest.mark.parametrize(
        "remaining,base,expected",
        [
            (4, 4, 1),
            (0, 4, 0),
            (1, 4, 1),
            (8, 8, 2),
            (1, 8, 1),
            (0, 8, 0),
        ],
    )
    def test_rollover_is_capped_by_remaining_and_base(self, remaining, base, expected):
        assert calculate_rollover(remaining, base) == expected

    def test_cap_comes_from_base_not_total(self):
        """A period that already had rollover (total 5) still carries at most 1."""
        assert calculate_rollover(5, 4) == 1


class TestPeriodAllocation:
    def test_sessions_total_adds_rollover(self):
        assert PeriodAllocation(base_sessions=4, rollover=1).sessions_total == 5

    @pytest.mark.django_db
    def test_unused_package_4_rolls_one_session(self):
        """All four sessions unused: next period has 4 + 1."""
        subscription = SubscriptionFactory(sessions_used=0)

        allocation = next_period_allocation(subscription)

        assert allocation.rollover == 1
        assert allocation.sessions_total == 5

    @pytest.mark.django_db
    def test_rolled_over_period_does_not_compound(self):
        subscription = SubscriptionFactory(
            sessions_total=5, sessions_used=0, sessions_remaining=5, rollover_sessions=1
        )

        allocation = next_period_allocation(subscription)

        assert allocation.sessions_total == 5

    @pytest.mark.django_db
    def test_package_8_fully_used(self):
        subscription = SubscriptionFactory(
            package_kind="package_8",
            base_sessions=8,
            sessions_used=8,
        )

        allocation = next_period_allocation(subscription)

        assert allocation.rollover == 0
        assert allocation.sessions_total == 8
