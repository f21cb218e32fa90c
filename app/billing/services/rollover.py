"""
Session rollover between billing periods.

Unused sessions carry into the next period, capped at 25% of the base
package size (rounded half up). The cap is always taken from the base
size (4 or 8), never from a sessions_total that already includes an
earlier rollover, so rollover cannot compound across periods.

    base 4 -> at most 1 session carried
    base 8 -> at most 2 sessions carried
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from billing.models import Subscription

ROLLOVER_FRACTION = Decimal("0.25")


@dataclass(frozen=True)
class PeriodAllocation:
    """Session counts for the next billing period."""

    base_sessions: int
    rollover: int

    @property
    def sessions_total(self) -> int:
        return self.base_sessions + self.rollover


def max_rollover(base_sessions: int) -> int:
    if base_sessions <= 0:
        raise ValueError("base_sessions must be positive")
    cap = Decimal(base_sessions) * ROLLOVER_FRACTION
    return int(cap.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_rollover(sessions_remaining: int, base_sessions: int) -> int:
    """Sessions carried into the next period."""
    return max(0, min(sessions_remaining, max_rollover(base_sessions)))


def next_period_allocation(subscription: Subscription) -> PeriodAllocation:
    """Allocation for the period after the subscription's current one."""
    return PeriodAllocation(
        base_sessions=subscription.base_sessions,
        rollover=calculate_rollover(
            subscription.sessions_remaining,
            subscription.base_sessions,
        ),
    )
