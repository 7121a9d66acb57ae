"""Customer loyalty balances and tier classification."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .constants import TIER_THRESHOLDS, Tier


def classify_tier(points: int) -> Tier:
    """Map a point total onto its loyalty tier.

    Thresholds are checked from the highest tier down, so the result is
    monotonic in ``points``.
    """

    for threshold, tier in TIER_THRESHOLDS:
        if points >= threshold:
            return tier
    return Tier.BRONZE


@dataclass(frozen=True)
class LoyaltyChange:
    """Outcome of a single point adjustment.

    ``level_up`` and ``level_down`` are observational only; nothing about the
    transition is stored.
    """

    customer_name: str
    old_points: int
    new_points: int
    old_tier: Tier
    new_tier: Tier

    @property
    def tier_changed(self) -> bool:
        return self.old_tier is not self.new_tier

    @property
    def level_up(self) -> bool:
        return self.new_tier.rank > self.old_tier.rank

    @property
    def level_down(self) -> bool:
        return self.new_tier.rank < self.old_tier.rank

    def as_dict(self) -> Dict[str, object]:
        return {
            "customer_name": self.customer_name,
            "old_points": self.old_points,
            "new_points": self.new_points,
            "old_tier": self.old_tier.value,
            "new_tier": self.new_tier.value,
            "level_up": self.level_up,
            "level_down": self.level_down,
        }


class LoyaltyLedger:
    """Point balances keyed by customer name, kept in first-seen order."""

    def __init__(self, accounts: Iterable[Tuple[str, int]] = ()) -> None:
        self._points: Dict[str, int] = dict(accounts)

    def __len__(self) -> int:
        return len(self._points)

    def add_points(self, customer_name: str, delta: int) -> LoyaltyChange:
        old_points = self._points.get(customer_name, 0)
        new_points = old_points + delta
        self._points[customer_name] = new_points
        return LoyaltyChange(
            customer_name=customer_name,
            old_points=old_points,
            new_points=new_points,
            old_tier=classify_tier(old_points),
            new_tier=classify_tier(new_points),
        )

    def remove(self, customer_name: str) -> bool:
        """Delete an account. Returns ``False`` when it did not exist."""

        return self._points.pop(customer_name, None) is not None

    def items(self) -> List[Tuple[str, int]]:
        return list(self._points.items())

    def list(self) -> List[Dict[str, object]]:
        return [
            {"customer_name": name, "points": points, "tier": classify_tier(points).value}
            for name, points in self._points.items()
        ]

    def statistics(self) -> Dict[str, object]:
        """Summarise balances across all customers.

        ``top_customer`` is the first account in listing order holding the
        highest balance, or ``None`` when there are no accounts.
        """

        total_customers = len(self._points)
        total_points = sum(self._points.values())
        average = Decimal("0")
        if total_customers:
            average = (Decimal(total_points) / Decimal(total_customers)).quantize(
                Decimal("0.1"), rounding=ROUND_HALF_UP
            )

        top: Optional[Dict[str, object]] = None
        for name, points in self._points.items():
            if top is None or points > top["points"]:
                top = {"customer_name": name, "points": points, "tier": classify_tier(points).value}

        return {
            "total_customers": total_customers,
            "total_points_given": total_points,
            "average_points": average,
            "top_customer": top,
        }
