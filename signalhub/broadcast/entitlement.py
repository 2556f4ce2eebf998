"""Tier entitlement rules.

Which tiers may receive which signal priorities, and the minimum tier a
priority resolves to when a signal is created.
"""

from typing import Iterable, Optional

from signalhub.models.signal import Priority, Signal
from signalhub.models.subscription import Tier

PRIORITY_MIN_TIER: dict[Priority, str] = {
    Priority.LOW: "starter",
    Priority.MEDIUM: "basic",
    Priority.HIGH: "premium",
    Priority.VIP: "vip",
    Priority.EXCLUSIVE: "vip",
}

_ALL = frozenset(p.value for p in Priority)

DEFAULT_TIERS: tuple[Tier, ...] = (
    Tier(
        slug="starter", name="Starter", rank=0,
        allowed_priorities=frozenset({"LOW"}),
        delay_minutes=15, max_signals_per_day=3,
        includes_sl_tp=False, includes_analysis=False,
    ),
    Tier(
        slug="basic", name="Basic", rank=1,
        allowed_priorities=frozenset({"LOW", "MEDIUM"}),
        delay_minutes=5, max_signals_per_day=10,
        includes_sl_tp=True, includes_analysis=False,
    ),
    Tier(
        slug="premium", name="Premium", rank=2,
        allowed_priorities=frozenset({"LOW", "MEDIUM", "HIGH"}),
        delay_minutes=0, max_signals_per_day=None,
        includes_sl_tp=True, includes_analysis=True,
    ),
    Tier(
        slug="vip", name="VIP", rank=3,
        allowed_priorities=_ALL,
        delay_minutes=0, max_signals_per_day=None,
        includes_sl_tp=True, includes_analysis=True, includes_vip_channel=True,
    ),
)


def min_tier_for_priority(priority: Priority | str) -> str:
    """Minimum tier slug for *priority*; used once, when a signal is created."""
    return PRIORITY_MIN_TIER[Priority(priority)]


def can_tier_access(tier: Optional[Tier], signal: Signal, tiers_by_slug: dict[str, Tier]) -> bool:
    """True when *tier* may receive *signal*.

    Both conditions must hold: the tier lists the signal's priority, and the
    tier ranks at or above the signal's stored minimum tier.  An unknown
    tier (or an unknown minimum tier) is never eligible.
    """
    if tier is None:
        return False
    min_tier = tiers_by_slug.get(signal.min_tier)
    if min_tier is None:
        return False
    return Priority(signal.priority).value in tier.allowed_priorities and tier.rank >= min_tier.rank


def validate_tier_ordering(tiers: Iterable[Tier]) -> list[str]:
    """Return a description of every pair violating the superset rule."""
    ordered = sorted(tiers, key=lambda t: t.rank)
    problems: list[str] = []
    for i, low in enumerate(ordered):
        for high in ordered[i + 1:]:
            if high.rank == low.rank:
                continue
            missing = low.allowed_priorities - high.allowed_priorities
            if missing:
                problems.append(
                    f"tier '{high.slug}' (rank {high.rank}) lacks {sorted(missing)} "
                    f"allowed to lower tier '{low.slug}' (rank {low.rank})"
                )
    return problems
