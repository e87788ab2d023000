"""
Behavioral Profiler

Per-user, rule-based profile of "normal" spending and a deviation score
for new transactions.

Signals (additive, each an independent yes/no trigger):
1. Unusual hour      +20  hour never seen in the user's history
2. New merchant      +15  merchant never seen
3. New category      +10  category never seen
4. Amount spike      +25  amount above 2x the user's average amount

The total is capped at 100. A user without a profile scores 0: there is
no baseline to deviate from yet.
"""

import logging
from typing import FrozenSet, List, NamedTuple, Optional

from schemas import Transaction
from services.model_store import UserModelStore
from utils.score_utils import days_between

logger = logging.getLogger(__name__)


# Configuration constants for deviation scoring
_CONFIG = {
    "UNUSUAL_HOUR_POINTS": 20,
    "NEW_MERCHANT_POINTS": 15,
    "NEW_CATEGORY_POINTS": 10,
    "AMOUNT_SPIKE_POINTS": 25,
    "AMOUNT_SPIKE_MULTIPLIER": 2.0,
}


# =============================================================================
# TYPE DEFINITIONS
# =============================================================================

class BehavioralProfile(NamedTuple):
    """What one user's spending normally looks like."""
    typical_hours: FrozenSet[int]
    typical_merchants: FrozenSet[str]
    typical_categories: FrozenSet[str]
    average_amount: float
    transaction_frequency: float   # transactions per day
    transaction_count: int


class SignalResult(NamedTuple):
    """Result from a single deviation signal evaluation."""
    name: str
    score: int            # Points contributed when triggered
    triggered: bool
    explanation: str


def build_profile(transactions: List[Transaction]) -> BehavioralProfile:
    """Summarize a non-empty transaction list into a profile."""
    ordered = sorted(transactions, key=lambda t: t.transaction_date)

    total_amount = sum(t.absolute_amount for t in ordered)
    span_days = days_between(ordered[0].transaction_date, ordered[-1].transaction_date)

    return BehavioralProfile(
        typical_hours=frozenset(t.transaction_date.hour for t in ordered),
        typical_merchants=frozenset(t.merchant for t in ordered),
        typical_categories=frozenset(t.category for t in ordered),
        average_amount=total_amount / len(ordered),
        transaction_frequency=len(ordered) / (span_days or 1),
        transaction_count=len(ordered),
    )


# =============================================================================
# PROFILER
# =============================================================================

class BehavioralProfiler:
    """Maintains behavioral profiles in a UserModelStore and scores deviations."""

    def __init__(self, store: UserModelStore):
        self.store = store

    def update_profile(self, user_id: str, transactions: List[Transaction]) -> Optional[BehavioralProfile]:
        """
        Rebuild the user's profile from `transactions` (full replace).

        An empty list leaves the user without a profile.
        """
        with self.store.user_lock(user_id):
            if not transactions:
                self.store.remove_profile(user_id)
                return None

            profile = build_profile(transactions)
            self.store.set_profile(user_id, profile)

        logger.debug(
            f"Profile rebuilt for user {user_id}: {profile.transaction_count} transactions, "
            f"avg ${profile.average_amount:,.2f}"
        )
        return profile

    def get_profile(self, user_id: str) -> Optional[BehavioralProfile]:
        return self.store.get_profile(user_id)

    def deviation_signals(self, user_id: str, transaction: Transaction) -> List[SignalResult]:
        """Evaluate every deviation signal; empty when the user has no profile."""
        profile: Optional[BehavioralProfile] = self.store.get_profile(user_id)
        if profile is None:
            return []

        hour = transaction.transaction_date.hour
        amount = transaction.absolute_amount
        spike_limit = profile.average_amount * _CONFIG["AMOUNT_SPIKE_MULTIPLIER"]

        return [
            SignalResult(
                name="unusual_hour",
                score=_CONFIG["UNUSUAL_HOUR_POINTS"],
                triggered=hour not in profile.typical_hours,
                explanation=f"Transaction at {hour}:00 is outside the usual hours",
            ),
            SignalResult(
                name="new_merchant",
                score=_CONFIG["NEW_MERCHANT_POINTS"],
                triggered=transaction.merchant not in profile.typical_merchants,
                explanation=f"First transaction at {transaction.merchant}",
            ),
            SignalResult(
                name="new_category",
                score=_CONFIG["NEW_CATEGORY_POINTS"],
                triggered=transaction.category not in profile.typical_categories,
                explanation=f"First {transaction.category} transaction",
            ),
            SignalResult(
                name="amount_spike",
                score=_CONFIG["AMOUNT_SPIKE_POINTS"],
                triggered=amount > spike_limit,
                explanation=(
                    f"Amount ${amount:,.2f} is more than twice the usual "
                    f"${profile.average_amount:,.2f}"
                ),
            ),
        ]

    def score_deviation(self, user_id: str, transaction: Transaction) -> int:
        """0-100 deviation score; 0 when no profile exists yet."""
        signals = self.deviation_signals(user_id, transaction)
        total = sum(s.score for s in signals if s.triggered)
        return min(total, 100)
