"""
Retrospective Reanalyzer

Replays the risk aggregator over a user's older transactions after models
or profiles change, and flags the ones whose assessment moved materially.

Policy:
- Transactions younger than 30 days are left alone
- Eligible transactions are processed oldest-first, each scored against
  only the transactions strictly older than it
- A transaction is re-committed (score + flag together) and alerted on when
      (new > 70 and old < 50)  or  |new - old| > 30
  where `old` is the score currently stored, so a repeated sweep with no new
  information raises nothing new
- The sweep can be cancelled between transactions
"""

import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional

from core.config import settings
from schemas import Alert, AlertSeverity, AlertType, Transaction, UserProfile
from services.feature_extractor import prior_transactions
from services.repository import InMemoryRepository
from services.risk_aggregator import RiskAggregator
from utils.score_utils import days_between, round_half_up

logger = logging.getLogger(__name__)


class RetrospectiveReanalyzer:
    """Sweeps a user's history with the current models."""

    def __init__(
        self,
        aggregator: RiskAggregator,
        repository: InMemoryRepository,
        min_age_days: int = settings.RETROSPECTIVE_MIN_AGE_DAYS,
        flag_floor: int = settings.RETROSPECTIVE_FLAG_FLOOR,
        score_delta: int = settings.RETROSPECTIVE_SCORE_DELTA,
    ):
        self.aggregator = aggregator
        self.repository = repository
        self.min_age_days = min_age_days
        self.flag_floor = flag_floor
        self.score_delta = score_delta

    def is_material_change(self, old_score: int, new_score: int) -> bool:
        newly_suspicious = new_score > self.aggregator.flag_threshold and old_score < self.flag_floor
        return newly_suspicious or abs(new_score - old_score) > self.score_delta

    def reanalyze(
        self,
        user_id: str,
        historical_transactions: List[Transaction],
        user_profile: Optional[UserProfile] = None,
        now: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Alert]:
        """
        Re-score the user's eligible transactions.

        Args:
            user_id: Owner of the history
            historical_transactions: The user's transactions
            user_profile: Profile context for the aggregator
            now: Reference time for the age cut-off (defaults to now)
            cancel_event: When set, the sweep stops before the next transaction

        Returns:
            The retrospective alerts raised by this sweep
        """
        now = now or datetime.now(timezone.utc)
        ordered = sorted(historical_transactions, key=lambda t: (t.transaction_date, t.id))
        eligible = [
            t for t in ordered
            if days_between(t.transaction_date, now) >= self.min_age_days
        ]

        logger.info(
            f"Retrospective sweep for user {user_id}: "
            f"{len(eligible)} of {len(ordered)} transactions eligible"
        )

        alerts: List[Alert] = []
        for transaction in eligible:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Retrospective sweep for user {user_id} cancelled")
                break

            history = prior_transactions(transaction, ordered)
            # Models are fixed for the whole sweep; a missing one is fitted per call
            result = self.aggregator.analyze(
                transaction, user_id, history, user_profile, install_models=False
            )

            old_score = self.repository.get_transaction(transaction.id).suspicious_score
            new_score = result.suspicious_score
            if not self.is_material_change(old_score, new_score):
                continue

            self.repository.update_risk(transaction.id, new_score, result.is_anomaly)
            alerts.append(self._raise_alert(user_id, transaction, new_score, now))
            logger.warning(
                f"Transaction {transaction.id} retrospectively re-scored "
                f"{old_score} -> {new_score} for user {user_id}"
            )

        return alerts

    def _raise_alert(self, user_id: str, transaction: Transaction, score: int, now: datetime) -> Alert:
        age_days = round_half_up(days_between(transaction.transaction_date, now))
        severity = (
            AlertSeverity.HIGH if score >= settings.HIGH_SEVERITY_THRESHOLD
            else AlertSeverity.MEDIUM
        )
        return self.repository.create_alert(
            user_id=user_id,
            transaction_id=transaction.id,
            alert_type=AlertType.RETROSPECTIVE_ANALYSIS,
            severity=severity,
            title="Historical Transaction Flagged",
            description=(
                f"A {age_days}-day-old transaction at {transaction.merchant} for "
                f"${transaction.absolute_amount:,.2f} has been retrospectively flagged "
                f"as suspicious (risk score: {score}/100)."
            ),
        )
