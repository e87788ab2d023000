"""
Fraud Monitoring Service

Caller of the scoring core. Owns everything the core leaves to its caller:
- loading history and profile context from the repository
- persisting score and flag, raising suspicious-transaction alerts
- applying user feedback (classifier, behavioral profile, review status)
  followed by a retrospective sweep
- the situation lifecycle and its effect on the stored profile

Per-user work that reads the behavioral profile, scores, and then rebuilds
the profile runs under the user's lock, so feedback and new transactions
for the same user never interleave.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from core.config import settings
from core.exceptions import (
    DuplicateTransactionError,
    SituationNotFoundError,
    TransactionNotFoundError,
)
from schemas import (
    Alert,
    AlertSeverity,
    AlertType,
    ReviewStatus,
    RiskResult,
    Situation,
    SituationType,
    Transaction,
    UserProfile,
)
from services.anomaly_scorer import AnomalyScorer
from services.behavioral_profiler import BehavioralProfiler
from services.model_store import UserModelStore
from services.profile_context import parse_user_profile, with_situation
from services.reanalyzer import RetrospectiveReanalyzer
from services.repository import InMemoryRepository, get_repository
from services.risk_aggregator import RiskAggregator
from services.supervised_classifier import SupervisedClassifier

logger = logging.getLogger(__name__)


class FraudMonitoringService:
    """Wires the scorers to a repository."""

    def __init__(
        self,
        repository: InMemoryRepository,
        store: Optional[UserModelStore] = None,
        anomaly_scorer: Optional[AnomalyScorer] = None,
    ):
        self.repository = repository
        self.store = store or UserModelStore()
        self.anomaly_scorer = anomaly_scorer or AnomalyScorer()
        self.profiler = BehavioralProfiler(self.store)
        self.classifier = SupervisedClassifier(self.store)
        self.aggregator = RiskAggregator(
            self.anomaly_scorer, self.profiler, self.classifier, self.store
        )
        self.reanalyzer = RetrospectiveReanalyzer(self.aggregator, self.repository)
        self.is_initialized = False

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    def initialize(self) -> bool:
        """
        Train the anomaly model on every stored transaction and build each
        user's behavioral profile and classifier.

        Returns:
            True if models were trained, False if there was no data yet.
        """
        population = self.repository.get_all_transactions()
        if not population:
            logger.warning("No stored transactions; models will be trained on demand")
            return False

        self.anomaly_scorer.train(population)

        for user_id in self.repository.get_user_ids():
            history = self.repository.get_transactions_by_user(user_id)
            with self.store.user_lock(user_id):
                self.profiler.update_profile(user_id, history)
                self.classifier.train(user_id, history, [t.is_flagged for t in history])

        self.is_initialized = True
        logger.info(
            f"Fraud monitoring initialized: {len(population)} transactions, "
            f"{len(self.repository.get_user_ids())} users"
        )
        return True

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.repository.get_user_profile(user_id)

    def analyze_transaction(self, user_id: str, transaction: Transaction) -> RiskResult:
        """
        Score a new transaction, then store it with its committed score and
        alert when it is flagged.

        Nothing is stored when scoring fails.

        Raises:
            DuplicateTransactionError: if the id is already stored.
        """
        profile = self.get_user_profile(user_id)

        with self.store.user_lock(user_id):
            if self.repository.has_transaction(transaction.id):
                raise DuplicateTransactionError(f"Transaction {transaction.id} already exists")
            history = self.repository.get_transactions_by_user(user_id)

            result = self.aggregator.analyze(
                transaction,
                user_id,
                history,
                profile,
                population=self.repository.get_all_transactions() + [transaction],
            )
            self.repository.add_transaction(user_id, transaction.model_copy(update={
                "suspicious_score": result.suspicious_score,
                "is_flagged": result.is_anomaly,
            }))

            # Fold the new transaction into the baseline only after scoring it
            self.profiler.update_profile(user_id, self.repository.get_transactions_by_user(user_id))

        if result.is_anomaly:
            self._raise_suspicious_alert(user_id, transaction, result)

        logger.info(
            f"Transaction {transaction.id} scored {result.suspicious_score} "
            f"(anomaly={result.anomaly_score}, behavioral={result.behavioral_score}, "
            f"classifier={result.classifier_score}, profile={result.profile_score})"
        )
        return result

    def analyze_batch(self, user_id: str, transactions: List[Transaction]) -> Dict[str, RiskResult]:
        """
        Score transactions without persisting them.

        Each one is scored against the stored history only, and no model is
        installed from the batch.
        """
        profile = self.get_user_profile(user_id)
        history = self.repository.get_transactions_by_user(user_id)
        return self.aggregator.analyze_batch(
            transactions,
            user_id,
            history,
            profile,
            population=self.repository.get_all_transactions(),
        )

    def _ensure_models(self, user_id: str, history: List[Transaction]) -> None:
        """Train any missing model from stored transactions."""
        if not self.anomaly_scorer.is_trained:
            population = self.repository.get_all_transactions()
            if population:
                self.anomaly_scorer.train(population)
        if history:
            self.classifier.ensure_model(user_id, history)

    def _raise_suspicious_alert(self, user_id: str, transaction: Transaction, result: RiskResult) -> Alert:
        severity = (
            AlertSeverity.HIGH if result.suspicious_score >= settings.HIGH_SEVERITY_THRESHOLD
            else AlertSeverity.MEDIUM
        )
        return self.repository.create_alert(
            user_id=user_id,
            transaction_id=transaction.id,
            alert_type=AlertType.SUSPICIOUS_TRANSACTION,
            severity=severity,
            title="Suspicious Transaction Detected",
            description=(
                f"Transaction of ${transaction.absolute_amount:,.2f} at {transaction.merchant} "
                f"has been flagged as suspicious with a risk score of {result.suspicious_score}/100."
            ),
        )

    # -------------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------------

    def _owned_transaction(self, user_id: str, transaction_id: str) -> Transaction:
        if self.repository.get_owner(transaction_id) != user_id:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return self.repository.get_transaction(transaction_id)

    def record_feedback(
        self,
        user_id: str,
        transaction_id: str,
        is_actually_fraud: bool,
    ) -> List[Alert]:
        """
        Update the user's classifier and behavioral profile with a labelled
        transaction, then sweep the user's history.

        Returns:
            Retrospective alerts raised by the sweep.
        """
        transaction = self._owned_transaction(user_id, transaction_id)

        with self.store.user_lock(user_id):
            history = self.repository.get_transactions_by_user(user_id)
            self.classifier.update_model(user_id, transaction, is_actually_fraud, history)
            self.profiler.update_profile(user_id, history)

        return self.reanalyze_user(user_id)

    def review_transaction(
        self,
        user_id: str,
        transaction_id: str,
        review_status: ReviewStatus,
        is_fraudulent: Optional[bool] = None,
    ):
        """
        Record the user's review; with a fraud verdict the models learn from it.

        Returns:
            (updated transaction, whether models were updated, retrospective alerts)
        """
        self._owned_transaction(user_id, transaction_id)

        alerts: List[Alert] = []
        model_updated = is_fraudulent is not None
        if model_updated:
            alerts = self.record_feedback(user_id, transaction_id, is_fraudulent)

        updated = self.repository.update_review_status(transaction_id, review_status)
        logger.info(
            f"Transaction {transaction_id} reviewed as {review_status.value} "
            f"(fraud feedback={is_fraudulent})"
        )
        return updated, model_updated, alerts

    def reanalyze_user(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> List[Alert]:
        """
        Retrospective sweep over everything the user has stored.

        Missing models are trained from the full stored history first, so
        every transaction in the sweep is scored by the same models.
        """
        history = self.repository.get_transactions_by_user(user_id)
        with self.store.user_lock(user_id):
            self._ensure_models(user_id, history)
        return self.reanalyzer.reanalyze(user_id, history, self.get_user_profile(user_id), now=now)

    # -------------------------------------------------------------------------
    # Profile context
    # -------------------------------------------------------------------------

    def update_profile(
        self,
        user_id: str,
        living_profile: Optional[str],
        spending_profile: Optional[str],
    ) -> UserProfile:
        profile = parse_user_profile(user_id, living_profile, spending_profile)
        return self.repository.save_user_profile(profile)

    def _current_profile(self, user_id: str) -> UserProfile:
        return self.get_user_profile(user_id) or UserProfile(user_id=user_id)

    def start_situation(
        self,
        user_id: str,
        situation_type: SituationType,
        description: str = "",
        start_date: Optional[datetime] = None,
        expected_end_date: Optional[datetime] = None,
        reminder_frequency_days: int = 3,
    ) -> Situation:
        """Track a life event and tag the user's profile with it."""
        situation = self.repository.create_situation(Situation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            situation_type=situation_type,
            description=description,
            start_date=start_date or datetime.now(timezone.utc),
            expected_end_date=expected_end_date,
            reminder_frequency_days=reminder_frequency_days,
        ))
        self.repository.save_user_profile(
            with_situation(self._current_profile(user_id), situation_type)
        )
        logger.info(f"Situation {situation_type.value} started for user {user_id}")
        return situation

    def end_situation(self, situation_id: str, user_id: Optional[str] = None) -> Situation:
        """Close a situation; the profile tag is cleared when nothing else is active."""
        situation = self.repository.get_situation(situation_id)
        if user_id is not None and situation.user_id != user_id:
            raise SituationNotFoundError(f"Situation {situation_id} not found")

        ended = self.repository.update_situation(
            situation_id,
            is_active=False,
            actual_end_date=datetime.now(timezone.utc),
        )

        remaining = self.repository.get_situations_by_user(ended.user_id, active_only=True)
        next_situation = remaining[-1].situation_type if remaining else None
        self.repository.save_user_profile(
            with_situation(self._current_profile(ended.user_id), next_situation)
        )
        logger.info(f"Situation {situation_id} ended for user {ended.user_id}")
        return ended

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_status(self) -> Dict:
        return {
            "initialized": self.is_initialized,
            "anomaly_model": self.anomaly_scorer.get_status(),
            "user_models": self.store.get_stats(),
            "flag_threshold": self.aggregator.flag_threshold,
        }

    def get_user_model_status(self, user_id: str) -> Dict:
        profile = self.profiler.get_profile(user_id)
        return {
            "classifier": self.classifier.get_status(user_id),
            "behavioral_profile": {
                "exists": profile is not None,
                "transaction_count": profile.transaction_count if profile else 0,
                "average_amount": profile.average_amount if profile else None,
            },
        }


# =============================================================================
# SINGLETON
# =============================================================================

_fraud_service: Optional[FraudMonitoringService] = None


def get_fraud_service() -> FraudMonitoringService:
    """Get or create the global fraud monitoring service."""
    global _fraud_service
    if _fraud_service is None:
        _fraud_service = FraudMonitoringService(get_repository())
    return _fraud_service


def reset_fraud_service() -> None:
    """Drop the global service (for testing)."""
    global _fraud_service
    _fraud_service = None
