"""
Risk Aggregator

Combines the four scoring signals into the final suspicious score:

    combined = round(0.30 * anomaly
                     + 0.25 * behavioral
                     + 0.25 * classifier
                     + 0.20 * profile heuristics)

then applies the situational adjustment and flags the transaction when the
adjusted score is above the flag threshold (70).

The weights and threshold are empirical and kept exactly as established;
downstream alerting depends on them.

The aggregator performs no I/O. It returns an immutable RiskResult and the
caller persists the score/flag and raises alerts.
"""

import logging
from typing import Dict, List, Optional

from core.config import settings
from schemas import RiskResult, Transaction, UserProfile
from services.anomaly_scorer import AnomalyScorer
from services.behavioral_profiler import BehavioralProfiler
from services.feature_extractor import features_to_dict, prior_transactions
from services.model_store import UserModelStore
from services.profile_context import adjust_for_situation, profile_heuristic_score
from services.supervised_classifier import SupervisedClassifier
from utils.score_utils import clamp_score, round_half_up

logger = logging.getLogger(__name__)


SIGNAL_WEIGHTS: Dict[str, float] = {
    "anomaly": 0.30,
    "behavioral": 0.25,
    "classifier": 0.25,
    "profile": 0.20,
}


class RiskAggregator:
    """Orchestrates the scorers for one transaction at a time."""

    def __init__(
        self,
        anomaly_scorer: AnomalyScorer,
        behavioral_profiler: BehavioralProfiler,
        classifier: SupervisedClassifier,
        store: UserModelStore,
        flag_threshold: int = settings.FLAG_THRESHOLD,
    ):
        self.anomaly_scorer = anomaly_scorer
        self.behavioral_profiler = behavioral_profiler
        self.classifier = classifier
        self.store = store
        self.flag_threshold = flag_threshold

    def analyze(
        self,
        transaction: Transaction,
        user_id: str,
        history: List[Transaction],
        user_profile: Optional[UserProfile] = None,
        population: Optional[List[Transaction]] = None,
        install_models: bool = True,
    ) -> RiskResult:
        """
        Score `transaction` for `user_id`.

        Args:
            transaction: The transaction under evaluation
            user_id: Owner of the transaction
            history: The user's transactions; only those strictly older than
                `transaction` are used as context
            user_profile: Situation and free-text profile context
            population: Training population if the anomaly model still needs
                training; defaults to `history` plus `transaction`
            install_models: When False, a missing model is fitted for this call
                only and never stored, so nothing learnt here outlives it

        Returns:
            RiskResult with the final score and every sub-score
        """
        others = [t for t in history if t.id != transaction.id]

        # Step 1: Anomaly score (train on demand if needed)
        fitted = None
        if not self.anomaly_scorer.is_trained:
            training_set = population or (others + [transaction])
            logger.warning(
                f"Anomaly model not trained; training on demand from {len(training_set)} transactions"
            )
            if install_models:
                self.anomaly_scorer.train(training_set)
            else:
                fitted = self.anomaly_scorer.fit(training_set)
        anomaly = self.anomaly_scorer.score(transaction, others, fitted)

        # Step 2: Behavioral and classifier scores (per-user state)
        with self.store.user_lock(user_id):
            behavioral_score = self.behavioral_profiler.score_deviation(user_id, transaction)
            classifier_score = self._classifier_score(user_id, transaction, others, install_models)

        # Step 3: Free-text profile heuristics
        profile_score = profile_heuristic_score(transaction, user_profile)

        # Step 4: Weighted combination
        combined = clamp_score(round_half_up(
            SIGNAL_WEIGHTS["anomaly"] * anomaly.score
            + SIGNAL_WEIGHTS["behavioral"] * behavioral_score
            + SIGNAL_WEIGHTS["classifier"] * classifier_score
            + SIGNAL_WEIGHTS["profile"] * profile_score
        ))

        # Step 5: Situational adjustment and decision
        adjusted = adjust_for_situation(combined, transaction, user_profile)

        return RiskResult(
            suspicious_score=adjusted.score,
            is_anomaly=adjusted.score > self.flag_threshold,
            anomaly_score=anomaly.score,
            behavioral_score=behavioral_score,
            classifier_score=classifier_score,
            profile_score=profile_score,
            original_score=adjusted.original_score,
            profile_adjustments=list(adjusted.reasons),
            features=features_to_dict(anomaly.features),
        )

    def analyze_batch(
        self,
        transactions: List[Transaction],
        user_id: str,
        history: List[Transaction],
        user_profile: Optional[UserProfile] = None,
        population: Optional[List[Transaction]] = None,
    ) -> Dict[str, RiskResult]:
        """
        Score several transactions of one user; keyed by transaction id.

        Nothing is installed: batch items are never stored, so no model may
        be fitted from them.
        """
        return {
            t.id: self.analyze(t, user_id, history, user_profile, population, install_models=False)
            for t in transactions
        }

    def _classifier_score(
        self,
        user_id: str,
        transaction: Transaction,
        history: List[Transaction],
        install_models: bool = True,
    ) -> int:
        """Classifier score, fitting the user's model first if this is its first use."""
        classifier = None
        if not self.classifier.has_model(user_id):
            if not history:
                # Cold start: nothing to learn from yet
                return 0
            if install_models:
                self.classifier.ensure_model(user_id, history)
            else:
                classifier = self.classifier.fit(user_id, history, [t.is_flagged for t in history])
        return self.classifier.predict(
            user_id, transaction, prior_transactions(transaction, history), classifier
        )
