"""
Supervised Classifier

Per-user fraud classifier trained on the user's own history, labelled by
whether each past transaction was flagged.

Model: logistic regression fitted by stochastic gradient descent
(scikit-learn SGDClassifier with log loss) on standardized features.
Log loss gives a probability, scaled here to a 0-100 score, and SGD
supports true online updates via `partial_fit`, so user feedback is folded
in one example at a time instead of refitting from scratch.

Lifecycle:
- Created lazily the first time a user is scored (fit on that user's history)
- Updated online by `update_model` when the user confirms or rejects fraud
- Updates are applied to a copy and swapped in, so a prediction never sees
  a half-updated model
"""

import copy
import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

import numpy as np
from sklearn.linear_model import SGDClassifier
from sklearn.preprocessing import StandardScaler

from core.exceptions import InsufficientDataError, ModelNotTrainedError
from schemas import Transaction
from services.feature_extractor import build_feature_matrix, extract_features, features_to_array
from services.model_store import UserModelStore
from utils.score_utils import round_half_up

logger = logging.getLogger(__name__)


_CONFIG = {
    "TRAINING_EPOCHS": 20,      # passes over the history on initial fit
    "ALPHA": 1e-3,              # L2 regularization strength
    "FEEDBACK_WEIGHT": 5.0,     # sample weight of a user-confirmed label
    "RANDOM_STATE": 42,
}

_CLASSES = np.array([0, 1])


# =============================================================================
# PER-USER MODEL
# =============================================================================

class UserClassifier:
    """One user's scaler + SGD logistic regression."""

    def __init__(self, user_id: str, random_state: int = _CONFIG["RANDOM_STATE"]):
        self.user_id = user_id
        self.scaler = StandardScaler()
        self.model = SGDClassifier(
            loss="log_loss",
            penalty="l2",
            alpha=_CONFIG["ALPHA"],
            random_state=random_state,
        )
        self.training_samples = 0
        self.feedback_count = 0
        self.trained_at: Optional[datetime] = None

    def fit(self, X: np.ndarray, y: np.ndarray) -> None:
        """Initial fit. Works with a single class present, unlike `fit()` on SGD."""
        X_scaled = self.scaler.fit_transform(X)
        for _ in range(_CONFIG["TRAINING_EPOCHS"]):
            self.model.partial_fit(X_scaled, y, classes=_CLASSES)
        self.training_samples = len(y)
        self.trained_at = datetime.now(timezone.utc)

    def fraud_probability(self, x: np.ndarray) -> float:
        x_scaled = self.scaler.transform(x.reshape(1, -1))
        return float(self.model.predict_proba(x_scaled)[0, 1])

    def partial_update(self, x: np.ndarray, label: int) -> None:
        """Online update with one labelled example; the scaler stays fixed."""
        x_scaled = self.scaler.transform(x.reshape(1, -1))
        self.model.partial_fit(
            x_scaled,
            np.array([label]),
            classes=_CLASSES,
            sample_weight=np.array([_CONFIG["FEEDBACK_WEIGHT"]]),
        )
        self.feedback_count += 1


# =============================================================================
# CLASSIFIER MANAGER
# =============================================================================

class SupervisedClassifier:
    """Trains, serves and updates per-user classifiers held in a UserModelStore."""

    def __init__(self, store: UserModelStore, random_state: int = _CONFIG["RANDOM_STATE"]):
        self.store = store
        self.random_state = random_state

    def has_model(self, user_id: str) -> bool:
        return self.store.has_classifier(user_id)

    def train(self, user_id: str, transactions: List[Transaction], labels: List[bool]) -> UserClassifier:
        """
        Fit a fresh classifier for `user_id` and install it.

        Raises:
            InsufficientDataError: if there is nothing to train on.
            ValueError: if labels and transactions differ in length.
        """
        classifier = self.fit(user_id, transactions, labels)
        with self.store.user_lock(user_id):
            self.store.set_classifier(user_id, classifier)
        return classifier

    def fit(self, user_id: str, transactions: List[Transaction], labels: List[bool]) -> UserClassifier:
        """Fit a classifier for `user_id` without installing it."""
        if not transactions:
            raise InsufficientDataError(f"No transaction history to train classifier for user {user_id}")
        if len(labels) != len(transactions):
            raise ValueError("labels must match transactions one-to-one")

        start_time = time.time()
        X = build_feature_matrix(transactions)
        y = np.array([1 if label else 0 for label in labels])

        classifier = UserClassifier(user_id, random_state=self.random_state)
        classifier.fit(X, y)

        elapsed = time.time() - start_time
        logger.info(
            f"Classifier fitted for user {user_id} on {len(y)} transactions "
            f"({int(y.sum())} flagged) in {elapsed:.3f}s"
        )
        return classifier

    def ensure_model(self, user_id: str, history: List[Transaction]) -> UserClassifier:
        """Return the user's classifier, training it from `history` if absent."""
        with self.store.user_lock(user_id):
            classifier = self.store.get_classifier(user_id)
            if classifier is None:
                logger.info(f"No classifier for user {user_id}, training from {len(history)} transactions")
                classifier = self.train(user_id, history, [t.is_flagged for t in history])
            return classifier

    def predict(
        self,
        user_id: str,
        transaction: Transaction,
        history: List[Transaction],
        classifier: Optional[UserClassifier] = None,
    ) -> int:
        """
        0-100 fraud likelihood for `transaction`.

        `classifier` overrides the installed model, e.g. one returned by `fit`.

        Raises:
            ModelNotTrainedError: if no classifier is given and the user has none yet.
        """
        classifier = classifier or self.store.get_classifier(user_id)
        if classifier is None:
            raise ModelNotTrainedError(f"No classifier trained for user {user_id}")

        features = extract_features(transaction, history)
        probability = classifier.fraud_probability(features_to_array(features))
        return min(max(round_half_up(probability * 100), 0), 100)

    def update_model(
        self,
        user_id: str,
        transaction: Transaction,
        is_actually_fraud: bool,
        history: List[Transaction],
    ) -> UserClassifier:
        """
        Fold one user-labelled example into the user's classifier.

        Without an existing classifier, one is fitted on `history` plus the
        labelled transaction.
        """
        with self.store.user_lock(user_id):
            current: Optional[UserClassifier] = self.store.get_classifier(user_id)

            if current is None:
                others = [t for t in history if t.id != transaction.id]
                return self.train(
                    user_id,
                    others + [transaction],
                    [t.is_flagged for t in others] + [is_actually_fraud],
                )

            updated = copy.deepcopy(current)
            features = extract_features(transaction, history)
            updated.partial_update(features_to_array(features), 1 if is_actually_fraud else 0)
            self.store.set_classifier(user_id, updated)

        logger.info(
            f"Classifier for user {user_id} updated with feedback on {transaction.id} "
            f"(fraud={is_actually_fraud}, feedback_count={updated.feedback_count})"
        )
        return updated

    def get_status(self, user_id: str) -> Dict:
        classifier: Optional[UserClassifier] = self.store.get_classifier(user_id)
        if classifier is None:
            return {"user_id": user_id, "is_trained": False}
        return {
            "user_id": user_id,
            "is_trained": True,
            "model_type": "SGDClassifier(log_loss)",
            "training_samples": classifier.training_samples,
            "feedback_count": classifier.feedback_count,
            "trained_at": classifier.trained_at.isoformat() if classifier.trained_at else None,
        }
