"""
Anomaly Scorer

Unsupervised anomaly detection over transaction feature vectors using a
small autoencoder (an MLP trained to reproduce its own standardized input).

Scoring:
- Reconstruction error = mean squared error between the scaled feature
  vector and its reconstruction
- Decision threshold = 90th percentile of training reconstruction error,
  so roughly the worst 10% of the training population reaches 100
- Score = error / threshold * 100, capped at 100

ML NOTES:
- The model is shared by all users and is read-only once trained
- Training is offline (startup, or on demand when first needed) and takes
  seconds; scoring is a single forward pass
- Retraining builds a complete new model and swaps it in with one
  assignment, so readers never see a half-trained model
"""

import logging
import threading
import time
import warnings
from datetime import datetime, timezone
from typing import Dict, List, NamedTuple, Optional

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.neural_network import MLPRegressor
from sklearn.preprocessing import StandardScaler

from core.config import settings
from core.exceptions import InsufficientDataError, ModelNotTrainedError
from schemas import Transaction
from services.feature_extractor import (
    FEATURE_NAMES,
    TransactionFeatures,
    build_population_matrix,
    extract_features,
    features_to_array,
)
from utils.score_utils import round_half_up


# =============================================================================
# LOGGING
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

_CONFIG = {
    "THRESHOLD_PERCENTILE": 90.0,   # training error percentile used as threshold
    "MIN_THRESHOLD": 1e-6,          # guards perfectly reconstructed populations
    "MAX_ITER": 500,                # autoencoder epochs
    "LEARNING_RATE_INIT": 0.01,
    "RANDOM_STATE": 42,             # fixed seed for deterministic results
}


# =============================================================================
# TYPE DEFINITIONS
# =============================================================================

class AnomalyResult(NamedTuple):
    """Result from scoring one transaction."""
    score: int                      # 0-100
    is_anomaly: bool                # score above the flag threshold
    reconstruction_error: float
    features: TransactionFeatures


class _FittedAutoencoder(NamedTuple):
    """Everything a scoring pass needs, replaced as one unit."""
    scaler: StandardScaler
    model: MLPRegressor
    threshold: float
    training_samples: int
    trained_at: datetime


# =============================================================================
# ANOMALY SCORER
# =============================================================================

class AnomalyScorer:
    """
    Autoencoder-based anomaly scorer shared across users.

    `train` must complete before `score`; callers check `is_trained` and
    train on demand rather than waiting for an error.
    """

    def __init__(
        self,
        threshold_percentile: float = _CONFIG["THRESHOLD_PERCENTILE"],
        random_state: int = _CONFIG["RANDOM_STATE"],
    ):
        self.threshold_percentile = threshold_percentile
        self.random_state = random_state
        self._fitted: Optional[_FittedAutoencoder] = None
        self._train_lock = threading.Lock()

    @property
    def is_trained(self) -> bool:
        return self._fitted is not None

    @property
    def threshold(self) -> Optional[float]:
        fitted = self._fitted
        return fitted.threshold if fitted else None

    def train(self, population: List[Transaction]) -> float:
        """
        Train on a transaction population and swap the new model in.

        Args:
            population: Transactions of any number of accounts; each row's
                history is the same account's earlier transactions.

        Returns:
            The fitted decision threshold.
        """
        with self._train_lock:
            self._fitted = self.fit(population)
            return self._fitted.threshold

    def fit(self, population: List[Transaction]) -> _FittedAutoencoder:
        """Fit an autoencoder without installing it."""
        if not population:
            raise InsufficientDataError("Cannot train anomaly model on an empty population")

        start_time = time.time()

        X = build_population_matrix(population)
        scaler = StandardScaler()
        X_scaled = scaler.fit_transform(X)

        n_features = X_scaled.shape[1]
        model = MLPRegressor(
            hidden_layer_sizes=(max(n_features // 2, 1),),
            activation="relu",
            solver="adam",
            learning_rate_init=_CONFIG["LEARNING_RATE_INIT"],
            max_iter=_CONFIG["MAX_ITER"],
            random_state=self.random_state,
        )
        with warnings.catch_warnings():
            # Tiny populations stop at max_iter; the fit is still usable
            warnings.simplefilter("ignore", category=ConvergenceWarning)
            model.fit(X_scaled, X_scaled)

        errors = self._reconstruction_errors(model, X_scaled)
        threshold = float(np.percentile(errors, self.threshold_percentile))
        threshold = max(threshold, _CONFIG["MIN_THRESHOLD"])

        elapsed = time.time() - start_time
        logger.info(
            f"Anomaly model fitted on {len(population)} transactions in {elapsed:.3f}s "
            f"(threshold={threshold:.4f})"
        )
        return _FittedAutoencoder(
            scaler=scaler,
            model=model,
            threshold=threshold,
            training_samples=len(population),
            trained_at=datetime.now(timezone.utc),
        )

    def score(
        self,
        transaction: Transaction,
        history: List[Transaction],
        fitted: Optional[_FittedAutoencoder] = None,
    ) -> AnomalyResult:
        """
        Score one transaction against the fitted threshold.

        `fitted` overrides the installed model, e.g. one returned by `fit`.

        Raises:
            ModelNotTrainedError: if no model is given and `train` has not
                completed yet.
        """
        fitted = fitted or self._fitted
        if fitted is None:
            raise ModelNotTrainedError("Anomaly model not trained")

        features = extract_features(transaction, history)
        x = fitted.scaler.transform(features_to_array(features).reshape(1, -1))
        error = float(self._reconstruction_errors(fitted.model, x)[0])

        score = min(round_half_up(error / fitted.threshold * 100), 100)
        return AnomalyResult(
            score=score,
            is_anomaly=score > settings.FLAG_THRESHOLD,
            reconstruction_error=error,
            features=features,
        )

    def get_status(self) -> Dict:
        """Model status for monitoring."""
        fitted = self._fitted
        return {
            "is_trained": fitted is not None,
            "threshold": fitted.threshold if fitted else None,
            "training_samples": fitted.training_samples if fitted else 0,
            "trained_at": fitted.trained_at.isoformat() if fitted else None,
            "feature_count": len(FEATURE_NAMES),
            "config": {
                "threshold_percentile": self.threshold_percentile,
                "max_iter": _CONFIG["MAX_ITER"],
            },
        }

    def reset(self) -> None:
        """Drop the trained model (for testing)."""
        with self._train_lock:
            self._fitted = None

    @staticmethod
    def _reconstruction_errors(model: MLPRegressor, X_scaled: np.ndarray) -> np.ndarray:
        reconstructed = model.predict(X_scaled)
        if reconstructed.ndim == 1:
            reconstructed = reconstructed.reshape(X_scaled.shape)
        return np.mean((X_scaled - reconstructed) ** 2, axis=1)
