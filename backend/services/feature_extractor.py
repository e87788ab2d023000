"""
Feature Extractor

Turns a transaction plus the owner's history into the fixed-size numeric
vector shared by the anomaly scorer and the per-user classifier.

Features (in vector order):
- hour                      Hour of day (0-23)
- is_weekend                1 on Saturday/Sunday
- amount                    Absolute amount
- amount_vs_merchant_avg    amount / average at the same merchant
- amount_vs_category_avg    amount / average in the same category
- transaction_velocity_24h  Transactions in the trailing 24 hours
- total_amount_24h          Sum of those transactions
- merchant_frequency        Share of history at this merchant
- category_frequency        Share of history in this category

Only transactions dated strictly before the evaluated one count as history,
so training and inference never look ahead.
"""

from collections import defaultdict
from datetime import timedelta
from typing import Dict, Iterable, List, NamedTuple

import numpy as np

from schemas import Transaction


# =============================================================================
# TYPE DEFINITIONS
# =============================================================================

class TransactionFeatures(NamedTuple):
    """Feature vector for a single transaction."""
    hour: int
    is_weekend: int
    amount: float
    amount_vs_merchant_avg: float
    amount_vs_category_avg: float
    transaction_velocity_24h: int
    total_amount_24h: float
    merchant_frequency: float
    category_frequency: float


FEATURE_NAMES: List[str] = list(TransactionFeatures._fields)

_VELOCITY_WINDOW = timedelta(hours=24)


# =============================================================================
# HELPERS
# =============================================================================

def prior_transactions(transaction: Transaction, history: Iterable[Transaction]) -> List[Transaction]:
    """History restricted to transactions strictly older than `transaction`."""
    cutoff = transaction.transaction_date
    return [t for t in history if t.transaction_date < cutoff]


def _average_amount(transactions: List[Transaction]) -> float:
    if not transactions:
        return 0.0
    return sum(t.absolute_amount for t in transactions) / len(transactions)


def _ratio(amount: float, baseline: float) -> float:
    """amount / baseline, with the amount itself as denominator when there is no baseline."""
    denominator = baseline or amount
    if denominator == 0:
        return 1.0
    return amount / denominator


# =============================================================================
# FEATURE EXTRACTION
# =============================================================================

def extract_features(transaction: Transaction, history: Iterable[Transaction]) -> TransactionFeatures:
    """
    Compute the feature vector for `transaction`.

    Pure function: identical inputs always give identical features.
    """
    prior = prior_transactions(transaction, history)
    when = transaction.transaction_date
    amount = transaction.absolute_amount

    merchant_txns = [t for t in prior if t.merchant == transaction.merchant]
    category_txns = [t for t in prior if t.category == transaction.category]

    recent = [t for t in prior if when - t.transaction_date <= _VELOCITY_WINDOW]

    if prior:
        merchant_frequency = len(merchant_txns) / len(prior)
        category_frequency = len(category_txns) / len(prior)
    else:
        merchant_frequency = 0.0
        category_frequency = 0.0

    return TransactionFeatures(
        hour=when.hour,
        is_weekend=1 if when.weekday() >= 5 else 0,
        amount=amount,
        amount_vs_merchant_avg=_ratio(amount, _average_amount(merchant_txns)),
        amount_vs_category_avg=_ratio(amount, _average_amount(category_txns)),
        transaction_velocity_24h=len(recent),
        total_amount_24h=sum(t.absolute_amount for t in recent),
        merchant_frequency=merchant_frequency,
        category_frequency=category_frequency,
    )


def features_to_array(features: TransactionFeatures) -> np.ndarray:
    """Convert TransactionFeatures to a numpy row for the models."""
    return np.array(features, dtype=np.float64)


def features_to_dict(features: TransactionFeatures) -> Dict[str, float]:
    return {name: float(value) for name, value in features._asdict().items()}


def build_feature_matrix(transactions: List[Transaction]) -> np.ndarray:
    """
    Feature matrix for a set of transactions of one owner.

    Each row is computed against the transactions that precede it.
    """
    if not transactions:
        return np.empty((0, len(FEATURE_NAMES)), dtype=np.float64)
    return np.vstack([
        features_to_array(extract_features(t, transactions))
        for t in transactions
    ])


def build_population_matrix(population: List[Transaction]) -> np.ndarray:
    """
    Feature matrix for a mixed population, using per-account history.

    Rows keep the order of `population`.
    """
    by_account: Dict[str, List[Transaction]] = defaultdict(list)
    for t in population:
        by_account[t.account_id].append(t)

    if not population:
        return np.empty((0, len(FEATURE_NAMES)), dtype=np.float64)
    return np.vstack([
        features_to_array(extract_features(t, by_account[t.account_id]))
        for t in population
    ])
