"""Unit tests for risk aggregation"""

import json

import pytest
from pydantic import ValidationError

from schemas import SituationType, UserProfile
from services.anomaly_scorer import AnomalyResult, AnomalyScorer
from services.feature_extractor import extract_features
from services.risk_aggregator import SIGNAL_WEIGHTS, RiskAggregator
from utils.score_utils import round_half_up
from tests.conftest import BASE_TIME


class _FixedAnomaly:
    is_trained = True

    def __init__(self, score):
        self._score = score

    def score(self, transaction, history, fitted=None):
        return AnomalyResult(
            score=self._score,
            is_anomaly=self._score > 70,
            reconstruction_error=0.0,
            features=extract_features(transaction, history),
        )


class _FixedBehavior:
    def __init__(self, score):
        self._score = score

    def score_deviation(self, user_id, transaction):
        return self._score


class _FixedClassifier:
    def __init__(self, score):
        self._score = score

    def has_model(self, user_id):
        return True

    def predict(self, user_id, transaction, history, classifier=None):
        return self._score


def _fixed_aggregator(model_store, anomaly, behavioral, classifier):
    return RiskAggregator(
        _FixedAnomaly(anomaly),
        _FixedBehavior(behavioral),
        _FixedClassifier(classifier),
        model_store,
    )


def test_weights_are_preserved():
    assert SIGNAL_WEIGHTS == {
        "anomaly": 0.30,
        "behavioral": 0.25,
        "classifier": 0.25,
        "profile": 0.20,
    }


def test_weighted_combination(model_store, make_transaction):
    aggregator = _fixed_aggregator(model_store, anomaly=100, behavioral=60, classifier=40)

    result = aggregator.analyze(make_transaction(), "user-1", [])

    assert result.original_score == 55
    assert result.suspicious_score == 55
    assert not result.is_anomaly


@pytest.mark.parametrize(
    "anomaly, behavioral, classifier, flagged",
    [
        (100, 100, 60, False),   # 30 + 25 + 15 = 70
        (100, 100, 64, True),    # 30 + 25 + 16 = 71
        (90, 60, 60, False),     # 27 + 15 + 15 = 57
    ],
)
def test_flag_threshold_is_strict(model_store, make_transaction, anomaly, behavioral, classifier, flagged):
    aggregator = _fixed_aggregator(model_store, anomaly, behavioral, classifier)

    result = aggregator.analyze(make_transaction(), "user-1", [])

    assert result.is_anomaly is flagged


def test_score_of_exactly_70_is_not_flagged(model_store, make_transaction):
    aggregator = _fixed_aggregator(model_store, anomaly=100, behavioral=100, classifier=60)

    result = aggregator.analyze(make_transaction(), "user-1", [])

    assert result.suspicious_score == 70
    assert not result.is_anomaly


def test_first_transaction_of_new_user(aggregator, classifier, make_transaction):
    """No history: behavioral and classifier signals contribute nothing"""
    tx = make_transaction(amount=-50.0, category="grocery")

    result = aggregator.analyze(tx, "new-user", [])

    assert result.behavioral_score == 0
    assert result.classifier_score == 0
    assert result.profile_score == 0
    assert result.profile_adjustments == []
    assert result.suspicious_score == result.original_score
    assert result.suspicious_score == round_half_up(0.30 * result.anomaly_score)
    assert not classifier.has_model("new-user")


def test_travel_hotel_scenario(aggregator, routine_history, make_transaction):
    profile = UserProfile(
        user_id="user-1",
        spending_profile=json.dumps({"currentSituation": "travel"}),
        current_situation=SituationType.TRAVEL,
    )
    tx = make_transaction(merchant="Harbor Hotel", category="hotels", amount=-450.0)

    result = aggregator.analyze(tx, "user-1", routine_history, profile)

    assert result.suspicious_score == max(0, result.original_score - 40)
    assert len(result.profile_adjustments) == 2
    assert len(set(result.profile_adjustments)) == 2


def test_analyze_is_idempotent(aggregator, profiler, routine_history, make_transaction):
    profiler.update_profile("user-1", routine_history)
    tx = make_transaction(merchant="Corner Pharmacy", category="pharmacy", amount=-140.0)

    first = aggregator.analyze(tx, "user-1", routine_history)
    second = aggregator.analyze(tx, "user-1", routine_history)

    assert first == second
    assert first.model_dump_json() == second.model_dump_json()


def test_result_is_immutable(aggregator, make_transaction):
    result = aggregator.analyze(make_transaction(), "user-1", [])
    with pytest.raises(ValidationError):
        result.suspicious_score = 0


def test_scores_stay_in_range(aggregator, profiler, routine_history, make_transaction):
    profiler.update_profile("user-1", routine_history)
    tx = make_transaction(
        merchant="Global Wire Services",
        category="transfer",
        amount=-9000.0,
        transaction_date=BASE_TIME.replace(hour=2),
    )

    result = aggregator.analyze(tx, "user-1", routine_history)

    for score in (
        result.suspicious_score,
        result.anomaly_score,
        result.behavioral_score,
        result.classifier_score,
        result.profile_score,
    ):
        assert 0 <= score <= 100
    assert result.behavioral_score == 70
    assert set(result.features) == set(extract_features(tx, routine_history)._fields)


def test_untrained_anomaly_model_is_trained_on_demand(profiler, classifier, model_store, routine_history, make_transaction):
    scorer = AnomalyScorer()
    aggregator = RiskAggregator(scorer, profiler, classifier, model_store)

    result = aggregator.analyze(make_transaction(), "user-1", routine_history)

    assert scorer.is_trained
    assert scorer.get_status()["training_samples"] == len(routine_history) + 1
    assert 0 <= result.anomaly_score <= 100


def test_batch_keyed_by_transaction_id(aggregator, routine_history, make_transaction):
    batch = [make_transaction(amount=-20.0), make_transaction(amount=-700.0)]

    results = aggregator.analyze_batch(batch, "user-1", routine_history)

    assert set(results) == {t.id for t in batch}
    assert results[batch[0].id] == aggregator.analyze(batch[0], "user-1", routine_history)


def test_batch_installs_no_models(profiler, classifier, model_store, routine_history, make_transaction):
    scorer = AnomalyScorer()
    aggregator = RiskAggregator(scorer, profiler, classifier, model_store)
    before = model_store.get_stats()

    results = aggregator.analyze_batch([make_transaction()], "user-1", routine_history)

    assert len(results) == 1
    assert not scorer.is_trained
    assert not classifier.has_model("user-1")
    assert model_store.get_stats() == before
