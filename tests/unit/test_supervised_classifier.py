"""Unit tests for the per-user supervised classifier"""

from datetime import timedelta

import pytest

from core.exceptions import InsufficientDataError, ModelNotTrainedError
from tests.conftest import BASE_TIME


def _labelled_history(make_transaction):
    """Routine grocery spending plus a few flagged late-night gift card purchases"""
    history = []
    for day in range(40):
        history.append(make_transaction(
            amount=-(50.0 + day % 5),
            transaction_date=BASE_TIME - timedelta(days=60 - day, hours=2),
        ))
    for day in (10, 25, 38):
        history.append(make_transaction(
            merchant="Online Gift Card Store",
            category="retail",
            amount=-800.0,
            transaction_date=BASE_TIME - timedelta(days=60 - day, hours=9),
            is_flagged=True,
            suspicious_score=85,
        ))
    return sorted(history, key=lambda t: t.transaction_date)


def test_train_without_data_raises(classifier):
    with pytest.raises(InsufficientDataError):
        classifier.train("user-1", [], [])


def test_train_with_mismatched_labels_raises(classifier, make_transaction):
    with pytest.raises(ValueError):
        classifier.train("user-1", [make_transaction()], [True, False])


def test_predict_without_model_raises(classifier, make_transaction):
    assert not classifier.has_model("user-1")
    with pytest.raises(ModelNotTrainedError):
        classifier.predict("user-1", make_transaction(), [])


def test_learns_flagged_pattern(classifier, make_transaction):
    history = _labelled_history(make_transaction)
    classifier.ensure_model("user-1", history)

    routine = make_transaction(amount=-52.0, transaction_date=BASE_TIME.replace(hour=10))
    scam = make_transaction(
        merchant="Online Gift Card Store",
        category="retail",
        amount=-750.0,
        transaction_date=BASE_TIME.replace(hour=3),
    )

    routine_score = classifier.predict("user-1", routine, history)
    scam_score = classifier.predict("user-1", scam, history)

    assert 0 <= routine_score <= 100
    assert 0 <= scam_score <= 100
    assert scam_score > routine_score


def test_single_class_history_trains(classifier, routine_history, make_transaction):
    classifier.ensure_model("user-1", routine_history)

    score = classifier.predict("user-1", make_transaction(), routine_history)

    assert classifier.has_model("user-1")
    assert 0 <= score <= 100


def test_ensure_model_is_lazy_and_cached(classifier, routine_history):
    first = classifier.ensure_model("user-1", routine_history)
    second = classifier.ensure_model("user-1", routine_history[:3])
    assert first is second


def test_fraud_feedback_raises_score(classifier, routine_history, make_transaction):
    classifier.ensure_model("user-1", routine_history)
    tx = make_transaction(
        merchant="PC Support Online",
        category="services",
        amount=-300.0,
        transaction_date=BASE_TIME.replace(hour=10),
    )
    history = routine_history + [tx]

    before = classifier.predict("user-1", tx, history)
    classifier.update_model("user-1", tx, True, history)
    after = classifier.predict("user-1", tx, history)

    assert after >= before
    assert classifier.get_status("user-1")["feedback_count"] == 1


def test_update_swaps_in_a_new_model(classifier, routine_history, make_transaction, model_store):
    original = classifier.ensure_model("user-1", routine_history)
    tx = make_transaction()

    updated = classifier.update_model("user-1", tx, True, routine_history + [tx])

    assert updated is not original
    assert original.feedback_count == 0
    assert model_store.get_classifier("user-1") is updated


def test_update_without_model_trains_one(classifier, routine_history, make_transaction):
    tx = make_transaction()

    model = classifier.update_model("user-1", tx, True, routine_history + [tx])

    assert classifier.has_model("user-1")
    assert model.training_samples == len(routine_history) + 1


def test_status(classifier, routine_history):
    assert classifier.get_status("user-1") == {"user_id": "user-1", "is_trained": False}

    classifier.ensure_model("user-1", routine_history)
    status = classifier.get_status("user-1")

    assert status["is_trained"]
    assert status["training_samples"] == len(routine_history)
