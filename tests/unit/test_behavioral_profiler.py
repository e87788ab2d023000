"""Unit tests for behavioral profiling"""

from datetime import timedelta

import pytest

from services.behavioral_profiler import build_profile
from tests.conftest import BASE_TIME


def test_no_profile_scores_zero(profiler, make_transaction):
    tx = make_transaction(amount=-5000.0, transaction_date=BASE_TIME.replace(hour=3))

    assert profiler.get_profile("user-1") is None
    assert profiler.deviation_signals("user-1", tx) == []
    assert profiler.score_deviation("user-1", tx) == 0


def test_routine_transaction_scores_zero(profiler, routine_history, make_transaction):
    profiler.update_profile("user-1", routine_history)
    tx = make_transaction(amount=-56.0, transaction_date=BASE_TIME.replace(hour=10))

    assert profiler.score_deviation("user-1", tx) == 0


def test_all_signals_triggered(profiler, routine_history, make_transaction):
    profiler.update_profile("user-1", routine_history)
    tx = make_transaction(
        merchant="Online Gift Card Store",
        category="retail",
        amount=-900.0,
        transaction_date=BASE_TIME.replace(hour=3),
    )

    signals = {s.name: s for s in profiler.deviation_signals("user-1", tx)}

    assert set(signals) == {"unusual_hour", "new_merchant", "new_category", "amount_spike"}
    assert all(s.triggered for s in signals.values())
    assert profiler.score_deviation("user-1", tx) == 20 + 15 + 10 + 25


@pytest.mark.parametrize(
    "overrides, expected",
    [
        ({"transaction_date": BASE_TIME.replace(hour=3)}, 20),
        ({"merchant": "Corner Pharmacy", "category": "grocery"}, 0),
        ({"merchant": "Other Market"}, 15),
        ({"category": "pharmacy"}, 0),
        ({"category": "retail"}, 10),
    ],
)
def test_individual_signals(profiler, routine_history, make_transaction, overrides, expected):
    profiler.update_profile("user-1", routine_history)
    fields = {"amount": -50.0, "transaction_date": BASE_TIME.replace(hour=10)}
    fields.update(overrides)

    assert profiler.score_deviation("user-1", make_transaction(**fields)) == expected


def test_amount_spike_requires_more_than_double(profiler, make_transaction):
    history = [
        make_transaction(amount=-100.0, transaction_date=BASE_TIME - timedelta(days=d))
        for d in range(1, 4)
    ]
    profiler.update_profile("user-1", history)

    at_limit = make_transaction(amount=-200.0)
    above = make_transaction(amount=-200.01)

    assert profiler.score_deviation("user-1", at_limit) == 0
    assert profiler.score_deviation("user-1", above) == 25


def test_update_is_full_replace(profiler, routine_history, make_transaction):
    profiler.update_profile("user-1", routine_history)
    replacement = [make_transaction(merchant="Hardware Store", category="home")]

    profile = profiler.update_profile("user-1", replacement)

    assert profile.typical_merchants == frozenset({"Hardware Store"})
    assert profiler.update_profile("user-1", []) is None
    assert profiler.get_profile("user-1") is None


def test_build_profile_summary(make_transaction):
    history = [
        make_transaction(amount=-10.0, transaction_date=BASE_TIME - timedelta(days=4)),
        make_transaction(amount=30.0, transaction_date=BASE_TIME),
    ]

    profile = build_profile(history)

    assert profile.average_amount == pytest.approx(20.0)
    assert profile.transaction_frequency == pytest.approx(2 / 4)
    assert profile.transaction_count == 2


def test_profiles_are_per_user(profiler, routine_history, make_transaction):
    profiler.update_profile("user-1", routine_history)
    tx = make_transaction(transaction_date=BASE_TIME.replace(hour=10))

    assert profiler.score_deviation("user-2", tx) == 0
    assert profiler.get_profile("user-2") is None
