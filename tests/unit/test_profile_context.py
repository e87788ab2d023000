"""Unit tests for situational adjustment and free-text heuristics"""

import json
import logging

import pytest

from core.exceptions import ProfileParseError
from schemas import SituationType, UserProfile
from services.profile_context import (
    adjust_for_situation,
    parse_answers,
    parse_user_profile,
    profile_heuristic_score,
    with_situation,
)
from tests.conftest import BASE_TIME


def _profile(situation=None, living=None, spending=None):
    return UserProfile(
        user_id="user-1",
        living_profile=json.dumps(living) if living is not None else None,
        spending_profile=json.dumps(spending) if spending is not None else None,
        current_situation=situation,
    )


# =============================================================================
# SITUATIONAL ADJUSTMENT
# =============================================================================

def test_no_situation_passes_through(make_transaction):
    result = adjust_for_situation(64, make_transaction(), _profile())

    assert result.score == 64
    assert result.original_score == 64
    assert result.reasons == []


def test_missing_profile_passes_through(make_transaction):
    assert adjust_for_situation(64, make_transaction(), None).score == 64


def test_travel_hotel_gets_both_discounts(make_transaction):
    tx = make_transaction(merchant="Harbor Hotel", category="hotels", amount=-450.0)

    result = adjust_for_situation(80, tx, _profile(SituationType.TRAVEL))

    assert result.score == 40
    assert result.original_score == 80
    assert len(result.reasons) == 2
    assert len(set(result.reasons)) == 2


def test_travel_discount_clamps_at_zero(make_transaction):
    tx = make_transaction(category="hotels", amount=-450.0)
    assert adjust_for_situation(30, tx, _profile(SituationType.TRAVEL)).score == 0


def test_travel_large_amount_only(make_transaction):
    tx = make_transaction(category="grocery", amount=-250.0)

    result = adjust_for_situation(50, tx, _profile(SituationType.TRAVEL))

    assert result.score == 35
    assert result.reasons == ["Higher spending amounts expected during travel"]


@pytest.mark.parametrize(
    "category, raw, expected",
    [
        ("pharmacy", 50, 20),
        ("medical", 10, 0),
        ("grocery", 50, 70),
        ("grocery", 90, 100),
        ("hotels", 50, 50),
    ],
)
def test_hospital_rules(make_transaction, category, raw, expected):
    tx = make_transaction(category=category)
    assert adjust_for_situation(raw, tx, _profile(SituationType.HOSPITAL)).score == expected


def test_recovery_rule(make_transaction):
    tx = make_transaction(category="home_services")

    result = adjust_for_situation(50, tx, _profile(SituationType.RECOVERY))

    assert result.score == 30
    assert result.reasons == ["Expected recovery-related spending"]


# =============================================================================
# FREE-TEXT HEURISTICS
# =============================================================================

def test_online_purchase_when_avoiding_online(make_transaction):
    profile = _profile(living={"home": "with my son"}, spending={"shopping": "I avoid online shopping"})
    tx = make_transaction(merchant="Online Gift Card Store", amount=-40.0)

    assert profile_heuristic_score(tx, profile) == 30


def test_large_purchase_when_preferring_cash(make_transaction):
    profile = _profile(living={"home": "with my son"}, spending={"payment": "Cash mostly"})

    assert profile_heuristic_score(make_transaction(amount=-150.0), profile) == 20
    assert profile_heuristic_score(make_transaction(amount=-100.0), profile) == 0


def test_night_purchase_when_living_alone(make_transaction):
    profile = _profile(living=["I live alone"], spending=["card"])
    tx = make_transaction(transaction_date=BASE_TIME.replace(hour=3))

    assert profile_heuristic_score(tx, profile) == 15


def test_all_heuristics_combine(make_transaction):
    profile = _profile(
        living={"home": "Alone"},
        spending={"shopping": "Avoid ONLINE stores", "payment": "cash"},
    )
    tx = make_transaction(
        merchant="PC Support Online",
        amount=-300.0,
        transaction_date=BASE_TIME.replace(hour=2),
    )

    assert profile_heuristic_score(tx, profile) == 65


def test_needs_both_profiles(make_transaction):
    profile = _profile(spending={"payment": "cash"})
    assert profile_heuristic_score(make_transaction(amount=-500.0), profile) == 0


def test_malformed_profile_is_logged_and_ignored(make_transaction, caplog):
    profile = UserProfile(user_id="user-1", living_profile="{not json", spending_profile='{"payment": "cash"}')

    with caplog.at_level(logging.WARNING):
        score = profile_heuristic_score(make_transaction(amount=-500.0), profile)

    assert score == 0
    assert "user-1" in caplog.text


def test_parse_answers_raises_on_invalid_json():
    with pytest.raises(ProfileParseError):
        parse_answers("not json")
    assert parse_answers('{"a": ["X", {"b": "Y"}], "n": 3}') == ["x", "y"]


# =============================================================================
# PROFILE CONSTRUCTION
# =============================================================================

def test_parse_user_profile_reads_situation_tag():
    spending = json.dumps({"currentSituation": "hospital", "expectedCategories": ["medical"]})

    profile = parse_user_profile("user-1", None, spending)

    assert profile.current_situation == SituationType.HOSPITAL
    assert profile.expected_categories == ["medical"]


@pytest.mark.parametrize("spending", ['{"currentSituation": "vacation"}', "{oops", None, '["cash"]'])
def test_parse_user_profile_without_valid_tag(spending):
    profile = parse_user_profile("user-1", None, spending)
    assert profile.current_situation is None
    assert profile.spending_profile == spending


def test_with_situation_round_trips():
    base = parse_user_profile("user-1", '["alone"]', json.dumps({"payment": "cash"}))

    tagged = with_situation(base, SituationType.TRAVEL)
    reparsed = parse_user_profile("user-1", tagged.living_profile, tagged.spending_profile)

    assert tagged.current_situation == SituationType.TRAVEL
    assert reparsed.current_situation == SituationType.TRAVEL
    assert reparsed.expected_categories == ["restaurants", "hotels", "transportation", "entertainment"]
    assert json.loads(tagged.spending_profile)["payment"] == "cash"

    cleared = with_situation(tagged, None)
    assert cleared.current_situation is None
    assert cleared.expected_categories == []
    assert "currentSituation" not in json.loads(cleared.spending_profile)
