"""
Profile-Context Adjuster

Two independent passes over a user's profile context:

1. Situational adjustment (typed). When the user is in a tracked situation
   (hospital, travel, recovery) the aggregated score is lowered for spending
   the situation explains and raised for spending it makes unlikely. Every
   rule is evaluated on its own and the score is clamped to 0-100 after
   each one. The triggered reasons are user-facing ("why this was/wasn't
   flagged").

2. Free-text heuristics (best-effort). The raw questionnaire answers are
   scanned for a few declared preferences (avoids online shopping, prefers
   cash, lives alone). Malformed answers are logged and ignored; they never
   block scoring.
"""

import json
import logging
from typing import Callable, Dict, List, NamedTuple, Optional

from core.exceptions import ProfileParseError
from schemas import AdjustedResult, SituationType, Transaction, UserProfile
from utils.score_utils import clamp_score

logger = logging.getLogger(__name__)


# =============================================================================
# SITUATIONAL RULES
# =============================================================================

class SituationRule(NamedTuple):
    """One adjustment applied while a situation is active."""
    applies: Callable[[Transaction], bool]
    delta: int
    reason: str


def _category_in(*categories: str) -> Callable[[Transaction], bool]:
    allowed = frozenset(categories)
    return lambda transaction: transaction.category in allowed


def _amount_over(limit: float) -> Callable[[Transaction], bool]:
    return lambda transaction: transaction.absolute_amount > limit


SITUATION_RULES: Dict[SituationType, List[SituationRule]] = {
    SituationType.HOSPITAL: [
        SituationRule(
            applies=_category_in("medical", "pharmacy", "food_delivery"),
            delta=-30,
            reason="Expected medical/pharmacy spending during hospital stay",
        ),
        SituationRule(
            applies=_category_in("grocery", "gas_station", "retail"),
            delta=20,
            reason="Unusual non-medical spending during hospital stay",
        ),
    ],
    SituationType.TRAVEL: [
        SituationRule(
            applies=_category_in("restaurants", "hotels", "transportation", "entertainment"),
            delta=-25,
            reason="Expected travel-related spending",
        ),
        SituationRule(
            applies=_amount_over(200),
            delta=-15,
            reason="Higher spending amounts expected during travel",
        ),
    ],
    SituationType.RECOVERY: [
        SituationRule(
            applies=_category_in("medical", "pharmacy", "home_services", "food_delivery"),
            delta=-20,
            reason="Expected recovery-related spending",
        ),
    ],
}

# Categories recorded on the profile when a situation starts
EXPECTED_CATEGORIES: Dict[SituationType, List[str]] = {
    SituationType.HOSPITAL: ["medical", "pharmacy", "food_delivery"],
    SituationType.TRAVEL: ["restaurants", "hotels", "transportation", "entertainment"],
    SituationType.RECOVERY: ["medical", "pharmacy", "home_services"],
}


def adjust_for_situation(
    raw_score: int,
    transaction: Transaction,
    profile: Optional[UserProfile],
) -> AdjustedResult:
    """
    Apply the current situation's rules to an aggregated score.

    Without a current situation the score passes through unchanged.
    """
    original = clamp_score(raw_score)
    if profile is None or profile.current_situation is None:
        return AdjustedResult(score=original, original_score=original, reasons=[])

    score = original
    reasons: List[str] = []
    for rule in SITUATION_RULES.get(profile.current_situation, []):
        if rule.applies(transaction):
            score = clamp_score(score + rule.delta)
            reasons.append(rule.reason)

    return AdjustedResult(score=score, original_score=original, reasons=reasons)


# =============================================================================
# FREE-TEXT HEURISTICS
# =============================================================================

_HEURISTIC_POINTS = {
    "ONLINE_WHILE_AVOIDING": 30,
    "LARGE_WHILE_CASH": 20,
    "NIGHT_WHILE_ALONE": 15,
}
_CASH_AMOUNT_LIMIT = 100
_NIGHT_END_HOUR = 6


def _collect_strings(node) -> List[str]:
    """Every string value in a parsed JSON document, lower-cased."""
    if isinstance(node, str):
        return [node.lower()]
    if isinstance(node, dict):
        return [s for value in node.values() for s in _collect_strings(value)]
    if isinstance(node, list):
        return [s for item in node for s in _collect_strings(item)]
    return []


def parse_answers(raw: str) -> List[str]:
    """
    Questionnaire answers from a raw JSON blob (list or object).

    Raises:
        ProfileParseError: if the blob is not valid JSON.
    """
    try:
        document = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProfileParseError(f"Profile answers are not valid JSON: {e}") from e
    return _collect_strings(document)


def profile_heuristic_score(transaction: Transaction, profile: Optional[UserProfile]) -> int:
    """
    0-100 boost from declared preferences in the free-text profile.

    Needs both the living and spending answers; unparseable answers score 0.
    """
    if profile is None or not profile.living_profile or not profile.spending_profile:
        return 0

    try:
        living_answers = parse_answers(profile.living_profile)
        spending_answers = parse_answers(profile.spending_profile)
    except ProfileParseError as e:
        logger.warning(f"Ignoring profile heuristics for user {profile.user_id}: {e}")
        return 0

    avoids_online = any("avoid" in a and "online" in a for a in spending_answers)
    prefers_cash = any("cash" in a for a in spending_answers)
    lives_alone = any("alone" in a for a in living_answers)

    merchant_text = f"{transaction.merchant} {transaction.description}".lower()

    score = 0
    if avoids_online and "online" in merchant_text:
        score += _HEURISTIC_POINTS["ONLINE_WHILE_AVOIDING"]
    if prefers_cash and transaction.absolute_amount > _CASH_AMOUNT_LIMIT:
        score += _HEURISTIC_POINTS["LARGE_WHILE_CASH"]
    if lives_alone and transaction.transaction_date.hour < _NIGHT_END_HOUR:
        score += _HEURISTIC_POINTS["NIGHT_WHILE_ALONE"]

    return min(score, 100)


# =============================================================================
# PROFILE CONSTRUCTION
# =============================================================================

def parse_user_profile(
    user_id: str,
    living_profile: Optional[str],
    spending_profile: Optional[str],
) -> UserProfile:
    """
    Build a typed profile from the raw questionnaire blobs.

    A `currentSituation` / `expectedCategories` pair stored in the spending
    blob (as the chat assistant writes it) becomes the typed situation.
    Anything unreadable leaves the situation unset.
    """
    current_situation = None
    expected_categories: List[str] = []

    if spending_profile:
        try:
            document = json.loads(spending_profile)
        except (TypeError, ValueError) as e:
            logger.warning(f"Spending profile for user {user_id} is not valid JSON: {e}")
            document = None

        if isinstance(document, dict) and document.get("currentSituation"):
            try:
                current_situation = SituationType(document["currentSituation"])
            except ValueError:
                logger.warning(
                    f"Unknown situation '{document['currentSituation']}' for user {user_id}"
                )
            categories = document.get("expectedCategories") or []
            if isinstance(categories, list):
                expected_categories = [str(c) for c in categories]

    return UserProfile(
        user_id=user_id,
        living_profile=living_profile,
        spending_profile=spending_profile,
        current_situation=current_situation,
        expected_categories=expected_categories,
    )


def with_situation(profile: UserProfile, situation: Optional[SituationType]) -> UserProfile:
    """
    Copy of `profile` tagged with (or cleared of) a current situation.

    The tag is also written into the spending blob so the stored profile
    round-trips through `parse_user_profile`.
    """
    document = {}
    if profile.spending_profile:
        try:
            parsed = json.loads(profile.spending_profile)
        except (TypeError, ValueError):
            parsed = None
        if isinstance(parsed, dict):
            document = parsed
        elif parsed is not None:
            document = {"answers": parsed}

    expected = EXPECTED_CATEGORIES[situation] if situation else []
    if situation:
        document["currentSituation"] = situation.value
        document["expectedCategories"] = expected
    else:
        document.pop("currentSituation", None)
        document.pop("expectedCategories", None)

    return profile.model_copy(update={
        "spending_profile": json.dumps(document),
        "current_situation": situation,
        "expected_categories": list(expected),
    })
