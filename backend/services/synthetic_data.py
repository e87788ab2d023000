"""
Synthetic Senior Spending Generator

Generates reproducible transaction histories for demo seeding and for
training the models in tests.

Normal spending follows a retiree's routine:
- Daytime purchases (8am-6pm) at a small set of regular merchants
- Groceries and pharmacy every few days, monthly utilities
- Occasional restaurant visits

Scam patterns injected on top, labelled as flagged:
1. Gift Card Scam - late-night gift card purchases online
2. Wire Transfer - large transfer to an unknown recipient
3. Tech Support - "support" subscription charged by a new online merchant
4. Lottery Fee - processing fee to claim a fake prize

This module is designed for demos and testing.
NOT a model of real customer data.
"""

import json
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import numpy as np

from schemas import Transaction, UserProfile
from services.profile_context import parse_user_profile
from services.repository import InMemoryRepository

logger = logging.getLogger(__name__)


# =============================================================================
# SPENDING PATTERN DEFINITIONS
# =============================================================================

class NormalPatterns:
    """Routine spending: (merchant, category, median amount, every N days)."""

    ROUTINE = [
        ("FreshMart", "grocery", 65.0, 4),
        ("Corner Pharmacy", "pharmacy", 28.0, 10),
        ("City Power & Light", "utilities", 110.0, 30),
        ("Metro Water", "utilities", 45.0, 30),
        ("Main Street Diner", "restaurants", 22.0, 9),
        ("Shell", "gas_station", 38.0, 12),
    ]

    HOURS = list(range(8, 18))


class ScamPatterns:
    """Injected scam transactions; each becomes a flagged history entry."""

    GIFT_CARD = {
        "name": "gift_card",
        "merchant": "Online Gift Card Store",
        "category": "retail",
        "amount_range": (300, 1_000),
        "hours": [1, 2, 3, 4],
        "description": "ONLINE GIFT CARDS",
    }

    WIRE_TRANSFER = {
        "name": "wire_transfer",
        "merchant": "Global Wire Services",
        "category": "transfer",
        "amount_range": (2_000, 9_000),
        "hours": [10, 11, 15, 16],
        "description": "INTL WIRE TRANSFER",
    }

    TECH_SUPPORT = {
        "name": "tech_support",
        "merchant": "PC Support Online",
        "category": "services",
        "amount_range": (199, 499),
        "hours": [9, 13, 20, 22],
        "description": "ONLINE TECH SUPPORT PLAN",
    }

    LOTTERY_FEE = {
        "name": "lottery_fee",
        "merchant": "Prize Claim Center",
        "category": "services",
        "amount_range": (500, 2_500),
        "hours": [0, 5, 23],
        "description": "PRIZE PROCESSING FEE",
    }

    ALL = [GIFT_CARD, WIRE_TRANSFER, TECH_SUPPORT, LOTTERY_FEE]


# Demo questionnaire answers, cycled across generated users
_DEMO_PROFILES: List[Tuple[dict, dict]] = [
    (
        {"household": "I live alone since my husband passed", "mobility": "I drive locally"},
        {"shopping": "I avoid online shopping", "payment": "I prefer paying with cash"},
    ),
    (
        {"household": "I live with my daughter", "mobility": "My daughter drives me"},
        {"shopping": "I shop at the same grocery store every week", "payment": "Debit card"},
    ),
    (
        {"household": "I live alone in a retirement community"},
        {"shopping": "Mostly in person", "payment": "Card, some cash for small things"},
    ),
]


# =============================================================================
# SYNTHETIC DATA GENERATOR
# =============================================================================

class SyntheticDataGenerator:
    """
    Generates labelled transaction histories.

    Same seed, same `now` => same transactions.
    """

    def __init__(self, seed: int = 42):
        self.seed = seed
        self.rng = random.Random(seed)
        self.np_rng = np.random.RandomState(seed)

    def generate_history(
        self,
        user_id: str,
        days: int = 120,
        n_scams: int = 3,
        now: Optional[datetime] = None,
    ) -> List[Transaction]:
        """
        Generate `days` of routine spending plus `n_scams` flagged scams.

        Returns:
            Transactions ordered oldest first.
        """
        now = now or datetime.now(timezone.utc)
        start = (now - timedelta(days=days)).replace(hour=0, minute=0, second=0, microsecond=0)
        account_id = f"acct-{user_id}"

        transactions: List[Transaction] = []
        for merchant, category, median, every in NormalPatterns.ROUTINE:
            offset = self.rng.randint(0, every - 1)
            for day in range(offset, days, every):
                when = start + timedelta(
                    days=day,
                    hours=self.rng.choice(NormalPatterns.HOURS),
                    minutes=self.rng.randint(0, 59),
                )
                amount = float(self.np_rng.lognormal(mean=np.log(median), sigma=0.25))
                transactions.append(self._transaction(
                    account_id, merchant, category, amount, when,
                    suspicious_score=self.rng.randint(0, 25),
                    is_flagged=False,
                ))

        for _ in range(n_scams):
            pattern = self.rng.choice(ScamPatterns.ALL)
            day = self.rng.randint(0, days - 1)
            when = start + timedelta(
                days=day,
                hours=self.rng.choice(pattern["hours"]),
                minutes=self.rng.randint(0, 59),
            )
            amount = self.rng.uniform(*pattern["amount_range"])
            transactions.append(self._transaction(
                account_id, pattern["merchant"], pattern["category"], amount, when,
                description=pattern["description"],
                suspicious_score=self.rng.randint(75, 95),
                is_flagged=True,
            ))

        transactions.sort(key=lambda t: t.transaction_date)
        return [
            t.model_copy(update={"id": f"{user_id}-txn-{i:04d}"})
            for i, t in enumerate(transactions)
        ]

    def _transaction(
        self,
        account_id: str,
        merchant: str,
        category: str,
        amount: float,
        when: datetime,
        description: str = "",
        suspicious_score: int = 0,
        is_flagged: bool = False,
    ) -> Transaction:
        return Transaction(
            id="pending",
            account_id=account_id,
            merchant=merchant,
            category=category,
            amount=-round(amount, 2),
            transaction_date=when,
            description=description or merchant.upper(),
            suspicious_score=suspicious_score,
            is_flagged=is_flagged,
        )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def generate_population(
    n_users: int = 3,
    days: int = 120,
    seed: int = 42,
    now: Optional[datetime] = None,
) -> Dict[str, List[Transaction]]:
    """Histories for `n_users` users keyed by user id."""
    generator = SyntheticDataGenerator(seed=seed)
    return {
        f"user-{k + 1}": generator.generate_history(f"user-{k + 1}", days=days, now=now)
        for k in range(n_users)
    }


def demo_profile(user_id: str, index: int) -> UserProfile:
    living, spending = _DEMO_PROFILES[index % len(_DEMO_PROFILES)]
    return parse_user_profile(user_id, json.dumps(living), json.dumps(spending))


def seed_demo_data(
    repository: InMemoryRepository,
    n_users: int = 3,
    seed: int = 42,
    now: Optional[datetime] = None,
) -> int:
    """
    Load synthetic users, histories and profiles into `repository`.

    Returns:
        Number of transactions stored.
    """
    population = generate_population(n_users=n_users, seed=seed, now=now)

    count = 0
    for index, (user_id, history) in enumerate(population.items()):
        for transaction in history:
            repository.add_transaction(user_id, transaction)
        repository.save_user_profile(demo_profile(user_id, index))
        count += len(history)

    logger.info(f"Seeded {count} synthetic transactions for {len(population)} users")
    return count
