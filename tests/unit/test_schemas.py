"""Unit tests for transaction ingestion schemas"""

import pytest
from pydantic import ValidationError

from schemas import ReviewStatus, TransactionCreate
from tests.conftest import BASE_TIME


def _payload(**overrides):
    payload = {
        "id": "txn-1",
        "account_id": "acct-1",
        "merchant": "FreshMart",
        "category": "grocery",
        "amount": -50.0,
        "transaction_date": BASE_TIME.isoformat(),
    }
    payload.update(overrides)
    return payload


@pytest.mark.parametrize("amount", [float("inf"), float("-inf"), float("nan")])
def test_non_finite_amount_rejected(amount):
    with pytest.raises(ValidationError):
        TransactionCreate(**_payload(amount=amount))


def test_engine_owned_fields_are_ignored():
    created = TransactionCreate(**_payload(
        suspicious_score=99,
        is_flagged=True,
        review_status="approved",
    ))

    transaction = created.to_transaction()

    assert transaction.suspicious_score == 0
    assert transaction.is_flagged is False
    assert transaction.review_status == ReviewStatus.PENDING
    assert transaction.amount == -50.0
