"""
In-Memory Repository

Storage for transactions, alerts, user profiles and situations.

Contract the risk engine relies on:
- Transactions are never deleted or replaced; an id is stored once
- `update_risk` writes score and flag together and never touches
  `review_status`
- `update_review_status` never touches the score or flag

In production, this would be backed by PostgreSQL.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from core.exceptions import (
    DuplicateTransactionError,
    SituationNotFoundError,
    TransactionNotFoundError,
)
from schemas import (
    Alert,
    AlertSeverity,
    AlertType,
    ReviewStatus,
    Situation,
    Transaction,
    UserProfile,
)

logger = logging.getLogger(__name__)


def _sort_key(transaction: Transaction):
    return (transaction.transaction_date, transaction.id)


class InMemoryRepository:
    """Thread-safe in-memory store; records are copied in and out."""

    def __init__(self):
        self._transactions: Dict[str, Transaction] = {}
        self._owners: Dict[str, str] = {}
        self._alerts: List[Alert] = []
        self._profiles: Dict[str, UserProfile] = {}
        self._situations: Dict[str, Situation] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def add_transaction(self, user_id: str, transaction: Transaction) -> Transaction:
        """
        Insert a new transaction for `user_id`.

        Raises:
            DuplicateTransactionError: if the id is already stored, for any user.
        """
        with self._lock:
            if transaction.id in self._transactions:
                raise DuplicateTransactionError(f"Transaction {transaction.id} already exists")
            self._transactions[transaction.id] = transaction
            self._owners[transaction.id] = user_id
        return transaction

    def has_transaction(self, transaction_id: str) -> bool:
        return transaction_id in self._transactions

    def get_transaction(self, transaction_id: str) -> Transaction:
        transaction = self._transactions.get(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    def get_owner(self, transaction_id: str) -> str:
        owner = self._owners.get(transaction_id)
        if owner is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return owner

    def get_transactions_by_user(self, user_id: str) -> List[Transaction]:
        """The user's transactions, oldest first."""
        with self._lock:
            owned = [
                self._transactions[tid]
                for tid, owner in self._owners.items()
                if owner == user_id
            ]
        return sorted(owned, key=_sort_key)

    def get_all_transactions(self) -> List[Transaction]:
        with self._lock:
            return sorted(self._transactions.values(), key=_sort_key)

    def get_user_ids(self) -> List[str]:
        with self._lock:
            return sorted(set(self._owners.values()))

    def update_risk(self, transaction_id: str, suspicious_score: int, is_flagged: bool) -> Transaction:
        """Commit a new score and flag as one write."""
        with self._lock:
            current = self._transactions.get(transaction_id)
            if current is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
            updated = current.model_copy(update={
                "suspicious_score": suspicious_score,
                "is_flagged": is_flagged,
            })
            self._transactions[transaction_id] = updated
        return updated

    def update_review_status(self, transaction_id: str, review_status: ReviewStatus) -> Transaction:
        with self._lock:
            current = self._transactions.get(transaction_id)
            if current is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
            updated = current.model_copy(update={"review_status": review_status})
            self._transactions[transaction_id] = updated
        return updated

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    def create_alert(
        self,
        user_id: str,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        description: str,
        transaction_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Alert:
        alert = Alert(
            id=str(uuid.uuid4()),
            user_id=user_id,
            transaction_id=transaction_id,
            alert_type=alert_type,
            severity=severity,
            title=title,
            description=description,
            created_at=created_at or datetime.now(timezone.utc),
        )
        with self._lock:
            self._alerts.append(alert)
        logger.info(f"Alert created for user {user_id}: {alert_type.value} ({severity.value})")
        return alert

    def get_alerts_by_user(self, user_id: str) -> List[Alert]:
        """Alerts for `user_id`, newest first."""
        with self._lock:
            alerts = [a for a in self._alerts if a.user_id == user_id]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        return self._profiles.get(user_id)

    def save_user_profile(self, profile: UserProfile) -> UserProfile:
        with self._lock:
            self._profiles[profile.user_id] = profile
        return profile

    # -------------------------------------------------------------------------
    # Situations
    # -------------------------------------------------------------------------

    def create_situation(self, situation: Situation) -> Situation:
        with self._lock:
            self._situations[situation.id] = situation
        return situation

    def get_situation(self, situation_id: str) -> Situation:
        situation = self._situations.get(situation_id)
        if situation is None:
            raise SituationNotFoundError(f"Situation {situation_id} not found")
        return situation

    def update_situation(self, situation_id: str, **changes) -> Situation:
        with self._lock:
            current = self._situations.get(situation_id)
            if current is None:
                raise SituationNotFoundError(f"Situation {situation_id} not found")
            updated = current.model_copy(update=changes)
            self._situations[situation_id] = updated
        return updated

    def get_situations_by_user(self, user_id: str, active_only: bool = False) -> List[Situation]:
        with self._lock:
            situations = [
                s for s in self._situations.values()
                if s.user_id == user_id and (s.is_active or not active_only)
            ]
        return sorted(situations, key=lambda s: s.start_date)

    def get_situations_needing_reminders(self, now: Optional[datetime] = None) -> List[Situation]:
        """
        Active situations due for a status reminder.

        Due means no reminder was ever sent, or the last one is at least
        `reminder_frequency_days` old.
        """
        now = now or datetime.now(timezone.utc)
        with self._lock:
            active = [s for s in self._situations.values() if s.is_active]
        return [
            s for s in active
            if s.last_reminder_sent is None
            or now - s.last_reminder_sent >= timedelta(days=s.reminder_frequency_days)
        ]

    def clear(self) -> None:
        """Clear all stored data."""
        with self._lock:
            self._transactions.clear()
            self._owners.clear()
            self._alerts.clear()
            self._profiles.clear()
            self._situations.clear()
        logger.info("Repository cleared")


# =============================================================================
# SINGLETON
# =============================================================================

_repository: Optional[InMemoryRepository] = None


def get_repository() -> InMemoryRepository:
    """Get or create the global repository."""
    global _repository
    if _repository is None:
        _repository = InMemoryRepository()
    return _repository


def reset_repository() -> None:
    """Drop the global repository (for testing)."""
    global _repository
    _repository = None
