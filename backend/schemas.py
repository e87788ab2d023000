"""
Pydantic Schemas

Defines the domain records consumed by the risk engine and the
request/response models of the HTTP surface.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from dateutil.parser import isoparse


# =============================================================================
# ENUMS
# =============================================================================

class ReviewStatus(str, Enum):
    """End-user review state of a transaction."""
    PENDING = "pending"
    APPROVED = "approved"
    BLOCKED = "blocked"
    IGNORED = "ignored"


class SituationType(str, Enum):
    """Temporary life events that retune expected spending."""
    HOSPITAL = "hospital"
    TRAVEL = "travel"
    RECOVERY = "recovery"


class AlertType(str, Enum):
    """Alert categories raised by the engine."""
    SUSPICIOUS_TRANSACTION = "suspicious_transaction"
    RETROSPECTIVE_ANALYSIS = "retrospective_analysis"
    SITUATION_REMINDER = "situation_reminder"


class AlertSeverity(str, Enum):
    """Alert severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# HELPERS
# =============================================================================

def _as_utc(value):
    """Parse ISO strings and make datetimes timezone-aware (UTC if naive)."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = isoparse(value)
        except (ValueError, TypeError):
            raise ValueError(f"Invalid ISO datetime format: {value}")
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# DOMAIN RECORDS
# =============================================================================

class TransactionCreate(BaseModel):
    """
    A bank transaction as synchronized from the aggregator.

    Only the fields fixed at ingestion; score, flag and review state are
    owned by the engine and any client-supplied values are ignored.
    """

    id: str = Field(..., min_length=1, max_length=64, description="Transaction identifier")
    account_id: str = Field(..., min_length=1, max_length=64, description="Owning account")
    merchant: str = Field(..., description="Merchant name")
    category: str = Field(..., description="Spending category, e.g. grocery")
    amount: float = Field(..., allow_inf_nan=False, description="Signed amount in USD")
    transaction_date: datetime = Field(..., description="When the transaction happened")
    description: str = Field("", description="Free-text description")

    @field_validator("transaction_date", mode="before")
    @classmethod
    def validate_transaction_date(cls, v):
        """Accept ISO strings; always store timezone-aware datetimes."""
        return _as_utc(v)

    @field_validator("merchant", "category")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    def to_transaction(self) -> "Transaction":
        """A fresh, unscored and unreviewed transaction."""
        return Transaction(**self.model_dump())

    class Config:
        json_schema_extra = {
            "example": {
                "id": "txn-1042",
                "account_id": "acct-7",
                "merchant": "FreshMart",
                "category": "grocery",
                "amount": -52.18,
                "transaction_date": "2026-02-04T14:32:15Z",
                "description": "FRESHMART #221",
            }
        }


class Transaction(TransactionCreate):
    """
    A stored transaction.

    `suspicious_score`, `is_flagged` and `review_status` are the mutable
    fields; everything else is fixed at ingestion.
    """

    suspicious_score: int = Field(0, ge=0, le=100, description="Last committed risk score")
    is_flagged: bool = Field(False, description="Committed score exceeded the flag threshold")
    review_status: ReviewStatus = Field(ReviewStatus.PENDING, description="End-user review state")

    @property
    def absolute_amount(self) -> float:
        return abs(self.amount)


class UserProfile(BaseModel):
    """
    Profile context for one user.

    The raw questionnaire blobs are kept verbatim for the free-text
    heuristics; the current situation is a typed, optional variant.
    """

    user_id: str
    living_profile: Optional[str] = Field(None, description="Raw JSON of living Q&A answers")
    spending_profile: Optional[str] = Field(None, description="Raw JSON of spending Q&A answers")
    current_situation: Optional[SituationType] = None
    expected_categories: List[str] = Field(default_factory=list)


class Situation(BaseModel):
    """A tracked life event (hospital stay, trip, recovery)."""

    id: str
    user_id: str
    situation_type: SituationType
    description: str = ""
    start_date: datetime
    expected_end_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    is_active: bool = True
    reminder_frequency_days: int = Field(3, ge=1, description="Days between status reminders")
    last_reminder_sent: Optional[datetime] = None

    @field_validator(
        "start_date", "expected_end_date", "actual_end_date", "last_reminder_sent", mode="before"
    )
    @classmethod
    def validate_dates(cls, v):
        return _as_utc(v)


class Alert(BaseModel):
    """Alert record created by the service layer."""

    id: str
    user_id: str
    transaction_id: Optional[str] = None
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    description: str
    created_at: datetime


# =============================================================================
# RISK RESULTS
# =============================================================================

class AdjustedResult(BaseModel):
    """Outcome of the situational adjustment of an aggregated score."""

    model_config = ConfigDict(frozen=True)

    score: int = Field(..., ge=0, le=100)
    original_score: int = Field(..., ge=0, le=100)
    reasons: List[str] = Field(default_factory=list)


class RiskResult(BaseModel):
    """
    Immutable risk assessment of one transaction.

    Persisting the score/flag and raising alerts is the caller's job.
    """

    model_config = ConfigDict(frozen=True)

    suspicious_score: int = Field(..., ge=0, le=100, description="Final 0-100 score")
    is_anomaly: bool = Field(..., description="suspicious_score above the flag threshold")
    anomaly_score: int = Field(..., ge=0, le=100)
    behavioral_score: int = Field(..., ge=0, le=100)
    classifier_score: int = Field(..., ge=0, le=100)
    profile_score: int = Field(..., ge=0, le=100)
    original_score: int = Field(..., ge=0, le=100, description="Score before situational adjustment")
    profile_adjustments: List[str] = Field(default_factory=list)
    features: Dict[str, float] = Field(default_factory=dict)


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class AnalyzeTransactionRequest(BaseModel):
    """Submit one transaction for scoring."""

    user_id: str = Field(..., min_length=1, max_length=64)
    transaction: TransactionCreate


class BatchAnalyzeRequest(BaseModel):
    """Submit several transactions of one user for scoring."""

    user_id: str = Field(..., min_length=1, max_length=64)
    transactions: List[TransactionCreate] = Field(..., min_length=1)


class ReviewRequest(BaseModel):
    """End-user review of a transaction, optionally with fraud feedback."""

    user_id: str = Field(..., min_length=1, max_length=64)
    review_status: ReviewStatus
    is_fraudulent: Optional[bool] = None


class ProfileUpdateRequest(BaseModel):
    """Raw questionnaire answers as JSON text."""

    living_profile: Optional[str] = None
    spending_profile: Optional[str] = None


class SituationCreateRequest(BaseModel):
    """Start tracking a life event."""

    situation_type: SituationType
    description: str = ""
    start_date: Optional[datetime] = None
    expected_end_date: Optional[datetime] = None
    reminder_frequency_days: int = Field(3, ge=1)

    @field_validator("start_date", "expected_end_date", mode="before")
    @classmethod
    def validate_dates(cls, v):
        return _as_utc(v)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class FeedbackResponse(BaseModel):
    """Outcome of a review with fraud feedback."""

    transaction: Transaction
    model_updated: bool
    retrospective_alerts: List[Alert] = Field(default_factory=list)


class ReanalysisResponse(BaseModel):
    """Outcome of a retrospective sweep."""

    user_id: str
    transactions_considered: int
    alerts: List[Alert] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Standardized error response (safe for clients)."""

    error: str = Field(
        ...,
        description="Error type"
    )

    message: str = Field(
        ...,
        description="Safe, user-friendly error message"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "error": "validation_error",
                "message": "Validation error in 'transaction -> account_id': Field required"
            }
        }
