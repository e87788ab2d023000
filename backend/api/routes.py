"""
API Routes

Thin HTTP layer over the fraud monitoring service.
Request validation is handled by Pydantic; domain errors are mapped to
responses by the handlers registered in main.py.

Handlers that score, train or sweep are plain `def` so FastAPI runs them in
its threadpool instead of on the event loop.
"""

import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, Query, status

from schemas import (
    Alert,
    AnalyzeTransactionRequest,
    BatchAnalyzeRequest,
    ErrorResponse,
    FeedbackResponse,
    ProfileUpdateRequest,
    ReanalysisResponse,
    ReviewRequest,
    RiskResult,
    Situation,
    SituationCreateRequest,
    Transaction,
    UserProfile,
)
from services.fraud_service import FraudMonitoringService, get_fraud_service
from services.reminder_service import get_reminder_status, process_reminders


# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter()


_COMMON_RESPONSES = {
    422: {"model": ErrorResponse, "description": "Validation error"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
}

_NOT_FOUND_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Not found"},
    **_COMMON_RESPONSES,
}

_CONFLICT_RESPONSES = {
    409: {"model": ErrorResponse, "description": "Transaction already stored"},
    **_COMMON_RESPONSES,
}


# =============================================================================
# TRANSACTIONS
# =============================================================================

@router.post(
    "/transactions/analyze",
    response_model=RiskResult,
    status_code=status.HTTP_200_OK,
    summary="Analyze a transaction",
    description=(
        "Score a new transaction, store it with its score, and raise an alert "
        "when it is flagged. Already stored ids are rejected."
    ),
    responses=_CONFLICT_RESPONSES,
)
def analyze_transaction_endpoint(
    request: AnalyzeTransactionRequest,
    service: FraudMonitoringService = Depends(get_fraud_service),
) -> RiskResult:
    logger.info(
        f"Analyzing transaction: id={request.transaction.id}, "
        f"user={request.user_id[:3]}***"  # Partial mask
    )
    return service.analyze_transaction(request.user_id, request.transaction.to_transaction())


@router.post(
    "/transactions/batch-analyze",
    response_model=Dict[str, RiskResult],
    status_code=status.HTTP_200_OK,
    summary="Analyze a batch of transactions",
    description="Score several transactions of one user without storing them.",
    responses=_COMMON_RESPONSES,
)
def batch_analyze_endpoint(
    request: BatchAnalyzeRequest,
    service: FraudMonitoringService = Depends(get_fraud_service),
) -> Dict[str, RiskResult]:
    results = service.analyze_batch(
        request.user_id, [t.to_transaction() for t in request.transactions]
    )
    logger.info(f"Batch of {len(results)} transactions analyzed")
    return results


@router.patch(
    "/transactions/{transaction_id}/review",
    response_model=FeedbackResponse,
    status_code=status.HTTP_200_OK,
    summary="Review a transaction",
    description=(
        "Set the review status. With `is_fraudulent`, the user's models learn "
        "from the verdict and older transactions are re-checked."
    ),
    responses=_NOT_FOUND_RESPONSES,
)
def review_transaction_endpoint(
    transaction_id: str,
    request: ReviewRequest,
    service: FraudMonitoringService = Depends(get_fraud_service),
) -> FeedbackResponse:
    transaction, model_updated, alerts = service.review_transaction(
        request.user_id,
        transaction_id,
        request.review_status,
        request.is_fraudulent,
    )
    return FeedbackResponse(
        transaction=transaction,
        model_updated=model_updated,
        retrospective_alerts=alerts,
    )


# =============================================================================
# USERS
# =============================================================================

@router.get(
    "/users/{user_id}/transactions",
    response_model=List[Transaction],
    status_code=status.HTTP_200_OK,
    summary="List a user's transactions",
)
async def get_transactions_endpoint(
    user_id: str,
    service: FraudMonitoringService = Depends(get_fraud_service),
) -> List[Transaction]:
    return service.repository.get_transactions_by_user(user_id)


@router.get(
    "/users/{user_id}/alerts",
    response_model=List[Alert],
    status_code=status.HTTP_200_OK,
    summary="List a user's alerts",
    description="Alerts newest first.",
)
async def get_alerts_endpoint(
    user_id: str,
    service: FraudMonitoringService = Depends(get_fraud_service),
) -> List[Alert]:
    return service.repository.get_alerts_by_user(user_id)


@router.post(
    "/users/{user_id}/reanalyze",
    response_model=ReanalysisResponse,
    status_code=status.HTTP_200_OK,
    summary="Re-check a user's older transactions",
    responses=_COMMON_RESPONSES,
)
def reanalyze_endpoint(
    user_id: str,
    service: FraudMonitoringService = Depends(get_fraud_service),
) -> ReanalysisResponse:
    alerts = service.reanalyze_user(user_id)
    return ReanalysisResponse(
        user_id=user_id,
        transactions_considered=len(service.repository.get_transactions_by_user(user_id)),
        alerts=alerts,
    )


@router.put(
    "/users/{user_id}/profile",
    response_model=UserProfile,
    status_code=status.HTTP_200_OK,
    summary="Store questionnaire answers",
    responses=_COMMON_RESPONSES,
)
async def update_profile_endpoint(
    user_id: str,
    request: ProfileUpdateRequest,
    service: FraudMonitoringService = Depends(get_fraud_service),
) -> UserProfile:
    return service.update_profile(user_id, request.living_profile, request.spending_profile)


@router.get(
    "/users/{user_id}/ml/status",
    status_code=status.HTTP_200_OK,
    summary="Per-user model status",
    include_in_schema=False,
)
async def user_model_status(
    user_id: str,
    service: FraudMonitoringService = Depends(get_fraud_service),
):
    return service.get_user_model_status(user_id)


# =============================================================================
# SITUATIONS
# =============================================================================

@router.post(
    "/users/{user_id}/situations",
    response_model=Situation,
    status_code=status.HTTP_201_CREATED,
    summary="Start tracking a situation",
    responses=_COMMON_RESPONSES,
)
async def create_situation_endpoint(
    user_id: str,
    request: SituationCreateRequest,
    service: FraudMonitoringService = Depends(get_fraud_service),
) -> Situation:
    return service.start_situation(
        user_id,
        request.situation_type,
        description=request.description,
        start_date=request.start_date,
        expected_end_date=request.expected_end_date,
        reminder_frequency_days=request.reminder_frequency_days,
    )


@router.get(
    "/users/{user_id}/situations",
    response_model=List[Situation],
    status_code=status.HTTP_200_OK,
    summary="List a user's situations",
)
async def get_situations_endpoint(
    user_id: str,
    service: FraudMonitoringService = Depends(get_fraud_service),
) -> List[Situation]:
    return service.repository.get_situations_by_user(user_id)


@router.post(
    "/situations/{situation_id}/end",
    response_model=Situation,
    status_code=status.HTTP_200_OK,
    summary="End a situation",
    responses=_NOT_FOUND_RESPONSES,
)
def end_situation_endpoint(
    situation_id: str,
    user_id: str = Query(..., min_length=1, max_length=64, description="Owner of the situation"),
    service: FraudMonitoringService = Depends(get_fraud_service),
) -> Situation:
    return service.end_situation(situation_id, user_id)


@router.post(
    "/situations/reminders/process",
    response_model=List[Alert],
    status_code=status.HTTP_200_OK,
    summary="Send due situation reminders now",
)
async def process_reminders_endpoint(
    service: FraudMonitoringService = Depends(get_fraud_service),
) -> List[Alert]:
    return process_reminders(service.repository)


# =============================================================================
# HEALTH / STATUS
# =============================================================================

@router.get(
    "/health",
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Check if the API is running.",
    include_in_schema=False  # Hide from OpenAPI docs
)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "healthy"}


@router.get(
    "/ml/status",
    status_code=status.HTTP_200_OK,
    summary="Get ML model status",
    description="Anomaly model threshold and training size, per-user model counts.",
    include_in_schema=False  # Hide from OpenAPI docs
)
async def ml_model_status(service: FraudMonitoringService = Depends(get_fraud_service)):
    """Get model status for debugging/monitoring."""
    return {**service.get_status(), "reminders": get_reminder_status()}
