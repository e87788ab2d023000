"""Pytest fixtures for testing"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Callable, List

import pytest
from fastapi.testclient import TestClient

from schemas import Transaction
from services.anomaly_scorer import AnomalyScorer
from services.behavioral_profiler import BehavioralProfiler
from services.fraud_service import FraudMonitoringService, get_fraud_service
from services.model_store import UserModelStore
from services.repository import InMemoryRepository
from services.risk_aggregator import RiskAggregator
from services.supervised_classifier import SupervisedClassifier
from services.synthetic_data import generate_population


# Monday, midday
BASE_TIME = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    """Factory for transactions with sensible defaults"""
    counter = itertools.count(1)

    def _make(**overrides) -> Transaction:
        n = next(counter)
        fields = {
            "id": f"txn-{n:04d}",
            "account_id": "acct-1",
            "merchant": "FreshMart",
            "category": "grocery",
            "amount": -50.0,
            "transaction_date": BASE_TIME,
            "description": "",
        }
        fields.update(overrides)
        return Transaction(**fields)

    return _make


@pytest.fixture
def routine_history(make_transaction) -> List[Transaction]:
    """Sixty days of daytime grocery and pharmacy spending, ending before BASE_TIME"""
    history = []
    start = BASE_TIME - timedelta(days=60)
    for day in range(0, 60, 3):
        history.append(make_transaction(
            merchant="FreshMart",
            category="grocery",
            amount=-(55.0 + day % 7),
            transaction_date=start + timedelta(days=day, hours=-2),
        ))
    for day in range(1, 60, 10):
        history.append(make_transaction(
            merchant="Corner Pharmacy",
            category="pharmacy",
            amount=-25.0,
            transaction_date=start + timedelta(days=day, hours=-1),
        ))
    return sorted(history, key=lambda t: t.transaction_date)


@pytest.fixture(scope="session")
def population() -> List[Transaction]:
    """Synthetic multi-user population for anomaly training"""
    histories = generate_population(n_users=3, seed=7, now=BASE_TIME)
    return [t for history in histories.values() for t in history]


@pytest.fixture(scope="session")
def trained_scorer(population) -> AnomalyScorer:
    scorer = AnomalyScorer()
    scorer.train(population)
    return scorer


@pytest.fixture
def model_store() -> UserModelStore:
    return UserModelStore()


@pytest.fixture
def profiler(model_store) -> BehavioralProfiler:
    return BehavioralProfiler(model_store)


@pytest.fixture
def classifier(model_store) -> SupervisedClassifier:
    return SupervisedClassifier(model_store)


@pytest.fixture
def aggregator(trained_scorer, profiler, classifier, model_store) -> RiskAggregator:
    return RiskAggregator(trained_scorer, profiler, classifier, model_store)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def service(repository, trained_scorer) -> FraudMonitoringService:
    return FraudMonitoringService(repository, anomaly_scorer=trained_scorer)


@pytest.fixture
def client(service) -> TestClient:
    """FastAPI test client backed by an isolated service (no lifespan startup)"""
    from main import create_app

    app = create_app()
    app.dependency_overrides[get_fraud_service] = lambda: service
    return TestClient(app)
