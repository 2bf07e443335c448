"""Pytest fixtures for testing"""

import itertools
from decimal import Decimal
from typing import Any, Callable, Dict, Generator, List, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from microloan_gateway.api.dependencies import get_notification_client
from microloan_gateway.api.main import create_app
from microloan_gateway.infrastructure.database.models import Base, Loan, SystemConfig, User
from microloan_gateway.infrastructure.database.session import get_db
from microloan_gateway.services.loans import LoanService


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

_phones = itertools.count(1)


class RecordingNotifier:
    """Stands in for NotificationClient; keeps every event instead of posting it"""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    async def send_event(self, event: str, payload: Dict[str, Any]) -> bool:
        self.events.append((event, payload))
        return True

    def names(self) -> List[str]:
        return [event for event, _ in self.events]


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def client(db: Session, notifier: RecordingNotifier) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_client] = lambda: notifier
    return TestClient(app)


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    """Factory for credit subjects with a given starting credit state"""

    def _make_user(
        credit_score: int = 0,
        credit_limit: float = 50000,
        auto_limit_enabled: bool = False,
        total_loans: int = 0,
    ) -> User:
        n = next(_phones)
        user = User(
            phone=f"+23480{n:08d}",
            email=f"borrower{n}@example.com",
            credit_score=credit_score,
            credit_limit=Decimal(str(credit_limit)),
            auto_limit_enabled=auto_limit_enabled,
            total_loans=total_loans,
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def disbursed_loan(db: Session) -> Callable[..., Loan]:
    """Factory that takes a loan through request, approval and disbursement"""

    def _disbursed_loan(user: User, amount: float = 10000, interest_rate: float = 5, repayment_period: int = 30) -> Loan:
        service = LoanService(db)
        loan = service.create_loan(
            user.id,
            amount,
            "MTN",
            interest_rate=interest_rate,
            repayment_period=repayment_period,
        )
        service.approve_loan(loan.loan_id, "admin-1")
        return service.disburse_loan(loan.loan_id, "admin-1")

    return _disbursed_loan


@pytest.fixture
def set_config(db: Session) -> Callable[[str, str, Any], None]:
    """Write a system_config document, replacing any existing value"""

    def _set_config(category: str, key: str, value: Any) -> None:
        row = (
            db.query(SystemConfig)
            .filter(SystemConfig.category == category, SystemConfig.key == key)
            .first()
        )
        if row is None:
            db.add(SystemConfig(category=category, key=key, value=value))
        else:
            row.value = value
        db.commit()

    return _set_config
