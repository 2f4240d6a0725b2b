"""Pytest fixtures for testing"""

import os

# Must be set before ledger_import.config builds its settings singleton
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import pytest
from datetime import date
from typing import Callable, Generator, Optional
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from ledger_import.api.main import create_app
from ledger_import.api.dependencies import get_refund_matcher, get_view_invalidation_client
from ledger_import.infrastructure.database.models import Account, Base, Category
from ledger_import.infrastructure.database.session import get_db
from ledger_import.domain.models import AccountInfo, InstallmentInfo, ValidatedImportRow


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

USER_ID = "user_test"


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
def refund_matcher() -> AsyncMock:
    """Refund matcher that finds nothing unless a test says otherwise"""
    matcher = AsyncMock()
    matcher.match_refunds.return_value = {}
    return matcher


@pytest.fixture
def view_invalidation() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def client(db: Session, refund_matcher: AsyncMock, view_invalidation: AsyncMock) -> TestClient:
    """Create FastAPI test client with test database and stubbed external services"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_refund_matcher] = lambda: refund_matcher
    app.dependency_overrides[get_view_invalidation_client] = lambda: view_invalidation
    return TestClient(app)


@pytest.fixture
def credit_card(db: Session) -> Account:
    """Credit card closing on the 15th, due on the 5th of the following month"""
    account = Account(
        user_id=USER_ID,
        name="Test CC with Billing",
        type="credit_card",
        closing_day=15,
        payment_due_day=5,
    )
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def checking(db: Session) -> Account:
    account = Account(user_id=USER_ID, name="Test Checking", type="checking")
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def categories(db: Session) -> dict[str, Category]:
    expense = Category(user_id=USER_ID, name="Test Expense Category", type="expense", is_default=True)
    groceries = Category(user_id=USER_ID, name="Groceries", type="expense", is_default=False)
    income = Category(user_id=USER_ID, name="Test Salary", type="income", is_default=True)
    db.add_all([expense, groceries, income])
    db.commit()
    return {"expense": expense, "groceries": groceries, "income": income}


@pytest.fixture
def card_info() -> AccountInfo:
    """Billing config matching the credit_card fixture, for pure domain tests"""
    return AccountInfo(id=1, user_id=USER_ID, type="credit_card", closing_day=15, payment_due_day=5)


@pytest.fixture
def make_row() -> Callable[..., ValidatedImportRow]:
    """Factory for statement rows; pass installment=(current, total) for installment rows"""
    counter = {"index": 0}

    def _make_row(
        description: str = "Amazon",
        amount_cents: int = 1000,
        day: date = date(2025, 3, 10),
        type: str = "expense",
        installment: Optional[tuple[int, int]] = None,
        external_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        base_description: Optional[str] = None,
    ) -> ValidatedImportRow:
        counter["index"] += 1
        info = None
        if installment is not None:
            current, total = installment
            info = InstallmentInfo(
                base_description=base_description or description,
                current=current,
                total=total,
            )
        return ValidatedImportRow(
            row_index=counter["index"],
            description=description,
            amount_cents=amount_cents,
            date=day,
            type=type,
            installment=info,
            external_id=external_id,
            provider_id=provider_id,
        )

    return _make_row
