"""Billing statement endpoints: list aggregates, recompute them on demand"""

import re
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ledger_import.api.v1.schemas import RecalculateRequest, StatementListResponse, StatementSchema
from ledger_import.infrastructure.database.session import get_db
from ledger_import.infrastructure.database.repositories import AccountRepository, StatementRepository
from ledger_import.infrastructure.database.statements import StatementTotalsRecalculator

router = APIRouter()

YEAR_MONTH = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def _to_schema(statement) -> StatementSchema:
    return StatementSchema(
        year_month=statement.year_month,
        start_date=statement.start_date,
        closing_date=statement.closing_date,
        due_date=statement.due_date,
        total_amount=statement.total_amount,
    )


@router.get("/statements", response_model=StatementListResponse)
def list_statements(
    user_id: str = Query(..., description="User identifier"),
    account_id: int = Query(..., description="Account identifier"),
    db: Session = Depends(get_db),
):
    """Billing statements of an account, oldest first"""
    statements = StatementRepository(db).list_for_account(user_id, account_id)
    return StatementListResponse(
        account_id=account_id,
        statements=[_to_schema(s) for s in statements],
    )


@router.post("/statements/recalculate", response_model=StatementListResponse)
def recalculate_statements(request_body: RecalculateRequest, db: Session = Depends(get_db)):
    """
    Recompute statement totals from entries and income.

    Heals aggregates left stale by an interrupted import. Without an explicit
    month list every month with a statement, entry or income is recomputed.
    """
    account = AccountRepository(db).get_for_user(request_body.user_id, request_body.account_id)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    if not account.has_billing_cycle:
        raise HTTPException(status_code=400, detail="Account has no billing cycle")

    if request_body.months is not None:
        invalid = [month for month in request_body.months if not YEAR_MONTH.match(month)]
        if invalid:
            raise HTTPException(status_code=400, detail=f"Invalid month(s): {', '.join(invalid)}")
        months = set(request_body.months)
    else:
        months = StatementRepository(db).months_with_activity(account.user_id, account.id)

    StatementTotalsRecalculator(db).reconcile_statements(account, months)
    db.commit()

    statements = StatementRepository(db).list_for_account(account.user_id, account.id)
    return StatementListResponse(
        account_id=account.id,
        statements=[_to_schema(s) for s in statements],
    )
