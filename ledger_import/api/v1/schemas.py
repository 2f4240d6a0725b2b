"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field, model_validator
from datetime import date
from typing import Dict, List, Literal, Optional
from ledger_import.domain.models import (
    ImportRequest,
    InstallmentInfo,
    StatementOverride,
    ValidatedImportRow,
)


class InstallmentSchema(BaseModel):
    """Installment metadata of a statement row ("Parcela 2/10")"""

    base_description: str = Field(..., min_length=1)
    current: int = Field(..., ge=1)
    total: int = Field(..., ge=1)

    @model_validator(mode="after")
    def current_within_total(self) -> "InstallmentSchema":
        if self.current > self.total:
            raise ValueError("installment current must not exceed total")
        return self


class ImportRowSchema(BaseModel):
    """One validated statement row"""

    row_index: int = Field(..., ge=0)
    description: str = Field(..., min_length=1)
    amount_cents: int = Field(..., gt=0, description="Row amount in minor currency units")
    date: date
    type: Literal["expense", "income"] = "expense"
    installment: Optional[InstallmentSchema] = None
    external_id: Optional[str] = None
    provider_id: Optional[str] = None

    def to_domain(self) -> ValidatedImportRow:
        return ValidatedImportRow(
            row_index=self.row_index,
            description=self.description,
            amount_cents=self.amount_cents,
            date=self.date,
            type=self.type,
            installment=(
                InstallmentInfo(
                    base_description=self.installment.base_description,
                    current=self.installment.current,
                    total=self.installment.total,
                )
                if self.installment
                else None
            ),
            external_id=self.external_id,
            provider_id=self.provider_id,
        )


class StatementOverrideSchema(BaseModel):
    """Boundaries declared by the statement file"""

    start_date: Optional[date] = None
    closing_date: Optional[date] = None
    due_date: Optional[date] = None


class ImportRequestSchema(BaseModel):
    """Request body for POST /v1/imports"""

    user_id: str = Field(..., min_length=1, description="User identifier")
    account_id: int = Field(..., description="Target account")
    rows: List[ImportRowSchema]
    category_id: Optional[int] = Field(None, description="Expense category; user default when omitted")
    income_category_id: Optional[int] = None
    category_overrides: Dict[int, int] = Field(default_factory=dict, description="row_index -> category id")
    statement_override: Optional[StatementOverrideSchema] = None

    @model_validator(mode="after")
    def unique_row_indices(self) -> "ImportRequestSchema":
        # Refund matches and category overrides are keyed by row_index
        seen = set()
        repeated = set()
        for row in self.rows:
            if row.row_index in seen:
                repeated.add(row.row_index)
            seen.add(row.row_index)
        if repeated:
            raise ValueError(f"duplicate row_index: {', '.join(str(index) for index in sorted(repeated))}")
        return self

    def to_domain(self) -> ImportRequest:
        override = None
        if self.statement_override is not None:
            override = StatementOverride(
                start_date=self.statement_override.start_date,
                closing_date=self.statement_override.closing_date,
                due_date=self.statement_override.due_date,
            )
        return ImportRequest(
            user_id=self.user_id,
            account_id=self.account_id,
            rows=[row.to_domain() for row in self.rows],
            category_id=self.category_id,
            income_category_id=self.income_category_id,
            category_overrides=dict(self.category_overrides),
            statement_override=override,
        )


class ImportResponse(BaseModel):
    """Response for POST /v1/imports"""

    imported_expenses: int
    imported_income: int
    skipped_duplicates: int
    affected_months: List[str]
    stale_views: List[str]


class StatementSchema(BaseModel):
    """Billing statement aggregate"""

    year_month: str
    start_date: date
    closing_date: date
    due_date: date
    total_amount: int


class StatementListResponse(BaseModel):
    """Response for GET /v1/statements"""

    account_id: int
    statements: List[StatementSchema]


class RecalculateRequest(BaseModel):
    """Request body for POST /v1/statements/recalculate"""

    user_id: str = Field(..., min_length=1)
    account_id: int = Field(..., gt=0)
    months: Optional[List[str]] = Field(None, description="YYYY-MM list; every month with activity when omitted")
