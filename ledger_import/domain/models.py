"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, NamedTuple, Optional, Set, Union


@dataclass(frozen=True)
class InstallmentInfo:
    """Installment metadata parsed from a statement row ("Parcela 2/10")"""

    base_description: str
    current: int
    total: int


@dataclass(frozen=True)
class ValidatedImportRow:
    """Statement row as produced by the external statement parser"""

    row_index: int
    description: str
    amount_cents: int
    date: date
    type: str  # "expense" or "income"
    installment: Optional[InstallmentInfo] = None
    external_id: Optional[str] = None  # per-row token, used for exact dedup
    provider_id: Optional[str] = None  # provider purchase identifier, shared by all installments


@dataclass(frozen=True)
class RegularRow:
    """Single-shot expense (no installment plan)"""

    row: ValidatedImportRow


@dataclass(frozen=True)
class InstallmentRow:
    """Expense row that is one installment of an N-installment purchase"""

    row: ValidatedImportRow
    installment: InstallmentInfo


@dataclass(frozen=True)
class IncomeRow:
    """Credit row: income or refund candidate"""

    row: ValidatedImportRow


ImportRow = Union[RegularRow, InstallmentRow, IncomeRow]


def classify_row(row: ValidatedImportRow) -> ImportRow:
    """Dispatch a validated row to its variant. A 1/1 installment is a regular expense."""
    if row.type == "income":
        return IncomeRow(row=row)
    if row.installment is not None and row.installment.total > 1:
        return InstallmentRow(row=row, installment=row.installment)
    return RegularRow(row=row)


class GroupKey(NamedTuple):
    """Identity of a purchase group within one import batch"""

    description: str
    installment_total: int
    suffix: int = 0
    provider_id: Optional[str] = None


@dataclass
class AccountInfo:
    """Billing configuration of the target account"""

    id: int
    user_id: str
    type: str
    closing_day: Optional[int] = None
    payment_due_day: Optional[int] = None

    @property
    def has_billing_cycle(self) -> bool:
        return self.type == "credit_card" and bool(self.closing_day) and bool(self.payment_due_day)


@dataclass(frozen=True)
class StatementOverride:
    """Boundaries declared by the imported statement file itself"""

    start_date: Optional[date] = None
    closing_date: Optional[date] = None
    due_date: Optional[date] = None


@dataclass(frozen=True)
class BillingCycle:
    """Statement attribution for one purchase date"""

    statement_month: str  # YYYY-MM
    due_date: date


@dataclass(frozen=True)
class EntryDates:
    """Dates written on a ledger entry"""

    purchase_date: date
    statement_month: str
    due_date: date


@dataclass
class ExistingPurchase:
    """Prior partial import of the same purchase found in the ledger"""

    purchase_id: int
    known_installments: Set[int]
    known_amounts: Dict[int, int]
    known_months: Dict[int, str]


@dataclass(frozen=True)
class RefundMatch:
    """Refund matcher verdict for one income row"""

    row_index: int
    matched_purchase_id: int
    match_confidence: str  # "high" | "medium" | "low"


@dataclass
class WriteResult:
    """Outcome of the reconciliation transaction"""

    imported_expenses: int = 0
    imported_income: int = 0
    unchanged_rows: int = 0
    created_purchase_ids: List[int] = field(default_factory=list)
    affected_months: Dict[int, Set[str]] = field(default_factory=dict)  # account id -> YYYY-MM set

    def touch(self, account_id: int, statement_month: str) -> None:
        """Record that an entry or income landed on (account, statement month)"""
        self.affected_months.setdefault(account_id, set()).add(statement_month)


@dataclass
class ImportRequest:
    """One statement import for one account"""

    user_id: str
    account_id: int
    rows: List[ValidatedImportRow]
    category_id: Optional[int] = None  # expense category; user default when absent
    income_category_id: Optional[int] = None
    category_overrides: Dict[int, int] = field(default_factory=dict)  # row_index -> category id
    statement_override: Optional[StatementOverride] = None


@dataclass
class ImportResult:
    """Output of a successful import"""

    imported_expenses: int
    imported_income: int
    skipped_duplicates: int
    affected_months: List[str]
    stale_views: List[str]
