"""Data access layer for ledger entities"""

from typing import Dict, Iterable, List, Optional, Set
from sqlalchemy import func
from sqlalchemy.orm import Session
from ledger_import.domain.installments import amounts_conflict
from ledger_import.domain.models import AccountInfo, ExistingPurchase
from ledger_import.infrastructure.database.models import (
    Account,
    BillingStatement,
    Category,
    Entry,
    Income,
    Purchase,
    Transfer,
)

# Keeps IN (...) lists under SQLite's bound-parameter limit
_IN_CHUNK_SIZE = 500


def _chunks(values: List[str], size: int = _IN_CHUNK_SIZE) -> Iterable[List[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class AccountRepository:
    """Read-only account lookups"""

    def __init__(self, db: Session):
        self.db = db

    def get_for_user(self, user_id: str, account_id: int) -> Optional[AccountInfo]:
        account = (
            self.db.query(Account)
            .filter(Account.id == account_id, Account.user_id == user_id)
            .first()
        )
        if account is None:
            return None
        return AccountInfo(
            id=account.id,
            user_id=account.user_id,
            type=account.type,
            closing_day=account.closing_day,
            payment_due_day=account.payment_due_day,
        )


class CategoryRepository:
    """Read-only category lookups and defaults"""

    def __init__(self, db: Session):
        self.db = db

    def type_of(self, user_id: str, category_id: int) -> Optional[str]:
        """Category type ("expense" or "income"), None when the user has no such category"""
        row = (
            self.db.query(Category.type)
            .filter(Category.id == category_id, Category.user_id == user_id)
            .first()
        )
        return row[0] if row else None

    def get_default(self, user_id: str, category_type: str) -> Optional[int]:
        """User's flagged default category of a type, else their first one"""
        category = (
            self.db.query(Category)
            .filter(Category.user_id == user_id, Category.type == category_type)
            .order_by(Category.is_default.desc(), Category.id)
            .first()
        )
        return category.id if category else None


class DuplicateFilter:
    """Finds external identifiers that were already imported into any ledger table"""

    def __init__(self, db: Session):
        self.db = db

    def find_duplicates(self, user_id: str, external_ids: Iterable[Optional[str]]) -> Set[str]:
        """
        Return the subset of `external_ids` already present for this user.

        Searches purchases, entries, income and transfers. Missing identifiers
        are ignored: rows without one are never duplicates by this mechanism.
        """
        wanted = sorted({external_id for external_id in external_ids if external_id})
        if not wanted:
            return set()

        found: Set[str] = set()
        for model in (Purchase, Entry, Income, Transfer):
            for chunk in _chunks(wanted):
                rows = (
                    self.db.query(model.external_id)
                    .filter(model.user_id == user_id, model.external_id.in_(chunk))
                    .all()
                )
                found.update(row[0] for row in rows)
        return found


def _best_candidate(candidates: List[Purchase], observed_amounts: Dict[int, int]) -> Purchase:
    """
    Pick the purchase the observed installments belong to, newest first.

    1. A candidate whose every known amount agrees with every observed amount
    2. Else one with no conflicting amount at a shared installment index
    3. Else the newest candidate
    """
    observed = list(observed_amounts.values())
    compatible: Optional[Purchase] = None

    for candidate in candidates:
        known = {entry.installment_number: entry.amount for entry in candidate.entries}
        if any(
            amounts_conflict(known_amount, amount)
            for known_amount in known.values()
            for amount in observed
        ):
            contradicts = any(
                index in known and amounts_conflict(known[index], amount)
                for index, amount in observed_amounts.items()
            )
            if not contradicts and compatible is None:
                compatible = candidate
            continue
        return candidate

    return compatible or candidates[0]


class PurchaseRepository:
    """Purchase lookups used while reconciling installment groups"""

    def __init__(self, db: Session):
        self.db = db

    def find_existing_purchase(
        self,
        user_id: str,
        base_description: str,
        installment_total: int,
        exclude_ids: Set[int],
        provider_id_prefix: Optional[str] = None,
        observed_amounts: Optional[Dict[int, int]] = None,
    ) -> Optional[ExistingPurchase]:
        """
        Find a prior partial import of the same installment purchase.

        Candidates share the installment count and contain `base_description`
        (case-insensitive). Purchases already written by the current batch are
        listed in `exclude_ids` and never matched. With a provider prefix only a
        purchase carrying the same provider identifier prefix is accepted.

        Among several candidates the newest one whose amounts agree with
        `observed_amounts` wins; when none agrees the newest one is still used.
        """
        pattern = f"%{_escape_like(base_description.strip())}%"
        query = self.db.query(Purchase).filter(
            Purchase.user_id == user_id,
            Purchase.total_installments == installment_total,
            Purchase.description.ilike(pattern, escape="\\"),
        )
        if exclude_ids:
            query = query.filter(Purchase.id.notin_(sorted(exclude_ids)))

        candidates = query.order_by(Purchase.created_at.desc(), Purchase.id.desc()).all()
        if provider_id_prefix:
            candidates = [
                candidate
                for candidate in candidates
                if candidate.provider_id and candidate.provider_id.startswith(provider_id_prefix)
            ]
        if not candidates:
            return None

        chosen = _best_candidate(candidates, observed_amounts or {})

        return ExistingPurchase(
            purchase_id=chosen.id,
            known_installments={entry.installment_number for entry in chosen.entries},
            known_amounts={entry.installment_number: entry.amount for entry in chosen.entries},
            known_months={entry.installment_number: entry.statement_month for entry in chosen.entries},
        )


class StatementRepository:
    """Billing statement aggregates and the sums they are derived from"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, account_id: int, year_month: str) -> Optional[BillingStatement]:
        return (
            self.db.query(BillingStatement)
            .filter(BillingStatement.account_id == account_id, BillingStatement.year_month == year_month)
            .first()
        )

    def list_for_account(self, user_id: str, account_id: int) -> List[BillingStatement]:
        return (
            self.db.query(BillingStatement)
            .filter(BillingStatement.user_id == user_id, BillingStatement.account_id == account_id)
            .order_by(BillingStatement.year_month)
            .all()
        )

    def months_with_activity(self, user_id: str, account_id: int) -> Set[str]:
        """Every month that has a statement row, an entry or an income on the account"""
        months = {
            statement.year_month for statement in self.list_for_account(user_id, account_id)
        }
        entry_months = (
            self.db.query(Entry.statement_month)
            .filter(Entry.user_id == user_id, Entry.account_id == account_id)
            .distinct()
            .all()
        )
        income_months = (
            self.db.query(Income.statement_month)
            .filter(
                Income.user_id == user_id,
                Income.account_id == account_id,
                Income.statement_month.isnot(None),
            )
            .distinct()
            .all()
        )
        months.update(row[0] for row in entry_months)
        months.update(row[0] for row in income_months)
        return months

    def entries_total(self, user_id: str, account_id: int, year_month: str) -> int:
        return int(
            self.db.query(func.coalesce(func.sum(Entry.amount), 0))
            .filter(
                Entry.user_id == user_id,
                Entry.account_id == account_id,
                Entry.statement_month == year_month,
            )
            .scalar()
            or 0
        )

    def income_total(self, user_id: str, account_id: int, year_month: str) -> int:
        return int(
            self.db.query(func.coalesce(func.sum(Income.amount), 0))
            .filter(
                Income.user_id == user_id,
                Income.account_id == account_id,
                Income.statement_month == year_month,
            )
            .scalar()
            or 0
        )
