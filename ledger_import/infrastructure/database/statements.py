"""Billing statement aggregates: lazy creation, boundary continuity and total recomputation"""

from datetime import date, timedelta
from typing import Iterable, List, Optional
from sqlalchemy.orm import Session
from ledger_import.domain.billing_cycle import (
    override_month,
    statement_closing_date,
    statement_due_date,
    statement_window_start,
)
from ledger_import.domain.models import AccountInfo, StatementOverride
from ledger_import.infrastructure.database.models import BillingStatement
from ledger_import.infrastructure.database.repositories import StatementRepository
from ledger_import.utils.date_utils import add_months

ONE_DAY = timedelta(days=1)


class StatementTotalsRecalculator:
    """
    Upserts statement rows for affected months and recomputes their totals.

    total = sum(entries.amount) - sum(income.amount) for the (account, month).
    Totals are always derived fresh, so running it twice changes nothing.
    The caller owns the commit.
    """

    def __init__(self, db: Session):
        self.db = db
        self.statements = StatementRepository(db)

    def _start_date(
        self,
        account: AccountInfo,
        month: str,
        documented: bool,
        override: Optional[StatementOverride],
        previous_closing: Optional[date],
    ) -> date:
        if documented and override.start_date:
            return override.start_date
        if previous_closing is not None:
            return previous_closing + ONE_DAY
        prior = self.statements.get(account.id, add_months(month, -1))
        if prior is not None:
            return prior.closing_date + ONE_DAY
        return statement_window_start(month, account.closing_day)

    def reconcile_statements(
        self,
        account: AccountInfo,
        affected_months: Iterable[str],
        first_month_override: Optional[StatementOverride] = None,
    ) -> List[BillingStatement]:
        """
        Ensure a statement exists for every affected month, oldest first, and recompute totals.

        The month documented by `first_month_override` takes its declared boundaries;
        each following month starts the day after the previous one closes.
        """
        if not account.has_billing_cycle:
            return []

        documented_month = override_month(first_month_override)
        reconciled: List[BillingStatement] = []
        previous_month: Optional[str] = None
        previous_closing: Optional[date] = None

        for month in sorted(set(affected_months)):
            documented = month == documented_month
            statement = self.statements.get(account.id, month)
            continues_run = previous_month is not None and add_months(previous_month, 1) == month
            start_date = self._start_date(
                account,
                month,
                documented,
                first_month_override,
                previous_closing if continues_run else None,
            )

            if statement is None:
                statement = BillingStatement(
                    user_id=account.user_id,
                    account_id=account.id,
                    year_month=month,
                    start_date=start_date,
                    closing_date=statement_closing_date(month, account.closing_day, first_month_override),
                    due_date=statement_due_date(
                        month, account.closing_day, account.payment_due_day, first_month_override
                    ),
                    total_amount=0,
                )
                self.db.add(statement)
            else:
                if documented:
                    statement.closing_date = first_month_override.closing_date
                    statement.due_date = statement_due_date(
                        month, account.closing_day, account.payment_due_day, first_month_override
                    )
                # Stored boundaries are kept unless this run knows the previous closing
                if documented or continues_run:
                    statement.start_date = start_date

            statement.total_amount = self.statements.entries_total(
                account.user_id, account.id, month
            ) - self.statements.income_total(account.user_id, account.id, month)

            reconciled.append(statement)
            previous_month = month
            previous_closing = statement.closing_date

        if documented_month is not None and previous_month == documented_month:
            following = self.statements.get(account.id, add_months(documented_month, 1))
            if following is not None:
                following.start_date = previous_closing + ONE_DAY

        self.db.flush()
        return reconciled
