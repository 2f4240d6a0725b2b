"""Billing-cycle math: which monthly statement a purchase lands on, and when it is due"""

from datetime import date, timedelta
from typing import Optional
from ledger_import.domain.models import AccountInfo, BillingCycle, EntryDates, StatementOverride
from ledger_import.utils.date_utils import add_months, day_in_month, shift_date_by_months, year_month_of


def default_closing_date(statement_month: str, closing_day: int) -> date:
    """Closing date of a statement month from the account's closing day"""
    return day_in_month(statement_month, closing_day)


def payment_due_date(closing_date: date, payment_due_day: Optional[int]) -> date:
    """
    Due date for a statement closing on `closing_date`.

    The due day falls in the closing month when it comes after the closing day,
    otherwise in the following month. Without a due day the statement is due
    on its closing date.
    """
    if not payment_due_day:
        return closing_date

    due_month = year_month_of(closing_date)
    if payment_due_day <= closing_date.day:
        due_month = add_months(due_month, 1)
    return day_in_month(due_month, payment_due_day)


def statement_month_for(purchase_date: date, closing_day: int) -> str:
    """Month of the next closing date on or after the purchase date"""
    purchase_month = year_month_of(purchase_date)
    if purchase_date <= default_closing_date(purchase_month, closing_day):
        return purchase_month
    return add_months(purchase_month, 1)


def statement_window_start(
    statement_month: str,
    closing_day: int,
    override: Optional[StatementOverride] = None,
) -> date:
    """First day of a statement: the day after the previous month's closing date"""
    if _is_override_month(statement_month, override) and override.start_date:
        return override.start_date
    return default_closing_date(add_months(statement_month, -1), closing_day) + timedelta(days=1)


def statement_closing_date(
    statement_month: str,
    closing_day: int,
    override: Optional[StatementOverride] = None,
) -> date:
    if _is_override_month(statement_month, override):
        return override.closing_date
    return default_closing_date(statement_month, closing_day)


def statement_due_date(
    statement_month: str,
    closing_day: int,
    payment_due_day: Optional[int],
    override: Optional[StatementOverride] = None,
) -> date:
    if _is_override_month(statement_month, override) and override.due_date:
        return override.due_date
    closing_date = statement_closing_date(statement_month, closing_day, override)
    return payment_due_date(closing_date, payment_due_day)


def override_month(override: Optional[StatementOverride]) -> Optional[str]:
    """Statement month an override documents (the month its closing date falls in)"""
    if override is None or override.closing_date is None:
        return None
    return year_month_of(override.closing_date)


def _is_override_month(statement_month: str, override: Optional[StatementOverride]) -> bool:
    return override_month(override) == statement_month


def _apply_override(
    purchase_date: date,
    estimated_month: str,
    closing_day: int,
    override: StatementOverride,
) -> str:
    documented_month = override_month(override)
    window_start = statement_window_start(documented_month, closing_day, override)

    if window_start <= purchase_date <= override.closing_date:
        return documented_month

    # Outside the documented statement: keep the estimate unless it contradicts
    # the documented boundaries
    if purchase_date > override.closing_date and estimated_month <= documented_month:
        return add_months(documented_month, 1)
    if purchase_date < window_start and estimated_month >= documented_month:
        return add_months(documented_month, -1)
    return estimated_month


def compute_cycle(
    purchase_date: date,
    closing_day: Optional[int],
    payment_due_day: Optional[int] = None,
    override: Optional[StatementOverride] = None,
) -> BillingCycle:
    """
    Map a purchase date to its statement month and due date.

    Rules:
    - No closing day (not a revolving-credit account): calendar month, due on the purchase date
    - Otherwise the month of the next closing date on or after the purchase date
    - `override.closing_date` replaces the estimated boundary only for the statement it documents

    Pure and deterministic.
    """
    if not closing_day:
        return BillingCycle(statement_month=year_month_of(purchase_date), due_date=purchase_date)

    month = statement_month_for(purchase_date, closing_day)
    if override is not None and override.closing_date is not None:
        month = _apply_override(purchase_date, month, closing_day, override)

    return BillingCycle(
        statement_month=month,
        due_date=statement_due_date(month, closing_day, payment_due_day, override),
    )


def cycle_for_account(
    purchase_date: date,
    account: AccountInfo,
    override: Optional[StatementOverride] = None,
) -> BillingCycle:
    """compute_cycle using the account's billing configuration, if it has one"""
    if not account.has_billing_cycle:
        return compute_cycle(purchase_date, None)
    return compute_cycle(purchase_date, account.closing_day, account.payment_due_day, override)


def compute_installment_dates(
    anchor_date: date,
    anchor_index: int,
    installment_index: int,
    account: AccountInfo,
    override: Optional[StatementOverride] = None,
    anchor_month: Optional[str] = None,
) -> EntryDates:
    """
    Dates for installment `installment_index` of a purchase whose installment
    `anchor_index` was made (or posted) on `anchor_date`.

    Installment k is billed `k - anchor_index` statements after the anchor.
    The anchor keeps its own date; other installments are dated at the start of
    their statement window. `anchor_month` pins the anchor's statement month when
    it is already known from the ledger.
    """
    offset = installment_index - anchor_index

    if not account.has_billing_cycle:
        purchase_date = shift_date_by_months(anchor_date, offset)
        return EntryDates(
            purchase_date=purchase_date,
            statement_month=year_month_of(purchase_date),
            due_date=purchase_date,
        )

    base_month = anchor_month or cycle_for_account(anchor_date, account, override).statement_month
    month = add_months(base_month, offset)

    if offset == 0:
        purchase_date = anchor_date
    else:
        purchase_date = statement_window_start(month, account.closing_day, override)

    return EntryDates(
        purchase_date=purchase_date,
        statement_month=month,
        due_date=statement_due_date(month, account.closing_day, account.payment_due_day, override),
    )
