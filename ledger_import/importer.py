"""Statement import pipeline: dedup, classify, group, reconcile, recompute statements"""

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from ledger_import.config import settings
from ledger_import.domain.exceptions import (
    AccountNotFoundError,
    CategoryNotFoundError,
    ImportValidationError,
    RefundMatcherError,
)
from ledger_import.domain.installments import group_installments
from ledger_import.domain.models import (
    AccountInfo,
    ImportRequest,
    ImportResult,
    IncomeRow,
    InstallmentRow,
    RefundMatch,
    RegularRow,
    StatementOverride,
    ValidatedImportRow,
    WriteResult,
    classify_row,
)
from ledger_import.infrastructure.clients.invalidation import stale_views_for
from ledger_import.infrastructure.clients.refunds import RefundMatcherClient
from ledger_import.domain.billing_cycle import override_month
from ledger_import.infrastructure.database.repositories import (
    AccountRepository,
    CategoryRepository,
    DuplicateFilter,
    StatementRepository,
)
from ledger_import.infrastructure.database.statements import StatementTotalsRecalculator
from ledger_import.infrastructure.database.writer import ReconciliationWriter
from ledger_import.infrastructure.observability.metrics import (
    refund_matcher_failures_counter,
    statement_recalculation_failures_counter,
)
from ledger_import.utils.date_utils import add_months


def _row_kind(row: ValidatedImportRow) -> str:
    return "income" if row.type == "income" else "expense"


def _check_category_type(
    categories: CategoryRepository,
    user_id: str,
    category_id: int,
    category_type: str,
) -> None:
    actual = categories.type_of(user_id, category_id)
    if actual is None:
        raise CategoryNotFoundError("Category not found")
    if actual != category_type:
        raise ImportValidationError(f"Category {category_id} cannot be used for {category_type} rows")


def _resolve_category(
    categories: CategoryRepository,
    user_id: str,
    category_id: Optional[int],
    category_type: str,
    required: bool,
) -> Optional[int]:
    if category_id is not None:
        if category_id <= 0:
            raise ImportValidationError("Invalid category ID")
        _check_category_type(categories, user_id, category_id, category_type)
        return category_id

    default = categories.get_default(user_id, category_type)
    if default is None and required:
        raise ImportValidationError(f"No {category_type} category available for imported rows")
    return default


def validate_request(db: Session, request: ImportRequest) -> Tuple[AccountInfo, Optional[int], Optional[int]]:
    """
    Reject malformed requests before any write.

    Returns:
        (account, expense category id, income category id)

    Raises:
        ImportValidationError: empty batch, bad ids, malformed statement override
        AccountNotFoundError / CategoryNotFoundError: unknown ids for this user
    """
    if not request.rows:
        raise ImportValidationError("No valid rows to import")
    if request.account_id <= 0:
        raise ImportValidationError("Invalid account ID")

    rows_by_index = {row.row_index: row for row in request.rows}
    if len(rows_by_index) != len(request.rows):
        raise ImportValidationError("Row indices must be unique within a batch")

    override = request.statement_override
    if override is not None and override.start_date and override.closing_date:
        if override.start_date > override.closing_date:
            raise ImportValidationError("Statement start date must not be after its closing date")

    account = AccountRepository(db).get_for_user(request.user_id, request.account_id)
    if account is None:
        raise AccountNotFoundError("Account not found")

    categories = CategoryRepository(db)
    has_expenses = any(row.type != "income" for row in request.rows)
    has_income = any(row.type == "income" for row in request.rows)

    expense_category_id = _resolve_category(
        categories, request.user_id, request.category_id, "expense", required=has_expenses
    )
    income_category_id = _resolve_category(
        categories, request.user_id, request.income_category_id, "income", required=has_income
    )

    for row_index, category_id in request.category_overrides.items():
        row = rows_by_index.get(row_index)
        if row is None:
            raise ImportValidationError(f"Category override for unknown row {row_index}")
        _check_category_type(categories, request.user_id, category_id, _row_kind(row))

    return account, expense_category_id, income_category_id


def complete_statement_override(
    db: Session,
    account: AccountInfo,
    override: Optional[StatementOverride],
) -> Optional[StatementOverride]:
    """
    Fill a missing start date from the stored previous statement.

    A statement file that only declares its closing date starts the day after
    the previous statement closed, when that statement is already known.
    """
    if override is None or override.closing_date is None or override.start_date is not None:
        return override
    if not account.has_billing_cycle:
        return override

    previous = StatementRepository(db).get(account.id, add_months(override_month(override), -1))
    if previous is None:
        return override
    return replace(override, start_date=previous.closing_date + timedelta(days=1))


def drop_duplicates(
    rows: Iterable[ValidatedImportRow],
    already_imported: Set[str],
) -> Tuple[List[ValidatedImportRow], int]:
    """Remove rows whose external id is already in the ledger or repeated within the batch"""
    fresh: List[ValidatedImportRow] = []
    seen: Set[str] = set()
    skipped = 0

    for row in rows:
        if row.external_id and (row.external_id in already_imported or row.external_id in seen):
            skipped += 1
            continue
        if row.external_id:
            seen.add(row.external_id)
        fresh.append(row)

    return fresh, skipped


def split_rows(
    rows: Iterable[ValidatedImportRow],
) -> Tuple[List[InstallmentRow], List[RegularRow], List[IncomeRow]]:
    installment_rows: List[InstallmentRow] = []
    regular_rows: List[RegularRow] = []
    income_rows: List[IncomeRow] = []

    for row in rows:
        item = classify_row(row)
        if isinstance(item, InstallmentRow):
            installment_rows.append(item)
        elif isinstance(item, IncomeRow):
            income_rows.append(item)
        else:
            regular_rows.append(item)

    return installment_rows, regular_rows, income_rows


async def match_refunds(
    refund_matcher: Optional[RefundMatcherClient],
    user_id: str,
    account_id: int,
    income_rows: List[IncomeRow],
) -> Dict[int, RefundMatch]:
    """Refund candidates for income rows; an unavailable matcher only costs the links"""
    if refund_matcher is None or not settings.refund_matching_enabled or not income_rows:
        return {}

    try:
        return await refund_matcher.match_refunds(user_id, account_id, income_rows)
    except RefundMatcherError as e:
        refund_matcher_failures_counter.inc()
        logging.warning(
            f"Refund matching skipped: {e}",
            extra={"user_id": user_id, "account_id": account_id},
        )
        return {}


def recalculate_statements(
    db: Session,
    account: AccountInfo,
    write_result: WriteResult,
    statement_override: Optional[StatementOverride] = None,
) -> None:
    """
    Bring statement aggregates up to date after the import committed.

    Runs outside the import transaction. A failure leaves aggregates stale
    until the next import or manual recompute; it never fails the import.
    """
    accounts = AccountRepository(db)
    recalculator = StatementTotalsRecalculator(db)

    for account_id, months in sorted(write_result.affected_months.items()):
        target = account if account_id == account.id else accounts.get_for_user(account.user_id, account_id)
        if target is None:
            continue
        override = statement_override if account_id == account.id else None

        try:
            recalculator.reconcile_statements(target, months, override)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            statement_recalculation_failures_counter.inc()
            logging.error(
                f"Statement recalculation failed: {e}",
                extra={"user_id": account.user_id, "account_id": account_id, "months": sorted(months)},
            )


async def import_statement(
    db: Session,
    request: ImportRequest,
    refund_matcher: Optional[RefundMatcherClient] = None,
) -> ImportResult:
    """
    Reconcile one batch of statement rows into the ledger.

    Flow:
    1. Validate account, categories and statement override
    2. Drop rows whose external id was already imported
    3. Split rows into installment, regular and income rows
    4. Group installment rows into purchases
    5. Ask the refund matcher about income rows
    6. Write everything in one transaction
    7. Recompute the affected statements (post-commit, best effort)

    Raises:
        ImportValidationError: request rejected before any write
        ImportCommitError: transaction rolled back, nothing written
    """
    account, expense_category_id, income_category_id = validate_request(db, request)
    statement_override = complete_statement_override(db, account, request.statement_override)

    already_imported = DuplicateFilter(db).find_duplicates(
        request.user_id, (row.external_id for row in request.rows)
    )
    fresh_rows, skipped = drop_duplicates(request.rows, already_imported)

    installment_rows, regular_rows, income_rows = split_rows(fresh_rows)
    groups, batch_duplicates = group_installments(installment_rows)

    refund_matches = await match_refunds(refund_matcher, request.user_id, account.id, income_rows)

    writer = ReconciliationWriter(
        db,
        account,
        expense_category_id=expense_category_id,
        income_category_id=income_category_id,
        category_overrides=request.category_overrides,
        statement_override=statement_override,
        refund_matches=refund_matches,
        auto_link_confidence=settings.refund_auto_link_confidence,
    )
    write_result = writer.commit(groups, regular_rows, income_rows)

    recalculate_statements(db, account, write_result, statement_override)

    affected_months = sorted(
        {month for months in write_result.affected_months.values() for month in months}
    )
    return ImportResult(
        imported_expenses=write_result.imported_expenses,
        imported_income=write_result.imported_income,
        skipped_duplicates=skipped + batch_duplicates + write_result.unchanged_rows,
        affected_months=affected_months,
        stale_views=stale_views_for(write_result.imported_expenses, write_result.imported_income),
    )
