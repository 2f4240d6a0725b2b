"""Reconciliation writer: commits one import batch into the ledger atomically"""

import logging
from typing import Dict, List, Optional, Set
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from ledger_import.domain.billing_cycle import compute_installment_dates, cycle_for_account
from ledger_import.domain.exceptions import ImportCommitError
from ledger_import.domain.models import (
    AccountInfo,
    EntryDates,
    ExistingPurchase,
    GroupKey,
    IncomeRow,
    InstallmentRow,
    RefundMatch,
    RegularRow,
    StatementOverride,
    ValidatedImportRow,
    WriteResult,
)
from ledger_import.infrastructure.database.models import Entry, Income, Purchase
from ledger_import.infrastructure.database.repositories import PurchaseRepository


class ReconciliationWriter:
    """
    Writes installment groups, regular expenses and income rows in one transaction.

    Nothing is visible until every row has been written; any database error
    rolls the whole batch back and surfaces as ImportCommitError.
    """

    def __init__(
        self,
        db: Session,
        account: AccountInfo,
        expense_category_id: int,
        income_category_id: int,
        category_overrides: Optional[Dict[int, int]] = None,
        statement_override: Optional[StatementOverride] = None,
        refund_matches: Optional[Dict[int, RefundMatch]] = None,
        auto_link_confidence: str = "high",
    ):
        self.db = db
        self.account = account
        self.expense_category_id = expense_category_id
        self.income_category_id = income_category_id
        self.category_overrides = category_overrides or {}
        self.statement_override = statement_override
        self.refund_matches = refund_matches or {}
        self.auto_link_confidence = auto_link_confidence
        self.purchases = PurchaseRepository(db)

    def commit(
        self,
        groups: Dict[GroupKey, List[InstallmentRow]],
        regular_rows: List[RegularRow],
        income_rows: List[IncomeRow],
    ) -> WriteResult:
        result = WriteResult()
        created_ids: Set[int] = set()
        # Purchases created or extended by this batch; never matched by later groups of the same batch
        written_ids: Set[int] = set()

        try:
            for key, rows in groups.items():
                self._write_group(key, rows, created_ids, written_ids, result)

            for item in regular_rows:
                self._write_regular(item.row, result)

            for item in income_rows:
                self._write_income(item.row, result)

            self.db.flush()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logging.error(
                f"Import transaction rolled back: {e}",
                extra={"user_id": self.account.user_id, "account_id": self.account.id},
            )
            raise ImportCommitError("Failed to import statement. Please try again.") from e

        result.created_purchase_ids = sorted(created_ids)
        return result

    # Installment purchases

    def _category_for(self, rows: List[ValidatedImportRow], default: int) -> int:
        for row in rows:
            if row.row_index in self.category_overrides:
                return self.category_overrides[row.row_index]
        return default

    def _add_entry(
        self,
        purchase: Purchase,
        row: ValidatedImportRow,
        installment_number: int,
        dates: EntryDates,
        result: WriteResult,
    ) -> Entry:
        entry = Entry(
            user_id=self.account.user_id,
            purchase=purchase,
            account_id=self.account.id,
            amount=row.amount_cents,
            purchase_date=dates.purchase_date,
            statement_month=dates.statement_month,
            due_date=dates.due_date,
            installment_number=installment_number,
            external_id=row.external_id,
        )
        self.db.add(entry)
        result.touch(self.account.id, dates.statement_month)
        return entry

    def _write_group(
        self,
        key: GroupKey,
        rows: List[InstallmentRow],
        created_ids: Set[int],
        written_ids: Set[int],
        result: WriteResult,
    ) -> None:
        info = rows[0].installment
        observed = {item.installment.current: item.row.amount_cents for item in rows}

        match = self.purchases.find_existing_purchase(
            user_id=self.account.user_id,
            base_description=info.base_description,
            installment_total=info.total,
            exclude_ids=written_ids,
            provider_id_prefix=key.provider_id,
            observed_amounts=observed,
        )

        if match is None:
            purchase = self._create_installment_purchase(key, rows, result)
            created_ids.add(purchase.id)
            written_ids.add(purchase.id)
        else:
            self._extend_purchase(match, rows, result)
            written_ids.add(match.purchase_id)

        self.db.flush()

    def _create_installment_purchase(
        self,
        key: GroupKey,
        rows: List[InstallmentRow],
        result: WriteResult,
    ) -> Purchase:
        anchor = rows[0]
        purchase = Purchase(
            user_id=self.account.user_id,
            description=anchor.installment.base_description.strip(),
            total_amount=sum(item.row.amount_cents for item in rows),
            total_installments=anchor.installment.total,
            category_id=self._category_for([item.row for item in rows], self.expense_category_id),
            external_id=anchor.row.external_id,
            provider_id=key.provider_id,
            refunded_amount=0,
        )
        self.db.add(purchase)
        self.db.flush()

        if (
            anchor.installment.current > 1
            and self.account.has_billing_cycle
            and (self.statement_override is None or self.statement_override.closing_date is None)
        ):
            logging.warning(
                "Installment anchor estimated from row date without statement boundaries",
                extra={
                    "user_id": self.account.user_id,
                    "purchase_id": purchase.id,
                    "anchor_installment": anchor.installment.current,
                },
            )

        for item in rows:
            dates = compute_installment_dates(
                anchor_date=anchor.row.date,
                anchor_index=anchor.installment.current,
                installment_index=item.installment.current,
                account=self.account,
                override=self.statement_override,
            )
            self._add_entry(purchase, item.row, item.installment.current, dates, result)

        result.imported_expenses += len(rows)
        return purchase

    def _extend_purchase(
        self,
        match: ExistingPurchase,
        rows: List[InstallmentRow],
        result: WriteResult,
    ) -> None:
        purchase = self.db.get(Purchase, match.purchase_id)
        entries_by_index = {entry.installment_number: entry for entry in purchase.entries}

        for item in rows:
            index = item.installment.current
            row = item.row
            entry = entries_by_index.get(index)

            if entry is not None:
                if row.external_id and not entry.external_id:
                    entry.external_id = row.external_id
                if entry.amount == row.amount_cents:
                    result.unchanged_rows += 1
                    continue
                # Newer statement is authoritative for the installment amount
                entry.amount = row.amount_cents
                result.touch(entry.account_id, entry.statement_month)
                result.imported_expenses += 1
                continue

            if entries_by_index:
                nearest = min(entries_by_index, key=lambda known: (abs(known - index), known))
                anchor_entry = entries_by_index[nearest]
                dates = compute_installment_dates(
                    anchor_date=anchor_entry.purchase_date,
                    anchor_index=nearest,
                    installment_index=index,
                    account=self.account,
                    override=self.statement_override,
                    anchor_month=anchor_entry.statement_month,
                )
            else:
                dates = compute_installment_dates(
                    anchor_date=row.date,
                    anchor_index=index,
                    installment_index=index,
                    account=self.account,
                    override=self.statement_override,
                )

            entries_by_index[index] = self._add_entry(purchase, row, index, dates, result)
            result.imported_expenses += 1

        purchase.total_amount = sum(entry.amount for entry in entries_by_index.values())

    # Single-shot expenses and income

    def _write_regular(self, row: ValidatedImportRow, result: WriteResult) -> None:
        purchase = Purchase(
            user_id=self.account.user_id,
            description=row.description,
            total_amount=row.amount_cents,
            total_installments=1,
            category_id=self.category_overrides.get(row.row_index, self.expense_category_id),
            external_id=row.external_id,
            provider_id=row.provider_id,
            refunded_amount=0,
        )
        self.db.add(purchase)

        cycle = cycle_for_account(row.date, self.account, self.statement_override)
        dates = EntryDates(purchase_date=row.date, statement_month=cycle.statement_month, due_date=cycle.due_date)
        self._add_entry(purchase, row, 1, dates, result)
        result.imported_expenses += 1

    def _refunded_purchase(self, row: ValidatedImportRow) -> Optional[Purchase]:
        match = self.refund_matches.get(row.row_index)
        if match is None or match.match_confidence != self.auto_link_confidence:
            return None
        return (
            self.db.query(Purchase)
            .filter(Purchase.id == match.matched_purchase_id, Purchase.user_id == self.account.user_id)
            .first()
        )

    def _write_income(self, row: ValidatedImportRow, result: WriteResult) -> None:
        refunded = self._refunded_purchase(row)
        cycle = cycle_for_account(row.date, self.account, self.statement_override)

        income = Income(
            user_id=self.account.user_id,
            account_id=self.account.id,
            category_id=self.category_overrides.get(row.row_index, self.income_category_id),
            description=row.description,
            amount=row.amount_cents,
            received_date=row.date,
            statement_month=cycle.statement_month,
            refunded_purchase_id=refunded.id if refunded else None,
            replenish_category_id=refunded.category_id if refunded else None,
            external_id=row.external_id,
        )
        self.db.add(income)

        if refunded is not None:
            # Atomic increment: refunded_amount = refunded_amount + amount
            self.db.query(Purchase).filter(Purchase.id == refunded.id).update(
                {Purchase.refunded_amount: Purchase.refunded_amount + row.amount_cents},
                synchronize_session=False,
            )
            self.db.expire(refunded, ["refunded_amount"])

        result.touch(self.account.id, cycle.statement_month)
        result.imported_income += 1
