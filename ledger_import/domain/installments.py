"""Installment grouping: cluster statement rows into the purchases they belong to"""

import unicodedata
from typing import Dict, List, Optional, Tuple
from ledger_import.config import settings
from ledger_import.domain.models import GroupKey, InstallmentRow

Slots = Dict[int, InstallmentRow]


def normalize_description(description: str) -> str:
    """Case-, accent- and whitespace-insensitive form used as grouping key"""
    decomposed = unicodedata.normalize("NFKD", description)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.lower().split())


def amounts_conflict(
    amount_a: int,
    amount_b: int,
    relative_tolerance: Optional[float] = None,
    absolute_tolerance_cents: Optional[int] = None,
) -> bool:
    """
    True when two amounts for the same installment slot belong to different purchases.

    They must differ by more than 1% of the larger amount AND by more than one
    unit of the display currency (100 minor units). Anything closer is the same
    purchase with a corrected amount.
    """
    if relative_tolerance is None:
        relative_tolerance = settings.conflict_relative_tolerance
    if absolute_tolerance_cents is None:
        absolute_tolerance_cents = settings.conflict_absolute_tolerance_cents

    difference = abs(amount_a - amount_b)
    largest = max(abs(amount_a), abs(amount_b))
    return difference > largest * relative_tolerance and difference > absolute_tolerance_cents


class InstallmentGrouper:
    """
    Partitions installment rows of one batch into purchase groups.

    Rows with a provider purchase identifier form one group per identifier.
    The rest are grouped by (normalized description, installment total); when a
    row's slot is already taken by a row of a different purchase, the row moves
    to a sibling group with the next suffix.
    """

    def __init__(
        self,
        relative_tolerance: Optional[float] = None,
        absolute_tolerance_cents: Optional[int] = None,
    ):
        self.relative_tolerance = relative_tolerance
        self.absolute_tolerance_cents = absolute_tolerance_cents
        self.groups: Dict[GroupKey, Slots] = {}
        self.duplicates = 0

    def _conflicting(self, existing: InstallmentRow, incoming: InstallmentRow) -> bool:
        a, b = existing.row, incoming.row
        if a.external_id and b.external_id and a.external_id != b.external_id:
            # Distinct per-row tokens for the same slot cannot be the same purchase
            return True
        return amounts_conflict(
            a.amount_cents,
            b.amount_cents,
            self.relative_tolerance,
            self.absolute_tolerance_cents,
        )

    def _fits_amounts(self, slots: Slots, incoming: InstallmentRow) -> bool:
        return not any(
            amounts_conflict(
                other.row.amount_cents,
                incoming.row.amount_cents,
                self.relative_tolerance,
                self.absolute_tolerance_cents,
            )
            for other in slots.values()
        )

    def _merge_into_slot(self, slots: Slots, incoming: InstallmentRow) -> None:
        """Same purchase, same slot: keep one row, count the other as a duplicate"""
        current = incoming.installment.current
        existing = slots[current]
        self.duplicates += 1

        if existing.row.amount_cents != incoming.row.amount_cents:
            slots[current] = incoming  # later row carries the corrected amount
        elif incoming.row.external_id and not existing.row.external_id:
            slots[current] = incoming

    def add(self, item: InstallmentRow) -> None:
        info = item.installment
        base = normalize_description(info.base_description)

        if item.row.provider_id:
            key = GroupKey(base, info.total, 0, item.row.provider_id)
            slots = self.groups.setdefault(key, {})
            if info.current in slots:
                self._merge_into_slot(slots, item)
            else:
                slots[info.current] = item
            return

        siblings: List[Tuple[GroupKey, Slots]] = []
        suffix = 0
        while GroupKey(base, info.total, suffix) in self.groups:
            key = GroupKey(base, info.total, suffix)
            siblings.append((key, self.groups[key]))
            suffix += 1

        # Same slot already filled by the same purchase
        for _, slots in siblings:
            existing = slots.get(info.current)
            if existing is not None and not self._conflicting(existing, item):
                self._merge_into_slot(slots, item)
                return

        free = [slots for _, slots in siblings if info.current not in slots]
        for slots in free:
            if self._fits_amounts(slots, item):
                slots[info.current] = item
                return
        if free:
            # Uneven installments of one purchase: merging beats inventing a duplicate
            free[0][info.current] = item
            return

        self.groups[GroupKey(base, info.total, suffix)] = {info.current: item}

    def result(self) -> Dict[GroupKey, List[InstallmentRow]]:
        return {
            key: [slots[index] for index in sorted(slots)]
            for key, slots in self.groups.items()
        }


def group_installments(
    rows: List[InstallmentRow],
    relative_tolerance: Optional[float] = None,
    absolute_tolerance_cents: Optional[int] = None,
) -> Tuple[Dict[GroupKey, List[InstallmentRow]], int]:
    """
    Group installment rows into purchases.

    Returns:
        (groups keyed by GroupKey with rows sorted by installment index,
         number of rows discarded as within-batch duplicates)
    """
    grouper = InstallmentGrouper(relative_tolerance, absolute_tolerance_cents)
    for item in rows:
        grouper.add(item)
    return grouper.result(), grouper.duplicates
