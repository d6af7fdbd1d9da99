from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Sequence

from src.utils.money import ZERO, quantize_usd


SHORT_TERM_DAYS = 365


class LotSelectionError(ValueError):
    pass


@dataclass(frozen=True)
class SelectedLot:
    lot_id: int
    acquired_at: dt.datetime
    amount: Decimal
    cost_basis_usd: Decimal
    is_short_term: bool


def is_short_term(acquired_at: dt.datetime, disposed_at: dt.datetime) -> bool:
    return (disposed_at - acquired_at) < dt.timedelta(days=SHORT_TERM_DAYS)


def _unit_cost(lot: Any) -> Decimal:
    amt = Decimal(lot.amount)
    return Decimal(lot.cost_basis_usd) / amt if amt else ZERO


def order_lots(lots: Sequence[Any], method: str, lot_ids: Optional[Sequence[int]] = None) -> list[Any]:
    open_lots = [l for l in lots if Decimal(l.remaining_amount) > 0]
    if method == "fifo":
        return sorted(open_lots, key=lambda l: (l.acquired_at, l.id))
    if method == "lifo":
        return sorted(open_lots, key=lambda l: (l.acquired_at, l.id), reverse=True)
    if method == "hifo":
        return sorted(open_lots, key=lambda l: (-_unit_cost(l), l.acquired_at, l.id))
    if method == "specific_id":
        if not lot_ids:
            raise LotSelectionError("specific_id requires explicit lot ids")
        by_id = {l.id: l for l in open_lots}
        ordered = []
        seen: set[int] = set()
        for lid in lot_ids:
            if int(lid) in seen:
                raise LotSelectionError(f"lot {lid} is listed more than once")
            seen.add(int(lid))
            lot = by_id.get(int(lid))
            if lot is None:
                raise LotSelectionError(f"lot {lid} is not an open lot for this token")
            ordered.append(lot)
        return ordered
    raise LotSelectionError(f"unknown lot method: {method}")


def allocate_share(total: Decimal, part_before: Decimal, part_after: Decimal, whole: Decimal) -> Decimal:
    """
    Cents of `total` attributable to the slice (part_before, part_after] of `whole`.

    Slices that tile `whole` always add up to exactly round2(total).
    """
    if not whole:
        return ZERO
    hi = quantize_usd(total * part_after / whole)
    lo = quantize_usd(total * part_before / whole)
    return hi - lo


def select_lots(
    *,
    lots: Sequence[Any],
    amount: Decimal,
    method: str,
    disposed_at: dt.datetime,
    lot_ids: Optional[Sequence[int]] = None,
) -> tuple[list[SelectedLot], Decimal]:
    """
    Pick lot slices covering `amount`. Returns (slices, uncovered_amount).

    Lots are not mutated; the caller applies `remaining_amount` changes.
    """
    remaining = Decimal(amount)
    picks: list[SelectedLot] = []
    if remaining <= 0:
        return picks, ZERO
    # Amount already taken per lot in this call; a lot never yields more than it holds.
    taken: dict[int, Decimal] = {}
    for lot in order_lots(lots, method, lot_ids):
        if remaining <= 0:
            break
        lot_amount = Decimal(lot.amount)
        open_amt = Decimal(lot.remaining_amount) - taken.get(lot.id, ZERO)
        if open_amt <= 0:
            continue
        take = min(open_amt, remaining)
        taken[lot.id] = taken.get(lot.id, ZERO) + take
        consumed_before = lot_amount - open_amt
        basis = allocate_share(Decimal(lot.cost_basis_usd), consumed_before, consumed_before + take, lot_amount)
        picks.append(
            SelectedLot(
                lot_id=lot.id,
                acquired_at=lot.acquired_at,
                amount=take,
                cost_basis_usd=basis,
                is_short_term=is_short_term(lot.acquired_at, disposed_at),
            )
        )
        remaining -= take
    return picks, max(remaining, ZERO)
