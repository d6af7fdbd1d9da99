from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal

import pytest

from src.core.lot_selection import LotSelectionError, allocate_share, is_short_term, order_lots, select_lots
from src.utils.time import UTC


@dataclass
class FakeLot:
    id: int
    amount: Decimal
    remaining_amount: Decimal
    cost_basis_usd: Decimal
    acquired_at: dt.datetime


def _d(y, m, d):
    return dt.datetime(y, m, d, tzinfo=UTC)


LOTS = [
    FakeLot(1, Decimal("1"), Decimal("1"), Decimal("1000"), _d(2022, 1, 1)),
    FakeLot(2, Decimal("1"), Decimal("1"), Decimal("3000"), _d(2023, 1, 1)),
    FakeLot(3, Decimal("1"), Decimal("1"), Decimal("2000"), _d(2024, 1, 1)),
    FakeLot(4, Decimal("1"), Decimal("0"), Decimal("9000"), _d(2021, 1, 1)),
]


@pytest.mark.parametrize(
    "method,expected",
    [("fifo", [1, 2, 3]), ("lifo", [3, 2, 1]), ("hifo", [2, 3, 1])],
)
def test_ordering_skips_exhausted_lots(method, expected):
    assert [l.id for l in order_lots(LOTS, method)] == expected


def test_specific_id_uses_caller_order():
    assert [l.id for l in order_lots(LOTS, "specific_id", [3, 1])] == [3, 1]
    with pytest.raises(LotSelectionError):
        order_lots(LOTS, "specific_id", [4])
    with pytest.raises(LotSelectionError):
        order_lots(LOTS, "specific_id")


def test_spill_over_and_uncovered():
    picks, uncovered = select_lots(lots=LOTS, amount=Decimal("3.5"), method="fifo", disposed_at=_d(2024, 6, 1))
    assert [p.lot_id for p in picks] == [1, 2, 3]
    assert sum(p.amount for p in picks) == Decimal("3")
    assert uncovered == Decimal("0.5")


def test_partial_lot_basis_is_proportional():
    picks, uncovered = select_lots(lots=LOTS, amount=Decimal("1.25"), method="fifo", disposed_at=_d(2024, 6, 1))
    assert uncovered == 0
    assert [(p.lot_id, p.amount, p.cost_basis_usd) for p in picks] == [
        (1, Decimal("1"), Decimal("1000.00")),
        (2, Decimal("0.25"), Decimal("750.00")),
    ]


def test_holding_period_boundary():
    acquired = _d(2023, 1, 1)
    assert is_short_term(acquired, acquired + dt.timedelta(days=364, hours=23)) is True
    assert is_short_term(acquired, acquired + dt.timedelta(days=365)) is False


def test_allocate_share_slices_sum_to_total():
    total = Decimal("100.00")
    whole = Decimal("3")
    parts = [allocate_share(total, Decimal(i), Decimal(i + 1), whole) for i in range(3)]
    assert sum(parts) == total
    assert parts == [Decimal("33.33"), Decimal("33.34"), Decimal("33.33")]


def test_specific_id_rejects_repeated_lot():
    with pytest.raises(LotSelectionError, match="more than once"):
        order_lots(LOTS, "specific_id", [1, 1])
    with pytest.raises(LotSelectionError):
        select_lots(lots=LOTS, amount=Decimal("2"), method="specific_id", disposed_at=_d(2024, 6, 1), lot_ids=[2, 2])


def test_same_lot_listed_twice_is_drawn_once():
    lot = FakeLot(9, Decimal("1"), Decimal("1"), Decimal("1000"), _d(2023, 1, 1))
    picks, uncovered = select_lots(lots=[lot, lot], amount=Decimal("2"), method="fifo", disposed_at=_d(2024, 6, 1))
    assert [(p.lot_id, p.amount, p.cost_basis_usd) for p in picks] == [(9, Decimal("1"), Decimal("1000.00"))]
    assert uncovered == Decimal("1")
