from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from src.core.types import DisposalRow, TaxSummary
from src.db.models import Disposal, TaxLot, Transaction, Wallet
from src.utils.money import ZERO, quantize_usd, usd_str
from src.utils.time import year_bounds


INCOME_LABELS = ("reward", "airdrop", "interest", "income")


def disposals_for_year(session: Session, *, user_id: str, year: int, wallet_id: Optional[int] = None) -> list[Disposal]:
    start, end = year_bounds(year)
    q = (
        session.query(Disposal)
        .join(Transaction, Transaction.id == Disposal.transaction_id)
        .join(Wallet, Wallet.id == Transaction.wallet_id)
        .filter(Wallet.user_id == user_id, Disposal.disposed_at >= start, Disposal.disposed_at < end)
    )
    if wallet_id is not None:
        q = q.filter(Wallet.id == int(wallet_id))
    return q.order_by(Disposal.disposed_at.asc(), Disposal.id.asc()).all()


def income_by_type(session: Session, *, user_id: str, year: int) -> dict[str, Decimal]:
    start, end = year_bounds(year)
    rows = (
        session.query(Transaction.classification, Transaction.value_usd)
        .join(Wallet, Wallet.id == Transaction.wallet_id)
        .filter(
            Wallet.user_id == user_id,
            Transaction.classification.in_(INCOME_LABELS),
            Transaction.timestamp >= start,
            Transaction.timestamp < end,
        )
        .all()
    )
    out: dict[str, Decimal] = {label: ZERO for label in INCOME_LABELS}
    for label, value in rows:
        out[label] += quantize_usd(value)
    return out


def _disposal_row(d: Disposal, lot: Optional[TaxLot]) -> DisposalRow:
    return DisposalRow(
        id=d.id,
        tax_lot_id=d.tax_lot_id,
        transaction_id=d.transaction_id,
        token=d.token,
        token_symbol=d.token_symbol,
        amount=format(Decimal(d.amount), "f"),
        proceeds_usd=usd_str(d.proceeds_usd),
        cost_basis_usd=usd_str(d.cost_basis_usd),
        gain_loss_usd=usd_str(d.gain_loss_usd),
        is_short_term=bool(d.is_short_term),
        acquired_at=lot.acquired_at.isoformat() if lot is not None else None,
        disposed_at=d.disposed_at.isoformat(),
    )


def tax_summary(session: Session, *, user_id: str, year: int) -> TaxSummary:
    """
    Yearly realized gains/losses and income. Read-only; repeated calls agree.

    Losses are reported as positive magnitudes.
    """
    disposals = disposals_for_year(session, user_id=user_id, year=year)
    st_gain = st_loss = lt_gain = lt_loss = ZERO
    for d in disposals:
        gl = quantize_usd(d.gain_loss_usd)
        if d.is_short_term:
            if gl >= 0:
                st_gain += gl
            else:
                st_loss += -gl
        else:
            if gl >= 0:
                lt_gain += gl
            else:
                lt_loss += -gl
    net = (st_gain - st_loss) + (lt_gain - lt_loss)

    income = income_by_type(session, user_id=user_id, year=year)
    total_income = sum(income.values(), ZERO)

    needs_review = (
        session.query(Transaction)
        .join(Wallet, Wallet.id == Transaction.wallet_id)
        .filter(Wallet.user_id == user_id, Transaction.needs_review.is_(True))
        .count()
    )

    return TaxSummary(
        year=year,
        total_disposals=len(disposals),
        short_term_gains=usd_str(st_gain),
        short_term_losses=usd_str(st_loss),
        long_term_gains=usd_str(lt_gain),
        long_term_losses=usd_str(lt_loss),
        net_gain_loss=usd_str(net),
        total_income=usd_str(total_income),
        needs_review_count=needs_review,
        disposals=[_disposal_row(d, d.tax_lot) for d in disposals],
        income_by_type={k: usd_str(v) for k, v in income.items()},
    )
