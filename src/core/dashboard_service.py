from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.db.models import Disposal, Transaction, Wallet
from src.utils.money import ZERO, quantize_usd, usd_str
from src.utils.time import year_bounds


def dashboard_stats(session: Session, *, user_id: str, year: Optional[int] = None) -> dict[str, Any]:
    total_wallets = session.query(Wallet).filter(Wallet.user_id == user_id).count()

    txq = session.query(Transaction).join(Wallet, Wallet.id == Transaction.wallet_id).filter(Wallet.user_id == user_id)
    total_transactions = txq.count()
    needs_review = txq.filter(Transaction.needs_review.is_(True)).count()

    by_chain = dict(
        session.query(Transaction.chain, func.count(Transaction.id))
        .join(Wallet, Wallet.id == Transaction.wallet_id)
        .filter(Wallet.user_id == user_id)
        .group_by(Transaction.chain)
        .all()
    )
    by_label = dict(
        session.query(Transaction.classification, func.count(Transaction.id))
        .join(Wallet, Wallet.id == Transaction.wallet_id)
        .filter(Wallet.user_id == user_id)
        .group_by(Transaction.classification)
        .all()
    )

    dq = (
        session.query(Disposal.gain_loss_usd)
        .join(Transaction, Transaction.id == Disposal.transaction_id)
        .join(Wallet, Wallet.id == Transaction.wallet_id)
        .filter(Wallet.user_id == user_id)
    )
    if year is not None:
        start, end = year_bounds(year)
        dq = dq.filter(Disposal.disposed_at >= start, Disposal.disposed_at < end)
    gains = losses = ZERO
    for (gl,) in dq.all():
        v = quantize_usd(gl)
        if v >= 0:
            gains += v
        else:
            losses += -v

    return {
        "total_wallets": total_wallets,
        "total_transactions": total_transactions,
        "needs_review": needs_review,
        "realized_gains": usd_str(gains),
        "realized_losses": usd_str(losses),
        "chain_breakdown": {str(k): int(v) for k, v in by_chain.items()},
        "classification_breakdown": {str(k): int(v) for k, v in by_label.items()},
    }
