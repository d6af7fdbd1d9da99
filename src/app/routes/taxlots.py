from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.app.auth import require_user
from src.app.db import db_session
from src.app.utils import row_to_dict
from src.db.models import TaxLot, Wallet


router = APIRouter(prefix="/api/tax-lots", tags=["taxlots"])


@router.get("")
def list_tax_lots(
    wallet_id: Optional[int] = None,
    open_only: bool = False,
    session: Session = Depends(db_session),
    user_id: str = Depends(require_user),
):
    q = session.query(TaxLot).join(Wallet, Wallet.id == TaxLot.wallet_id).filter(Wallet.user_id == user_id)
    if wallet_id is not None:
        q = q.filter(TaxLot.wallet_id == wallet_id)
    rows = q.order_by(TaxLot.acquired_at.asc(), TaxLot.id.asc()).all()
    if open_only:
        rows = [l for l in rows if Decimal(l.remaining_amount) > 0]
    return [row_to_dict(l) for l in rows]
