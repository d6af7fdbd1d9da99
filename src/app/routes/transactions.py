from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from src.app.auth import require_user
from src.app.db import db_session
from src.app.utils import error, row_to_dict
from src.core.config import load_config
from src.core.lot_engine import dispose_specific
from src.core.lot_selection import LotSelectionError
from src.core.reclassify import InvalidClassificationError, classify_transaction
from src.db.models import Transaction
from src.db.queries import get_transaction, transactions_for_user


router = APIRouter(prefix="/api/transactions", tags=["transactions"])


class ClassifyIn(BaseModel):
    classification: str


class DisposeSpecificIn(BaseModel):
    lot_ids: list[int] = Field(min_length=1)

    @field_validator("lot_ids")
    @classmethod
    def _unique(cls, v: list[int]) -> list[int]:
        if len(set(v)) != len(v):
            raise ValueError("lot_ids must not repeat")
        return v


@router.get("")
def list_transactions(
    chain: Optional[str] = None,
    classification: Optional[str] = None,
    needs_review: Optional[bool] = None,
    wallet_id: Optional[int] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    session: Session = Depends(db_session),
    user_id: str = Depends(require_user),
):
    q = transactions_for_user(session, user_id)
    if chain:
        q = q.filter(Transaction.chain == chain.strip().lower())
    if classification:
        q = q.filter(Transaction.classification == classification.strip().lower())
    if needs_review is not None:
        q = q.filter(Transaction.needs_review.is_(needs_review))
    if wallet_id is not None:
        q = q.filter(Transaction.wallet_id == wallet_id)
    total = q.count()
    rows = q.order_by(Transaction.timestamp.desc(), Transaction.id.desc()).offset(offset).limit(limit).all()
    return {"total": total, "items": [row_to_dict(t, exclude=("raw_json",)) for t in rows]}


@router.get("/{tx_id}")
def get_transaction_route(tx_id: int, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    tx = get_transaction(session, user_id, tx_id)
    if tx is None:
        return JSONResponse(status_code=404, content=error(f"transaction {tx_id} not found"))
    return row_to_dict(tx)


@router.patch("/{tx_id}/classify")
def classify_route(
    tx_id: int, body: ClassifyIn, session: Session = Depends(db_session), user_id: str = Depends(require_user)
):
    tx = get_transaction(session, user_id, tx_id)
    if tx is None:
        return JSONResponse(status_code=404, content=error(f"transaction {tx_id} not found"))
    try:
        classify_transaction(session, tx, body.classification, actor=user_id, source="api")
    except InvalidClassificationError as e:
        return JSONResponse(status_code=422, content=error(str(e)))
    session.commit()
    return row_to_dict(tx, exclude=("raw_json",))


@router.post("/{tx_id}/dispose-specific")
def dispose_specific_route(
    tx_id: int, body: DisposeSpecificIn, session: Session = Depends(db_session), user_id: str = Depends(require_user)
):
    tx = get_transaction(session, user_id, tx_id)
    if tx is None:
        return JSONResponse(status_code=404, content=error(f"transaction {tx_id} not found"))
    try:
        res = dispose_specific(session, tx=tx, lot_ids=body.lot_ids, actor=user_id, cfg=load_config()[0].lots)
    except (LotSelectionError, ValueError) as e:
        session.rollback()
        return JSONResponse(status_code=400, content=error(str(e)))
    session.commit()
    return res.as_json()
