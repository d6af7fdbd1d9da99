from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.adapters.base import ProviderError
from src.app.auth import require_user
from src.app.db import db_session
from src.app.utils import error, row_to_dict
from src.core.config import load_config
from src.core.lot_engine import process_wallet_lots
from src.core.sync_runner import SyncConfigError, run_sync
from src.db.audit import log_change
from src.db.models import SUPPORTED_CHAINS, Wallet
from src.db.queries import get_wallet, wallets_for_user


router = APIRouter(prefix="/api/wallets", tags=["wallets"])


class WalletIn(BaseModel):
    address: str = Field(min_length=1, max_length=128)
    chain: str
    label: Optional[str] = None
    entity_type: str = "personal"

    @field_validator("address")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()

    @field_validator("chain")
    @classmethod
    def _chain(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in SUPPORTED_CHAINS:
            raise ValueError(f"chain must be one of: {', '.join(SUPPORTED_CHAINS)}")
        return v

    @field_validator("entity_type")
    @classmethod
    def _entity(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in {"personal", "business", "trust"}:
            raise ValueError("entity_type must be personal, business or trust")
        return v


class WalletPatch(BaseModel):
    label: Optional[str] = None
    entity_type: Optional[str] = None
    is_active: Optional[bool] = None


def _not_found(wallet_id: int) -> JSONResponse:
    return JSONResponse(status_code=404, content=error(f"wallet {wallet_id} not found"))


@router.get("")
def list_wallets(session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    rows = wallets_for_user(session, user_id).order_by(Wallet.created_at.asc(), Wallet.id.asc()).all()
    return [row_to_dict(w) for w in rows]


@router.post("", status_code=201)
def create_wallet(body: WalletIn, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    w = Wallet(user_id=user_id, address=body.address, chain=body.chain, label=body.label, entity_type=body.entity_type)
    try:
        with session.begin_nested():
            session.add(w)
    except IntegrityError:
        return JSONResponse(status_code=409, content=error("wallet already exists for this chain"))
    log_change(session, actor=user_id, action="CREATE", entity="Wallet", entity_id=str(w.id), old=None, new=row_to_dict(w))
    session.commit()
    return row_to_dict(w)


@router.get("/{wallet_id}")
def get_wallet_route(wallet_id: int, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    w = get_wallet(session, user_id, wallet_id)
    if w is None:
        return _not_found(wallet_id)
    return row_to_dict(w)


@router.patch("/{wallet_id}")
def update_wallet(
    wallet_id: int, body: WalletPatch, session: Session = Depends(db_session), user_id: str = Depends(require_user)
):
    w = get_wallet(session, user_id, wallet_id)
    if w is None:
        return _not_found(wallet_id)
    old = row_to_dict(w)
    changes = body.model_dump(exclude_unset=True)
    if "entity_type" in changes and changes["entity_type"] not in {"personal", "business", "trust"}:
        return JSONResponse(status_code=422, content=error("entity_type must be personal, business or trust"))
    for k, v in changes.items():
        setattr(w, k, v)
    session.flush()
    log_change(session, actor=user_id, action="UPDATE", entity="Wallet", entity_id=str(w.id), old=old, new=row_to_dict(w))
    session.commit()
    return row_to_dict(w)


@router.delete("/{wallet_id}")
def delete_wallet(wallet_id: int, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    w = get_wallet(session, user_id, wallet_id)
    if w is None:
        return _not_found(wallet_id)
    old = row_to_dict(w)
    session.delete(w)
    log_change(session, actor=user_id, action="DELETE", entity="Wallet", entity_id=str(wallet_id), old=old, new=None)
    session.commit()
    return {"ok": True}


@router.post("/{wallet_id}/sync")
def sync_wallet(wallet_id: int, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    w = get_wallet(session, user_id, wallet_id)
    if w is None:
        return _not_found(wallet_id)
    try:
        result = run_sync(session, wallet=w, actor=user_id)
    except (SyncConfigError, ProviderError) as e:
        # Raised before anything was fetched: configuration, not upstream.
        return JSONResponse(status_code=400, content=error(str(e)))
    if result.status != "SUCCESS":
        return JSONResponse(status_code=502, content=error(result.error or "sync failed", **result.as_json()))
    return result.as_json()


@router.post("/{wallet_id}/process-lots")
def process_lots(wallet_id: int, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    w = get_wallet(session, user_id, wallet_id)
    if w is None:
        return _not_found(wallet_id)
    res = process_wallet_lots(session, wallet=w, actor=user_id, cfg=load_config()[0].lots)
    session.commit()
    return res.as_json()
