from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from src.app.auth import require_user
from src.app.db import db_session
from src.app.utils import row_to_dict
from src.db.audit import log_change
from src.db.queries import get_or_create_settings


router = APIRouter(prefix="/api/settings", tags=["settings"])


class SettingsPatch(BaseModel):
    tax_year: Optional[int] = Field(default=None, ge=2009, le=2100)
    lot_method: Optional[Literal["fifo", "lifo", "hifo", "specific_id"]] = None
    base_currency: Optional[str] = Field(default=None, min_length=3, max_length=8)
    country: Optional[str] = Field(default=None, min_length=2, max_length=8)
    show_spam: Optional[bool] = None
    show_dust: Optional[bool] = None
    dust_threshold: Optional[Decimal] = Field(default=None, ge=0)


@router.get("")
def get_settings(session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    row = get_or_create_settings(session, user_id)
    session.commit()
    return row_to_dict(row)


@router.patch("")
def update_settings(body: SettingsPatch, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    row = get_or_create_settings(session, user_id)
    old = row_to_dict(row)
    for k, v in body.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(row, k, v)
    session.flush()
    log_change(session, actor=user_id, action="UPDATE", entity="Settings", entity_id=str(row.id), old=old, new=row_to_dict(row))
    session.commit()
    return row_to_dict(row)
