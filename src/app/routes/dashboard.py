from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.app.auth import require_user
from src.app.db import db_session
from src.core.dashboard_service import dashboard_stats


router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats")
def stats(year: Optional[int] = None, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    return dashboard_stats(session, user_id=user_id, year=year)
