from __future__ import annotations

import os
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from src.adapters.telegram.client import TelegramClient
from src.app.auth import require_user
from src.app.db import db_session
from src.app.utils import error
from src.core.telegram_service import handle_update, link_status, start_link, unlink


router = APIRouter(prefix="/api/telegram", tags=["telegram"])


def get_notifier() -> TelegramClient:
    return TelegramClient()


@router.get("/status")
def status(session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    return link_status(session, user_id=user_id)


@router.post("/link")
def link(session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    row = start_link(session, user_id=user_id)
    session.commit()
    return {
        "verification_code": row.verification_code,
        "instructions": "Send this code to the ChainTax bot on Telegram to finish linking.",
    }


@router.delete("/link")
def remove_link(session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    removed = unlink(session, user_id=user_id)
    session.commit()
    return {"ok": True, "removed": removed}


@router.post("/webhook")
def webhook(
    update: dict[str, Any],
    session: Session = Depends(db_session),
    notifier: TelegramClient = Depends(get_notifier),
    secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
):
    expected = (os.environ.get("TELEGRAM_WEBHOOK_SECRET") or "").strip()
    if expected and secret_token != expected:
        return JSONResponse(status_code=401, content=error("bad webhook secret"))
    result = handle_update(session, notifier, update)
    session.commit()
    return result
