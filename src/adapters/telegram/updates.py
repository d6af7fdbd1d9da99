from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Literal, Optional

from src.adapters.telegram.client import QUICK_LABELS


CommandKind = Literal["verify", "classify", "label_only", "status", "help", "start", "unknown", "ignore"]

_CODE_RE = re.compile(r"^[A-Z0-9]{6}$")
_CLASSIFY_RE = re.compile(r"^classify\s+(\d+)\s+([a-z_]+)$", re.IGNORECASE)


@dataclass(frozen=True)
class TelegramCommand:
    kind: CommandKind
    chat_id: Optional[str] = None
    username: Optional[str] = None
    code: Optional[str] = None
    tx_id: Optional[int] = None
    label: Optional[str] = None
    callback_query_id: Optional[str] = None


def _parse_text(text: str, chat_id: Optional[str], username: Optional[str]) -> TelegramCommand:
    s = (text or "").strip()
    if not s:
        return TelegramCommand(kind="ignore", chat_id=chat_id, username=username)
    if s.startswith("/"):
        cmd = s[1:].split()[0].split("@")[0].lower()
        if cmd in {"start", "help", "status"}:
            return TelegramCommand(kind=cmd, chat_id=chat_id, username=username)  # type: ignore[arg-type]
        return TelegramCommand(kind="unknown", chat_id=chat_id, username=username)
    if _CODE_RE.match(s) and s.lower() not in QUICK_LABELS and s.lower() != "status":
        return TelegramCommand(kind="verify", chat_id=chat_id, username=username, code=s)
    m = _CLASSIFY_RE.match(s)
    if m:
        return TelegramCommand(kind="classify", chat_id=chat_id, username=username, tx_id=int(m.group(1)), label=m.group(2).lower())
    low = s.lower()
    if low in QUICK_LABELS:
        return TelegramCommand(kind="label_only", chat_id=chat_id, username=username, label=low)
    if low in {"status", "help"}:
        return TelegramCommand(kind=low, chat_id=chat_id, username=username)  # type: ignore[arg-type]
    return TelegramCommand(kind="unknown", chat_id=chat_id, username=username)


def parse_update(update: dict[str, Any]) -> TelegramCommand:
    """Turn a Bot API update (message or callback_query) into a command."""
    cb = update.get("callback_query")
    if isinstance(cb, dict):
        msg = cb.get("message") or {}
        chat_id = str((msg.get("chat") or {}).get("id")) if (msg.get("chat") or {}).get("id") is not None else None
        username = (cb.get("from") or {}).get("username")
        data = str(cb.get("data") or "")
        parts = data.split(":")
        if len(parts) == 3 and parts[0] == "classify" and parts[1].isdigit():
            return TelegramCommand(
                kind="classify",
                chat_id=chat_id,
                username=username,
                tx_id=int(parts[1]),
                label=parts[2].lower(),
                callback_query_id=str(cb.get("id")) if cb.get("id") is not None else None,
            )
        return TelegramCommand(kind="ignore", chat_id=chat_id, username=username, callback_query_id=str(cb.get("id")) if cb.get("id") is not None else None)

    msg = update.get("message")
    if isinstance(msg, dict):
        chat = msg.get("chat") or {}
        chat_id = str(chat["id"]) if chat.get("id") is not None else None
        username = (msg.get("from") or {}).get("username")
        return _parse_text(str(msg.get("text") or ""), chat_id, username)
    return TelegramCommand(kind="ignore")
