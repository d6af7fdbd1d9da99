from __future__ import annotations

import logging
import secrets
import string
from typing import Any, Optional

from sqlalchemy.orm import Session

from src.adapters.base import Notifier
from src.adapters.telegram.updates import TelegramCommand, parse_update
from src.core.reclassify import InvalidClassificationError, classify_transaction
from src.db.models import TelegramLink, Transaction, Wallet
from src.db.queries import get_transaction, telegram_link_for_user
from src.utils.time import utcnow


log = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits

HELP_TEXT = (
    "Commands:\n"
    "  status - transactions awaiting review\n"
    "  classify &lt;id&gt; &lt;type&gt; - label a transaction\n"
    "Or tap a label button under a review message."
)


def generate_verification_code(length: int = 6) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def start_link(session: Session, *, user_id: str) -> TelegramLink:
    link = telegram_link_for_user(session, user_id)
    if link is None:
        link = TelegramLink(user_id=user_id)
        session.add(link)
    link.verification_code = generate_verification_code()
    link.is_verified = False
    link.telegram_chat_id = None
    link.verified_at = None
    session.flush()
    return link


def unlink(session: Session, *, user_id: str) -> bool:
    link = telegram_link_for_user(session, user_id)
    if link is None:
        return False
    session.delete(link)
    session.flush()
    return True


def link_status(session: Session, *, user_id: str) -> dict[str, Any]:
    link = telegram_link_for_user(session, user_id)
    if link is None:
        return {"linked": False, "pending": False}
    return {
        "linked": bool(link.is_verified),
        "pending": not link.is_verified and bool(link.verification_code),
        "verification_code": None if link.is_verified else link.verification_code,
        "username": link.telegram_username,
        "notify_on_new_tx": link.notify_on_new_tx,
        "notify_on_review": link.notify_on_review,
        "verified_at": link.verified_at.isoformat() if link.verified_at else None,
    }


def verified_link_for_chat(session: Session, chat_id: Optional[str]) -> Optional[TelegramLink]:
    if not chat_id:
        return None
    return (
        session.query(TelegramLink)
        .filter(TelegramLink.telegram_chat_id == str(chat_id), TelegramLink.is_verified.is_(True))
        .one_or_none()
    )


def review_count(session: Session, user_id: str) -> int:
    return (
        session.query(Transaction)
        .join(Wallet, Wallet.id == Transaction.wallet_id)
        .filter(Wallet.user_id == user_id, Transaction.needs_review.is_(True))
        .count()
    )


def _verify(session: Session, cmd: TelegramCommand) -> str:
    link = (
        session.query(TelegramLink)
        .filter(TelegramLink.verification_code == cmd.code, TelegramLink.is_verified.is_(False))
        .one_or_none()
    )
    if link is None:
        return "Invalid or expired verification code. Generate a new one in the app."
    link.telegram_chat_id = cmd.chat_id
    link.telegram_username = cmd.username
    link.is_verified = True
    link.verified_at = utcnow()
    link.verification_code = None
    session.flush()
    return "Telegram linked. You'll get a message when a transaction needs review."


def _classify(session: Session, cmd: TelegramCommand, link: TelegramLink) -> str:
    tx = get_transaction(session, link.user_id, int(cmd.tx_id or 0))
    if tx is None:
        return f"Transaction #{cmd.tx_id} not found."
    try:
        classify_transaction(session, tx, cmd.label or "", actor=f"telegram:{link.user_id}", source="telegram")
    except InvalidClassificationError:
        return f"Unknown type '{cmd.label}'."
    return f"Transaction #{tx.id} classified as <b>{tx.classification}</b>."


def handle_update(session: Session, notifier: Notifier, update: dict[str, Any]) -> dict[str, Any]:
    """Apply one webhook update and reply in the originating chat."""
    cmd = parse_update(update)
    if cmd.kind == "ignore":
        return {"ok": True, "action": "ignore"}

    reply: str
    if cmd.kind == "verify":
        reply = _verify(session, cmd)
    else:
        link = verified_link_for_chat(session, cmd.chat_id)
        if cmd.kind in {"start", "help"}:
            reply = HELP_TEXT if link else "Send the 6-character code from the app to link this chat.\n\n" + HELP_TEXT
        elif link is None:
            reply = "This chat is not linked yet. Send the 6-character code from the app."
        elif cmd.kind == "classify":
            reply = _classify(session, cmd, link)
        elif cmd.kind == "label_only":
            reply = f"Which transaction? Reply with: classify &lt;id&gt; {cmd.label}"
        elif cmd.kind == "status":
            reply = f"{review_count(session, link.user_id)} transactions need review."
        else:
            reply = "Sorry, I didn't understand that.\n\n" + HELP_TEXT

    if cmd.callback_query_id and hasattr(notifier, "answer_callback_query"):
        notifier.answer_callback_query(cmd.callback_query_id, "Saved" if cmd.kind == "classify" else "OK")
    if cmd.chat_id and notifier.is_configured():
        notifier.send_message(cmd.chat_id, reply)
    log.info("Telegram update handled: %s", cmd.kind)
    return {"ok": True, "action": cmd.kind, "reply": reply}
