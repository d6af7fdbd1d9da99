from __future__ import annotations

import logging
from typing import Any, Optional

from jinja2 import Environment, StrictUndefined

from src.adapters.base import Notifier, ProviderError
from src.core.config import telegram_bot_token
from src.core.net import http_post_json
from src.utils.locks import mask_secret
from src.utils.money import format_amount
from src.utils.time import format_date


log = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"

QUICK_LABELS = ("swap", "income", "airdrop", "stake", "unstake", "nft_mint", "expense", "self_transfer", "reward", "interest")

_env = Environment(autoescape=True, undefined=StrictUndefined, trim_blocks=True, lstrip_blocks=True)
_env.filters["amount4"] = lambda v: format_amount(v, 4)
_env.filters["date"] = format_date

REVIEW_TEMPLATE = _env.from_string(
    """<b>Transaction needs review</b> (#{{ tx.id }})

Chain: {{ tx.chain | upper }}
Hash: <code>{{ short_hash }}</code>
Date: {{ tx.timestamp | date }}
{% if tx.amount_in is not none %}
Received: {{ tx.amount_in | amount4 }} {{ tx.token_in_symbol or "?" }}
{% endif %}
{% if tx.amount_out is not none %}
Sent: {{ tx.amount_out | amount4 }} {{ tx.token_out_symbol or "?" }}
{% endif %}

Tap a label below or reply <code>classify {{ tx.id }} &lt;type&gt;</code>."""
)


def truncate_hash(h: str) -> str:
    h = h or ""
    if len(h) <= 16:
        return h
    return f"{h[:8]}...{h[-6:]}"


def render_review_message(tx: Any) -> str:
    return REVIEW_TEMPLATE.render(tx=tx, short_hash=truncate_hash(tx.tx_hash))


def review_keyboard(tx_id: int) -> dict[str, Any]:
    buttons = [{"text": label.replace("_", " ").title(), "callback_data": f"classify:{tx_id}:{label}"} for label in QUICK_LABELS]
    rows = [buttons[i : i + 3] for i in range(0, len(buttons), 3)]
    return {"inline_keyboard": rows}


class TelegramClient(Notifier):
    def __init__(self, *, token: Optional[str] = None, timeout_s: float = 15.0) -> None:
        self.token = token if token is not None else telegram_bot_token()
        self.timeout_s = timeout_s

    def is_configured(self) -> bool:
        return bool(self.token)

    def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.token:
            raise ProviderError("Telegram bot token not configured. Add TELEGRAM_BOT_TOKEN to your secrets.")
        url = f"{API_BASE}/bot{self.token}/{method}"
        resp = http_post_json(url, payload, timeout_s=self.timeout_s, max_retries=1)
        data = resp.json()
        if not isinstance(data, dict) or not data.get("ok"):
            desc = data.get("description") if isinstance(data, dict) else None
            raise ProviderError(f"Telegram {method} failed: {desc or 'unknown error'}")
        return data

    def send_message(self, chat_id: str, text: str, reply_markup: Optional[dict[str, Any]] = None) -> bool:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text, "parse_mode": "HTML"}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        try:
            self._call("sendMessage", payload)
        except ProviderError as e:
            log.warning("Telegram sendMessage failed (bot %s): %s", mask_secret(self.token), e)
            return False
        return True

    def send_review(self, chat_id: str, transaction: Any) -> bool:
        return self.send_message(chat_id, render_review_message(transaction), reply_markup=review_keyboard(transaction.id))

    def answer_callback_query(self, callback_query_id: str, text: str) -> bool:
        try:
            self._call("answerCallbackQuery", {"callback_query_id": callback_query_id, "text": text})
        except ProviderError as e:
            log.warning("Telegram answerCallbackQuery failed: %s", e)
            return False
        return True

    def set_webhook(self, url: str) -> dict[str, Any]:
        return self._call("setWebhook", {"url": url, "allowed_updates": ["message", "callback_query"]})

    def delete_webhook(self) -> dict[str, Any]:
        return self._call("deleteWebhook", {})
