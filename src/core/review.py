from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from src.adapters.base import Notifier


log = logging.getLogger(__name__)

REVIEW_LABELS = frozenset({"unknown", "contract_interaction"})


def needs_review(label: str) -> bool:
    return label in REVIEW_LABELS


def rollup_message(remaining: int) -> str:
    return f"...and {remaining} more transactions need review. Check the app for the full list."


def notify_review_batch(
    notifier: Notifier,
    chat_id: str,
    transactions: Sequence[Any],
    *,
    max_messages: int = 3,
) -> int:
    """
    Send one detailed message per transaction up to `max_messages`, then a single roll-up.

    Returns the number of messages delivered. Delivery failures are logged, never raised.
    """
    if not transactions:
        return 0
    sent = 0
    for tx in transactions[:max_messages]:
        try:
            if notifier.send_review(chat_id, tx):
                sent += 1
        except Exception as e:
            log.warning("Review notification failed for tx %s: %s", getattr(tx, "id", "?"), e)
    remaining = len(transactions) - max_messages
    if remaining > 0:
        try:
            if notifier.send_message(chat_id, rollup_message(remaining)):
                sent += 1
        except Exception as e:
            log.warning("Review roll-up notification failed: %s", e)
    return sent
