from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from src.adapters.base import Notifier
from src.adapters.telegram.client import render_review_message, review_keyboard, truncate_hash
from src.adapters.telegram.updates import parse_update
from src.core.telegram_service import generate_verification_code, handle_update, link_status, start_link, unlink
from src.db.models import TelegramLink
from src.utils.time import UTC


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.answered: list[str] = []

    def is_configured(self) -> bool:
        return True

    def send_message(self, chat_id, text, reply_markup=None) -> bool:
        self.sent.append((chat_id, text))
        return True

    def send_review(self, chat_id, transaction) -> bool:
        return True

    def answer_callback_query(self, callback_query_id, text) -> bool:
        self.answered.append(callback_query_id)
        return True


def _msg(text, chat_id=42, username="alice"):
    return {"message": {"chat": {"id": chat_id}, "from": {"username": username}, "text": text}}


@pytest.mark.parametrize(
    "text,kind",
    [
        ("AB12CD", "verify"),
        ("classify 17 swap", "classify"),
        ("CLASSIFY 17 Stake", "classify"),
        ("airdrop", "label_only"),
        ("/start", "start"),
        ("/help@ChainTaxBot", "help"),
        ("status", "status"),
        ("STATUS", "status"),
        ("hello there", "unknown"),
        ("", "ignore"),
    ],
)
def test_parse_text_messages(text, kind):
    assert parse_update(_msg(text)).kind == kind


def test_parse_classify_fields():
    cmd = parse_update(_msg("classify 17 Stake"))
    assert (cmd.tx_id, cmd.label, cmd.chat_id) == (17, "stake", "42")


def test_parse_callback_query():
    cmd = parse_update(
        {"callback_query": {"id": "cb1", "data": "classify:9:nft_mint", "from": {"username": "a"}, "message": {"chat": {"id": 5}}}}
    )
    assert (cmd.kind, cmd.tx_id, cmd.label, cmd.chat_id, cmd.callback_query_id) == ("classify", 9, "nft_mint", "5", "cb1")


def test_parse_garbage_update():
    assert parse_update({}).kind == "ignore"
    assert parse_update({"callback_query": {"id": "x", "data": "nope"}}).kind == "ignore"


def test_verification_code_shape():
    code = generate_verification_code()
    assert len(code) == 6
    assert code.isalnum() and code.upper() == code


def test_truncate_hash():
    h = "0x" + "a" * 56 + "123456"
    assert truncate_hash(h) == "0xaaaaaa...123456"
    assert truncate_hash("0xshort") == "0xshort"


def test_render_review_message(session, wallet, make_tx):
    tx = make_tx(
        wallet,
        tx_hash="0x1234567890abcdef1234567890abcdef",
        timestamp=dt.datetime(2024, 3, 5, 12, 0, tzinfo=UTC),
        amount_in=Decimal("1.23456"),
        token_in_symbol="ETH",
        amount_out=Decimal("2500"),
        token_out_symbol="<USDC>",
    )
    text = render_review_message(tx)
    assert "Chain: ETHEREUM" in text
    assert "0x123456...abcdef" in text
    assert "Date: 2024-03-05" in text
    assert "Received: 1.2346 ETH" in text
    assert "Sent: 2500.0000 &lt;USDC&gt;" in text
    kb = review_keyboard(tx.id)
    datas = [b["callback_data"] for row in kb["inline_keyboard"] for b in row]
    assert f"classify:{tx.id}:swap" in datas


def test_link_verify_and_classify_flow(session, wallet, make_tx):
    tx = make_tx(wallet, classification="unknown", needs_review=True)
    code = start_link(session, user_id="u1").verification_code
    session.commit()
    assert link_status(session, user_id="u1")["pending"] is True

    n = RecordingNotifier()
    out = handle_update(session, n, _msg(code))
    assert out["action"] == "verify"
    link = session.query(TelegramLink).one()
    assert link.is_verified is True
    assert link.telegram_chat_id == "42"
    assert link.verification_code is None

    out = handle_update(
        session,
        n,
        {"callback_query": {"id": "cb", "data": f"classify:{tx.id}:income", "message": {"chat": {"id": 42}}}},
    )
    assert out["action"] == "classify"
    assert tx.classification == "income"
    assert tx.user_classified is True
    assert tx.needs_review is False
    assert n.answered == ["cb"]
    assert n.sent[-1][0] == "42"


def test_unlinked_chat_cannot_classify(session, wallet, make_tx):
    tx = make_tx(wallet, classification="unknown", needs_review=True)
    n = RecordingNotifier()
    out = handle_update(session, n, _msg(f"classify {tx.id} swap", chat_id=999))
    assert "not linked" in out["reply"]
    assert tx.classification == "unknown"


def test_cannot_classify_other_users_transaction(session, wallet, make_tx):
    tx = make_tx(wallet, classification="unknown", needs_review=True)
    session.add(TelegramLink(user_id="intruder", telegram_chat_id="7", is_verified=True))
    session.commit()
    out = handle_update(session, RecordingNotifier(), _msg(f"classify {tx.id} swap", chat_id=7))
    assert "not found" in out["reply"]


def test_bad_code_and_status(session, wallet, make_tx):
    n = RecordingNotifier()
    assert "Invalid" in handle_update(session, n, _msg("ZZZZZZ"))["reply"]
    make_tx(wallet, classification="unknown", needs_review=True)
    session.add(TelegramLink(user_id="u1", telegram_chat_id="42", is_verified=True))
    session.commit()
    assert handle_update(session, n, _msg("status"))["reply"] == "1 transactions need review."


def test_unlink(session):
    start_link(session, user_id="u1")
    assert unlink(session, user_id="u1") is True
    assert unlink(session, user_id="u1") is False
    assert link_status(session, user_id="u1") == {"linked": False, "pending": False}
