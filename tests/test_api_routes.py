from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from src.adapters.base import Notifier, ProviderError, TransferProvider
from src.app.db import db_session
from src.app.main import create_app
from src.app.routes.telegram import get_notifier
from src.core.types import RawTransfer
from src.db.models import Disposal, TaxLot
from src.utils.time import UTC

W = "0xabc0000000000000000000000000000000000001"
OTHER = "0x9990000000000000000000000000000000000009"


class StubProvider(TransferProvider):
    def __init__(self, transfers=None, error=None):
        self.transfers = transfers or []
        self.error = error

    def supported_chains(self) -> list[str]:
        return ["ethereum"]

    def fetch_transfers(self, address, chain, direction, page_key=None):
        if self.error is not None:
            raise self.error
        if direction == "in":
            return [t for t in self.transfers if t.to_address == address], None
        return [t for t in self.transfers if t.from_address == address], None


class SilentNotifier(Notifier):
    def __init__(self):
        self.sent: list[str] = []

    def is_configured(self) -> bool:
        return True

    def send_message(self, chat_id, text, reply_markup=None) -> bool:
        self.sent.append(text)
        return True

    def send_review(self, chat_id, transaction) -> bool:
        return True


def _incoming(h, amount="2"):
    return RawTransfer(
        hash=h,
        block_number=1,
        from_address=OTHER,
        to_address=W,
        asset_address=None,
        symbol="ETH",
        amount=Decimal(amount),
        category="external",
        timestamp=dt.datetime(2024, 1, 2, tzinfo=UTC),
        unique_id=f"{h}:0",
    )


@pytest.fixture()
def notifier():
    return SilentNotifier()


@pytest.fixture()
def client(session_factory, notifier, monkeypatch):
    monkeypatch.delenv("APP_PASSWORD", raising=False)
    monkeypatch.delenv("APP_USER_DEFAULT", raising=False)
    monkeypatch.delenv("TELEGRAM_WEBHOOK_SECRET", raising=False)
    app = create_app(init_database=False)

    def _session():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[db_session] = _session
    app.dependency_overrides[get_notifier] = lambda: notifier
    return TestClient(app)


def _add_wallet(client, **kw):
    body = {"address": W, "chain": "ethereum", "label": "Main"} | kw
    return client.post("/api/wallets", json=body)


def test_wallet_crud(client):
    r = _add_wallet(client)
    assert r.status_code == 201
    wid = r.json()["id"]
    assert r.json()["user_id"] == "local"

    assert _add_wallet(client).status_code == 409
    assert _add_wallet(client, chain="dogecoin").status_code == 422

    r = client.patch(f"/api/wallets/{wid}", json={"label": "Cold", "is_active": False})
    assert r.status_code == 200
    assert r.json()["label"] == "Cold"
    assert r.json()["is_active"] is False

    assert [w["id"] for w in client.get("/api/wallets").json()] == [wid]
    assert client.delete(f"/api/wallets/{wid}").json() == {"ok": True}
    assert client.get(f"/api/wallets/{wid}").status_code == 404


def test_wallets_are_scoped_by_user(client):
    wid = _add_wallet(client, label="mine").json()["id"]
    other = client.get(f"/api/wallets/{wid}", headers={"X-User-Id": "someone-else"})
    assert other.status_code == 404
    assert client.get("/api/wallets", headers={"X-User-Id": "someone-else"}).json() == []
    # Same address under a different user is a separate wallet.
    assert client.post("/api/wallets", json={"address": W, "chain": "ethereum"}, headers={"X-User-Id": "u2"}).status_code == 201


def test_sync_then_resync_skips_duplicates(client, monkeypatch):
    provider = StubProvider([_incoming("0xaaa"), _incoming("0xbbb", "0.5")])
    monkeypatch.setattr("src.core.sync_runner._provider_for", lambda wallet, config: provider)
    wid = _add_wallet(client).json()["id"]

    r = client.post(f"/api/wallets/{wid}/sync")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "sync_complete"
    assert (body["imported"], body["skipped"], body["total"]) == (2, 0, 2)

    again = client.post(f"/api/wallets/{wid}/sync").json()
    assert (again["imported"], again["skipped"]) == (0, 2)

    listed = client.get("/api/transactions").json()
    assert listed["total"] == 2
    assert {t["tx_hash"] for t in listed["items"]} == {"0xaaa", "0xbbb"}


def test_sync_errors(client, monkeypatch):
    wid = _add_wallet(client).json()["id"]
    monkeypatch.setattr(
        "src.core.sync_runner._provider_for", lambda wallet, config: StubProvider(error=ProviderError("upstream 503"))
    )
    r = client.post(f"/api/wallets/{wid}/sync")
    assert r.status_code == 502
    assert r.json()["status"] == "sync_failed"

    polygon = _add_wallet(client, chain="polygon").json()["id"]
    r = client.post(f"/api/wallets/{polygon}/sync")
    assert r.status_code == 400
    assert "not supported" in r.json()["error"]


def test_classify_and_filters(client, session, wallet, make_tx):
    tx = make_tx(wallet, classification="unknown", needs_review=True)
    make_tx(wallet, classification="swap")
    session.commit()
    headers = {"X-User-Id": "u1"}

    pending = client.get("/api/transactions", params={"needs_review": True}, headers=headers).json()
    assert [t["id"] for t in pending["items"]] == [tx.id]

    r = client.patch(f"/api/transactions/{tx.id}/classify", json={"classification": "Airdrop"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["classification"] == "airdrop"
    assert r.json()["user_classified"] is True
    assert r.json()["needs_review"] is False

    bad = client.patch(f"/api/transactions/{tx.id}/classify", json={"classification": "lottery"}, headers=headers)
    assert bad.status_code == 422
    assert client.patch(f"/api/transactions/{tx.id}/classify", json={"classification": "swap"}).status_code == 404


def test_rules_crud_and_apply(client, session, wallet, make_tx):
    make_tx(wallet, classification="unknown", needs_review=True, contract_address="0xpool")
    session.commit()
    headers = {"X-User-Id": "u1"}

    assert client.post("/api/rules", json={"name": "empty", "classification": "stake"}, headers=headers).status_code == 422
    r = client.post(
        "/api/rules",
        json={"name": "Pool", "contract_address": "0xPOOL", "classification": "stake", "priority": 5},
        headers=headers,
    )
    assert r.status_code == 201
    rid = r.json()["id"]

    applied = client.post("/api/rules/apply", json={}, headers=headers).json()
    assert applied["updated"] == 1
    items = client.get("/api/transactions", headers=headers).json()["items"]
    assert items[0]["classification"] == "stake"
    assert items[0]["classified_by_rule_id"] == rid

    bad = client.patch(f"/api/rules/{rid}", json={"contract_address": ""}, headers=headers)
    assert bad.status_code == 422
    ok = client.patch(f"/api/rules/{rid}", json={"priority": 9}, headers=headers)
    assert ok.json()["priority"] == 9

    assert client.get(f"/api/rules/{rid}").status_code == 404
    assert client.delete(f"/api/rules/{rid}", headers=headers).json() == {"ok": True}
    assert client.get("/api/rules", headers=headers).json() == []


def test_reports_and_dashboard(client, session, wallet, make_tx):
    sell = make_tx(wallet, classification="swap", timestamp=dt.datetime(2024, 5, 1, tzinfo=UTC))
    lot = TaxLot(
        wallet_id=wallet.id,
        token="eth",
        token_symbol="ETH",
        amount=Decimal("1"),
        remaining_amount=Decimal("0"),
        cost_basis_usd=Decimal("1000.00"),
        acquired_at=dt.datetime(2024, 1, 10, tzinfo=UTC),
        transaction_id=sell.id,
    )
    session.add(lot)
    session.flush()
    session.add(
        Disposal(
            transaction_id=sell.id,
            tax_lot_id=lot.id,
            token="eth",
            token_symbol="ETH",
            amount=Decimal("1"),
            proceeds_usd=Decimal("1500.00"),
            cost_basis_usd=Decimal("1000.00"),
            gain_loss_usd=Decimal("500.00"),
            is_short_term=True,
            disposed_at=sell.timestamp,
        )
    )
    make_tx(wallet, classification="airdrop", value_usd=Decimal("25.00"), timestamp=dt.datetime(2024, 3, 1, tzinfo=UTC))
    session.commit()
    headers = {"X-User-Id": "u1"}

    s = client.get("/api/reports/summary", params={"year": 2024}, headers=headers).json()
    assert s["short_term_gains"] == "500.00"
    assert s["net_gain_loss"] == "500.00"
    assert s["total_income"] == "25.00"

    csv_resp = client.get("/api/reports/form8949", params={"year": 2024}, headers=headers)
    assert csv_resp.status_code == 200
    assert csv_resp.headers["content-type"].startswith("text/csv")
    lines = csv_resp.text.strip().splitlines()
    assert lines[0] == "Description,Date Acquired,Date Sold,Proceeds,Cost Basis,Gain or Loss"
    assert lines[1] == "1 ETH,01/10/2024,05/01/2024,1500.00,1000.00,500.00"
    assert 'filename="form8949-2024.csv"' in csv_resp.headers["content-disposition"]

    assert client.get("/api/reports/form1099", headers=headers).status_code == 400

    stats = client.get("/api/dashboard/stats", headers=headers).json()
    assert stats["total_wallets"] == 1
    assert stats["realized_gains"] == "500.00"
    assert stats["classification_breakdown"] == {"swap": 1, "airdrop": 1}


def test_settings_patch(client):
    assert client.get("/api/settings").json()["lot_method"] == "fifo"
    r = client.patch("/api/settings", json={"lot_method": "hifo", "dust_threshold": "2.50"})
    assert r.status_code == 200
    assert r.json()["lot_method"] == "hifo"
    assert r.json()["dust_threshold"] == "2.50"
    assert client.patch("/api/settings", json={"lot_method": "average"}).status_code == 422


def test_telegram_link_and_webhook(client, notifier):
    code = client.post("/api/telegram/link").json()["verification_code"]
    assert client.get("/api/telegram/status").json()["pending"] is True

    r = client.post("/api/telegram/webhook", json={"message": {"chat": {"id": 77}, "text": code}})
    assert r.json()["action"] == "verify"
    assert notifier.sent
    assert client.get("/api/telegram/status").json()["linked"] is True

    assert client.delete("/api/telegram/link").json()["removed"] is True
    assert client.get("/api/telegram/status").json() == {"linked": False, "pending": False}


def test_webhook_secret(client, monkeypatch):
    monkeypatch.setenv("TELEGRAM_WEBHOOK_SECRET", "s3cret")
    assert client.post("/api/telegram/webhook", json={}).status_code == 401
    ok = client.post("/api/telegram/webhook", json={}, headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"})
    assert ok.json() == {"ok": True, "action": "ignore"}


def test_password_protects_api(client, monkeypatch):
    monkeypatch.setenv("APP_PASSWORD", "pw")
    assert client.get("/api/wallets").status_code == 401
    assert client.get("/api/wallets", auth=("alice", "wrong")).status_code == 401
    r = client.post("/api/wallets", json={"address": W, "chain": "ethereum"}, auth=("alice", "pw"))
    assert r.json()["user_id"] == "alice"


def test_dispose_specific_rejects_repeated_lot_ids(client, session, wallet, make_tx):
    sell = make_tx(wallet, classification="swap", token_out_symbol="ETH", amount_out=Decimal("2"), value_usd=Decimal("4000"))
    session.commit()
    r = client.post(f"/api/transactions/{sell.id}/dispose-specific", json={"lot_ids": [7, 7]}, headers={"X-User-Id": "u1"})
    assert r.status_code == 422
    assert session.query(Disposal).count() == 0
