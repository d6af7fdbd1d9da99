from __future__ import annotations

import datetime as dt
import sys
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from src.db.models import Base, Transaction, Wallet
from src.utils.time import UTC

WALLET = "0xabc0000000000000000000000000000000000001"


@pytest.fixture()
def engine():
    # One shared in-memory DB, usable from TestClient worker threads.
    eng = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False)


@pytest.fixture()
def session(session_factory) -> Session:
    with session_factory() as s:
        yield s


@pytest.fixture()
def wallet(session) -> Wallet:
    w = Wallet(user_id="u1", address=WALLET, chain="ethereum", label="Main")
    session.add(w)
    session.commit()
    return w


@pytest.fixture()
def make_tx(session):
    def _make(wallet: Wallet, **kw) -> Transaction:
        defaults = dict(
            wallet_id=wallet.id,
            tx_hash=f"0xhash{session.query(Transaction).count() + 1}",
            chain=wallet.chain,
            timestamp=dt.datetime(2024, 6, 1, tzinfo=UTC),
            classification="transfer",
            classification_confidence=Decimal("0.9"),
            needs_review=False,
            user_classified=False,
        )
        defaults.update(kw)
        tx = Transaction(**defaults)
        session.add(tx)
        session.flush()
        return tx

    return _make
