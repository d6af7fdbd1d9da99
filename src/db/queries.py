from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Query, Session

from src.db.models import ClassificationRule, Settings, TelegramLink, Transaction, Wallet


def wallets_for_user(session: Session, user_id: str) -> Query:
    return session.query(Wallet).filter(Wallet.user_id == user_id)


def get_wallet(session: Session, user_id: str, wallet_id: int) -> Optional[Wallet]:
    return wallets_for_user(session, user_id).filter(Wallet.id == int(wallet_id)).one_or_none()


def transactions_for_user(session: Session, user_id: str) -> Query:
    return session.query(Transaction).join(Wallet, Wallet.id == Transaction.wallet_id).filter(Wallet.user_id == user_id)


def get_transaction(session: Session, user_id: str, tx_id: int) -> Optional[Transaction]:
    return transactions_for_user(session, user_id).filter(Transaction.id == int(tx_id)).one_or_none()


def rules_for_user(session: Session, user_id: str) -> Query:
    return session.query(ClassificationRule).filter(ClassificationRule.user_id == user_id)


def get_or_create_settings(session: Session, user_id: str) -> Settings:
    row = session.query(Settings).filter(Settings.user_id == user_id).one_or_none()
    if row is None:
        row = Settings(user_id=user_id)
        session.add(row)
        session.flush()
    return row


def telegram_link_for_user(session: Session, user_id: str) -> Optional[TelegramLink]:
    return session.query(TelegramLink).filter(TelegramLink.user_id == user_id).one_or_none()
