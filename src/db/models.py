from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.utils.time import utcnow
from src.db.types import TokenAmount, UTCDateTime


class Base(DeclarativeBase):
    pass


SUPPORTED_CHAINS = ("ethereum", "arbitrum", "optimism", "base", "polygon", "solana", "bitcoin", "avalanche", "bsc")

CLASSIFICATION_TYPES = (
    "swap",
    "lp_deposit",
    "lp_withdraw",
    "stake",
    "unstake",
    "borrow",
    "repay",
    "bridge",
    "airdrop",
    "vesting",
    "nft_mint",
    "nft_sale",
    "reward",
    "interest",
    "liquidation",
    "wrap",
    "unwrap",
    "migration",
    "self_transfer",
    "income",
    "expense",
    "transfer",
    "contract_interaction",
    "unknown",
)

LOT_METHODS = ("fifo", "lifo", "hifo", "specific_id")

EntityType = Enum("personal", "business", "trust", name="entity_type")
LotMethod = Enum(*LOT_METHODS, name="lot_method")
Direction = Enum("in", "out", name="transfer_direction")
SyncStatus = Enum("SUCCESS", "ERROR", name="sync_status")


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        UniqueConstraint("user_id", "address", "chain", name="uq_wallet_user_address_chain"),
        Index("ix_wallets_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    address: Mapped[str] = mapped_column(String(128), nullable=False)
    chain: Mapped[str] = mapped_column(String(32), nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(200))
    entity_type: Mapped[str] = mapped_column(EntityType, default="personal", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(back_populates="wallet", cascade="all, delete-orphan")
    tax_lots: Mapped[list["TaxLot"]] = relationship(back_populates="wallet", cascade="all, delete-orphan")
    sync_runs: Mapped[list["SyncRun"]] = relationship(back_populates="wallet", cascade="all, delete-orphan")


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("wallet_id", "tx_hash", name="uq_tx_wallet_hash"),
        Index("ix_tx_wallet_ts", "wallet_id", "timestamp"),
        Index("ix_tx_review", "needs_review"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id"), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    chain: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[dt.datetime] = mapped_column(UTCDateTime(), nullable=False)
    block_number: Mapped[Optional[int]] = mapped_column(Integer)

    token_in: Mapped[Optional[str]] = mapped_column(String(128))
    amount_in: Mapped[Optional[Decimal]] = mapped_column(TokenAmount())
    token_in_symbol: Mapped[Optional[str]] = mapped_column(String(64))
    token_out: Mapped[Optional[str]] = mapped_column(String(128))
    amount_out: Mapped[Optional[Decimal]] = mapped_column(TokenAmount())
    token_out_symbol: Mapped[Optional[str]] = mapped_column(String(64))

    classification: Mapped[str] = mapped_column(String(32), default="unknown", nullable=False)
    classification_confidence: Mapped[Decimal] = mapped_column(Numeric(5, 4), default=Decimal("0"), nullable=False)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    user_classified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    classified_by_rule_id: Mapped[Optional[int]] = mapped_column(ForeignKey("classification_rules.id", ondelete="SET NULL"))

    contract_address: Mapped[Optional[str]] = mapped_column(String(128))
    method_name: Mapped[Optional[str]] = mapped_column(String(128))
    gas_fee: Mapped[Optional[Decimal]] = mapped_column(TokenAmount())
    gas_fee_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2))
    price_at_time: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8))
    value_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2))
    is_spam: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_dust: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    raw_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    lots_processed_at: Mapped[Optional[dt.datetime]] = mapped_column(UTCDateTime())
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    wallet: Mapped["Wallet"] = relationship(back_populates="transactions")
    disposals: Mapped[list["Disposal"]] = relationship(back_populates="transaction", cascade="all, delete-orphan")


class ClassificationRule(Base):
    __tablename__ = "classification_rules"
    __table_args__ = (Index("ix_rules_user_priority", "user_id", "priority"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    contract_address: Mapped[Optional[str]] = mapped_column(String(128))
    method_signature: Mapped[Optional[str]] = mapped_column(String(128))
    token_pattern: Mapped[Optional[str]] = mapped_column(String(128))
    chain: Mapped[Optional[str]] = mapped_column(String(32))
    direction: Mapped[Optional[str]] = mapped_column(Direction)
    classification: Mapped[str] = mapped_column(String(32), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class TaxLot(Base):
    __tablename__ = "tax_lots"
    __table_args__ = (Index("ix_lots_wallet_token", "wallet_id", "token"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id"), nullable=False)
    transaction_id: Mapped[Optional[int]] = mapped_column(ForeignKey("transactions.id", ondelete="SET NULL"))
    token: Mapped[str] = mapped_column(String(128), nullable=False)
    token_symbol: Mapped[Optional[str]] = mapped_column(String(64))
    amount: Mapped[Decimal] = mapped_column(TokenAmount(), nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(TokenAmount(), nullable=False)
    cost_basis_usd: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    acquired_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    wallet: Mapped["Wallet"] = relationship(back_populates="tax_lots")
    disposals: Mapped[list["Disposal"]] = relationship(back_populates="tax_lot")


class Disposal(Base):
    __tablename__ = "disposals"
    __table_args__ = (Index("ix_disposals_disposed_at", "disposed_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tax_lot_id: Mapped[Optional[int]] = mapped_column(ForeignKey("tax_lots.id"))
    transaction_id: Mapped[int] = mapped_column(ForeignKey("transactions.id"), nullable=False)
    token: Mapped[str] = mapped_column(String(128), nullable=False)
    token_symbol: Mapped[Optional[str]] = mapped_column(String(64))
    amount: Mapped[Decimal] = mapped_column(TokenAmount(), nullable=False)
    proceeds_usd: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    cost_basis_usd: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    gain_loss_usd: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    is_short_term: Mapped[bool] = mapped_column(Boolean, nullable=False)
    disposed_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    tax_lot: Mapped[Optional["TaxLot"]] = relationship(back_populates="disposals")
    transaction: Mapped["Transaction"] = relationship(back_populates="disposals")


class Settings(Base):
    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    tax_year: Mapped[int] = mapped_column(Integer, default=2024, nullable=False)
    lot_method: Mapped[str] = mapped_column(LotMethod, default="fifo", nullable=False)
    base_currency: Mapped[str] = mapped_column(String(8), default="USD", nullable=False)
    country: Mapped[str] = mapped_column(String(8), default="US", nullable=False)
    show_spam: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    show_dust: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    dust_threshold: Mapped[Decimal] = mapped_column(Numeric(20, 2), default=Decimal("1.00"), nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)


class TelegramLink(Base):
    __tablename__ = "telegram_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    telegram_chat_id: Mapped[Optional[str]] = mapped_column(String(64))
    telegram_username: Mapped[Optional[str]] = mapped_column(String(128))
    verification_code: Mapped[Optional[str]] = mapped_column(String(16))
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notify_on_new_tx: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on_review: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    verified_at: Mapped[Optional[dt.datetime]] = mapped_column(UTCDateTime())


class SyncRun(Base):
    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id"), nullable=False)
    started_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    finished_at: Mapped[Optional[dt.datetime]] = mapped_column(UTCDateTime())
    status: Mapped[str] = mapped_column(SyncStatus, default="SUCCESS", nullable=False)
    fetched_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    imported_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    needs_review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_json: Mapped[Optional[str]] = mapped_column(Text)

    wallet: Mapped["Wallet"] = relationship(back_populates="sync_runs")


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    actor: Mapped[str] = mapped_column(String(200), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64))
    old_json: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    new_json: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    note: Mapped[Optional[str]] = mapped_column(Text)
