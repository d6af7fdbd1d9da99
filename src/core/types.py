from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


NFT_CATEGORIES = frozenset({"erc721", "erc1155", "specialnft"})
NULL_ADDRESS = "0x0000000000000000000000000000000000000000"

TransferDirection = Literal["out", "in"]


@dataclass(frozen=True)
class RawTransfer:
    hash: str
    block_number: Optional[int]
    from_address: str
    to_address: Optional[str]
    asset_address: Optional[str]
    symbol: Optional[str]
    amount: Optional[Decimal]
    category: str
    timestamp: Optional[dt.datetime]
    unique_id: Optional[str] = None
    value_usd: Optional[Decimal] = None


@dataclass(frozen=True)
class Leg:
    asset: Optional[str]
    symbol: Optional[str]
    amount: Decimal


@dataclass
class AggregatedTransaction:
    hash: str
    block_number: Optional[int]
    timestamp: Optional[dt.datetime]
    transfers: list[RawTransfer] = field(default_factory=list)
    legs_in: list[Leg] = field(default_factory=list)
    legs_out: list[Leg] = field(default_factory=list)
    has_nft: bool = False
    is_mint: bool = False
    is_internal: bool = False
    has_contract_interaction: bool = False

    @property
    def contract_address(self) -> Optional[str]:
        for t in self.transfers:
            if t.asset_address:
                return t.asset_address
        return None


@dataclass(frozen=True)
class Classification:
    label: str
    confidence: Decimal


class DisposalRow(BaseModel):
    id: int
    tax_lot_id: Optional[int] = None
    transaction_id: int
    token: str
    token_symbol: Optional[str] = None
    amount: str
    proceeds_usd: str
    cost_basis_usd: str
    gain_loss_usd: str
    is_short_term: bool
    acquired_at: Optional[str] = None
    disposed_at: str


class TaxSummary(BaseModel):
    year: int
    total_disposals: int
    short_term_gains: str
    short_term_losses: str
    long_term_gains: str
    long_term_losses: str
    net_gain_loss: str
    total_income: str
    needs_review_count: int
    disposals: list[DisposalRow] = Field(default_factory=list)
    income_by_type: dict[str, str] = Field(default_factory=dict)

    def as_json(self) -> dict[str, Any]:
        return self.model_dump()
