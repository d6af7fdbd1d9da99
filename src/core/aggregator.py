from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

from src.core.types import NFT_CATEGORIES, NULL_ADDRESS, AggregatedTransaction, Leg, RawTransfer


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


def _dedupe_key(t: RawTransfer) -> tuple:
    if t.unique_id:
        return ("uid", t.unique_id)
    return (
        "fields",
        t.hash.lower(),
        (t.from_address or "").lower(),
        (t.to_address or "").lower(),
        (t.asset_address or "").lower(),
        str(t.amount),
        t.category,
    )


def merge_transfer_pages(outgoing: Iterable[RawTransfer], incoming: Iterable[RawTransfer]) -> list[RawTransfer]:
    """
    Union of the outgoing and incoming query results, outgoing first.

    A transfer present in both (wallet sending to itself) is kept once.
    """
    seen: set[tuple] = set()
    out: list[RawTransfer] = []
    for t in list(outgoing) + list(incoming):
        k = _dedupe_key(t)
        if k in seen:
            continue
        seen.add(k)
        out.append(t)
    return out


def aggregate_transfers(transfers: Iterable[RawTransfer], wallet_address: str) -> list[AggregatedTransaction]:
    groups: dict[str, AggregatedTransaction] = {}
    for t in transfers:
        agg = groups.get(t.hash)
        if agg is None:
            agg = AggregatedTransaction(hash=t.hash, block_number=t.block_number, timestamp=t.timestamp)
            groups[t.hash] = agg
        agg.transfers.append(t)
        if agg.timestamp is None and t.timestamp is not None:
            agg.timestamp = t.timestamp
        if agg.block_number is None and t.block_number is not None:
            agg.block_number = t.block_number

        if t.amount:
            leg = Leg(asset=t.asset_address, symbol=t.symbol, amount=t.amount)
            if _same_address(t.to_address, wallet_address):
                agg.legs_in.append(leg)
            if _same_address(t.from_address, wallet_address):
                agg.legs_out.append(leg)

        if (t.category or "").lower() in NFT_CATEGORIES:
            agg.has_nft = True
        if _same_address(t.from_address, NULL_ADDRESS):
            agg.is_mint = True
        if (t.category or "").lower() == "internal":
            agg.is_internal = True
        if t.asset_address:
            agg.has_contract_interaction = True

    return list(groups.values())
