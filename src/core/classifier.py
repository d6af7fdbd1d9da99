from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Optional

from src.core.types import NULL_ADDRESS, AggregatedTransaction, Classification


DEX_ROUTERS = frozenset(
    {
        "0x7a250d5630b4cf539739df2c5dacb4c659f2488d",  # Uniswap V2
        "0xe592427a0aece92de3edee1f18e0157c05861564",  # Uniswap V3
        "0x68b3465833fb72a70ecdf485e0e4c7bd8665fc45",  # Uniswap Universal
        "0xef1c6e67703c7bd7107eed8303fbe6ec2554bf6b",  # Uniswap Universal (old)
        "0x1111111254eeb25477b68fb85ed929f73a960582",  # 1inch V5
        "0xdef1c0ded9bec7f1a1670819833240f027b25eff",  # 0x Exchange Proxy
        "0xd9e1ce17f2641f24ae83637ab66a2cca9c378b9f",  # SushiSwap
    }
)

CONFIDENCE: dict[str, Decimal] = {
    "swap": Decimal("0.80"),
    "transfer": Decimal("0.90"),
    "airdrop": Decimal("0.70"),
    "nft_mint": Decimal("0.90"),
    "nft_sale": Decimal("0.70"),
    "self_transfer": Decimal("0.95"),
    "reward": Decimal("0.60"),
}


def confidence_for(label: str) -> Decimal:
    return CONFIDENCE.get(label, Decimal("0"))


def _lower(v: Optional[str]) -> Optional[str]:
    return v.strip().lower() if v else None


def _result(label: str) -> Classification:
    return Classification(label=label, confidence=confidence_for(label))


def _symbols_differ(agg: AggregatedTransaction) -> bool:
    ins = {s for s in (_lower(l.symbol) for l in agg.legs_in) if s}
    outs = {s for s in (_lower(l.symbol) for l in agg.legs_out) if s}
    if not ins or not outs:
        return False
    return any(s not in outs for s in ins)


def _touches_router(agg: AggregatedTransaction, routers: frozenset[str]) -> bool:
    for t in agg.transfers:
        if _lower(t.from_address) in routers or _lower(t.to_address) in routers:
            return True
    return False


def classify(
    agg: AggregatedTransaction,
    wallet_address: str,
    *,
    extra_routers: Iterable[str] = (),
) -> Classification:
    """
    Heuristic intent for one aggregated transaction. First matching rule wins.

    Never raises for data-shaped input; anything unrecognized falls through to
    `contract_interaction` or `unknown`.
    """
    wallet = _lower(wallet_address)
    routers = DEX_ROUTERS | {r for r in (_lower(x) for x in extra_routers) if r}

    if len(agg.transfers) == 1:
        t = agg.transfers[0]
        src, dst = _lower(t.from_address), _lower(t.to_address)
        if dst is not None and src == dst:
            return _result("self_transfer")
        if wallet is not None and (src == wallet or dst == wallet):
            return _result("transfer")

    if agg.has_nft:
        return _result("nft_mint" if agg.is_mint else "nft_sale")

    has_in = bool(agg.legs_in)
    has_out = bool(agg.legs_out)

    if has_in and has_out:
        if _symbols_differ(agg) or _touches_router(agg, routers):
            return _result("swap")
        return _result("transfer")

    if has_in:
        for t in agg.transfers:
            if _lower(t.from_address) == NULL_ADDRESS and _lower(t.to_address) == wallet:
                return _result("airdrop")
        if agg.is_internal:
            return _result("reward")
        return _result("transfer")

    if has_out:
        return _result("transfer")

    if agg.has_contract_interaction:
        return _result("contract_interaction")
    return _result("unknown")
