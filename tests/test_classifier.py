from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from src.core.aggregator import aggregate_transfers
from src.core.classifier import classify
from src.core.types import NULL_ADDRESS, AggregatedTransaction, RawTransfer
from src.db.models import CLASSIFICATION_TYPES
from src.utils.time import UTC

W = "0xabc0000000000000000000000000000000000001"
OTHER = "0x9990000000000000000000000000000000000009"
UNI_V2 = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"


def _t(frm, to, amount="1", symbol="ETH", asset=None, category="external", h="0xh"):
    return RawTransfer(
        hash=h,
        block_number=1,
        from_address=frm,
        to_address=to,
        asset_address=asset,
        symbol=symbol,
        amount=None if amount is None else Decimal(amount),
        category=category,
        timestamp=dt.datetime(2024, 1, 1, tzinfo=UTC),
    )


def _classify(*transfers, wallet=W, **kw):
    agg = aggregate_transfers(list(transfers), wallet)[0]
    return classify(agg, wallet, **kw)


def test_self_transfer_wins_over_nft_flags():
    r = _classify(_t(W, W.upper().replace("0X", "0x"), symbol=None, asset="0xnft", category="erc721"))
    assert r.label == "self_transfer"
    assert r.confidence == Decimal("0.95")


def test_single_transfer_with_null_to_is_not_self():
    r = _classify(_t(W, None))
    assert r.label == "transfer"


def test_single_transfer_involving_wallet_is_transfer():
    r = _classify(_t(OTHER, W))
    assert (r.label, r.confidence) == ("transfer", Decimal("0.90"))


def test_swap_by_distinct_symbols():
    r = _classify(_t(W, OTHER, symbol="USDC", asset="0xusdc", category="erc20"), _t(OTHER, W, symbol="ETH"))
    assert (r.label, r.confidence) == ("swap", Decimal("0.80"))


def test_swap_by_router_with_same_symbol():
    r = _classify(_t(W, UNI_V2, symbol="ETH"), _t(UNI_V2, W, symbol="ETH"))
    assert r.label == "swap"


def test_same_symbol_without_router_is_transfer():
    r = _classify(_t(W, OTHER, symbol="ETH"), _t(OTHER, W, symbol="ETH"))
    assert r.label == "transfer"


def test_symbol_comparison_is_case_insensitive():
    r = _classify(_t(W, OTHER, symbol="weth"), _t(OTHER, W, symbol="WETH"))
    assert r.label == "transfer"


def test_null_symbols_do_not_make_a_swap():
    r = _classify(_t(W, OTHER, symbol=None), _t(OTHER, W, symbol="ETH"))
    assert r.label == "transfer"


def test_extra_router_from_config():
    router = "0x5550000000000000000000000000000000000005"
    r = _classify(_t(W, router), _t(router, W), extra_routers=[router.upper().replace("0X", "0x")])
    assert r.label == "swap"


def test_nft_mint_and_sale():
    mint = _classify(
        _t(NULL_ADDRESS, W, amount=None, symbol=None, asset="0xnft", category="erc721"),
        _t(W, OTHER, amount="0.05"),
    )
    assert (mint.label, mint.confidence) == ("nft_mint", Decimal("0.90"))
    sale = _classify(
        _t(W, OTHER, amount=None, symbol=None, asset="0xnft", category="erc1155"),
        _t(OTHER, W, amount="1"),
    )
    assert (sale.label, sale.confidence) == ("nft_sale", Decimal("0.70"))


def test_airdrop_from_null_address():
    r = _classify(
        _t(NULL_ADDRESS, W, symbol="UNI", asset="0xuni", category="erc20"),
        _t(OTHER, W, amount="0", symbol="ETH"),
    )
    assert (r.label, r.confidence) == ("airdrop", Decimal("0.70"))


def test_reward_when_internal_inbound():
    r = _classify(_t(OTHER, W, category="internal"), _t(OTHER, W, category="internal"))
    assert (r.label, r.confidence) == ("reward", Decimal("0.60"))


def test_inbound_only_and_outbound_only_are_transfers():
    assert _classify(_t(OTHER, W), _t(OTHER, W, symbol="DAI")).label == "transfer"
    assert _classify(_t(W, OTHER), _t(W, OTHER, symbol="DAI")).label == "transfer"


def test_no_legs_with_contract_is_contract_interaction():
    r = _classify(_t(W, OTHER, amount="0", asset="0xtoken", category="erc20"), _t(OTHER, W, amount="0"))
    assert (r.label, r.confidence) == ("contract_interaction", Decimal("0"))


def test_no_legs_without_contract_is_unknown():
    r = _classify(_t(W, OTHER, amount="0"), _t(OTHER, W, amount=None))
    assert (r.label, r.confidence) == ("unknown", Decimal("0"))


def test_unrelated_single_transfer_falls_through():
    r = _classify(_t(OTHER, "0x1230000000000000000000000000000000000003", amount="0"))
    assert r.label == "unknown"


@pytest.mark.parametrize(
    "transfers",
    [
        [],
        [_t(OTHER, None, amount=None, symbol=None, category="")],
        [_t("", "", amount="5", symbol=None, category="weird")],
    ],
)
def test_total_on_odd_input(transfers):
    agg = AggregatedTransaction(hash="0xodd", block_number=None, timestamp=None, transfers=transfers)
    r = classify(agg, W)
    assert r.label in CLASSIFICATION_TYPES
    assert Decimal("0") <= r.confidence <= Decimal("1")


def test_deterministic():
    transfers = [_t(W, OTHER, symbol="USDC"), _t(OTHER, W, symbol="ETH")]
    assert _classify(*transfers) == _classify(*transfers)
