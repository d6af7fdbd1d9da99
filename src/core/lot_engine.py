from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy.orm import Session

from src.core.config import LotConfig
from src.core.lot_selection import allocate_share, select_lots
from src.db.audit import log_change
from src.db.models import Disposal, TaxLot, Transaction, Wallet
from src.db.queries import get_or_create_settings
from src.utils.locks import keyed_lock
from src.utils.money import ZERO, quantize_usd
from src.utils.time import utcnow


log = logging.getLogger(__name__)


def token_key(address: Optional[str], symbol: Optional[str]) -> str:
    return (address or symbol or "unknown").strip().lower()


@dataclass
class LotProcessResult:
    wallet_id: int
    method: str
    txns_scanned: int = 0
    lots_created: int = 0
    disposals_created: int = 0
    pending: int = 0
    warnings: list[str] = field(default_factory=list)

    def as_json(self) -> dict[str, Any]:
        return {
            "wallet_id": self.wallet_id,
            "method": self.method,
            "txns_scanned": self.txns_scanned,
            "lots_created": self.lots_created,
            "disposals_created": self.disposals_created,
            "pending": self.pending,
            "warnings": self.warnings,
        }


def _acquire(session: Session, tx: Transaction) -> TaxLot:
    lot = TaxLot(
        wallet_id=tx.wallet_id,
        transaction_id=tx.id,
        token=token_key(tx.token_in, tx.token_in_symbol),
        token_symbol=tx.token_in_symbol,
        amount=Decimal(tx.amount_in),
        remaining_amount=Decimal(tx.amount_in),
        cost_basis_usd=quantize_usd(tx.value_usd),
        acquired_at=tx.timestamp,
    )
    session.add(lot)
    session.flush()
    return lot


def dispose(
    session: Session,
    *,
    tx: Transaction,
    method: str,
    warnings: list[str],
    lot_ids: Optional[Sequence[int]] = None,
) -> list[Disposal]:
    """
    Consume lots for the outbound leg of `tx`, one Disposal per lot slice.

    Proceeds are split across slices by amount; any amount not covered by open
    lots becomes a lot-less, zero-basis, short-term Disposal.
    """
    token = token_key(tx.token_out, tx.token_out_symbol)
    total = Decimal(tx.amount_out)
    proceeds = quantize_usd(tx.value_usd)
    out: list[Disposal] = []
    with keyed_lock(tx.wallet_id, token):
        lots = session.query(TaxLot).filter(TaxLot.wallet_id == tx.wallet_id, TaxLot.token == token).all()
        picks, uncovered = select_lots(lots=lots, amount=total, method=method, disposed_at=tx.timestamp, lot_ids=lot_ids)
        by_id = {l.id: l for l in lots}
        cum = ZERO
        for pick in picks:
            slice_proceeds = allocate_share(proceeds, cum, cum + pick.amount, total)
            cum += pick.amount
            lot = by_id[pick.lot_id]
            lot.remaining_amount = Decimal(lot.remaining_amount) - pick.amount
            out.append(
                Disposal(
                    tax_lot_id=lot.id,
                    transaction_id=tx.id,
                    token=token,
                    token_symbol=tx.token_out_symbol,
                    amount=pick.amount,
                    proceeds_usd=slice_proceeds,
                    cost_basis_usd=pick.cost_basis_usd,
                    gain_loss_usd=slice_proceeds - pick.cost_basis_usd,
                    is_short_term=pick.is_short_term,
                    disposed_at=tx.timestamp,
                )
            )
        if uncovered > 0:
            slice_proceeds = allocate_share(proceeds, cum, total, total)
            warnings.append(
                f"tx {tx.id}: insufficient lots for {uncovered} {tx.token_out_symbol or token}; recorded with zero basis."
            )
            out.append(
                Disposal(
                    tax_lot_id=None,
                    transaction_id=tx.id,
                    token=token,
                    token_symbol=tx.token_out_symbol,
                    amount=uncovered,
                    proceeds_usd=slice_proceeds,
                    cost_basis_usd=quantize_usd(0),
                    gain_loss_usd=slice_proceeds,
                    is_short_term=True,
                    disposed_at=tx.timestamp,
                )
            )
        session.add_all(out)
        session.flush()
    return out


def _is_acquisition(tx: Transaction, cfg: LotConfig) -> bool:
    return tx.classification in cfg.acquisition_labels and tx.amount_in is not None and Decimal(tx.amount_in) > 0


def _is_disposal(tx: Transaction, cfg: LotConfig) -> bool:
    return tx.classification in cfg.disposal_labels and tx.amount_out is not None and Decimal(tx.amount_out) > 0


def _process_one(
    session: Session,
    tx: Transaction,
    *,
    method: str,
    cfg: LotConfig,
    res: LotProcessResult,
    lot_ids: Optional[Sequence[int]] = None,
) -> None:
    if (_is_acquisition(tx, cfg) or _is_disposal(tx, cfg)) and tx.value_usd is None:
        res.warnings.append(f"tx {tx.id}: no USD value; using 0.00.")
    if _is_disposal(tx, cfg):
        res.disposals_created += len(dispose(session, tx=tx, method=method, warnings=res.warnings, lot_ids=lot_ids))
    if _is_acquisition(tx, cfg):
        _acquire(session, tx)
        res.lots_created += 1
    tx.lots_processed_at = utcnow()


def process_wallet_lots(
    session: Session,
    *,
    wallet: Wallet,
    actor: str,
    method: Optional[str] = None,
    cfg: Optional[LotConfig] = None,
) -> LotProcessResult:
    """
    Replay a wallet's not-yet-processed transactions in time order into lots and disposals.

    Existing lots and disposals are never rewritten. Transactions still awaiting
    review, and disposals under `specific_id`, stay pending for a later run.
    """
    cfg = cfg or LotConfig()
    method = method or get_or_create_settings(session, wallet.user_id).lot_method
    res = LotProcessResult(wallet_id=wallet.id, method=method)

    txs = (
        session.query(Transaction)
        .filter(Transaction.wallet_id == wallet.id, Transaction.lots_processed_at.is_(None))
        .order_by(Transaction.timestamp.asc(), Transaction.id.asc())
        .all()
    )
    for tx in txs:
        res.txns_scanned += 1
        if tx.needs_review:
            res.pending += 1
            continue
        if method == "specific_id" and _is_disposal(tx, cfg):
            res.pending += 1
            res.warnings.append(f"tx {tx.id}: specific_id disposal needs explicit lot ids.")
            continue
        _process_one(session, tx, method=method, cfg=cfg, res=res)

    for w in res.warnings:
        log.warning("Lot processing wallet %s: %s", wallet.id, w)
    log_change(
        session,
        actor=actor,
        action="PROCESS_LOTS",
        entity="Wallet",
        entity_id=str(wallet.id),
        old=None,
        new=res.as_json(),
        note=None,
    )
    session.flush()
    return res


def dispose_specific(
    session: Session,
    *,
    tx: Transaction,
    lot_ids: Sequence[int],
    actor: str,
    cfg: Optional[LotConfig] = None,
) -> LotProcessResult:
    """Resolve a pending disposal against caller-chosen lots, in the order given."""
    cfg = cfg or LotConfig()
    res = LotProcessResult(wallet_id=tx.wallet_id, method="specific_id")
    if tx.lots_processed_at is not None:
        raise ValueError(f"transaction {tx.id} was already processed")
    if not _is_disposal(tx, cfg):
        raise ValueError(f"transaction {tx.id} has no disposal leg under '{tx.classification}'")
    res.txns_scanned = 1
    _process_one(session, tx, method="specific_id", cfg=cfg, res=res, lot_ids=lot_ids)
    log_change(
        session,
        actor=actor,
        action="DISPOSE_SPECIFIC",
        entity="Transaction",
        entity_id=str(tx.id),
        old=None,
        new={"lot_ids": [int(x) for x in lot_ids], **res.as_json()},
        note=None,
    )
    session.flush()
    return res
