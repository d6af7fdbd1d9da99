from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.adapters.alchemy.client import AlchemyClient
from src.adapters.base import Notifier, ProviderError, TransferProvider
from src.adapters.telegram.client import TelegramClient
from src.core.aggregator import aggregate_transfers, merge_transfer_pages
from src.core.classifier import classify
from src.core.config import AppConfig, load_config
from src.core.review import needs_review, notify_review_batch
from src.core.types import AggregatedTransaction, Classification, RawTransfer, TransferDirection
from src.db.audit import log_change
from src.db.models import SyncRun, Transaction, Wallet
from src.db.queries import get_or_create_settings, telegram_link_for_user
from src.utils.money import ZERO, quantize_usd
from src.utils.time import utcnow


log = logging.getLogger(__name__)


class SyncConfigError(Exception):
    pass


def _provider_for(wallet: Wallet, config: AppConfig) -> TransferProvider:
    return AlchemyClient(config=config.provider)


def _notifier_for() -> Notifier:
    return TelegramClient()


@dataclass(frozen=True)
class SyncResult:
    run_id: int
    wallet_id: int
    status: str
    fetched: int
    imported: int
    skipped: int
    needs_review: int
    notified: int = 0
    error: Optional[str] = None

    def as_json(self) -> dict[str, Any]:
        return {
            "status": "sync_complete" if self.status == "SUCCESS" else "sync_failed",
            "run_id": self.run_id,
            "wallet_id": self.wallet_id,
            "imported": self.imported,
            "skipped": self.skipped,
            "total": self.imported + self.skipped,
            "fetched": self.fetched,
            "needs_review": self.needs_review,
            "notified": self.notified,
            "error": self.error,
        }


def fetch_all_pages(
    provider: TransferProvider,
    *,
    address: str,
    chain: str,
    direction: TransferDirection,
    max_pages: int,
) -> list[RawTransfer]:
    out: list[RawTransfer] = []
    page_key: Optional[str] = None
    for _ in range(max_pages):
        page, page_key = provider.fetch_transfers(address, chain, direction, page_key)
        out.extend(page)
        if not page_key:
            break
    else:
        log.warning("Stopped paging %s transfers for %s after %s pages", direction, chain, max_pages)
    return out


def fetch_wallet_transfers(provider: TransferProvider, *, address: str, chain: str, max_pages: int) -> list[RawTransfer]:
    """Fetch outgoing and incoming transfers concurrently; the first failure aborts both."""
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="sync-fetch") as pool:
        out_f = pool.submit(fetch_all_pages, provider, address=address, chain=chain, direction="out", max_pages=max_pages)
        in_f = pool.submit(fetch_all_pages, provider, address=address, chain=chain, direction="in", max_pages=max_pages)
        outgoing = out_f.result()
        incoming = in_f.result()
    return merge_transfer_pages(outgoing, incoming)


def _value_usd(agg: AggregatedTransaction) -> Optional[Decimal]:
    priced = [t.value_usd for t in agg.transfers if t.value_usd is not None]
    total = sum(priced, ZERO) if priced else sum((t.amount for t in agg.transfers if t.amount), ZERO)
    value = quantize_usd(total)
    # Anything that rounds to nothing is treated as unpriced.
    return value if value > 0 else None


def _already_stored(session: Session, wallet_id: int, tx_hash: str) -> bool:
    row = session.query(Transaction.id).filter(Transaction.wallet_id == wallet_id, Transaction.tx_hash == tx_hash).first()
    return row is not None


def _raw_transfer_json(t: RawTransfer) -> dict[str, Any]:
    return {
        "from": t.from_address,
        "to": t.to_address,
        "asset": t.asset_address,
        "symbol": t.symbol,
        "amount": None if t.amount is None else format(t.amount, "f"),
        "category": t.category,
        "unique_id": t.unique_id,
    }


def build_transaction(
    agg: AggregatedTransaction,
    *,
    wallet: Wallet,
    result: Classification,
    dust_threshold: Decimal,
) -> Transaction:
    leg_in = agg.legs_in[0] if agg.legs_in else None
    leg_out = agg.legs_out[0] if agg.legs_out else None
    value = _value_usd(agg)
    return Transaction(
        wallet_id=wallet.id,
        tx_hash=agg.hash,
        chain=wallet.chain,
        timestamp=agg.timestamp or utcnow(),
        block_number=agg.block_number,
        token_in=leg_in.asset if leg_in else None,
        amount_in=leg_in.amount if leg_in else None,
        token_in_symbol=leg_in.symbol if leg_in else None,
        token_out=leg_out.asset if leg_out else None,
        amount_out=leg_out.amount if leg_out else None,
        token_out_symbol=leg_out.symbol if leg_out else None,
        classification=result.label,
        classification_confidence=result.confidence,
        needs_review=needs_review(result.label),
        user_classified=False,
        contract_address=agg.contract_address,
        value_usd=value,
        is_spam=False,
        is_dust=value is not None and ZERO < value < Decimal(dust_threshold),
        raw_json={"transfers": [_raw_transfer_json(t) for t in agg.transfers]},
    )


def _finish_run(session: Session, run: SyncRun, *, actor: str, note: str) -> None:
    run.finished_at = utcnow()
    session.flush()
    log_change(
        session,
        actor=actor,
        action="SYNC_RUN_FINISHED",
        entity="SyncRun",
        entity_id=str(run.id),
        old=None,
        new={
            "status": run.status,
            "fetched": run.fetched_count,
            "imported": run.imported_count,
            "skipped": run.skipped_count,
            "needs_review": run.needs_review_count,
        },
        note=note,
    )
    session.commit()


def run_sync(
    session: Session,
    *,
    wallet: Wallet,
    actor: str,
    provider: Optional[TransferProvider] = None,
    notifier: Optional[Notifier] = None,
    config: Optional[AppConfig] = None,
) -> SyncResult:
    """
    Pull a wallet's transfers, classify each transaction once, and store new ones.

    Configuration problems (inactive wallet, unsupported chain, missing key) raise
    before anything is fetched. Provider failures are recorded on the SyncRun.
    """
    config = config or load_config()[0]
    if not wallet.is_active:
        raise SyncConfigError("Wallet is inactive.")
    provider = provider or _provider_for(wallet, config)
    provider.check_chain(wallet.chain)
    provider.check_ready()

    run = SyncRun(wallet_id=wallet.id, started_at=utcnow(), status="SUCCESS")
    session.add(run)
    session.flush()

    try:
        transfers = fetch_wallet_transfers(
            provider, address=wallet.address, chain=wallet.chain.lower(), max_pages=config.provider.max_pages
        )
    except ProviderError as e:
        log.warning("Sync failed for wallet %s: %s", wallet.id, e)
        run.status = "ERROR"
        run.error_json = json.dumps({"error": f"{type(e).__name__}: {e}"})
        _finish_run(session, run, actor=actor, note="Sync run error (fetch)")
        return SyncResult(
            run_id=run.id, wallet_id=wallet.id, status="ERROR", fetched=0, imported=0, skipped=0, needs_review=0, error=str(e)
        )

    settings = get_or_create_settings(session, wallet.user_id)
    imported = skipped = 0
    review_rows: list[Transaction] = []
    for agg in aggregate_transfers(transfers, wallet.address):
        if not agg.hash:
            continue
        if _already_stored(session, wallet.id, agg.hash):
            skipped += 1
            continue
        result = classify(agg, wallet.address, extra_routers=config.classifier.extra_dex_routers)
        tx = build_transaction(agg, wallet=wallet, result=result, dust_threshold=settings.dust_threshold)
        try:
            with session.begin_nested():
                session.add(tx)
        except IntegrityError:
            # Concurrent sync inserted the same (wallet, hash).
            skipped += 1
            continue
        imported += 1
        if tx.needs_review:
            review_rows.append(tx)

    run.fetched_count = len(transfers)
    run.imported_count = imported
    run.skipped_count = skipped
    run.needs_review_count = len(review_rows)
    _finish_run(session, run, actor=actor, note="Sync run complete")
    log.info("Wallet %s synced: %s imported, %s skipped, %s need review", wallet.id, imported, skipped, len(review_rows))

    notified = _notify_review(
        session,
        user_id=wallet.user_id,
        rows=review_rows,
        notifier=notifier,
        max_messages=config.notifications.max_review_messages,
    )
    return SyncResult(
        run_id=run.id,
        wallet_id=wallet.id,
        status="SUCCESS",
        fetched=len(transfers),
        imported=imported,
        skipped=skipped,
        needs_review=len(review_rows),
        notified=notified,
    )


def _notify_review(
    session: Session,
    *,
    user_id: str,
    rows: list[Transaction],
    notifier: Optional[Notifier],
    max_messages: int,
) -> int:
    if not rows:
        return 0
    link = telegram_link_for_user(session, user_id)
    if link is None or not link.is_verified or not link.notify_on_review or not link.telegram_chat_id:
        return 0
    notifier = notifier or _notifier_for()
    if not notifier.is_configured():
        return 0
    return notify_review_batch(notifier, link.telegram_chat_id, rows, max_messages=max_messages)
