from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

app = typer.Typer(help="ChainTax CLI")


def _setup() -> None:
    load_dotenv()
    logging.basicConfig(level=(os.environ.get("LOG_LEVEL") or "INFO").upper(), format="%(levelname)s %(name)s: %(message)s")


def _user(user: Optional[str]) -> str:
    from src.app.auth import default_user_id

    return user or default_user_id()


def _wallet_or_exit(session, user_id: str, wallet_id: int):
    from src.db.queries import get_wallet

    w = get_wallet(session, user_id, wallet_id)
    if w is None:
        typer.echo(f"Wallet {wallet_id} not found for user {user_id}", err=True)
        raise typer.Exit(code=2)
    return w


@app.command("init-db")
def init_db_cmd():
    _setup()
    from src.db.init_db import init_db

    init_db()
    typer.echo("Database initialized.")


@app.command("add-wallet")
def add_wallet_cmd(
    address: str = typer.Option(...),
    chain: str = typer.Option("ethereum"),
    label: str = typer.Option("", help="Display label"),
    user: Optional[str] = typer.Option(None, help="User id (defaults to APP_USER_DEFAULT)"),
):
    _setup()
    from src.db.audit import log_change
    from src.db.models import SUPPORTED_CHAINS, Wallet
    from src.db.session import get_session

    c = chain.strip().lower()
    if c not in SUPPORTED_CHAINS:
        typer.echo(f"Unsupported chain {chain}. Supported: {', '.join(SUPPORTED_CHAINS)}", err=True)
        raise typer.Exit(code=2)
    user_id = _user(user)
    with get_session() as session:
        w = Wallet(user_id=user_id, address=address.strip(), chain=c, label=label or None)
        session.add(w)
        session.flush()
        log_change(session, actor="cli", action="CREATE", entity="Wallet", entity_id=str(w.id), old=None, new={"address": w.address, "chain": c})
        session.commit()
        typer.echo(json.dumps({"id": w.id, "address": w.address, "chain": w.chain}))


@app.command("sync")
def sync_cmd(
    wallet_id: int = typer.Option(..., help="Wallet id"),
    user: Optional[str] = typer.Option(None),
):
    _setup()
    from src.adapters.base import ProviderError
    from src.core.sync_runner import SyncConfigError, run_sync
    from src.db.session import get_session

    user_id = _user(user)
    with get_session() as session:
        w = _wallet_or_exit(session, user_id, wallet_id)
        try:
            res = run_sync(session, wallet=w, actor="cli")
        except (SyncConfigError, ProviderError) as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=2)
        typer.echo(json.dumps(res.as_json(), indent=2))
        if res.status != "SUCCESS":
            raise typer.Exit(code=1)


@app.command("apply-rules")
def apply_rules_cmd(
    wallet_id: Optional[int] = typer.Option(None),
    rebuild: bool = typer.Option(False, help="Re-evaluate rows already labelled by a rule"),
    user: Optional[str] = typer.Option(None),
):
    _setup()
    from src.core.rules_engine import apply_rules_to_db
    from src.db.session import get_session

    with get_session() as session:
        res = apply_rules_to_db(session, user_id=_user(user), actor="cli", wallet_id=wallet_id, rebuild=rebuild)
        session.commit()
        typer.echo(json.dumps(res.as_json(), indent=2))


@app.command("classify")
def classify_cmd(
    tx_id: int = typer.Argument(...),
    label: str = typer.Argument(...),
    user: Optional[str] = typer.Option(None),
):
    _setup()
    from src.core.reclassify import InvalidClassificationError, classify_transaction
    from src.db.queries import get_transaction
    from src.db.session import get_session

    user_id = _user(user)
    with get_session() as session:
        tx = get_transaction(session, user_id, tx_id)
        if tx is None:
            typer.echo(f"Transaction {tx_id} not found", err=True)
            raise typer.Exit(code=2)
        try:
            classify_transaction(session, tx, label, actor="cli", source="cli")
        except InvalidClassificationError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=2)
        session.commit()
        typer.echo(f"Transaction {tx.id} classified as {tx.classification}")


@app.command("process-lots")
def process_lots_cmd(
    wallet_id: int = typer.Option(...),
    method: Optional[str] = typer.Option(None, help="fifo|lifo|hifo|specific_id (defaults to settings)"),
    user: Optional[str] = typer.Option(None),
):
    _setup()
    from src.core.config import load_config
    from src.core.lot_engine import process_wallet_lots
    from src.db.session import get_session

    cfg, _path = load_config()
    user_id = _user(user)
    with get_session() as session:
        w = _wallet_or_exit(session, user_id, wallet_id)
        res = process_wallet_lots(session, wallet=w, actor="cli", method=method, cfg=cfg.lots)
        session.commit()
        typer.echo(json.dumps(res.as_json(), indent=2))


@app.command("summary")
def summary_cmd(
    year: int = typer.Option(...),
    as_json: bool = typer.Option(False, "--json", help="Print the full summary as JSON"),
    user: Optional[str] = typer.Option(None),
):
    _setup()
    from src.core.tax_engine import tax_summary
    from src.db.session import get_session
    from src.utils.money import format_usd

    with get_session() as session:
        s = tax_summary(session, user_id=_user(user), year=year)
    if as_json:
        typer.echo(json.dumps(s.as_json(), indent=2))
        return
    typer.echo(f"Tax year {s.year}: {s.total_disposals} disposals, {s.needs_review_count} transactions need review")
    for label, value in [
        ("Short-term gains", s.short_term_gains),
        ("Short-term losses", s.short_term_losses),
        ("Long-term gains", s.long_term_gains),
        ("Long-term losses", s.long_term_losses),
        ("Net gain/loss", s.net_gain_loss),
        ("Income", s.total_income),
    ]:
        typer.echo(f"  {label:<18} {format_usd(value):>14}")


@app.command("report")
def report_cmd(
    report_type: str = typer.Argument(..., help="form8949|schedule-d|income"),
    year: int = typer.Option(...),
    out: Optional[Path] = typer.Option(None, dir_okay=False, help="Write CSV here instead of stdout"),
    user: Optional[str] = typer.Option(None),
):
    _setup()
    from src.core.exports import UnknownReportError, render_report, rows_to_csv
    from src.db.session import get_session

    with get_session() as session:
        try:
            headers, rows = render_report(session, user_id=_user(user), year=year, report_type=report_type)
        except UnknownReportError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=2)
    text = rows_to_csv(headers, rows)
    if out is None:
        typer.echo(text, nl=False)
    else:
        out.write_text(text)
        typer.echo(f"Wrote {len(rows)} rows to {out}")


@app.command("import-rules")
def import_rules_cmd(
    path: Path = typer.Option(..., exists=True, dir_okay=False),
    replace: bool = typer.Option(False, help="Delete existing rules first"),
    user: Optional[str] = typer.Option(None),
):
    _setup()
    from src.core.rules_engine import import_rules, load_rules_file
    from src.db.session import get_session

    specs = load_rules_file(path)
    with get_session() as session:
        n = import_rules(session, user_id=_user(user), specs=specs, replace=replace)
        session.commit()
    typer.echo(f"Imported {n} rules from {path}")


@app.command("export-rules")
def export_rules_cmd(
    out: Optional[Path] = typer.Option(None, dir_okay=False),
    user: Optional[str] = typer.Option(None),
):
    _setup()
    from src.core.rules_engine import export_rules_yaml
    from src.db.session import get_session

    with get_session() as session:
        text = export_rules_yaml(session, user_id=_user(user))
    if out is None:
        typer.echo(text, nl=False)
    else:
        out.write_text(text)
        typer.echo(f"Wrote rules to {out}")


@app.command("telegram-webhook")
def telegram_webhook_cmd(
    url: Optional[str] = typer.Option(None, help="Public https URL of /api/telegram/webhook"),
    delete: bool = typer.Option(False, help="Remove the webhook instead"),
):
    _setup()
    from src.adapters.base import ProviderError
    from src.adapters.telegram.client import TelegramClient

    client = TelegramClient()
    try:
        if delete:
            res = client.delete_webhook()
        elif url:
            res = client.set_webhook(url)
        else:
            typer.echo("Pass --url or --delete", err=True)
            raise typer.Exit(code=2)
    except ProviderError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(res, indent=2))


if __name__ == "__main__":
    app()
