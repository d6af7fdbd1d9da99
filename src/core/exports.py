from __future__ import annotations

import csv
import datetime as dt
import io
from decimal import Decimal
from typing import Any, Literal

from sqlalchemy.orm import Session

from src.core.tax_engine import disposals_for_year, tax_summary
from src.utils.money import usd_str


ReportType = Literal["form8949", "schedule-d", "income"]
REPORT_TYPES: tuple[str, ...] = ("form8949", "schedule-d", "income")

FORM_8949_HEADERS = ["Description", "Date Acquired", "Date Sold", "Proceeds", "Cost Basis", "Gain or Loss"]
SCHEDULE_D_HEADERS = ["Category", "Short-Term Gain", "Short-Term Loss", "Long-Term Gain", "Long-Term Loss", "Net"]
INCOME_HEADERS = ["Type", "Amount USD"]


class UnknownReportError(ValueError):
    pass


def _irs_date(value: dt.datetime) -> str:
    return value.strftime("%m/%d/%Y")


def form8949_rows(session: Session, *, user_id: str, year: int) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for d in disposals_for_year(session, user_id=user_id, year=year):
        amount = format(Decimal(d.amount).normalize(), "f")
        rows.append(
            {
                "Description": f"{amount} {d.token_symbol or d.token}",
                "Date Acquired": _irs_date(d.tax_lot.acquired_at) if d.tax_lot is not None else "VARIOUS",
                "Date Sold": _irs_date(d.disposed_at),
                "Proceeds": usd_str(d.proceeds_usd),
                "Cost Basis": usd_str(d.cost_basis_usd),
                "Gain or Loss": usd_str(d.gain_loss_usd),
            }
        )
    return rows


def schedule_d_rows(session: Session, *, user_id: str, year: int) -> list[dict[str, Any]]:
    s = tax_summary(session, user_id=user_id, year=year)
    return [
        {
            "Category": "Summary",
            "Short-Term Gain": s.short_term_gains,
            "Short-Term Loss": s.short_term_losses,
            "Long-Term Gain": s.long_term_gains,
            "Long-Term Loss": s.long_term_losses,
            "Net": s.net_gain_loss,
        }
    ]


def income_rows(session: Session, *, user_id: str, year: int) -> list[dict[str, Any]]:
    s = tax_summary(session, user_id=user_id, year=year)
    rows = [{"Type": label, "Amount USD": amt} for label, amt in s.income_by_type.items()]
    rows.append({"Type": "Total Income", "Amount USD": s.total_income})
    return rows


def render_report(session: Session, *, user_id: str, year: int, report_type: str) -> tuple[list[str], list[dict[str, Any]]]:
    if report_type == "form8949":
        return FORM_8949_HEADERS, form8949_rows(session, user_id=user_id, year=year)
    if report_type == "schedule-d":
        return SCHEDULE_D_HEADERS, schedule_d_rows(session, user_id=user_id, year=year)
    if report_type == "income":
        return INCOME_HEADERS, income_rows(session, user_id=user_id, year=year)
    raise UnknownReportError(f"Unknown report type '{report_type}'. Valid: {', '.join(REPORT_TYPES)}")


def rows_to_csv(headers: list[str], rows: list[dict[str, Any]]) -> str:
    buf = io.StringIO()
    w = csv.DictWriter(buf, fieldnames=headers, lineterminator="\n")
    w.writeheader()
    for r in rows:
        w.writerow(r)
    return buf.getvalue()


def report_filename(report_type: str, year: int) -> str:
    return f"{report_type}-{year}.csv"
