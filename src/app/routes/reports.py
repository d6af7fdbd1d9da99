from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from src.app.auth import require_user
from src.app.db import db_session
from src.app.utils import error
from src.core.exports import UnknownReportError, render_report, report_filename, rows_to_csv
from src.core.tax_engine import tax_summary
from src.db.queries import get_or_create_settings


router = APIRouter(prefix="/api/reports", tags=["reports"])


def _year(session: Session, user_id: str, year: Optional[int]) -> int:
    if year is not None:
        return year
    return int(get_or_create_settings(session, user_id).tax_year)


@router.get("/summary")
def summary(
    year: Optional[int] = Query(default=None, ge=2009, le=2100),
    session: Session = Depends(db_session),
    user_id: str = Depends(require_user),
):
    return tax_summary(session, user_id=user_id, year=_year(session, user_id, year)).as_json()


@router.get("/{report_type}")
def export_report(
    report_type: str,
    year: Optional[int] = Query(default=None, ge=2009, le=2100),
    session: Session = Depends(db_session),
    user_id: str = Depends(require_user),
):
    y = _year(session, user_id, year)
    try:
        headers, rows = render_report(session, user_id=user_id, year=y, report_type=report_type)
    except UnknownReportError as e:
        return JSONResponse(status_code=400, content=error(str(e)))
    return Response(
        content=rows_to_csv(headers, rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{report_filename(report_type, y)}"'},
    )
