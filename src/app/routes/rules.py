from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from src.app.auth import require_user
from src.app.db import db_session
from src.app.utils import error, row_to_dict
from src.core.rules_engine import RuleSpec, apply_rules_to_db, create_rule
from src.db.audit import log_change
from src.db.models import ClassificationRule
from src.db.queries import rules_for_user


router = APIRouter(prefix="/api/rules", tags=["rules"])

_SPEC_FIELDS = tuple(RuleSpec.model_fields)


class ApplyIn(BaseModel):
    wallet_id: Optional[int] = None
    rebuild: bool = False


def _rule_spec_dict(r: ClassificationRule) -> dict[str, Any]:
    return {k: getattr(r, k) for k in _SPEC_FIELDS}


@router.get("")
def list_rules(session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    rows = rules_for_user(session, user_id).order_by(ClassificationRule.priority.desc(), ClassificationRule.name.asc()).all()
    return [row_to_dict(r) for r in rows]


@router.post("", status_code=201)
def create_rule_route(body: RuleSpec, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    row = create_rule(session, user_id=user_id, spec=body)
    log_change(session, actor=user_id, action="CREATE", entity="ClassificationRule", entity_id=str(row.id), old=None, new=body.model_dump())
    session.commit()
    return row_to_dict(row)


@router.post("/apply")
def apply_rules_route(body: ApplyIn, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    res = apply_rules_to_db(session, user_id=user_id, actor=user_id, wallet_id=body.wallet_id, rebuild=body.rebuild)
    session.commit()
    return res.as_json()


@router.get("/{rule_id}")
def get_rule(rule_id: int, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    row = rules_for_user(session, user_id).filter(ClassificationRule.id == rule_id).one_or_none()
    if row is None:
        return JSONResponse(status_code=404, content=error(f"rule {rule_id} not found"))
    return row_to_dict(row)


@router.patch("/{rule_id}")
def update_rule(
    rule_id: int, body: dict[str, Any], session: Session = Depends(db_session), user_id: str = Depends(require_user)
):
    row = rules_for_user(session, user_id).filter(ClassificationRule.id == rule_id).one_or_none()
    if row is None:
        return JSONResponse(status_code=404, content=error(f"rule {rule_id} not found"))
    old = _rule_spec_dict(row)
    merged = old | {k: v for k, v in body.items() if k in _SPEC_FIELDS}
    try:
        spec = RuleSpec.model_validate(merged)
    except ValidationError as e:
        return JSONResponse(status_code=422, content=error("invalid rule", detail=e.errors(include_url=False, include_context=False, include_input=False)))
    for k, v in spec.model_dump().items():
        setattr(row, k, v)
    log_change(session, actor=user_id, action="UPDATE", entity="ClassificationRule", entity_id=str(row.id), old=old, new=spec.model_dump())
    session.commit()
    return row_to_dict(row)


@router.delete("/{rule_id}")
def delete_rule(rule_id: int, session: Session = Depends(db_session), user_id: str = Depends(require_user)):
    row = rules_for_user(session, user_id).filter(ClassificationRule.id == rule_id).one_or_none()
    if row is None:
        return JSONResponse(status_code=404, content=error(f"rule {rule_id} not found"))
    old = _rule_spec_dict(row)
    session.delete(row)
    log_change(session, actor=user_id, action="DELETE", entity="ClassificationRule", entity_id=str(rule_id), old=old, new=None)
    session.commit()
    return {"ok": True}
