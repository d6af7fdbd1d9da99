from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.orm import Session

from src.db.audit import log_change
from src.db.models import CLASSIFICATION_TYPES, ClassificationRule, Transaction, Wallet


log = logging.getLogger(__name__)

PredicateKind = Literal["address", "exact", "pattern", "direction"]


class RuleSpec(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    contract_address: Optional[str] = None
    method_signature: Optional[str] = None
    token_pattern: Optional[str] = None
    chain: Optional[str] = None
    direction: Optional[Literal["in", "out"]] = None
    classification: str
    priority: int = 0
    is_active: bool = True

    @field_validator("contract_address", "method_signature", "token_pattern", "chain", "description", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("classification")
    @classmethod
    def _known_label(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in CLASSIFICATION_TYPES:
            raise ValueError(f"unknown classification: {v}")
        return v

    @model_validator(mode="after")
    def _has_condition(self) -> "RuleSpec":
        if not any([self.contract_address, self.method_signature, self.token_pattern, self.chain, self.direction]):
            raise ValueError("rule needs at least one condition")
        return self


class RulesFile(BaseModel):
    version: int = 1
    rules: list[RuleSpec] = Field(default_factory=list)


@dataclass(frozen=True)
class Predicate:
    field: str
    kind: PredicateKind
    value: str

    def test(self, tx: Any) -> bool:
        if self.kind == "address":
            return (getattr(tx, self.field, None) or "").lower() == self.value
        if self.kind == "exact":
            return (getattr(tx, self.field, None) or "").strip().lower() == self.value
        if self.kind == "pattern":
            symbols = [getattr(tx, "token_in_symbol", None), getattr(tx, "token_out_symbol", None)]
            return any(_symbol_matches(s, self.value) for s in symbols if s)
        if self.kind == "direction":
            if self.value == "in":
                return getattr(tx, "token_in", None) is not None or getattr(tx, "amount_in", None) is not None
            return getattr(tx, "token_out", None) is not None or getattr(tx, "amount_out", None) is not None
        return False


def _symbol_matches(symbol: str, pattern: str) -> bool:
    s = symbol.lower()
    if "*" in pattern or "?" in pattern:
        return fnmatch.fnmatchcase(s, pattern)
    return pattern in s


@dataclass(frozen=True)
class CompiledRule:
    id: Optional[int]
    name: str
    priority: int
    classification: str
    predicates: tuple[Predicate, ...]

    def matches(self, tx: Any) -> bool:
        # An unconstrained rule would swallow every transaction.
        if not self.predicates:
            return False
        return all(p.test(tx) for p in self.predicates)


def compile_rule(rule: ClassificationRule | RuleSpec) -> CompiledRule:
    preds: list[Predicate] = []
    if rule.contract_address:
        preds.append(Predicate("contract_address", "address", rule.contract_address.strip().lower()))
    if rule.method_signature:
        preds.append(Predicate("method_name", "exact", rule.method_signature.strip().lower()))
    if rule.token_pattern:
        preds.append(Predicate("token_symbol", "pattern", rule.token_pattern.strip().lower()))
    if rule.chain:
        preds.append(Predicate("chain", "exact", rule.chain.strip().lower()))
    if rule.direction:
        preds.append(Predicate("direction", "direction", rule.direction))
    return CompiledRule(
        id=getattr(rule, "id", None),
        name=rule.name,
        priority=int(rule.priority or 0),
        classification=rule.classification,
        predicates=tuple(preds),
    )


def compile_rules(rules: list[ClassificationRule]) -> list[CompiledRule]:
    compiled = [compile_rule(r) for r in rules if r.is_active]
    compiled.sort(key=lambda x: (-x.priority, x.name, x.id or 0))
    return compiled


def load_user_rules(session: Session, user_id: str) -> list[CompiledRule]:
    rows = session.query(ClassificationRule).filter(ClassificationRule.user_id == user_id).all()
    return compile_rules(rows)


def first_match(rules: list[CompiledRule], tx: Any) -> Optional[CompiledRule]:
    for r in rules:
        if r.matches(tx):
            return r
    return None


def apply_rule(tx: Transaction, rule: CompiledRule) -> None:
    tx.classification = rule.classification
    tx.classification_confidence = Decimal("1.0")
    tx.needs_review = False
    tx.user_classified = False
    tx.classified_by_rule_id = rule.id


@dataclass(frozen=True)
class RuleApplyResult:
    scanned: int
    updated: int
    skipped_user: int
    skipped_rule: int

    def as_json(self) -> dict[str, int]:
        return {
            "scanned": self.scanned,
            "updated": self.updated,
            "skipped_user": self.skipped_user,
            "skipped_rule": self.skipped_rule,
        }


def apply_rules_to_db(
    session: Session,
    *,
    user_id: str,
    actor: str,
    wallet_id: Optional[int] = None,
    rebuild: bool = False,
) -> RuleApplyResult:
    """
    Re-classify a user's transactions with their active rules.

    Human labels are never touched. Rows already labelled by a rule are only
    re-evaluated when `rebuild` is set.
    """
    rules = load_user_rules(session, user_id)
    q = session.query(Transaction).join(Wallet, Wallet.id == Transaction.wallet_id).filter(Wallet.user_id == user_id)
    if wallet_id is not None:
        q = q.filter(Transaction.wallet_id == int(wallet_id))

    scanned = updated = skipped_user = skipped_rule = 0
    for tx in q.order_by(Transaction.id.asc()).all():
        scanned += 1
        if tx.user_classified:
            skipped_user += 1
            continue
        if tx.classified_by_rule_id is not None and not rebuild:
            skipped_rule += 1
            continue
        match = first_match(rules, tx)
        if match is None:
            continue
        if tx.classification == match.classification and tx.classified_by_rule_id == match.id and not tx.needs_review:
            continue
        old = {"classification": tx.classification, "rule_id": tx.classified_by_rule_id}
        apply_rule(tx, match)
        updated += 1
        log_change(
            session,
            actor=actor,
            action="RULE_CLASSIFY",
            entity="Transaction",
            entity_id=str(tx.id),
            old=old,
            new={"classification": tx.classification, "rule_id": match.id},
            note=match.name,
        )
    session.flush()
    log.info("Applied %s rules for user %s: %s updated of %s", len(rules), user_id, updated, scanned)
    return RuleApplyResult(scanned=scanned, updated=updated, skipped_user=skipped_user, skipped_rule=skipped_rule)


def create_rule(session: Session, *, user_id: str, spec: RuleSpec) -> ClassificationRule:
    row = ClassificationRule(user_id=user_id, **spec.model_dump())
    session.add(row)
    session.flush()
    return row


def load_rules_file(path: Path) -> list[RuleSpec]:
    data = yaml.safe_load(path.read_text()) or {}
    return RulesFile.model_validate(data).rules


def import_rules(session: Session, *, user_id: str, specs: list[RuleSpec], replace: bool = False) -> int:
    if replace:
        session.query(ClassificationRule).filter(ClassificationRule.user_id == user_id).delete()
    for spec in specs:
        create_rule(session, user_id=user_id, spec=spec)
    return len(specs)


def export_rules_yaml(session: Session, *, user_id: str) -> str:
    rows = (
        session.query(ClassificationRule)
        .filter(ClassificationRule.user_id == user_id)
        .order_by(ClassificationRule.priority.desc(), ClassificationRule.name.asc())
        .all()
    )
    rules = []
    for r in rows:
        d: dict[str, Any] = {"name": r.name, "classification": r.classification, "priority": r.priority}
        for k in ("description", "contract_address", "method_signature", "token_pattern", "chain", "direction"):
            v = getattr(r, k)
            if v:
                d[k] = v
        if not r.is_active:
            d["is_active"] = False
        rules.append(d)
    return yaml.safe_dump({"version": 1, "rules": rules}, sort_keys=False)
