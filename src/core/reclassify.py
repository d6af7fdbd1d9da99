from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Session

from src.db.audit import log_change
from src.db.models import CLASSIFICATION_TYPES, Transaction


class InvalidClassificationError(ValueError):
    pass


def normalize_label(label: str) -> str:
    v = (label or "").strip().lower()
    if v not in CLASSIFICATION_TYPES:
        raise InvalidClassificationError(f"Unknown classification '{label}'. Valid: {', '.join(CLASSIFICATION_TYPES)}")
    return v


def classify_transaction(session: Session, tx: Transaction, label: str, *, actor: str, source: str = "api") -> Transaction:
    """Record a human decision. Always wins over heuristics and rules."""
    new_label = normalize_label(label)
    old = {
        "classification": tx.classification,
        "needs_review": tx.needs_review,
        "user_classified": tx.user_classified,
        "rule_id": tx.classified_by_rule_id,
    }
    tx.classification = new_label
    tx.classification_confidence = Decimal("1.0")
    tx.needs_review = False
    tx.user_classified = True
    tx.classified_by_rule_id = None
    log_change(
        session,
        actor=actor,
        action="CLASSIFY",
        entity="Transaction",
        entity_id=str(tx.id),
        old=old,
        new={"classification": new_label, "user_classified": True},
        note=source,
    )
    session.flush()
    return tx
