import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..models.models import AuditLog, Condition, Transaction, utcnow


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    return value


def _encode(data: Any) -> Optional[str]:
    if data is None:
        return None
    return json.dumps(_jsonable(data), default=str, sort_keys=True)


def _decode(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def audit_log(
    db_session: Session,
    actor_user_id: Optional[int],
    action: str,
    target_entity_type: Optional[str] = None,
    target_entity_id: Optional[str] = None,
    before: Any = None,
    after: Any = None,
) -> AuditLog:
    """Record a state change on an offer, transaction, condition or payment.

    The row joins the caller's unit of work, so it is committed together with
    the change it describes or discarded with it. Money is stored as a
    two-decimal string and datetimes in ISO format.
    """
    entry = AuditLog(
        timestamp=utcnow(),
        actor_user_id=actor_user_id,
        action=action,
        target_entity_type=target_entity_type,
        target_entity_id=target_entity_id,
        before=_encode(before),
        after=_encode(after),
    )
    db_session.add(entry)
    db_session.flush()
    return entry


def transaction_history(db_session: Session, transaction: Transaction) -> List[Dict[str, Any]]:
    """Audit entries for a transaction and its conditions, oldest first."""
    condition_ids = [
        str(condition_id)
        for (condition_id,) in db_session.query(Condition.id).filter(Condition.transaction_id == transaction.id)
    ]
    criteria = [
        and_(AuditLog.target_entity_type == "Transaction", AuditLog.target_entity_id == str(transaction.id))
    ]
    if condition_ids:
        criteria.append(
            and_(AuditLog.target_entity_type == "Condition", AuditLog.target_entity_id.in_(condition_ids))
        )
    rows = db_session.query(AuditLog).filter(or_(*criteria)).order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
    return [
        {
            "id": row.id,
            "timestamp": row.timestamp,
            "actor_user_id": row.actor_user_id,
            "action": row.action,
            "target_entity_type": row.target_entity_type,
            "target_entity_id": row.target_entity_id,
            "before": _decode(row.before),
            "after": _decode(row.after),
        }
        for row in rows
    ]
