import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.core.timeutil import utc_now

logger = logging.getLogger("tradeflow.audit")


def audit_event(
    action: str,
    user_id: Optional[int],
    payload: Dict[str, Any],
    *,
    db: Session,
    deal_id: int | None = None,
    idempotency_key: str | None = None,
    request_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> Optional[int]:
    """
    Persist an audit event and commit; if the DB write fails, log it instead.

    Always called after the workflow change itself has committed. Returns the
    created audit log id when available.
    """
    if idempotency_key:
        existing = (
            db.query(models.AuditLog)
            .filter(models.AuditLog.idempotency_key == idempotency_key)
            .first()
        )
        if existing is not None:
            return existing.id

    try:
        log = models.AuditLog(
            action=action,
            user_id=user_id,
            deal_id=deal_id,
            payload_json=json.dumps(payload or {}, default=str),
            idempotency_key=idempotency_key,
            request_id=request_id,
            ip=ip,
            user_agent=user_agent,
        )
        db.add(log)
        db.commit()
        return log.id
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "audit_write_failed",
            extra={
                "action": action,
                "user_id": user_id,
                "deal_id": deal_id,
                "payload": payload,
                "timestamp": utc_now().isoformat(),
                "error": str(exc),
            },
        )
        return None
