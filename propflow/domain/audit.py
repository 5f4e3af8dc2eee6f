# propflow/domain/audit.py
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import AuditEvent


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    if v is None:
        return None
    return json.dumps(v, sort_keys=True, default=str)


def audit_write(
    db: Session,
    *,
    landlord_id: Optional[int],
    actor: Optional[str],
    action: str,
    entity_type: str,
    entity_id: Any,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    """
    Append an audit row.

    Does NOT commit, so services can bundle the audit row with the change it
    describes in one transaction.
    """
    row = AuditEvent(
        landlord_id=landlord_id,
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_dumps(before),
        after_json=_dumps(after),
        created_at=datetime.now(timezone.utc).replace(tzinfo=None),
    )
    db.add(row)
    return row


def audit_trail(db: Session, *, entity_type: str, entity_id: Any) -> list[AuditEvent]:
    q = (
        select(AuditEvent)
        .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == str(entity_id))
        .order_by(AuditEvent.id.asc())
    )
    return list(db.scalars(q).all())
