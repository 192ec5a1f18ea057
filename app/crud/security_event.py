from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.core.tokens import utcnow
from app.models.security_event import SecurityEvent, SecurityEventType

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestContext:
    ip_address: str = "unknown"
    user_agent: Optional[str] = None


def record_event(db: Session, event_type: SecurityEventType, ctx: RequestContext, *,
                 user_id: Optional[int] = None, email: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None, now: Optional[datetime] = None) -> None:
    """Persist a security event. Store failures are logged and swallowed."""
    logger.warning(
        "security_event",
        category="security",
        event_type=event_type.value,
        ip=ctx.ip_address,
        user_id=user_id,
    )
    try:
        db.add(SecurityEvent(
            event_type=event_type.value,
            ip_address=(ctx.ip_address or "unknown")[:45],
            user_agent=(ctx.user_agent or None) and ctx.user_agent[:500],
            user_id=user_id,
            email=email,
            details=details or None,
            created_at=now or utcnow(),
        ))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("security_event_write_failed", event_type=event_type.value)


def list_events(db: Session, *, event_type: Optional[str] = None, user_id: Optional[int] = None,
                limit: int = 200) -> List[SecurityEvent]:
    stmt = select(SecurityEvent)
    if event_type:
        stmt = stmt.where(SecurityEvent.event_type == event_type)
    if user_id is not None:
        stmt = stmt.where(SecurityEvent.user_id == user_id)
    stmt = stmt.order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.desc()).limit(limit)
    return list(db.scalars(stmt).all())
