from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.permissions import require_role_at_least
from app.core.rbac import Role
from app.crud.security_event import list_events
from app.db.session import get_db
from app.schemas.user import SecurityEventOut

router = APIRouter()


@router.get("", response_model=List[SecurityEventOut])
def recent_events(
    event_type: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None, ge=1),
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
    _=Depends(require_role_at_least(Role.ADMIN)),
):
    return list_events(db, event_type=event_type, user_id=user_id, limit=limit)
