from enum import Enum
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import DateTime, ForeignKey, JSON, String, Text
from app.db.base import Base


class SecurityEventType(str, Enum):
    login_failed = "login_failed"
    login_locked = "login_locked"
    otp_failed = "otp_failed"
    otp_locked = "otp_locked"
    login_success = "login_success"
    refresh_token_reuse = "refresh_token_reuse"
    logout = "logout"
    sessions_revoked = "sessions_revoked"
    password_changed = "password_changed"


class SecurityEvent(Base):
    """Append-only forensic record."""
    __tablename__ = "security_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(50), index=True)
    ip_address: Mapped[str] = mapped_column(String(45), index=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
