from app.db.base import Base
from app.models.user import User
from app.models.otp import OneTimeCode, OtpAttempt
from app.models.login_attempt import LoginAttempt
from app.models.refresh_token import RefreshToken
from app.models.security_event import SecurityEvent

__all__ = [
    "Base",
    "User",
    "OneTimeCode",
    "OtpAttempt",
    "LoginAttempt",
    "RefreshToken",
    "SecurityEvent",
]
