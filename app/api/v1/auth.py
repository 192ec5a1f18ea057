# app/api/v1/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from app.api.deps import (
    get_current_user,
    get_request_context,
    get_session_issuer,
    read_access_token,
)
from app.core.config import settings
from app.core.errors import AuthError
from app.core.logging import get_logger
from app.core.tokens import decode_access
from app.crud.security_event import RequestContext
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import (
    LoginIn,
    LoginOut,
    OtpChallengeOut,
    ResendOtpIn,
    SessionUser,
    StatusOut,
    VerifyOtpIn,
)
from app.schemas.user import UserOut, to_user_out
from app.services.session_issuer import IssuedSession, SessionIssuer, profile_of

logger = get_logger(__name__)

router = APIRouter()


# ---------- cookies ----------
def _set_session_cookies(response: Response, issued: IssuedSession) -> None:
    response.set_cookie(
        settings.ACCESS_COOKIE_NAME,
        issued.access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )
    # only ever sent to the refresh/logout endpoints
    response.set_cookie(
        settings.REFRESH_COOKIE_NAME,
        issued.refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600,
        path=settings.REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )


def _clear_session_cookies(response: Response) -> None:
    response.delete_cookie(settings.ACCESS_COOKIE_NAME, path="/", httponly=True,
                           secure=settings.COOKIE_SECURE, samesite="strict")
    response.delete_cookie(settings.REFRESH_COOKIE_NAME, path=settings.REFRESH_COOKIE_PATH, httponly=True,
                           secure=settings.COOKIE_SECURE, samesite="strict")


# ---------- endpoints ----------
@router.post("/login", response_model=OtpChallengeOut)
def login(
    body: LoginIn,
    db: Session = Depends(get_db),
    issuer: SessionIssuer = Depends(get_session_issuer),
    ctx: RequestContext = Depends(get_request_context),
):
    challenge = issuer.start_login(db, body.email, body.password, ctx)
    return OtpChallengeOut(otp_token=challenge.otp_token, expires_in=challenge.expires_in())


@router.post("/resend-otp", response_model=OtpChallengeOut)
def resend_otp(
    body: ResendOtpIn,
    db: Session = Depends(get_db),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    challenge = issuer.resend_code(db, body.otp_token)
    return OtpChallengeOut(message="OTP resent to your email", otp_token=challenge.otp_token,
                           expires_in=challenge.expires_in())


@router.post("/verify-otp", response_model=LoginOut)
def verify_otp(
    body: VerifyOtpIn,
    response: Response,
    db: Session = Depends(get_db),
    issuer: SessionIssuer = Depends(get_session_issuer),
    ctx: RequestContext = Depends(get_request_context),
):
    issued = issuer.complete_login(db, body.otp_token, body.otp, ctx)
    _set_session_cookies(response, issued)
    return LoginOut(user=SessionUser(**profile_of(issued.user)))


@router.post("/session/refresh", response_model=StatusOut)
def refresh(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    issuer: SessionIssuer = Depends(get_session_issuer),
    ctx: RequestContext = Depends(get_request_context),
):
    issued = issuer.refresh(db, request.cookies.get(settings.REFRESH_COOKIE_NAME), ctx)
    _set_session_cookies(response, issued)
    return StatusOut(message="Session refreshed")


@router.post("/session/logout", response_model=StatusOut)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    issuer: SessionIssuer = Depends(get_session_issuer),
    ctx: RequestContext = Depends(get_request_context),
):
    token = read_access_token(request)
    claims = None
    if token:
        try:
            claims = decode_access(token)
        except AuthError:
            # expired or forged, nothing to blacklist
            token = None
    try:
        issuer.logout(
            db,
            access_token=token,
            access_claims=claims,
            refresh_token=request.cookies.get(settings.REFRESH_COOKIE_NAME),
            ctx=ctx,
        )
    except Exception:
        logger.exception("logout_failed")
    _clear_session_cookies(response)
    return StatusOut(message="Logged out successfully")


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return to_user_out(user)
