# app/schemas/auth.py
from typing import Literal
from pydantic import BaseModel, Field


class LoginIn(BaseModel):
    email: str = Field(min_length=1, max_length=160)
    password: str = Field(min_length=1, max_length=256)


class OtpChallengeOut(BaseModel):
    message: str = "OTP sent to your email"
    otp_token: str
    expires_in: int


class VerifyOtpIn(BaseModel):
    otp_token: str = Field(min_length=1)
    otp: str = Field(min_length=1, max_length=12)


class ResendOtpIn(BaseModel):
    otp_token: str = Field(min_length=1)


class SessionUser(BaseModel):
    id: int
    name: str
    email: str
    role: str


class LoginOut(BaseModel):
    user: SessionUser


class StatusOut(BaseModel):
    status: Literal["ok"] = "ok"
    message: str | None = None
