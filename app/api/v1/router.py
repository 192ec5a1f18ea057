# app/api/v1/router.py
from fastapi import APIRouter
from app.api.v1 import auth, security_events, users

api_router = APIRouter()

api_router.include_router(auth.router,            prefix="/auth",            tags=["auth"])
api_router.include_router(users.router,           prefix="/users",           tags=["users"])
api_router.include_router(security_events.router, prefix="/security-events", tags=["security"])
