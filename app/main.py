import asyncio

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import IntegrityError
from starlette.requests import Request

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.errors import AuthError
from app.core.logging import get_logger, setup_logging
from app.core.maintenance import cleanup_loop
from app.core.revocation import RevokedTokenStore
from app.crud.refresh_token import refresh_ledger
from app.db.session import SessionLocal
from app.services.geo import build_geo_locator
from app.services.mail import Mailer, build_mailer
from app.services.session_issuer import SessionIssuer

setup_logging()
logger = get_logger(__name__)


def create_app(*, mailer: Mailer | None = None, revoked: RevokedTokenStore | None = None,
               issuer: SessionIssuer | None = None, instrument: bool = True) -> FastAPI:
    api = FastAPI(
        title="Support CRM - Auth Core",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        swagger_ui_parameters={"displayRequestDuration": True, "persistAuthorization": True},
    )

    api.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # owned for the whole process, handed to the guard and the issuer by reference
    if revoked is None:
        revoked = issuer.revoked if issuer is not None else RevokedTokenStore()
    api.state.revoked_tokens = revoked
    api.state.session_issuer = issuer if issuer is not None else SessionIssuer(
        revoked=api.state.revoked_tokens,
        mailer=mailer or build_mailer(),
        geo=build_geo_locator(),
        ledger=refresh_ledger,
    )
    api.state.cleanup_task = None

    if instrument:
        # metrics at /metrics (Prometheus)
        Instrumentator().instrument(api).expose(api, include_in_schema=False, should_gzip=True)

    api.include_router(api_router, prefix="/api/v1")

    @api.get("/healthz", tags=["health"])
    def healthz():
        return {"status": "ok"}

    @api.on_event("startup")
    async def startup():
        if settings.RUN_MIGRATIONS_ON_STARTUP:
            from app.db.bootstrap import run_migrations_and_seed
            await asyncio.to_thread(run_migrations_and_seed)
        api.state.cleanup_task = asyncio.create_task(cleanup_loop(
            SessionLocal,
            api.state.session_issuer.ledger,
            api.state.revoked_tokens,
            settings.TOKEN_CLEANUP_INTERVAL_HOURS * 3600,
        ))

    @api.on_event("shutdown")
    async def shutdown():
        task = api.state.cleanup_task
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    @api.exception_handler(AuthError)
    def handle_auth_error(request: Request, exc: AuthError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers())

    @api.exception_handler(IntegrityError)
    def handle_integrity_error(request: Request, exc: IntegrityError):
        logger.warning("integrity_error", path=request.url.path, error=str(getattr(exc, "orig", exc)))
        return JSONResponse(status_code=409, content={"code": "UNIQUE_VIOLATION", "message": "Duplicate record."})

    @api.exception_handler(Exception)
    def handle_unexpected(request: Request, exc: Exception):
        logger.error("unhandled_error", path=request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"code": "INTERNAL_ERROR", "message": "Internal server error."})

    return api


api = create_app()
