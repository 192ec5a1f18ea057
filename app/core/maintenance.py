# app/core/maintenance.py
from __future__ import annotations

import asyncio
from typing import Callable

from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.core.revocation import RevokedTokenStore
from app.crud.refresh_token import RefreshTokenLedger

logger = get_logger(__name__)


def run_cleanup_once(session_factory: Callable[[], Session], ledger: RefreshTokenLedger,
                     revoked: RevokedTokenStore) -> int:
    """Delete dead refresh tokens and expired blacklist entries. Errors are logged, not raised."""
    removed = 0
    try:
        with session_factory() as db:
            removed = ledger.cleanup(db)
        purged = revoked.purge_expired()
        logger.info("token_cleanup", refresh_tokens_removed=removed, access_entries_purged=purged)
    except Exception:
        logger.exception("token_cleanup_failed")
    return removed


async def cleanup_loop(session_factory: Callable[[], Session], ledger: RefreshTokenLedger,
                       revoked: RevokedTokenStore, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        await asyncio.to_thread(run_cleanup_once, session_factory, ledger, revoked)
