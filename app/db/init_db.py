# app/db/init_db.py
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.core.rbac import Role
from app.crud.user import user_crud

logger = get_logger(__name__)


def init_db(db: Session) -> None:
    """Seed the reserved super-admin account once, when a password is configured."""
    if user_crud.find_by_email(db, settings.SUPER_ADMIN_EMAIL):
        return
    if not settings.SUPER_ADMIN_PASSWORD:
        logger.warning("super_admin_not_seeded", reason="SUPER_ADMIN_PASSWORD not set")
        return
    user_crud.create(
        db,
        name="Super Admin",
        email=settings.SUPER_ADMIN_EMAIL,
        password=settings.SUPER_ADMIN_PASSWORD,
        role=Role.SUPER_ADMIN,
    )
    logger.info("super_admin_seeded")
