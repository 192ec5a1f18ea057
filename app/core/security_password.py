# app/core/security_password.py
from __future__ import annotations
from typing import Tuple
from passlib.context import CryptContext

pwd_context = CryptContext(
    schemes=["argon2", "bcrypt_sha256", "bcrypt"],
    deprecated="auto",
    argon2__time_cost=2,
    argon2__memory_cost=19456,
    argon2__parallelism=1,
)

# compared against when the account does not exist, so both paths cost one hash
_DUMMY_HASH = pwd_context.hash("not-a-real-password")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_and_maybe_upgrade(plain: str, stored_hash: str | None) -> Tuple[bool, str | None]:
    if not stored_hash:
        pwd_context.verify(plain, _DUMMY_HASH)
        return False, None
    try:
        ok = pwd_context.verify(plain, stored_hash)
    except ValueError:
        # unknown or corrupt hash format
        return False, None
    if not ok:
        return False, None
    if pwd_context.needs_update(stored_hash):
        return True, pwd_context.hash(plain)
    return True, None

def burn_hash_time(plain: str) -> None:
    pwd_context.verify(plain, _DUMMY_HASH)
