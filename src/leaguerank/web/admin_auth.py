"""Admin authentication for the rankings trigger and status endpoints."""

from __future__ import annotations

import hashlib
import hmac
import os
from datetime import datetime
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy import select
from sqlalchemy.orm import Session

from leaguerank.db.models import AdminUser
from leaguerank.db.session import get_db

PBKDF2_ALGORITHM = "sha256"
PBKDF2_ITERATIONS = 390_000
SALT_SIZE = 16

http_basic = HTTPBasic(realm="leaguerank-admin")


def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Hash a plaintext password as 'pbkdf2_sha256$iterations$salt$digest'."""
    if not password:
        raise ValueError("Password cannot be empty")

    salt = os.urandom(SALT_SIZE)
    digest = hashlib.pbkdf2_hmac(PBKDF2_ALGORITHM, password.encode("utf-8"), salt, iterations)
    return f"pbkdf2_{PBKDF2_ALGORITHM}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored_hash: str) -> bool:
    """Check a plaintext password against a stored hash. Malformed hashes never match."""
    try:
        scheme, iter_raw, salt_hex, expected_hex = stored_hash.split("$", 3)
        if scheme != f"pbkdf2_{PBKDF2_ALGORITHM}":
            return False
        actual = hashlib.pbkdf2_hmac(
            PBKDF2_ALGORITHM,
            password.encode("utf-8"),
            bytes.fromhex(salt_hex),
            int(iter_raw),
        )
    except (ValueError, AttributeError):
        return False
    return hmac.compare_digest(actual.hex(), expected_hex)


def _normalize_username(username: str) -> str:
    return username.strip().lower()


def authenticate_admin(db: Session, username: str, password: str) -> Optional[AdminUser]:
    """Return the active admin user when the credentials are valid."""
    admin = db.scalar(select(AdminUser).where(AdminUser.username == _normalize_username(username)))
    if admin is None or not admin.is_active:
        return None
    if not verify_password(password, admin.password_hash):
        return None
    return admin


def create_or_update_admin_user(
    db: Session,
    username: str,
    password: str,
    is_active: bool = True,
) -> AdminUser:
    """Create an admin user, or reset the password of an existing one."""
    normalized = _normalize_username(username)
    if not normalized:
        raise ValueError("Username cannot be empty")

    admin = db.scalar(select(AdminUser).where(AdminUser.username == normalized))
    if admin is None:
        admin = AdminUser(username=normalized, password_hash=hash_password(password), is_active=is_active)
        db.add(admin)
    else:
        admin.password_hash = hash_password(password)
        admin.is_active = is_active
    db.flush()
    return admin


def require_admin(
    credentials: HTTPBasicCredentials = Depends(http_basic),
    db: Session = Depends(get_db),
) -> AdminUser:
    """
    FastAPI dependency guarding administrative endpoints.

    Raises:
        HTTPException: 401 with a Basic challenge when credentials are wrong
    """
    admin = authenticate_admin(db, credentials.username, credentials.password)
    if admin is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    admin.last_login_at = datetime.utcnow()
    db.commit()
    return admin
