from __future__ import annotations

import base64
import datetime as dt
import hashlib
import hmac
import os
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from .config import settings
from .models import AccessToken, User
from .utils import ensure_utc, now_utc

PASSWORD_ALGORITHM = "pbkdf2_sha256"
PASSWORD_ITERATIONS = 260_000


def generate_token_value() -> str:
    raw = os.urandom(32)
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def token_hash(token: str) -> str:
    digest = hmac.new(settings.token_secret.encode(), msg=token.encode(), digestmod=hashlib.sha256)
    return digest.hexdigest()


def hash_password(password: str, *, salt: Optional[bytes] = None) -> str:
    salt = salt or os.urandom(16)
    derived = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PASSWORD_ITERATIONS)
    return "$".join(
        [
            PASSWORD_ALGORITHM,
            str(PASSWORD_ITERATIONS),
            base64.b64encode(salt).decode("ascii"),
            base64.b64encode(derived).decode("ascii"),
        ]
    )


def verify_password(password: str, stored: str) -> bool:
    try:
        algorithm, iterations, salt_b64, hash_b64 = stored.split("$")
    except ValueError:
        return False
    if algorithm != PASSWORD_ALGORITHM:
        return False
    salt = base64.b64decode(salt_b64)
    expected = base64.b64decode(hash_b64)
    derived = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, int(iterations))
    return hmac.compare_digest(derived, expected)


def create_token(db: Session, user: User, ttl_hours: Optional[int] = None) -> Tuple[AccessToken, str]:
    token_value = generate_token_value()
    ttl = ttl_hours if ttl_hours is not None else settings.token_ttl_hours
    token = AccessToken(
        token_hash=token_hash(token_value),
        user_id=user.id,
        expires_at=now_utc() + dt.timedelta(hours=ttl),
    )
    db.add(token)
    db.commit()
    db.refresh(token)
    return token, token_value


def lookup_token(db: Session, token_value: str) -> Tuple[Optional[AccessToken], bool]:
    """Return ``(token, expired)``; token is ``None`` when the value is unknown."""
    token = db.query(AccessToken).filter(AccessToken.token_hash == token_hash(token_value)).one_or_none()
    if token is None:
        return None, False
    expires_at = ensure_utc(token.expires_at)
    if expires_at is not None and expires_at <= now_utc():
        return token, True
    token.last_used_at = now_utc()
    db.add(token)
    db.commit()
    return token, False

