import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import AuthenticationFailed, PasswordChangeRequired, ValidationError
from ..models.models import User
from ..schemas.enums import UserStatus
from ..services.permissions import Actor


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        # Unrecognized hash format
        return False


def validate_password_strength(password: str, field: str = "password") -> None:
    if not password or len(password) < 8:
        raise ValidationError(field, "Password must be at least 8 characters long.")
    if not re.search(r"[a-z]", password) or not re.search(r"[A-Z]", password):
        raise ValidationError(field, "Password must contain both upper- and lower-case letters.")
    if not re.search(r"\d", password):
        raise ValidationError(field, "Password must contain at least one digit.")


def create_access_token(user: User) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=settings.jwt_ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationFailed("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationFailed("Invalid token")


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None:
        raise AuthenticationFailed("Not authenticated")
    payload = decode_token(creds.credentials)
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise AuthenticationFailed("Invalid subject")
    user = db.get(User, user_uuid)
    # Tokens outlive status changes; re-check on every request
    if user is None or user.status != UserStatus.active.value:
        raise AuthenticationFailed("User not active")
    return user


def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    """Actor for every endpoint behind the forced-password-change gate."""
    if user.force_password_change_on_next_login:
        raise PasswordChangeRequired()
    return Actor.from_user(user)
