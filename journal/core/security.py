# journal/core/security.py
from datetime import datetime, timedelta, timezone

import bcrypt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from journal import models, services
from journal.config import settings
from journal.core.exceptions import ForbiddenException, UnauthorizedException
from journal.core.logging import logger
from journal.database import get_db

# Missing or malformed Authorization header -> 401
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login")


def hash_password(password: str) -> str:
    # Bcrypt requires bytes and only looks at the first 72 of them.
    pwd_bytes = password[:72].encode('utf-8')
    salt = bcrypt.gensalt()
    hashed_password = bcrypt.hashpw(pwd_bytes, salt)
    return hashed_password.decode('utf-8')


def verify_password(plain: str, hashed: str) -> bool:
    plain_bytes = plain[:72].encode('utf-8')
    hashed_bytes = hashed.encode('utf-8')
    try:
        return bcrypt.checkpw(plain_bytes, hashed_bytes)
    except (ValueError, TypeError):
        # Stored hash is corrupted or not a bcrypt hash
        return False


def create_access_token(user: models.User) -> str:
    expire  = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {"sub": str(user.id), "username": user.username, "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> models.User:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise ForbiddenException("Invalid or expired token")

    user = services.get_user_by_id(db, user_id)
    if not user:
        raise UnauthorizedException("User no longer exists")
    return user


def require_admin(current_user: models.User = Depends(get_current_user)) -> models.User:
    if current_user.username != settings.ADMIN_USERNAME:
        logger.warning(f"Non-admin {current_user.username} tried to reach the admin panel")
        raise ForbiddenException("You are not an admin")
    return current_user
