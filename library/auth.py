"""Authentication and authorization helpers.

Librarians log in with a username and password checked against the bcrypt
hash stored in ``users.password``.  A successful login returns a signed JWT
carrying ``{"id", "role"}``; protected endpoints expect it as
``Authorization: Bearer <token>`` and declare the roles they accept through
``require_roles``.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Optional, Sequence

import bcrypt
import jwt
from fastapi import Depends, Header
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from library import models
from library.config import Settings, get_settings
from library.exceptions import (
    DatabaseError,
    NotAuthenticatedError,
    PermissionDeniedError,
)
from library.schemas import Identity

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


def authenticate_user(db: Session, username: str, password: str) -> Optional[models.User]:
    """Return the user if the username and password are correct, else None."""
    try:
        user = db.query(models.User).filter(models.User.username == username).first()
    except SQLAlchemyError as e:
        raise DatabaseError("login", str(e))
    if user is None or not check_password(password, user.password):
        return None
    return user


def create_access_token(user: models.User, settings: Settings) -> str:
    claims = {"id": user.id, "role": user.role}
    if settings.token_expire_minutes:
        claims["exp"] = datetime.now(timezone.utc) + timedelta(
            minutes=settings.token_expire_minutes
        )
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> Identity:
    try:
        claims = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.InvalidTokenError as e:
        logger.warning(f"Token verification failed: {e}")
        raise PermissionDeniedError("Invalid token", error=str(e) or type(e).__name__)

    try:
        return Identity(id=claims["id"], role=claims["role"])
    except (KeyError, ValidationError):
        raise PermissionDeniedError(
            "Invalid token", error="Token is missing required claims"
        )


def verify_credential(
    authorization: Optional[str], roles: Sequence[models.Role], settings: Settings
) -> Identity:
    """Turn an ``Authorization`` header into an identity allowed by ``roles``.

    An empty ``roles`` accepts any verified caller.
    """
    if not authorization:
        raise NotAuthenticatedError("No Authorization header")

    parts = authorization.split(" ")
    token = parts[1] if len(parts) > 1 else None
    if not token:
        raise NotAuthenticatedError("No token provided")

    identity = decode_access_token(token, settings)

    if roles and not identity.has_role(*roles):
        raise PermissionDeniedError(
            f"Access denied for role '{identity.role}'",
            required=[r.value for r in roles],
        )
    return identity


def require_roles(*roles: models.Role):
    """Dependency factory for role-gated endpoints."""

    def dependency(
        authorization: Optional[str] = Header(None),
        settings: Settings = Depends(get_settings),
    ) -> Identity:
        return verify_credential(authorization, roles, settings)

    return dependency
