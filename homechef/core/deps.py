"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator
from uuid import UUID

import jwt
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from homechef.core.errors import Forbidden, Unauthenticated
from homechef.core.security import decode_access_token
from homechef.db.enums import Role
from homechef.db.session import SessionLocal
from homechef.schemas.auth import Principal


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def principal_from_token(token: str) -> Principal:
    """
    Verify a bearer token and build the caller identity.

    Raises:
        Unauthenticated: token invalid, expired, or carries an unknown role
    """
    try:
        payload = decode_access_token(token)
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid or expired token")

    role = payload.get("role", "")
    if not Role.has_value(role):
        raise Unauthenticated(f"Unknown role '{role}'")
    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise Unauthenticated("Token subject is not a user id")
    return Principal(user_id=user_id, role=Role(role))


def get_current_principal(request: Request) -> Principal:
    """
    Authenticated principal from the Authorization: Bearer header.

    Raises:
        Unauthenticated: header missing or token invalid
    """
    token = bearer_token(request)
    if not token:
        raise Unauthenticated("Not authenticated")
    return principal_from_token(token)


def require_roles(*roles: Role):
    """
    Dependency factory that only lets the listed roles through.

    Usage:
        @router.get("/x", dependencies=[Depends(require_roles(Role.ADMIN))])
    """

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise Forbidden(
                f"Role '{principal.role.value}' may not perform this action"
            )
        return principal

    return dependency
