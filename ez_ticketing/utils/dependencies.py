"""
FastAPI dependencies for authentication and service collaborators.
"""

from typing import AsyncGenerator
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db_session
from ..models.user import User
from ..services.email_service import EmailService
from ..services.waitlist_service import WaitlistNotifier
from .auth import verify_token
from .exceptions import AuthenticationError, AuthorizationError


# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


async def get_auth_session() -> AsyncGenerator[AsyncSession, None]:
    """Session used only to load the caller, kept apart from the request's unit of work."""
    async with get_db_session() as session:
        yield session


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_auth_session)
) -> User:
    """
    Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer credentials
        db: Database session

    Returns:
        The authenticated user

    Raises:
        AuthenticationError: If the token is missing or invalid, or the user
            is unknown or inactive
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    token_data = verify_token(credentials.credentials)
    if token_data is None or token_data.user_id is None:
        raise AuthenticationError()

    try:
        user_id = UUID(token_data.user_id)
    except ValueError:
        raise AuthenticationError()

    user = await db.get(User, user_id)
    if user is None:
        raise AuthenticationError()

    if not user.is_active:
        raise AuthenticationError("Inactive user")

    return user


async def get_current_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Get the current admin user.

    Raises:
        AuthorizationError: If the user does not hold an admin role
    """
    if not current_user.is_admin:
        raise AuthorizationError("Not enough permissions", required_permission="admin")
    return current_user


def get_waitlist_notifier() -> WaitlistNotifier:
    return WaitlistNotifier()


def get_email_service() -> EmailService:
    return EmailService()
