"""
Authentication service with JWT token management.

App tokens are issued after the external identity exchange; this service
signs, verifies and refreshes them and keeps the local user table in sync
with verified identities.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models.user import User
from .errors import AuthenticationError, FeedbackServiceError

logger = logging.getLogger(__name__)


ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class Identity:
    """A verified caller."""
    uid: str
    email: Optional[str] = None


class AuthService:
    """Service for authentication operations."""

    @staticmethod
    def _encode(payload: dict, secret: str, expires_delta: timedelta) -> str:
        now = datetime.now(timezone.utc)
        to_encode = dict(payload, iat=now, exp=now + expires_delta)
        return jwt.encode(to_encode, secret, algorithm=settings.jwt_algorithm)

    @staticmethod
    def create_access_token(uid: str, email: Optional[str] = None, expires_delta: Optional[timedelta] = None) -> str:
        """Create a JWT access token."""
        return AuthService._encode(
            {"uid": uid, "email": email, "type": ACCESS_TOKEN_TYPE},
            settings.jwt_secret_key,
            expires_delta or timedelta(minutes=settings.access_token_expire_minutes),
        )

    @staticmethod
    def create_refresh_token(uid: str, email: Optional[str] = None, expires_delta: Optional[timedelta] = None) -> str:
        """Create a JWT refresh token. Requires the refresh secret."""
        if not settings.jwt_refresh_secret_key:
            raise FeedbackServiceError("Server configuration error.")
        return AuthService._encode(
            {"uid": uid, "email": email, "type": REFRESH_TOKEN_TYPE},
            settings.jwt_refresh_secret_key,
            expires_delta or timedelta(days=settings.refresh_token_expire_days),
        )

    @staticmethod
    def verify_access_token(token: Optional[str]) -> Identity:
        """
        Verify an app access token.

        Raises:
            AuthenticationError: missing, malformed, expired or wrongly signed token
        """
        if not token:
            raise AuthenticationError("No token provided, authorization denied.")
        try:
            payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
        except ExpiredSignatureError:
            raise AuthenticationError("Token expired. Please re-login.")
        except JWTError:
            raise AuthenticationError("Token is not valid.")

        uid = payload.get("uid")
        if not uid or payload.get("type", ACCESS_TOKEN_TYPE) != ACCESS_TOKEN_TYPE:
            raise AuthenticationError("Token is not valid.")
        return Identity(uid=str(uid), email=payload.get("email"))

    @staticmethod
    def refresh_access_token(refresh_token: str) -> Tuple[str, int, str]:
        """
        Exchange a refresh token for a new access token.

        Returns:
            (access token, lifetime in seconds, uid)
        """
        if not settings.jwt_refresh_secret_key:
            logger.error("JWT_REFRESH_SECRET_KEY is not set, cannot refresh tokens")
            raise FeedbackServiceError("Server configuration error.")
        try:
            payload = jwt.decode(refresh_token, settings.jwt_refresh_secret_key, algorithms=[settings.jwt_algorithm])
        except JWTError:
            raise AuthenticationError("Invalid or expired refresh token.")

        uid = payload.get("uid")
        if not uid or payload.get("type") != REFRESH_TOKEN_TYPE:
            raise AuthenticationError("Invalid or expired refresh token.")

        access_token = AuthService.create_access_token(str(uid), payload.get("email"))
        return access_token, settings.access_token_expire_minutes * 60, str(uid)

    @staticmethod
    async def sync_user(db: AsyncSession, identity: Identity) -> Tuple[User, bool]:
        """
        Make sure a local user row exists for a verified identity.

        Returns:
            (user, created) where created is True on first sight
        """
        user = await db.get(User, identity.uid)
        if user is not None:
            if identity.email and user.email != identity.email:
                user.email = identity.email
                await db.commit()
            return user, False

        user = User(uid=identity.uid, email=identity.email, is_admin=False, account_type="free")
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent sync created the row first
            await db.rollback()
            return await db.get(User, identity.uid), False
        await db.refresh(user)

        logger.info(f"Created local user record for {identity.uid}")
        return user, True


# Singleton instance
auth_service = AuthService()
