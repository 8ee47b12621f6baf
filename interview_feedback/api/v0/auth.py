"""
Authentication API endpoints.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ...config import settings
from ...database import get_db
from ...models.user import User
from ...schemas.user import (
    RefreshTokenRequest,
    RefreshTokenResponse,
    SyncUserResponse,
    UserResponse,
)
from ...services.auth_service import Identity, auth_service
from ...services.errors import AuthenticationError
from ...services.feedback_service import count_feedback, get_user


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v0/auth", tags=["auth"])

# Security scheme for JWT
security = HTTPBearer(auto_error=False)


# =============================================================================
# Auth Helpers
# =============================================================================

async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    """Verify the bearer token (required - raises 401 if not authenticated)."""
    if not credentials:
        raise AuthenticationError("No token provided, authorization denied.")
    return auth_service.verify_access_token(credentials.credentials)


async def get_current_user(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the local user for the verified identity (404 if never synced)."""
    return await get_user(db, identity.uid)


async def build_user_response(db: AsyncSession, user: User) -> UserResponse:
    """Build UserResponse from User model plus quota usage."""
    feedback_count = await count_feedback(db, user.uid)
    quota = None if user.is_admin else settings.feedback_quota
    return UserResponse(
        uid=user.uid,
        email=user.email,
        is_admin=user.is_admin,
        account_type=user.account_type,
        created_at=user.created_at,
        feedback_count=feedback_count,
        feedback_quota=quota,
        feedback_remaining=None if quota is None else max(0, quota - feedback_count),
    )


# =============================================================================
# Auth Endpoints
# =============================================================================

@router.post("/sync", response_model=SyncUserResponse)
async def sync_user(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> SyncUserResponse:
    """
    Create the local user record for a verified identity on first sight.

    Idempotent: later calls return the existing profile.
    """
    user, created = await auth_service.sync_user(db, identity)
    if created:
        logger.info(f"User {identity.uid} synced for the first time")
    return SyncUserResponse(user=await build_user_response(db, user), created=created)


@router.get("/me", response_model=UserResponse)
async def get_me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """
    Get the current authenticated user's profile.
    """
    return await build_user_response(db, user)


@router.post("/refresh", response_model=RefreshTokenResponse)
async def refresh_token(request: RefreshTokenRequest) -> RefreshTokenResponse:
    """
    Exchange a refresh token for a new app access token.
    """
    if not request.refresh_token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Refresh token is required.",
        )

    app_token, expires_in, uid = auth_service.refresh_access_token(request.refresh_token)
    logger.info(f"Issued refreshed app token for {uid}")

    return RefreshTokenResponse(app_token=app_token, expires_in=expires_in, uid=uid)
