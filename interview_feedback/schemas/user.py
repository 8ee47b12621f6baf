"""
Pydantic schemas for user-related API operations.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# User Schemas
# =============================================================================

class UserResponse(BaseModel):
    """Response schema for user profile."""
    uid: str
    email: Optional[str] = None
    is_admin: bool
    account_type: str
    created_at: datetime
    feedback_count: int = 0
    feedback_quota: Optional[int] = Field(None, description="Null for admins (no quota)")
    feedback_remaining: Optional[int] = None

    class Config:
        from_attributes = True


class SyncUserResponse(BaseModel):
    """Response of the user sync after identity verification."""
    user: UserResponse
    created: bool = Field(..., description="True when the local record was created by this call")


# =============================================================================
# Token Schemas
# =============================================================================

class RefreshTokenRequest(BaseModel):
    """Request to exchange a refresh token."""
    refresh_token: Optional[str] = Field(None, alias="refreshToken")

    class Config:
        populate_by_name = True


class RefreshTokenResponse(BaseModel):
    """A new app access token."""
    app_token: str = Field(..., alias="appToken")
    expires_in: int = Field(..., alias="expiresIn", description="Lifetime in seconds")
    uid: str

    class Config:
        populate_by_name = True
