"""
Error taxonomy for the feedback pipeline.

Each error carries the HTTP status it maps to and a message that is safe to
show to the user. The application's exception handlers render them as
``{"error": message}``.
"""
from typing import Optional


class FeedbackServiceError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500
    default_message: str = "Internal server error."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationError(FeedbackServiceError):
    """Missing or invalid credential."""
    status_code = 401
    default_message = "Authentication required."


class AuthorizationError(FeedbackServiceError):
    """Authenticated, but not allowed (feedback quota exhausted)."""
    status_code = 403
    default_message = "You are not allowed to perform this action."


class NotFoundError(FeedbackServiceError):
    """Question, category or user does not exist."""
    status_code = 404
    default_message = "Not found."


class ValidationError(FeedbackServiceError):
    """Missing required submission fields or malformed generation output."""
    status_code = 400
    default_message = "Invalid request."


class UpstreamError(FeedbackServiceError):
    """The generation provider failed after retries or returned no content."""
    status_code = 502
    default_message = "Failed to generate feedback. Please try again later."


class PersistenceError(FeedbackServiceError):
    """A write to the feedback store failed."""
    status_code = 500
    default_message = "Internal server error while saving feedback."
