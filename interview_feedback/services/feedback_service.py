"""
Feedback store service layer.

Handles eligibility (feedback quota) and database operations for feedback
records.

The quota is a hard cap. ``check_eligibility`` is a cheap read used before
spending a provider call; ``insert_feedback_within_quota`` re-checks the
count while holding a row lock on the owning user and inserts in the same
transaction, so concurrent submissions from one user serialize and the
loser is rejected.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.feedback import AIFeedback
from ..models.user import User
from .errors import AuthorizationError, FeedbackServiceError, NotFoundError, PersistenceError
from .feedback_processor import FeedbackRecordData

logger = logging.getLogger(__name__)


def quota_exceeded_message(quota: int) -> str:
    return f"You have reached the maximum limit of {quota} AI feedback sessions."


@dataclass
class Eligibility:
    """Derived per request; never stored."""
    user_id: str
    is_admin: bool
    feedback_count: int
    quota: int

    @property
    def remaining(self) -> Optional[int]:
        if self.is_admin:
            return None
        return max(0, self.quota - self.feedback_count)

    @property
    def eligible(self) -> bool:
        return self.is_admin or self.feedback_count < self.quota

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isAdmin": self.is_admin,
            "feedbackCount": self.feedback_count,
            "quota": None if self.is_admin else self.quota,
            "remaining": self.remaining,
            "eligible": self.eligible,
        }


# =============================================================================
# Reads
# =============================================================================

async def get_user(db: AsyncSession, user_id: str) -> User:
    """Get a user by uid or raise NotFoundError."""
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found.")
    return user


async def count_feedback(db: AsyncSession, user_id: str) -> int:
    """Number of feedback records owned by a user."""
    query = select(func.count()).select_from(AIFeedback).where(AIFeedback.user_id == user_id)
    result = await db.execute(query)
    return int(result.scalar_one())


async def check_eligibility(db: AsyncSession, user_id: str, quota: int) -> Eligibility:
    """
    Load the admin flag and, for non-admins, the existing record count.

    Raises:
        NotFoundError: the user has no local record
    """
    user = await get_user(db, user_id)
    count = 0 if user.is_admin else await count_feedback(db, user_id)
    return Eligibility(user_id=user_id, is_admin=bool(user.is_admin), feedback_count=count, quota=quota)


def ensure_eligible(eligibility: Eligibility) -> None:
    """Raise AuthorizationError when a non-admin has used up the quota."""
    if not eligibility.eligible:
        logger.warning(
            f"User {eligibility.user_id} rejected: {eligibility.feedback_count} "
            f"feedback records, quota {eligibility.quota}"
        )
        raise AuthorizationError(quota_exceeded_message(eligibility.quota))


# =============================================================================
# Writes
# =============================================================================

async def insert_feedback_within_quota(
    db: AsyncSession,
    user_id: str,
    question_id: int,
    user_answer: str,
    record: FeedbackRecordData,
    quota: int,
    time_spent_seconds: Optional[int] = None,
    word_count: Optional[int] = None,
) -> AIFeedback:
    """
    Insert one feedback record if the user is still under quota.

    Locks the user's row (``SELECT ... FOR UPDATE``), recounts, and inserts
    inside one transaction. Nothing is written on any failure path.

    Raises:
        NotFoundError: the user has no local record
        AuthorizationError: the quota was reached in the meantime
        PersistenceError: the database write failed
    """
    try:
        result = await db.execute(select(User).where(User.uid == user_id).with_for_update())
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found.")

        if not user.is_admin:
            count = await count_feedback(db, user_id)
            if count >= quota:
                raise AuthorizationError(quota_exceeded_message(quota))

        feedback = AIFeedback(
            user_id=user_id,
            question_id=question_id,
            user_answer=user_answer,
            feedback_content=record.feedback_content,
            strength_points=list(record.strength_points),
            improvement_areas=list(record.improvement_areas),
            score=record.score,
            full_detailed_text=record.full_detailed_text,
            criteria_scores=dict(record.criteria_scores),
            weighted_score=record.weighted_score,
            time_spent_seconds=time_spent_seconds,
            word_count=word_count,
        )
        db.add(feedback)
        await db.commit()
    except FeedbackServiceError:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to save feedback for user {user_id}: {e}", exc_info=True)
        raise PersistenceError()

    logger.info(f"Saved feedback {feedback.feedback_id} for user {user_id}, question {question_id}")
    return feedback
