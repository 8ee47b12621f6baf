"""
Feedback API endpoints - v0.

Answer submission (AI feedback generation), saving client-held feedback,
and quota eligibility.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...config import settings
from ...database import get_db
from ...schemas.feedback import (
    EligibilityResponse,
    FeedbackResponse,
    FeedbackSubmitRequest,
    OverallFeedbackResponse,
    SaveResponseRequest,
    SaveResponseResponse,
)
from ...services.auth_service import Identity
from ...services.errors import FeedbackServiceError
from ...services.feedback_orchestrator import FeedbackOrchestrator, FeedbackSubmission
from ...services.feedback_processor import parse_detailed_text
from ...services.feedback_service import check_eligibility, insert_feedback_within_quota
from ...services.question_service import get_question
from ...utils.rate_limiter import enforce_rate_limit, feedback_rate_limiter
from .auth import get_current_identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v0/feedback", tags=["feedback"])


# =============================================================================
# Dependencies
# =============================================================================

def get_feedback_orchestrator(request: Request) -> FeedbackOrchestrator:
    """The orchestrator built at startup."""
    return request.app.state.feedback_orchestrator


async def check_feedback_rate_limit(identity: Identity = Depends(get_current_identity)) -> None:
    """Per-user sliding window limit for feedback generation. Raises 429."""
    enforce_rate_limit(feedback_rate_limiter, identity.uid)


# =============================================================================
# Feedback Endpoints
# =============================================================================

@router.post(
    "",
    response_model=FeedbackResponse,
    dependencies=[Depends(check_feedback_rate_limit)],
    summary="Generate AI feedback for an answer",
)
async def submit_feedback(
    request: FeedbackSubmitRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    orchestrator: FeedbackOrchestrator = Depends(get_feedback_orchestrator),
) -> FeedbackResponse:
    """
    Generate feedback for an answer and store it.

    Flow:
    1. Check the caller's feedback quota
    2. Load the question and its category criteria
    3. Preprocess the answer, build the prompt, call the model
    4. Process the response and save one feedback record

    When the model output can't be used, a displayable "feedback
    unavailable" message is returned and nothing is stored.
    """
    try:
        if request.question_id is None or not (request.user_answer or "").strip():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Question ID and user answer are required.",
            )

        logger.info(f"Feedback requested by {identity.uid} for question {request.question_id}")

        result = await orchestrator.submit(
            db,
            identity.uid,
            FeedbackSubmission(
                question_id=request.question_id,
                user_answer=request.user_answer,
                diagram_data=request.diagram_data,
                time_spent_seconds=request.time_spent_seconds,
                word_count=request.word_count,
            ),
        )

        return FeedbackResponse(
            overall_feedback=result.feedback.overall_feedback.raw_content,
            overall_feedback_details=OverallFeedbackResponse(**result.feedback.overall_feedback.to_dict()),
            detailed_feedback=result.feedback.detailed_feedback,
            feedback_id=result.feedback_id,
        )

    except (HTTPException, FeedbackServiceError):
        raise
    except Exception as e:
        logger.error(f"Error generating feedback: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error while generating feedback.")


@router.post(
    "/save-response",
    response_model=SaveResponseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Save feedback the client already displayed",
)
async def save_response(
    request: SaveResponseRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> SaveResponseResponse:
    """
    Store an answer with its display feedback.

    Score, strengths and improvement areas are parsed back out of the
    detailed feedback text. Subject to the same quota as generation.
    """
    try:
        required = (request.user_answer, request.overall_ai_feedback, request.detailed_ai_feedback)
        if request.question_id is None or not all(value and value.strip() for value in required):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing required fields for saving response.",
            )

        await get_question(db, request.question_id)

        record = parse_detailed_text(request.overall_ai_feedback, request.detailed_ai_feedback)
        feedback = await insert_feedback_within_quota(
            db,
            user_id=identity.uid,
            question_id=request.question_id,
            user_answer=request.user_answer.strip(),
            record=record,
            quota=settings.feedback_quota,
        )

        return SaveResponseResponse(
            message="Feedback and user response saved successfully.",
            feedback_id=feedback.feedback_id,
        )

    except (HTTPException, FeedbackServiceError):
        raise
    except Exception as e:
        logger.error(f"Error saving feedback response: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error while saving feedback.")


@router.get("/eligibility", response_model=EligibilityResponse)
async def get_eligibility(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> EligibilityResponse:
    """Whether the caller can still request AI feedback."""
    eligibility = await check_eligibility(db, identity.uid, settings.feedback_quota)
    return EligibilityResponse(**eligibility.to_dict())
