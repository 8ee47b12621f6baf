"""
Pydantic schemas for feedback API request/response validation.

Wire names are camelCase (the frontend's convention); Python attributes are
snake_case.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Submission Schemas
# =============================================================================

class FeedbackSubmitRequest(BaseModel):
    """Answer submission. Required fields are checked by the endpoint so that a
    missing field is a 400, not a schema error."""
    question_id: Optional[int] = Field(None, alias="questionId")
    user_answer: Optional[str] = Field(None, alias="userAnswer")
    diagram_data: Optional[Any] = Field(None, alias="diagramData", description="Opaque whiteboard snapshot, not processed")
    time_spent_seconds: Optional[int] = Field(None, alias="timeSpentSeconds", ge=0)
    word_count: Optional[int] = Field(None, alias="wordCount", ge=0)

    class Config:
        populate_by_name = True


class OverallFeedbackResponse(BaseModel):
    """Overall feedback as displayed."""
    raw_content: str = Field(..., alias="rawContent")
    summary: str
    detailed_points: List[str] = Field(default_factory=list, alias="detailedPoints")
    suggestions: List[str] = Field(default_factory=list)
    sentiment: str

    class Config:
        populate_by_name = True


class FeedbackResponse(BaseModel):
    """Response of a feedback submission."""
    overall_feedback: str = Field(..., alias="overallFeedback")
    overall_feedback_details: OverallFeedbackResponse = Field(..., alias="overallFeedbackDetails")
    detailed_feedback: str = Field(..., alias="detailedFeedback")
    feedback_id: Optional[int] = Field(None, alias="feedbackId", description="Null when the feedback could not be generated")

    class Config:
        populate_by_name = True


# =============================================================================
# Save-Response Schemas
# =============================================================================

class SaveResponseRequest(BaseModel):
    """Stores display feedback the client already has."""
    question_id: Optional[int] = Field(None, alias="questionId")
    user_answer: Optional[str] = Field(None, alias="userAnswer")
    overall_ai_feedback: Optional[str] = Field(None, alias="overallAiFeedback")
    detailed_ai_feedback: Optional[str] = Field(None, alias="detailedAiFeedback")

    class Config:
        populate_by_name = True


class SaveResponseResponse(BaseModel):
    message: str
    feedback_id: int = Field(..., alias="feedbackId")

    class Config:
        populate_by_name = True


# =============================================================================
# Eligibility
# =============================================================================

class EligibilityResponse(BaseModel):
    """The caller's feedback quota state."""
    is_admin: bool = Field(..., alias="isAdmin")
    feedback_count: int = Field(..., alias="feedbackCount")
    quota: Optional[int] = Field(None, description="Null for admins (no quota)")
    remaining: Optional[int] = None
    eligible: bool

    class Config:
        populate_by_name = True
