"""
Question catalogue API endpoints - v0.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ...database import get_db
from ...models.interview import Question
from ...schemas.question import CategoryResponse, QuestionResponse
from ...services.question_service import (
    get_question,
    list_categories,
    list_questions_by_category,
)
from .auth import get_current_identity

logger = logging.getLogger(__name__)

# Every catalogue route needs a valid app token; no local user row is required
router = APIRouter(
    prefix="/api/v0/questions",
    tags=["questions"],
    dependencies=[Depends(get_current_identity)],
)


def build_question_response(question: Question) -> QuestionResponse:
    category = question.category
    return QuestionResponse(
        question_id=question.question_id,
        category_id=question.category_id,
        title=question.title,
        content=question.content,
        difficulty_level=question.difficulty_level,
        has_diagram=bool(category.has_diagram) if category else False,
        category_name=category.name if category else None,
    )


@router.get("/categories", response_model=List[CategoryResponse])
async def get_categories(db: AsyncSession = Depends(get_db)):
    """List all interview categories."""
    categories = await list_categories(db)
    return [CategoryResponse.model_validate(c) for c in categories]


@router.get("/categories/{category_id}/questions", response_model=List[QuestionResponse])
async def get_questions_by_category(category_id: int, db: AsyncSession = Depends(get_db)):
    """
    List the active questions of a category.
    Returns 404 when the category does not exist.
    """
    questions = await list_questions_by_category(db, category_id)
    logger.info(f"Found {len(questions)} questions for category {category_id}")
    return [build_question_response(q) for q in questions]


@router.get("/{question_id}", response_model=QuestionResponse)
async def get_question_by_id(question_id: int, db: AsyncSession = Depends(get_db)):
    """Get one question."""
    return build_question_response(await get_question(db, question_id))
