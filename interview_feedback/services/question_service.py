"""
Question catalogue service layer.

Handles category/question lookups and loads the grading criteria a
feedback prompt is built from.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models.interview import Category, Question
from .errors import NotFoundError

logger = logging.getLogger(__name__)


# =============================================================================
# Criteria
# =============================================================================

def _as_list(value: Any) -> List[str]:
    """Accept either a list of strings or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return []


@dataclass
class CriteriaDocument:
    """A category's grading criteria, normalized."""
    overall_guidelines: Optional[str] = None
    key_elements: List[str] = field(default_factory=list)
    red_flags: List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, document: Any) -> "CriteriaDocument":
        """
        Build from the stored criteria document.

        Accepts the nested ``{"default_category_criteria": {...}}`` form and
        the flat ``{"overall_guidelines", "key_elements", "red_flags"}``
        form. A JSON string is decoded first. Anything else yields empty
        criteria.
        """
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except json.JSONDecodeError:
                logger.warning("Category criteria is not valid JSON, ignoring it")
                return cls()

        if not isinstance(document, dict):
            return cls()

        inner = document.get("default_category_criteria")
        if isinstance(inner, dict):
            document = inner

        guidelines = document.get("overall_guidelines")
        return cls(
            overall_guidelines=guidelines.strip() if isinstance(guidelines, str) and guidelines.strip() else None,
            key_elements=_as_list(document.get("key_elements")),
            red_flags=_as_list(document.get("red_flags")),
        )

    @property
    def key_elements_text(self) -> Optional[str]:
        return ", ".join(self.key_elements) if self.key_elements else None

    @property
    def red_flags_text(self) -> Optional[str]:
        return ", ".join(self.red_flags) if self.red_flags else None


@dataclass
class QuestionContext:
    """Everything the prompt needs about one question."""
    question_id: int
    question_text: str
    category_id: int
    category_name: str
    has_diagram: bool
    criteria: CriteriaDocument


# =============================================================================
# Lookups
# =============================================================================

async def list_categories(db: AsyncSession) -> List[Category]:
    """All categories, alphabetically."""
    result = await db.execute(select(Category).order_by(Category.name))
    return list(result.scalars().all())


async def get_category(db: AsyncSession, category_id: int) -> Category:
    category = await db.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found.")
    return category


async def list_questions_by_category(db: AsyncSession, category_id: int) -> List[Question]:
    """Active questions of a category, oldest first."""
    await get_category(db, category_id)

    query = (
        select(Question)
        .where(Question.category_id == category_id, Question.is_active.is_(True))
        .options(selectinload(Question.category))
        .order_by(Question.question_id)
    )
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_question(db: AsyncSession, question_id: int) -> Question:
    """Get a question with its category loaded."""
    query = (
        select(Question)
        .where(Question.question_id == question_id)
        .options(selectinload(Question.category))
    )
    result = await db.execute(query)
    question = result.scalar_one_or_none()
    if question is None:
        raise NotFoundError("Question not found.")
    return question


async def load_question_context(db: AsyncSession, question_id: int) -> QuestionContext:
    """
    Load question text and category criteria for prompt building.

    Raises:
        NotFoundError: the question does not exist
    """
    question = await get_question(db, question_id)
    category = question.category

    criteria = CriteriaDocument.from_json(category.feedback_criteria if category else None)
    if not criteria.key_elements:
        logger.warning(f"No key elements defined for question {question_id}'s category")

    return QuestionContext(
        question_id=question.question_id,
        question_text=question.content,
        category_id=question.category_id,
        category_name=category.name if category else "",
        has_diagram=bool(category.has_diagram) if category else False,
        criteria=criteria,
    )
