"""
Pydantic schemas for the question catalogue.
"""
from typing import Optional

from pydantic import BaseModel


class CategoryResponse(BaseModel):
    """Response schema for a category."""
    category_id: int
    name: str
    description: Optional[str] = None
    has_diagram: bool = False

    class Config:
        from_attributes = True


class QuestionResponse(BaseModel):
    """Response schema for a question."""
    question_id: int
    category_id: int
    title: str
    content: str
    difficulty_level: str
    has_diagram: bool = False
    category_name: Optional[str] = None
