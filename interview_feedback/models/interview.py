"""
SQLAlchemy ORM models for the interview question catalogue.
Stores categories (with their feedback criteria) and questions.
"""
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from ..database import Base


DIFFICULTY_LEVELS = ("Easy", "Medium", "Hard")


class Category(Base):
    """
    An interview category (e.g. "System Design").

    The feedback_criteria document drives prompt construction:
    {
        "default_category_criteria": {
            "overall_guidelines": "...",
            "key_elements": ["...", "..."],
            "red_flags": ["...", "..."]
        }
    }
    """
    __tablename__ = "categories"

    category_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    has_diagram = Column(Boolean, default=False, nullable=False)
    feedback_criteria = Column(JSON, nullable=True)

    # Relationships
    questions = relationship("Question", back_populates="category", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Category(id={self.category_id}, name={self.name})>"


class Question(Base):
    """An interview question. Immutable once created."""
    __tablename__ = "questions"
    __table_args__ = (
        CheckConstraint(
            "difficulty_level IN ('Easy', 'Medium', 'Hard')",
            name="ck_questions_difficulty_level",
        ),
    )

    question_id = Column(Integer, primary_key=True, autoincrement=True)
    category_id = Column(Integer, ForeignKey("categories.category_id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    difficulty_level = Column(String(10), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    category = relationship("Category", back_populates="questions")
    feedback = relationship("AIFeedback", back_populates="question", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Question(id={self.question_id}, title={self.title}, difficulty={self.difficulty_level})>"
