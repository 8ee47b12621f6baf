"""
SQLAlchemy ORM model for persisted AI feedback.
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from ..database import Base


class AIFeedback(Base):
    """
    One feedback record per successful submission. Never mutated.

    strength_points / improvement_areas are JSON lists of strings,
    criteria_scores is a {criterion: 0-100} mapping.
    """
    __tablename__ = "ai_feedback"

    feedback_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), ForeignKey("users.uid", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.question_id", ondelete="CASCADE"), nullable=False)

    user_answer = Column(Text, nullable=False)
    feedback_content = Column(Text, nullable=True)
    strength_points = Column(JSON, nullable=False, default=list)
    improvement_areas = Column(JSON, nullable=False, default=list)
    score = Column(Integer, nullable=True)
    full_detailed_text = Column(Text, nullable=True)
    criteria_scores = Column(JSON, nullable=False, default=dict)
    weighted_score = Column(Integer, nullable=True)

    # Submission metadata
    time_spent_seconds = Column(Integer, nullable=True)
    word_count = Column(Integer, nullable=True)

    generated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="feedback")
    question = relationship("Question", back_populates="feedback")

    def __repr__(self):
        return f"<AIFeedback(id={self.feedback_id}, user={self.user_id}, question={self.question_id}, score={self.score})>"
