# Models package
from .user import User
from .interview import Category, Question, DIFFICULTY_LEVELS
from .feedback import AIFeedback

__all__ = [
    # User models
    "User",
    # Catalogue models
    "Category",
    "Question",
    "DIFFICULTY_LEVELS",
    # Feedback models
    "AIFeedback",
]
