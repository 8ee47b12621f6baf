"""
User model with admin flag and account type.
"""
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship

from ..database import Base


class User(Base):
    """
    Local user record keyed by the identity provider's stable uid.

    Rows are created on first sight of a verified identity (see
    ``auth_service.sync_user``). ``is_admin`` waives the feedback quota.
    """
    __tablename__ = "users"

    uid = Column(String(128), primary_key=True)
    email = Column(String(255), nullable=True, index=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    account_type = Column(String(20), default="free", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    feedback = relationship("AIFeedback", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(uid={self.uid}, email={self.email}, is_admin={self.is_admin})>"
