"""Pytest fixtures for the interview feedback tests.

Provides an in-memory SQLite database seeded with one category, one
question and two users (a free user and an admin), a mocked generation
client, and an HTTP client wired to the FastAPI app.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.pool import StaticPool

from interview_feedback.database import Database
from interview_feedback.models import AIFeedback, Category, Question, User
from interview_feedback.services.auth_service import auth_service
from interview_feedback.services.feedback_orchestrator import FeedbackOrchestrator
from interview_feedback.utils.rate_limiter import feedback_rate_limiter


FREE_USER = "user-1"
ADMIN_USER = "admin-1"

CAP_QUESTION = "Explain CAP theorem"
CAP_ANSWER = "It's about consistency, availability, and partition tolerance trade-offs."
CAP_CRITERIA = {
    "default_category_criteria": {
        "overall_guidelines": "Be precise",
        "key_elements": ["consistency", "availability", "partition tolerance"],
        "red_flags": ["vague answers"],
    }
}

VALID_RESPONSE = json.dumps({
    "overallFeedback": "Good",
    "score": 85,
    "strengthPoints": ["clear"],
    "improvementAreas": ["depth"],
    "detailedFeedback": "...",
    "criteriaScores": {"Clarity": 90, "Depth": 80},
})


def auth_headers(uid: str, email: str = None) -> dict:
    """Bearer header with a freshly signed app token."""
    token = auth_service.create_access_token(uid, email)
    return {"Authorization": f"Bearer {token}"}


async def add_feedback_records(database: Database, user_id: str, question_id: int, count: int) -> None:
    """Insert ``count`` stored feedback records for a user."""
    async with database.session() as session:
        session.add_all([
            AIFeedback(
                user_id=user_id,
                question_id=question_id,
                user_answer=f"answer {i}",
                feedback_content="ok",
                strength_points=[],
                improvement_areas=[],
                score=50,
                criteria_scores={},
            )
            for i in range(count)
        ])
        await session.commit()


async def count_records(database: Database, user_id: str) -> int:
    async with database.session() as session:
        result = await session.execute(
            select(func.count()).select_from(AIFeedback).where(AIFeedback.user_id == user_id)
        )
        return result.scalar_one()


@pytest_asyncio.fixture
async def database():
    """Fresh in-memory database per test."""
    db = Database("sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    db.open()
    await db.create_all()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def seeded(database):
    """Seed the catalogue and users; returns the generated ids."""
    async with database.session() as session:
        category = Category(
            name="System Design",
            description="Distributed systems questions",
            has_diagram=True,
            feedback_criteria=CAP_CRITERIA,
        )
        question = Question(
            category=category,
            title="CAP theorem",
            content=CAP_QUESTION,
            difficulty_level="Medium",
        )
        session.add_all([
            User(uid=FREE_USER, email="user@example.com"),
            User(uid=ADMIN_USER, email="admin@example.com", is_admin=True),
            category,
            question,
        ])
        await session.commit()
        return {"category_id": category.category_id, "question_id": question.question_id}


@pytest.fixture
def generation_client():
    """Generation client whose ``generate`` returns a valid response."""
    client = MagicMock()
    client.generate = AsyncMock(return_value=VALID_RESPONSE)
    return client


@pytest.fixture
def orchestrator(generation_client):
    return FeedbackOrchestrator(generation_client=generation_client, quota=2)


@pytest_asyncio.fixture
async def api_client(database, seeded, orchestrator):
    """HTTP client for the app, backed by the test database and mocked model."""
    from interview_feedback.main import app

    app.state.database = database
    app.state.feedback_orchestrator = orchestrator
    feedback_rate_limiter.reset(FREE_USER)
    feedback_rate_limiter.reset(ADMIN_USER)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
