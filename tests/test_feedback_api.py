"""Tests for the feedback HTTP endpoints."""
import pytest

from conftest import (
    ADMIN_USER,
    CAP_ANSWER,
    FREE_USER,
    VALID_RESPONSE,
    add_feedback_records,
    auth_headers,
    count_records,
)
from interview_feedback.services.errors import UpstreamError
from interview_feedback.utils.rate_limiter import feedback_rate_limiter


DETAILED_TEXT = "Strengths:\n- Clear structure\n\nImprovement Areas:\n- More depth\n\nScore: 72/100"


class TestSubmitFeedback:
    """POST /api/v0/feedback"""

    @pytest.mark.asyncio
    async def test_returns_feedback_and_stores_record(self, api_client, database, seeded):
        response = await api_client.post(
            "/api/v0/feedback",
            json={"questionId": seeded["question_id"], "userAnswer": CAP_ANSWER, "timeSpentSeconds": 90},
            headers=auth_headers(FREE_USER),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["overallFeedback"] == "Good"
        assert body["overallFeedbackDetails"]["sentiment"] == "Excellent"
        assert body["overallFeedbackDetails"]["rawContent"] == "Good"
        assert body["detailedFeedback"] == "..."
        assert isinstance(body["feedbackId"], int)
        assert await count_records(database, FREE_USER) == 1

    @pytest.mark.asyncio
    async def test_requires_authentication(self, api_client, seeded):
        response = await api_client.post(
            "/api/v0/feedback",
            json={"questionId": seeded["question_id"], "userAnswer": CAP_ANSWER},
        )

        assert response.status_code == 401
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_rejects_invalid_token(self, api_client, seeded):
        response = await api_client.post(
            "/api/v0/feedback",
            json={"questionId": seeded["question_id"], "userAnswer": CAP_ANSWER},
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Token is not valid."}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"userAnswer": "an answer"},
        {"questionId": 1},
        {"questionId": 1, "userAnswer": "   "},
    ])
    async def test_missing_fields(self, api_client, payload):
        response = await api_client.post("/api/v0/feedback", json=payload, headers=auth_headers(FREE_USER))

        assert response.status_code == 400
        assert response.json() == {"error": "Question ID and user answer are required."}

    @pytest.mark.asyncio
    async def test_malformed_body(self, api_client):
        response = await api_client.post(
            "/api/v0/feedback",
            json={"questionId": "abc", "userAnswer": "x"},
            headers=auth_headers(FREE_USER),
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, api_client, database, seeded):
        await add_feedback_records(database, FREE_USER, seeded["question_id"], 2)

        response = await api_client.post(
            "/api/v0/feedback",
            json={"questionId": seeded["question_id"], "userAnswer": CAP_ANSWER},
            headers=auth_headers(FREE_USER),
        )

        assert response.status_code == 403
        assert response.json() == {"error": "You have reached the maximum limit of 2 AI feedback sessions."}

    @pytest.mark.asyncio
    async def test_unknown_question(self, api_client, seeded):
        response = await api_client.post(
            "/api/v0/feedback",
            json={"questionId": 9999, "userAnswer": CAP_ANSWER},
            headers=auth_headers(FREE_USER),
        )

        assert response.status_code == 404
        assert response.json() == {"error": "Question not found."}

    @pytest.mark.asyncio
    async def test_unsynced_user(self, api_client, seeded):
        response = await api_client.post(
            "/api/v0/feedback",
            json={"questionId": seeded["question_id"], "userAnswer": CAP_ANSWER},
            headers=auth_headers("never-synced"),
        )

        assert response.status_code == 404
        assert response.json() == {"error": "User not found."}

    @pytest.mark.asyncio
    async def test_upstream_failure(self, api_client, database, seeded, generation_client):
        generation_client.generate.side_effect = UpstreamError()

        response = await api_client.post(
            "/api/v0/feedback",
            json={"questionId": seeded["question_id"], "userAnswer": CAP_ANSWER},
            headers=auth_headers(FREE_USER),
        )

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to generate feedback. Please try again later."}
        assert await count_records(database, FREE_USER) == 0

    @pytest.mark.asyncio
    async def test_malformed_model_output_is_still_200(self, api_client, database, seeded, generation_client):
        generation_client.generate.return_value = "not json"

        response = await api_client.post(
            "/api/v0/feedback",
            json={"questionId": seeded["question_id"], "userAnswer": CAP_ANSWER},
            headers=auth_headers(FREE_USER),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["feedbackId"] is None
        assert body["overallFeedback"].startswith("Feedback unavailable")
        assert body["overallFeedbackDetails"]["detailedPoints"] == []
        assert body["detailedFeedback"].startswith("Feedback unavailable")
        assert await count_records(database, FREE_USER) == 0

    @pytest.mark.asyncio
    async def test_overflowing_criterion_score_is_stored_without_it(self, api_client, database, seeded, generation_client):
        generation_client.generate.return_value = VALID_RESPONSE.replace('"Clarity": 90', '"Clarity": 1e400')

        response = await api_client.post(
            "/api/v0/feedback",
            json={"questionId": seeded["question_id"], "userAnswer": CAP_ANSWER},
            headers=auth_headers(FREE_USER),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["overallFeedback"] == "Good"
        assert isinstance(body["feedbackId"], int)
        assert await count_records(database, FREE_USER) == 1

    @pytest.mark.asyncio
    async def test_rate_limited(self, api_client, seeded, monkeypatch):
        monkeypatch.setattr(feedback_rate_limiter, "max_requests", 1)
        payload = {"questionId": seeded["question_id"], "userAnswer": CAP_ANSWER}

        first = await api_client.post("/api/v0/feedback", json=payload, headers=auth_headers(ADMIN_USER))
        second = await api_client.post("/api/v0/feedback", json=payload, headers=auth_headers(ADMIN_USER))

        assert first.status_code == 200
        assert second.status_code == 429
        assert int(second.headers["Retry-After"]) >= 1
        assert "error" in second.json()


class TestSaveResponse:
    """POST /api/v0/feedback/save-response"""

    @pytest.mark.asyncio
    async def test_saves_parsed_feedback(self, api_client, database, seeded):
        response = await api_client.post(
            "/api/v0/feedback/save-response",
            json={
                "questionId": seeded["question_id"],
                "userAnswer": CAP_ANSWER,
                "overallAiFeedback": "Solid answer.",
                "detailedAiFeedback": DETAILED_TEXT,
            },
            headers=auth_headers(FREE_USER),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Feedback and user response saved successfully."
        assert isinstance(body["feedbackId"], int)
        assert await count_records(database, FREE_USER) == 1

    @pytest.mark.asyncio
    async def test_missing_fields(self, api_client, seeded):
        response = await api_client.post(
            "/api/v0/feedback/save-response",
            json={"questionId": seeded["question_id"], "userAnswer": CAP_ANSWER},
            headers=auth_headers(FREE_USER),
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_respects_quota(self, api_client, database, seeded):
        await add_feedback_records(database, FREE_USER, seeded["question_id"], 2)

        response = await api_client.post(
            "/api/v0/feedback/save-response",
            json={
                "questionId": seeded["question_id"],
                "userAnswer": CAP_ANSWER,
                "overallAiFeedback": "Solid answer.",
                "detailedAiFeedback": DETAILED_TEXT,
            },
            headers=auth_headers(FREE_USER),
        )

        assert response.status_code == 403
        assert await count_records(database, FREE_USER) == 2


class TestEligibility:
    """GET /api/v0/feedback/eligibility"""

    @pytest.mark.asyncio
    async def test_free_user(self, api_client, database, seeded):
        await add_feedback_records(database, FREE_USER, seeded["question_id"], 1)

        response = await api_client.get("/api/v0/feedback/eligibility", headers=auth_headers(FREE_USER))

        assert response.status_code == 200
        assert response.json() == {
            "isAdmin": False,
            "feedbackCount": 1,
            "quota": 2,
            "remaining": 1,
            "eligible": True,
        }

    @pytest.mark.asyncio
    async def test_admin(self, api_client, seeded):
        response = await api_client.get("/api/v0/feedback/eligibility", headers=auth_headers(ADMIN_USER))

        assert response.json()["isAdmin"] is True
        assert response.json()["eligible"] is True
