"""Tests for eligibility, persistence and the end-to-end submission flow."""
import pytest

from conftest import (
    ADMIN_USER,
    CAP_ANSWER,
    FREE_USER,
    add_feedback_records,
    count_records,
)
from interview_feedback.models import AIFeedback
from interview_feedback.services.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from interview_feedback.services.feedback_orchestrator import FeedbackSubmission, SubmissionStage
from interview_feedback.services.feedback_processor import FeedbackRecordData
from interview_feedback.services.feedback_service import (
    check_eligibility,
    ensure_eligible,
    insert_feedback_within_quota,
)
from interview_feedback.services.question_service import CriteriaDocument, load_question_context


class TestEligibility:
    """Feedback quota checks."""

    @pytest.mark.asyncio
    async def test_user_at_quota_is_rejected(self, database, seeded):
        await add_feedback_records(database, FREE_USER, seeded["question_id"], 2)

        async with database.session() as session:
            eligibility = await check_eligibility(session, FREE_USER, quota=2)

        assert not eligibility.eligible
        assert eligibility.remaining == 0
        with pytest.raises(AuthorizationError):
            ensure_eligible(eligibility)

    @pytest.mark.asyncio
    async def test_user_below_quota_is_allowed(self, database, seeded):
        await add_feedback_records(database, FREE_USER, seeded["question_id"], 1)

        async with database.session() as session:
            eligibility = await check_eligibility(session, FREE_USER, quota=2)

        assert eligibility.eligible
        assert eligibility.remaining == 1
        ensure_eligible(eligibility)

    @pytest.mark.asyncio
    async def test_admin_is_always_allowed(self, database, seeded):
        await add_feedback_records(database, ADMIN_USER, seeded["question_id"], 10)

        async with database.session() as session:
            eligibility = await check_eligibility(session, ADMIN_USER, quota=2)

        assert eligibility.eligible
        assert eligibility.to_dict()["quota"] is None
        ensure_eligible(eligibility)

    @pytest.mark.asyncio
    async def test_unknown_user_is_not_found(self, database, seeded):
        async with database.session() as session:
            with pytest.raises(NotFoundError):
                await check_eligibility(session, "ghost", quota=2)


class TestQuotaGuardedInsert:
    """The insert re-checks the quota in its own transaction."""

    @pytest.mark.asyncio
    async def test_insert_rejected_once_quota_is_reached(self, database, seeded):
        await add_feedback_records(database, FREE_USER, seeded["question_id"], 2)

        async with database.session() as session:
            with pytest.raises(AuthorizationError):
                await insert_feedback_within_quota(
                    session,
                    user_id=FREE_USER,
                    question_id=seeded["question_id"],
                    user_answer="late answer",
                    record=FeedbackRecordData(feedback_content="x"),
                    quota=2,
                )

        assert await count_records(database, FREE_USER) == 2

    @pytest.mark.asyncio
    async def test_insert_stores_record(self, database, seeded):
        record = FeedbackRecordData(
            feedback_content="Good",
            strength_points=["clear"],
            improvement_areas=["depth"],
            score=85,
            full_detailed_text="...",
            criteria_scores={"Clarity": 90},
            weighted_score=90,
        )

        async with database.session() as session:
            feedback = await insert_feedback_within_quota(
                session,
                user_id=FREE_USER,
                question_id=seeded["question_id"],
                user_answer="answer",
                record=record,
                quota=2,
                time_spent_seconds=120,
                word_count=1,
            )

        assert feedback.feedback_id is not None
        assert feedback.score == 85
        assert feedback.strength_points == ["clear"]
        assert feedback.time_spent_seconds == 120
        assert await count_records(database, FREE_USER) == 1


class TestQuestionContext:
    """Criteria loading."""

    @pytest.mark.asyncio
    async def test_loads_question_and_criteria(self, database, seeded):
        async with database.session() as session:
            context = await load_question_context(session, seeded["question_id"])

        assert context.question_text == "Explain CAP theorem"
        assert context.category_name == "System Design"
        assert context.criteria.overall_guidelines == "Be precise"
        assert context.criteria.key_elements_text == "consistency, availability, partition tolerance"
        assert context.criteria.red_flags_text == "vague answers"

    @pytest.mark.asyncio
    async def test_missing_question(self, database, seeded):
        async with database.session() as session:
            with pytest.raises(NotFoundError):
                await load_question_context(session, 9999)

    def test_flat_criteria_document(self):
        criteria = CriteriaDocument.from_json({
            "overall_guidelines": "Be concise",
            "key_elements": "latency, throughput",
        })

        assert criteria.key_elements == ["latency", "throughput"]
        assert criteria.red_flags_text is None

    def test_unusable_criteria_document(self):
        assert CriteriaDocument.from_json("not json") == CriteriaDocument()
        assert CriteriaDocument.from_json(None) == CriteriaDocument()


class TestSubmit:
    """End-to-end submission flow with a mocked model."""

    @pytest.mark.asyncio
    async def test_cap_theorem_submission_persists_one_record(self, database, seeded, orchestrator, generation_client):
        async with database.session() as session:
            result = await orchestrator.submit(
                session,
                FREE_USER,
                FeedbackSubmission(question_id=seeded["question_id"], user_answer=CAP_ANSWER, word_count=9),
            )

        prompt = generation_client.generate.await_args.args[0]
        for element in ("consistency", "availability", "partition tolerance"):
            assert element in prompt
        assert CAP_ANSWER in prompt

        assert result.final_stage == SubmissionStage.PERSISTED
        assert result.feedback_id is not None
        assert result.feedback.overall_feedback.sentiment == "Excellent"
        assert await count_records(database, FREE_USER) == 1

        async with database.session() as session:
            stored = await session.get(AIFeedback, result.feedback_id)
        assert stored.score == 85
        assert stored.weighted_score == 85
        assert stored.user_answer == CAP_ANSWER
        assert stored.word_count == 9

    @pytest.mark.asyncio
    async def test_quota_exhausted_skips_generation(self, database, seeded, orchestrator, generation_client):
        await add_feedback_records(database, FREE_USER, seeded["question_id"], 2)

        async with database.session() as session:
            with pytest.raises(AuthorizationError) as exc_info:
                await orchestrator.submit(session, FREE_USER, FeedbackSubmission(seeded["question_id"], CAP_ANSWER))

        assert "maximum limit of 2" in exc_info.value.message
        generation_client.generate.assert_not_awaited()
        assert await count_records(database, FREE_USER) == 2

    @pytest.mark.asyncio
    async def test_admin_over_quota_is_served(self, database, seeded, orchestrator):
        await add_feedback_records(database, ADMIN_USER, seeded["question_id"], 10)

        async with database.session() as session:
            result = await orchestrator.submit(session, ADMIN_USER, FeedbackSubmission(seeded["question_id"], CAP_ANSWER))

        assert result.feedback_id is not None
        assert await count_records(database, ADMIN_USER) == 11

    @pytest.mark.asyncio
    async def test_missing_question_is_not_found(self, database, seeded, orchestrator, generation_client):
        async with database.session() as session:
            with pytest.raises(NotFoundError):
                await orchestrator.submit(session, FREE_USER, FeedbackSubmission(9999, CAP_ANSWER))

        generation_client.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upstream_failure_persists_nothing(self, database, seeded, orchestrator, generation_client):
        generation_client.generate.side_effect = UpstreamError()

        async with database.session() as session:
            with pytest.raises(UpstreamError):
                await orchestrator.submit(session, FREE_USER, FeedbackSubmission(seeded["question_id"], CAP_ANSWER))

        assert await count_records(database, FREE_USER) == 0

    @pytest.mark.asyncio
    async def test_malformed_output_is_displayable_but_not_stored(self, database, seeded, orchestrator, generation_client):
        generation_client.generate.return_value = "not json"

        async with database.session() as session:
            result = await orchestrator.submit(session, FREE_USER, FeedbackSubmission(seeded["question_id"], CAP_ANSWER))

        assert result.feedback.is_error
        assert result.feedback_id is None
        assert result.final_stage == SubmissionStage.PROCESSED
        assert await count_records(database, FREE_USER) == 0

    @pytest.mark.asyncio
    async def test_missing_identity_is_rejected(self, database, seeded, orchestrator):
        async with database.session() as session:
            with pytest.raises(AuthenticationError):
                await orchestrator.submit(session, None, FeedbackSubmission(seeded["question_id"], CAP_ANSWER))

    @pytest.mark.asyncio
    async def test_blank_answer_is_rejected(self, database, seeded, orchestrator):
        async with database.session() as session:
            with pytest.raises(ValidationError):
                await orchestrator.submit(session, FREE_USER, FeedbackSubmission(seeded["question_id"], "   "))
