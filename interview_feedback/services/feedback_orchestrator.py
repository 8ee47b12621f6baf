"""
End-to-end feedback submission flow.

Per request the submission moves through:

    Received -> Authorized -> EligibilityChecked -> ContextLoaded -> Prompted
             -> Generated -> Processed -> Persisted

or ends in Rejected (auth / quota / not found) or Failed (generation or
storage). Exactly one feedback record is inserted on the success path and
none on any other path.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from .errors import (
    AuthenticationError,
    FeedbackServiceError,
    PersistenceError,
    ValidationError,
)
from .feedback_processor import ProcessedFeedback, generate_criteria_report, process_feedback
from .feedback_service import check_eligibility, ensure_eligible, insert_feedback_within_quota
from .generation_client import GenerationClient
from .prompt_builder import build_feedback_prompt
from .question_service import load_question_context
from .text_preprocessor import PreprocessOptions, PreprocessResult, TextPreprocessor

logger = logging.getLogger(__name__)


class SubmissionStage(str, Enum):
    """Where a submission is in the flow."""
    RECEIVED = "Received"
    AUTHORIZED = "Authorized"
    ELIGIBILITY_CHECKED = "EligibilityChecked"
    CONTEXT_LOADED = "ContextLoaded"
    PROMPTED = "Prompted"
    GENERATED = "Generated"
    PROCESSED = "Processed"
    PERSISTED = "Persisted"
    REJECTED = "Rejected"
    FAILED = "Failed"


# Errors raised before generation are rejections, everything later is a failure
_REJECTION_STAGES = (
    SubmissionStage.RECEIVED,
    SubmissionStage.AUTHORIZED,
    SubmissionStage.ELIGIBILITY_CHECKED,
)


@dataclass
class FeedbackSubmission:
    """An answer submission. Not persisted as such."""
    question_id: Optional[int]
    user_answer: Optional[str]
    diagram_data: Optional[Any] = None
    time_spent_seconds: Optional[int] = None
    word_count: Optional[int] = None


@dataclass
class SubmissionResult:
    """Outcome of a submission that reached a displayable result."""
    feedback: ProcessedFeedback
    feedback_id: Optional[int]
    preprocessing: PreprocessResult
    stages: List[SubmissionStage] = field(default_factory=list)

    @property
    def final_stage(self) -> SubmissionStage:
        return self.stages[-1]


class FeedbackOrchestrator:
    """
    Sequences preprocessing, prompt building, generation, processing and
    persistence for one answer submission, enforcing the feedback quota.
    """

    def __init__(
        self,
        generation_client: GenerationClient,
        preprocessor: Optional[TextPreprocessor] = None,
        quota: int = 2,
        preprocess_options: Optional[PreprocessOptions] = None,
        db_timeout_seconds: float = 10.0,
    ):
        self.generation_client = generation_client
        self.preprocessor = preprocessor or TextPreprocessor()
        self.quota = quota
        self.preprocess_options = preprocess_options or PreprocessOptions()
        self.db_timeout_seconds = db_timeout_seconds

    @classmethod
    def from_settings(cls, generation_client: GenerationClient, settings: Settings) -> "FeedbackOrchestrator":
        return cls(
            generation_client=generation_client,
            quota=settings.feedback_quota,
            preprocess_options=PreprocessOptions(
                max_length=settings.preprocess_max_length,
                target_reduction_ratio=settings.preprocess_target_reduction,
                aggressive=settings.preprocess_aggressive,
            ),
            db_timeout_seconds=settings.db_timeout_seconds,
        )

    async def _db(self, awaitable: Awaitable[Any], action: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.db_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Database timed out while {action} (>{self.db_timeout_seconds}s)")
            raise PersistenceError("Database request timed out. Please try again later.")

    async def submit(
        self,
        db: AsyncSession,
        user_id: Optional[str],
        submission: FeedbackSubmission,
    ) -> SubmissionResult:
        """
        Run one submission end to end.

        Args:
            db: Database session for this request
            user_id: Verified identity's uid (None when unauthenticated)
            submission: The answer submission

        Returns:
            SubmissionResult. When the model output was unusable the result
            carries the uniform error feedback and ``feedback_id`` is None.

        Raises:
            AuthenticationError, ValidationError, AuthorizationError,
            NotFoundError: the submission was rejected
            UpstreamError, PersistenceError: the submission failed
        """
        stages = [SubmissionStage.RECEIVED]

        def advance(stage: SubmissionStage) -> None:
            stages.append(stage)
            logger.info(f"Submission for user {user_id}: {stage.value}")

        try:
            return await self._run(db, user_id, submission, advance, stages)
        except FeedbackServiceError as e:
            outcome = SubmissionStage.REJECTED if stages[-1] in _REJECTION_STAGES else SubmissionStage.FAILED
            logger.warning(
                f"Submission for user {user_id} {outcome.value.lower()} after "
                f"{stages[-1].value}: {type(e).__name__}: {e.message}"
            )
            raise

    async def _run(self, db, user_id, submission, advance, stages) -> SubmissionResult:
        if not user_id:
            raise AuthenticationError()
        advance(SubmissionStage.AUTHORIZED)

        answer = (submission.user_answer or "").strip()
        if submission.question_id is None or not answer:
            raise ValidationError("questionId and userAnswer are required.")

        eligibility = await self._db(check_eligibility(db, user_id, self.quota), "checking eligibility")
        ensure_eligible(eligibility)
        advance(SubmissionStage.ELIGIBILITY_CHECKED)

        context = await self._db(load_question_context(db, submission.question_id), "loading the question")
        # End the read transaction so no connection is held during generation
        await self._db(db.commit(), "ending the read transaction")
        advance(SubmissionStage.CONTEXT_LOADED)

        preprocessing = self.preprocessor.preprocess(answer, self.preprocess_options)
        if preprocessing.warnings:
            logger.info(f"Answer preprocessing warnings: {preprocessing.warnings}")
        prompt_answer = preprocessing.processed_text or answer

        prompt = build_feedback_prompt(
            question=context.question_text,
            answer=prompt_answer,
            overall_guidelines=context.criteria.overall_guidelines,
            key_elements=context.criteria.key_elements_text,
            red_flags=context.criteria.red_flags_text,
        )
        advance(SubmissionStage.PROMPTED)

        raw_response = await self.generation_client.generate(prompt)
        advance(SubmissionStage.GENERATED)

        processed = process_feedback(raw_response)
        advance(SubmissionStage.PROCESSED)
        logger.info(f"Criteria report for question {context.question_id}:\n{generate_criteria_report(processed)}")

        if processed.is_error:
            # Unusable model output is shown to the user but not stored
            return SubmissionResult(
                feedback=processed,
                feedback_id=None,
                preprocessing=preprocessing,
                stages=stages,
            )

        feedback = await self._db(
            insert_feedback_within_quota(
                db,
                user_id=user_id,
                question_id=context.question_id,
                user_answer=answer,
                record=processed.detailed_feedback_for_db,
                quota=self.quota,
                time_spent_seconds=submission.time_spent_seconds,
                word_count=submission.word_count,
            ),
            "saving feedback",
        )
        advance(SubmissionStage.PERSISTED)

        return SubmissionResult(
            feedback=processed,
            feedback_id=feedback.feedback_id,
            preprocessing=preprocessing,
            stages=stages,
        )
