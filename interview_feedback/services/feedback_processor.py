"""
Processing of raw AI feedback responses.

Turns the model's JSON string into:
1. The shape the frontend displays (``overallFeedback`` / ``detailedFeedback``)
2. The fields persisted as a feedback record

Malformed output never raises. It is downgraded to a uniform "feedback
unavailable" shape with empty lists and a null score, so callers have one
code path for display.
"""
import json
import logging
import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


UNAVAILABLE_PREFIX = "Feedback unavailable"

SENTIMENT_THRESHOLDS: Tuple[Tuple[int, str], ...] = (
    (80, "Excellent"),
    (70, "Good"),
    (60, "Satisfactory"),
    (50, "Needs Improvement"),
)

_SCORE_RE = re.compile(r"Score:\s*(\d+)(?:\s*/\s*\d+)?", re.IGNORECASE)
_STRENGTHS_RE = re.compile(
    r"Strengths:[ \t]*\n(.*?)(?=\n\s*(?:Improvement Areas|Areas for Improvement):|\n\s*(?:Overall\s+)?Score:|\Z)",
    re.IGNORECASE | re.DOTALL,
)
_IMPROVEMENTS_RE = re.compile(
    r"(?:Improvement Areas|Areas for Improvement):[ \t]*\n(.*?)(?=\n\s*(?:Overall\s+)?Score:|\Z)",
    re.IGNORECASE | re.DOTALL,
)
_BULLET_RE = re.compile(r"^(?:[*\-•]|\d+[.)])\s*")
_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")


# =============================================================================
# Result Types
# =============================================================================

@dataclass
class OverallFeedback:
    """Overall feedback as shown on the results page."""
    raw_content: str
    summary: str
    detailed_points: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    sentiment: str = "N/A"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rawContent": self.raw_content,
            "summary": self.summary,
            "detailedPoints": list(self.detailed_points),
            "suggestions": list(self.suggestions),
            "sentiment": self.sentiment,
        }


@dataclass
class FeedbackRecordData:
    """Column values for a persisted feedback record."""
    feedback_content: str
    strength_points: List[str] = field(default_factory=list)
    improvement_areas: List[str] = field(default_factory=list)
    score: Optional[int] = None
    full_detailed_text: str = ""
    criteria_scores: Dict[str, float] = field(default_factory=dict)
    weighted_score: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProcessedFeedback:
    """Display shape plus the persistence sub-field."""
    overall_feedback: OverallFeedback
    detailed_feedback: str
    detailed_feedback_for_db: FeedbackRecordData
    is_error: bool = False

    def to_frontend(self) -> Dict[str, Any]:
        return {
            "overallFeedback": self.overall_feedback.to_dict(),
            "detailedFeedback": self.detailed_feedback,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_frontend()
        data["detailedFeedbackForDb"] = self.detailed_feedback_for_db.to_dict()
        return data


# =============================================================================
# Helpers
# =============================================================================

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints too large for a float
        return False


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _clean_json_response(response: str) -> str:
    """Strip markdown code fences some models wrap JSON in."""
    cleaned = response.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        cleaned = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    return cleaned.strip()


def _bullet_lines(block: str) -> List[str]:
    lines = (_BULLET_RE.sub("", line.strip()).strip() for line in block.split("\n"))
    return [line for line in lines if line]


def extract_summary(text: str, max_sentences: int = 2) -> str:
    """First couple of sentences of a feedback text."""
    sentences = [s for s in _SENTENCE_END_RE.split(text.strip()) if s]
    if len(sentences) <= max_sentences:
        return text.strip()
    return " ".join(sentences[:max_sentences])


def extract_score(text: str) -> Optional[int]:
    """Parse "Score: 85" or "Score: 85/100" out of a detailed feedback text."""
    match = _SCORE_RE.search(text or "")
    return int(match.group(1)) if match else None


def extract_strength_points(text: str) -> List[str]:
    """Bullet lines of the "Strengths:" section."""
    match = _STRENGTHS_RE.search(text or "")
    return _bullet_lines(match.group(1)) if match else []


def extract_improvement_areas(text: str) -> List[str]:
    """Bullet lines of the "Improvement Areas:" section."""
    match = _IMPROVEMENTS_RE.search(text or "")
    return _bullet_lines(match.group(1)) if match else []


def calculate_weighted_score(
    criteria_scores: Optional[Mapping[str, Any]],
    weights: Optional[Mapping[str, float]] = None,
) -> Optional[int]:
    """
    Weighted mean of the per-criterion scores, rounded.

    Criteria default to weight 1. Non-numeric and non-finite scores are
    ignored. Returns None when there is nothing to average.
    """
    if not criteria_scores:
        return None

    weights = weights or {}
    total_score = 0.0
    total_weight = 0.0
    for criterion, score in criteria_scores.items():
        if not _is_number(score):
            continue
        weight = weights.get(criterion, 1)
        total_score += score * weight
        total_weight += weight

    if total_weight <= 0:
        return None
    mean = total_score / total_weight
    return _round_half_up(mean) if math.isfinite(mean) else None


def sentiment_from_score(score: Optional[float]) -> str:
    """Map a 0-100 score to a display label."""
    if score is None:
        return "N/A"
    for threshold, label in SENTIMENT_THRESHOLDS:
        if score >= threshold:
            return label
    return "Poor"


def validate_feedback_response(data: Any) -> Optional[str]:
    """
    Check the parsed response against the feedback schema.

    Returns:
        None when valid, otherwise a short description of the first problem
    """
    if not isinstance(data, dict):
        return "response is not a JSON object"
    if not isinstance(data.get("overallFeedback"), str):
        return "overallFeedback must be a string"
    score = data.get("score")
    if not _is_number(score):
        return "score must be a number"
    if not 0 <= score <= 100:
        return "score must be between 0 and 100"
    if not _is_string_list(data.get("strengthPoints")):
        return "strengthPoints must be a list of strings"
    if not _is_string_list(data.get("improvementAreas")):
        return "improvementAreas must be a list of strings"
    if not isinstance(data.get("detailedFeedback"), str):
        return "detailedFeedback must be a string"
    if not isinstance(data.get("criteriaScores"), dict):
        return "criteriaScores must be an object"
    return None


def compose_detailed_text(strengths: List[str], improvements: List[str], score: Optional[int]) -> str:
    """Render strengths, improvement areas and score as display text."""
    parts = []
    if strengths:
        parts.append("Strengths:\n" + "\n".join(f"- {p}" for p in strengths))
    if improvements:
        parts.append("Improvement Areas:\n" + "\n".join(f"- {p}" for p in improvements))
    if score is not None:
        parts.append(f"Score: {score}/100")
    return "\n\n".join(parts)


def error_feedback(message: str) -> ProcessedFeedback:
    """The uniform shape returned whenever the AI output can't be used."""
    text = f"{UNAVAILABLE_PREFIX}: {message} Please try again later."
    return ProcessedFeedback(
        overall_feedback=OverallFeedback(
            raw_content=text,
            summary=text,
            detailed_points=[],
            suggestions=[],
            sentiment=sentiment_from_score(None),
        ),
        detailed_feedback=text,
        detailed_feedback_for_db=FeedbackRecordData(
            feedback_content=text,
            strength_points=[],
            improvement_areas=[],
            score=None,
            full_detailed_text=text,
            criteria_scores={},
            weighted_score=None,
        ),
        is_error=True,
    )


# =============================================================================
# Processor
# =============================================================================

def process_feedback(
    raw_response: Optional[str],
    criteria_weights: Optional[Mapping[str, float]] = None,
) -> ProcessedFeedback:
    """
    Parse, validate and reshape a raw AI feedback response.

    Args:
        raw_response: The model's message content (expected JSON)
        criteria_weights: Optional per-criterion weights for the weighted score

    Returns:
        ProcessedFeedback; ``is_error`` is set when the response was unusable
    """
    try:
        data = json.loads(_clean_json_response(raw_response or ""))
    except (json.JSONDecodeError, TypeError) as e:
        preview = (raw_response or "")[:200]
        logger.warning(f"Failed to parse AI response as JSON: {e}. Raw (partial): {preview!r}")
        return error_feedback("The AI response was not in the expected format.")

    problem = validate_feedback_response(data)
    if problem:
        logger.warning(f"Invalid AI feedback structure: {problem}")
        return error_feedback("The AI response was missing required feedback fields.")

    try:
        overall_text = data["overallFeedback"]
        raw_score = data["score"]
        score = raw_score if isinstance(raw_score, int) else _round_half_up(raw_score)
        strengths = [s.strip() for s in data["strengthPoints"] if s.strip()]
        improvements = [s.strip() for s in data["improvementAreas"] if s.strip()]
        # Stored criteria must serialize as strict JSON, so Infinity and NaN are dropped
        criteria_scores = {
            name: value for name, value in data["criteriaScores"].items()
            if not (isinstance(value, float) and not math.isfinite(value))
        }
        weighted_score = calculate_weighted_score(criteria_scores, criteria_weights)
    except Exception as e:
        logger.error(f"Failed to extract AI feedback fields: {e}", exc_info=True)
        return error_feedback("The AI response could not be processed.")

    detailed_text = data["detailedFeedback"].strip() or compose_detailed_text(strengths, improvements, score)
    if not detailed_text:
        detailed_text = "Detailed feedback was not available."

    logger.info(f"Processed AI feedback: score={score}, weighted_score={weighted_score}, criteria={len(criteria_scores)}")

    return ProcessedFeedback(
        overall_feedback=OverallFeedback(
            raw_content=overall_text,
            summary=extract_summary(overall_text),
            detailed_points=strengths + improvements,
            suggestions=list(improvements),
            sentiment=sentiment_from_score(score),
        ),
        detailed_feedback=detailed_text,
        detailed_feedback_for_db=FeedbackRecordData(
            feedback_content=overall_text,
            strength_points=strengths,
            improvement_areas=improvements,
            score=score,
            full_detailed_text=detailed_text,
            criteria_scores=criteria_scores,
            weighted_score=weighted_score,
        ),
    )


def parse_detailed_text(overall_feedback: str, detailed_feedback: str) -> FeedbackRecordData:
    """
    Rebuild record fields from display text (used by the save-response flow).
    """
    return FeedbackRecordData(
        feedback_content=overall_feedback,
        strength_points=extract_strength_points(detailed_feedback),
        improvement_areas=extract_improvement_areas(detailed_feedback),
        score=extract_score(detailed_feedback),
        full_detailed_text=detailed_feedback,
        criteria_scores={},
        weighted_score=None,
    )


def generate_criteria_report(processed: ProcessedFeedback) -> str:
    """Plain-text per-criterion report for logs and exports."""
    record = processed.detailed_feedback_for_db
    if processed.is_error:
        return record.feedback_content

    lines = [
        f"Overall score: {record.score if record.score is not None else 'N/A'} "
        f"({sentiment_from_score(record.score)})",
        f"Weighted criteria score: {record.weighted_score if record.weighted_score is not None else 'N/A'}",
    ]
    for criterion, score in record.criteria_scores.items():
        if _is_number(score):
            lines.append(f"- {criterion}: {score} ({sentiment_from_score(score)})")
        else:
            lines.append(f"- {criterion}: N/A")
    return "\n".join(lines)
