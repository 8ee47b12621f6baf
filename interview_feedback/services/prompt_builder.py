"""
Feedback prompt construction.

Renders one deterministic prompt from the interview question, the candidate's
(already preprocessed) answer and the category's grading criteria, including
the JSON response contract the feedback processor validates.
"""
from typing import List, Optional


SYSTEM_PROMPT = (
    "You are an expert interviewer and feedback provider. Your goal is to help users "
    "improve their interview answers by providing structured, actionable, and constructive "
    "feedback. Always respond in valid JSON as specified."
)

# Keys the model must return, in the order the prompt describes them
RESPONSE_KEYS = (
    "overallFeedback",
    "score",
    "strengthPoints",
    "improvementAreas",
    "detailedFeedback",
    "criteriaScores",
)

RESPONSE_SCHEMA_DESCRIPTION = """Your response must be a JSON object with the following keys:
1.  `overallFeedback`: A concise string summarizing the candidate's overall performance.
2.  `score`: A number (0-100) representing the overall numerical score for the answer. Provide 0 if the answer is too short or irrelevant.
3.  `strengthPoints`: An array of strings, each representing a distinct strength point from the candidate's answer, directly relating to the Key Elements or Overall Guidelines.
4.  `improvementAreas`: An array of strings, each representing a distinct area for improvement, directly relating to the Key Elements, Overall Guidelines, or Red Flags. Focus on actionable advice.
5.  `detailedFeedback`: A string that can be used for display, combining strengths, improvement areas, and the overall score into a readable text format (e.g. "Strengths:\\n- Point 1\\n\\nImprovement Areas:\\n- Point 1\\n\\nScore: 85/100").
6.  `criteriaScores`: An object where keys are the names of the criteria and values are numbers (0-100) indicating the score for that specific criterion. Only include scores for the criteria relevant to the question."""

DEGENERATE_ANSWER_POLICY = """If the candidate's answer is too short, irrelevant, or cannot be meaningfully evaluated against the criteria:
-   `overallFeedback` should state this clearly.
-   `score` should be 0.
-   `strengthPoints` and `improvementAreas` should be empty arrays `[]`.
-   `detailedFeedback` should provide a polite message indicating insufficient content.
-   `criteriaScores` should be an empty object `{}`."""

EXAMPLE_RESPONSE = """Example JSON output:
{
  "overallFeedback": "The candidate provided a structured answer, demonstrating good grasp of foundational concepts, though lacked depth in specific areas.",
  "score": 75,
  "strengthPoints": [
    "Clearly explained the basic components of X.",
    "Demonstrated a logical thought process for Y."
  ],
  "improvementAreas": [
    "Needs to elaborate on edge cases for Z.",
    "Could provide more concrete examples from practical experience."
  ],
  "detailedFeedback": "Strengths:\\n- Clearly explained the basic components of X.\\n- Demonstrated a logical thought process for Y.\\n\\nImprovement Areas:\\n- Needs to elaborate on edge cases for Z.\\n- Could provide more concrete examples from practical experience.\\n\\nScore: 75/100",
  "criteriaScores": {
    "Technical Depth": 70,
    "Communication Clarity": 80
  }
}"""


def split_criteria(key_elements: Optional[str]) -> List[str]:
    """Split comma-separated key elements into trimmed, non-empty names."""
    if not key_elements:
        return []
    return [item.strip() for item in key_elements.split(",") if item.strip()]


def build_feedback_prompt(
    question: str,
    answer: str,
    overall_guidelines: Optional[str],
    key_elements: Optional[str],
    red_flags: Optional[str] = None,
) -> str:
    """
    Build the user prompt for feedback generation.

    Every supplied criteria component is rendered verbatim; missing ones get
    an explicit placeholder line instead of being dropped silently.

    Args:
        question: The interview question text
        answer: The candidate's answer (already preprocessed)
        overall_guidelines: Category-wide grading guidelines
        key_elements: Comma-separated key elements to evaluate
        red_flags: Optional comma-separated red flags

    Returns:
        The complete prompt string
    """
    criteria = split_criteria(key_elements)

    sections = [
        "You are an expert technical interviewer and feedback provider. Your goal is to help "
        "users improve their interview answers by providing structured, actionable, and "
        "constructive feedback based ONLY on the provided context and criteria.",
        "",
        f'**Interview Question:** "{question}"',
        f'**Candidate\'s Answer:** "{answer}"',
        "",
        f"**Overall Interview Guidelines:** {overall_guidelines or 'No general guidelines provided.'}",
        f"**Key Elements to Evaluate:** {key_elements or 'No specific key elements defined.'}",
    ]
    if red_flags:
        sections.append(f"**Common Red Flags to Avoid:** {red_flags}")

    sections += ["", RESPONSE_SCHEMA_DESCRIPTION]
    if criteria:
        names = ", ".join(f'"{c}"' for c in criteria)
        sections.append(f"Use these criterion names as the `criteriaScores` keys: {names}.")

    sections += ["", DEGENERATE_ANSWER_POLICY, "", EXAMPLE_RESPONSE]
    return "\n".join(sections)
