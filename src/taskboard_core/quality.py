"""Requirement quality heuristics.

Scoring, test-case synthesis and duplicate similarity are pure functions of
their inputs. A real NLP or LLM backend would sit behind these signatures;
none is called here.
"""
import uuid
from typing import Callable, Optional

from .models import RequirementType

BASE_SCORE = 70
MIN_TITLE_LENGTH = 10
MIN_DESCRIPTION_LENGTH = 50

# Hedge words are matched as substrings of the lower-cased description
AMBIGUOUS_WORDS = ("maybe", "probably", "some", "several", "many")

TITLE_SUGGESTION = "Title should be more descriptive (at least 10 characters)"
DESCRIPTION_SUGGESTION = "Description should be more detailed (at least 50 characters)"
CRITERIA_SUGGESTION = "Add acceptance criteria to make the requirement testable"
AMBIGUITY_SUGGESTION = "Avoid ambiguous language - be specific and measurable"
FUNCTIONAL_SUGGESTION = "Functional requirements should clearly state what the system should do"

TITLE_SIMILARITY_THRESHOLD = 0.8
DESCRIPTION_SIMILARITY_THRESHOLD = 0.7


def perform_ai_analysis(
    title: str,
    description: str,
    requirement_type: RequirementType,
    acceptance_criteria: list[str],
) -> dict:
    """
    Score a requirement and explain every deduction.

    Starts at 70 and subtracts: short title (10), short description (15),
    no acceptance criteria (20), ambiguous wording (10), functional
    requirement without "should" (5). The result is clamped to [0, 100].

    Returns:
        Dict with ``quality_score``, ``suggestions``, ``completeness`` and
        ``potential_issues``
    """
    title = title or ""
    description = description or ""
    acceptance_criteria = acceptance_criteria or []
    lowered = description.lower()

    suggestions = []
    score = BASE_SCORE

    if len(title) < MIN_TITLE_LENGTH:
        suggestions.append(TITLE_SUGGESTION)
        score -= 10

    if len(description) < MIN_DESCRIPTION_LENGTH:
        suggestions.append(DESCRIPTION_SUGGESTION)
        score -= 15

    if not acceptance_criteria:
        suggestions.append(CRITERIA_SUGGESTION)
        score -= 20

    if any(word in lowered for word in AMBIGUOUS_WORDS):
        suggestions.append(AMBIGUITY_SUGGESTION)
        score -= 10

    if RequirementType(requirement_type) == RequirementType.FUNCTIONAL and "should" not in lowered:
        suggestions.append(FUNCTIONAL_SUGGESTION)
        score -= 5

    return {
        "quality_score": max(0, min(100, score)),
        "suggestions": suggestions,
        "completeness": {
            "has_title": len(title) > 0,
            "has_description": len(description) > 0,
            "has_acceptance_criteria": len(acceptance_criteria) > 0,
            "is_testable": len(acceptance_criteria) > 0,
        },
        "potential_issues": list(suggestions),
    }


def _default_id_factory() -> Callable[[str], str]:
    batch = uuid.uuid4().hex[:12]
    return lambda suffix: f"TC-{batch}-{suffix}"


def build_test_cases(
    title: str,
    requirement_type: RequirementType,
    acceptance_criteria: list[str],
    id_factory: Optional[Callable[[str], str]] = None,
) -> list[dict]:
    """
    Synthesize test cases from acceptance criteria.

    One functional case per criterion, plus a boundary case for functional
    requirements. Ids share a per-call batch prefix and are unique within
    the call.
    """
    make_id = id_factory or _default_id_factory()
    test_cases = []

    for index, criterion in enumerate(acceptance_criteria or [], start=1):
        test_cases.append({
            "id": make_id(str(index)),
            "title": f"Test case for: {criterion[:50]}...",
            "description": f"Verify that {criterion}",
            "steps": [
                "Setup test environment",
                "Execute the specified action",
                "Verify the expected outcome",
            ],
            "expected_result": criterion,
            "priority": "medium",
            "type": "functional",
        })

    if RequirementType(requirement_type) == RequirementType.FUNCTIONAL:
        test_cases.append({
            "id": make_id("edge"),
            "title": f"Edge case testing for {title}",
            "description": f"Test boundary conditions and edge cases for {title}",
            "steps": [
                "Identify boundary values",
                "Test with minimum values",
                "Test with maximum values",
                "Test with invalid inputs",
            ],
            "expected_result": "System handles edge cases gracefully",
            "priority": "high",
            "type": "boundary",
        })

    return test_cases


def calculate_similarity(first: str, second: str) -> float:
    """Jaccard similarity of lower-cased whitespace tokens. Empty inputs score 0."""
    first_words = set((first or "").lower().split())
    second_words = set((second or "").lower().split())
    union = first_words | second_words
    if not union:
        return 0.0
    return len(first_words & second_words) / len(union)


def is_potential_duplicate(title: str, description: str, other_title: str, other_description: str) -> bool:
    return (
        calculate_similarity(title, other_title) > TITLE_SIMILARITY_THRESHOLD
        or calculate_similarity(description, other_description) > DESCRIPTION_SIMILARITY_THRESHOLD
    )
