import json
import math
import logging
import re
from typing import Any, Dict, List, Optional

from ..components.errors import DataShapeError
from .rubric import RUBRIC, TOTAL_MAX_SCORE

logger = logging.getLogger(__name__)

FENCED_JSON_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)

# Claim lists have been returned under both names by the judge
INCORRECT_CLAIMS_KEYS = ("incorrect_or_risky_claims", "incorrectClaims")


def parse_llm_response(raw_response: str) -> Dict[str, Any]:
    """
    Parses the judge's raw answer into the feedback shape.

    Args:
        raw_response: Raw judge answer (string).

    Returns:
        Dict in the form:
        {
          "totalScore": int,
          "sections": [{"name", "score", "feedback"}, ...],
          "strengths": [...],
          "improvements": [...],
          "incorrectClaims": [...],
        }
        If the answer cannot be parsed, the zero feedback is returned with an
        "error" key instead of raising.
    """
    try:
        parsed = _extract_json(raw_response)
    except DataShapeError as e:
        logger.warning(f"Judge returned malformed JSON, using defaults. Error: {e}\nAnswer: {raw_response!r}")
        return _get_default_response(error=e.message)

    return normalize_feedback(parsed)


def normalize_feedback(parsed: Dict[str, Any]) -> Dict[str, Any]:
    """Fills missing fields with defaults and coerces types, never raises"""
    feedback = {
        "totalScore": _coerce_score(parsed.get("totalScore", parsed.get("total_score")), TOTAL_MAX_SCORE, "totalScore"),
        "sections": _coerce_sections(parsed.get("sections")),
        "strengths": _coerce_text_list(parsed.get("strengths"), "strengths"),
        "improvements": _coerce_text_list(parsed.get("improvements"), "improvements"),
        "incorrectClaims": [],
    }

    for key in INCORRECT_CLAIMS_KEYS:
        if key in parsed:
            feedback["incorrectClaims"] = _coerce_text_list(parsed[key], key)
            break

    if feedback["sections"] and len(feedback["sections"]) != len(RUBRIC):
        logger.warning(
            f"Judge returned {len(feedback['sections'])} sections, rubric has {len(RUBRIC)}; keeping them as-is."
        )

    return feedback


def _extract_json(raw_response: str) -> Dict[str, Any]:
    if not isinstance(raw_response, str) or not raw_response.strip():
        raise DataShapeError("empty answer")

    # 1. ```json ... ``` block
    match = FENCED_JSON_RE.search(raw_response)
    if match:
        json_str = match.group(1).strip()
    else:
        # 2. Outermost {...} (handles leading/trailing prose)
        start = raw_response.find("{")
        end = raw_response.rfind("}")
        if start == -1 or end <= start:
            raise DataShapeError("no JSON object found")
        json_str = raw_response[start:end + 1]

    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise DataShapeError(f"invalid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise DataShapeError("JSON root is not an object")
    return parsed


def _coerce_score(value: Any, upper: int, field: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        logger.warning(f"Field '{field}' is not a number, using 0.")
        return 0
    try:
        score = int(round(float(value)))
    except (ValueError, OverflowError):
        logger.warning(f"Field '{field}' is not a number, using 0.")
        return 0
    return max(0, min(upper, score))


def _coerce_text_list(value: Any, field: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        logger.warning(f"Field '{field}' is not a list, using an empty list.")
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


def _coerce_sections(value: Any) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        logger.warning("Field 'sections' is not a list, using an empty list.")
        return []

    sections = []
    for item in value:
        if not isinstance(item, dict) or not item.get("name"):
            logger.warning(f"Dropping malformed section: {item!r}")
            continue
        score = item.get("score")
        # Per-section scores are 0-20 by convention only
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
            score = 0
        sections.append({
            "name": str(item["name"]),
            "score": int(round(score)),
            "feedback": str(item.get("feedback") or ""),
        })
    return sections


def _get_default_response(error: Optional[str] = None) -> Dict[str, Any]:
    """
    Zero feedback used when the answer cannot be parsed.
    """
    base_response = {
        "totalScore": 0,
        "sections": [],
        "strengths": [],
        "improvements": [],
        "incorrectClaims": [],
    }
    if error:
        base_response["error"] = error
    return base_response
