import json
from typing import Dict, List

from ..components.context import serialize_transcript
from .rubric import RUBRIC, SECTION_MAX_SCORE, TOTAL_MAX_SCORE, load_truth_set

JUDGE_SYSTEM_PROMPT = (
    "You are an expert sales coach for orthopedic devices. "
    "Evaluate strictly against the provided Truth Set. "
    "Return ONLY valid JSON, no other text."
)


def build_evaluate_prompt(transcript: List[Dict[str, str]]) -> str:
    """
    Builds the scoring prompt: surgeon profile, truth set, transcript and the
    five rubric dimensions.
    """
    truth_set = load_truth_set()

    dimensions = "\n".join(
        f"{i}. {dimension.name} ({dimension.focus})"
        for i, dimension in enumerate(RUBRIC, start=1)
    )

    # Skeleton the model should fill in
    expected_json_schema = {
        "totalScore": 0,
        "sections": [
            {"name": dimension.name, "score": 0, "feedback": ""}
            for dimension in RUBRIC
        ],
        "strengths": [],
        "improvements": [],
        "incorrect_or_risky_claims": [],
    }

    prompt = f"""
Analyze the following sales conversation between a Rep and Dr. Hayes (Surgeon).

Surgeon Profile: Uses Stryker cones, likes reaming, dislikes broaching.
Goal: Rep needs to position TJO Universal Cones effectively against Stryker using the Truth Set provided.

TRUTH SET DATA:
{json.dumps(truth_set, indent=2)}

Transcript:
{serialize_transcript(transcript)}

Evaluate based on these specific dimensions from the truth set:
{dimensions}

Scoring:
- Each section is scored 0-{SECTION_MAX_SCORE}.
- totalScore (0-{TOTAL_MAX_SCORE}) is the sum of the section scores.
- incorrect_or_risky_claims lists every false claim or compliance violation made by the Rep.

Return a JSON object with exactly these keys:

{json.dumps(expected_json_schema, indent=2)}
"""
    return prompt.strip()
