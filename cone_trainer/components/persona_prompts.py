"""
Persona prompt for the simulated surgeon (Dr. Hayes).
Handles system prompt building and reply cleaning.
"""
import json
import re
import logging
from functools import lru_cache

from ..llm_judge.rubric import load_truth_set

logger = logging.getLogger(__name__)

PERSONA_NAME = "Dr. Hayes"

GREETING = (
    "Hello. I'm Dr. Hayes. I understand you wanted to talk about some of the new "
    "revision options. I'm pretty busy, so what have you got?"
)

# The chat model requires the history to open with a human turn
PLACEHOLDER_USER_TURN = "[Sales rep enters the office]"

FALLBACK_REPLY = "I didn't catch that. Could you repeat?"

ROLE_PREFIX_RE = re.compile(r"^\s*(Dr\.?\s*Hayes|Surgeon|Doctor|Assistant|Rep|Sales rep)\s*[:\-–]\s*", re.IGNORECASE)
WS_RE = re.compile(r"\s+")

PERSONA_TEMPLATE = """
You are Dr. Hayes, a fellowship-trained orthopedic surgeon doing 20-25 revision TKAs per year.
You use Zimmer knees and Stryker cones.
You prefer ream-only techniques and dislike broaching or hand-burring.
You are open to Zimmer TM cones but currently use Stryker.
You are skeptical but willing to listen.

PRODUCT KNOWLEDGE (Total Joint Orthopedics Universal Cones):
{product}
COMPATIBILITY & ORIENTATION:
{compatibility}
WORKFLOW:
{workflow}

Your goal is to challenge the sales rep (the user) on:
- Why TJO Universal cones are better than Stryker.
- Technique benefits (reaming vs other methods).
- Workflow simplicity (TJO has 1 tray for cones, 3 for full system vs Stryker's 10-12).
- Taper angles (TJO has 12°, 18°, 24° for bone conservation).

Be professional, slightly busy/impatient, but fair.
Ask 1 follow-up question at a time.
Keep responses concise (under 50 words usually).

Do not admit you are an AI. Stick to the persona.
"""


@lru_cache(maxsize=1)
def build_system_prompt() -> str:
    """Persona prompt with the product, compatibility and workflow facts of the truth set"""
    truth_set = load_truth_set()
    prompt = PERSONA_TEMPLATE.format(
        product=json.dumps(truth_set.get("product", {}), indent=2, ensure_ascii=False),
        compatibility=json.dumps(truth_set.get("compatibility", {}), indent=2, ensure_ascii=False),
        workflow=json.dumps(truth_set.get("instrumentation_and_workflow", {}), indent=2, ensure_ascii=False),
    )
    logger.debug(f"Persona: System prompt built ({len(prompt)} chars)")
    return prompt.strip()


def clean_reply(text: str) -> str:
    """
    Normalize one model reply:
    - strips a leading speaker label ("Dr. Hayes: ...");
    - collapses whitespace and line breaks.
    Returns "" when nothing is left.
    """
    if not text:
        return ""
    text = ROLE_PREFIX_RE.sub("", text.strip())
    text = WS_RE.sub(" ", text)
    return text.strip().strip('"').strip()
