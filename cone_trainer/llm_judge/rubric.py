import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
TRUTH_SET_PATH = BASE_DIR / "data" / "truth_set.json"

SECTION_MAX_SCORE = 20
TOTAL_MAX_SCORE = 100


@dataclass(frozen=True)
class RubricDimension:
    """
    One scoring dimension:

    - name: section name the judge must return
    - focus: what the rep is graded on, taken from the truth set
    """
    name: str
    focus: str


RUBRIC: List[RubricDimension] = [
    RubricDimension(
        name="Core Message Accuracy",
        focus="Universal geometry, ream-only, taper angles, tray count",
    ),
    RubricDimension(
        name="Clinical & Surgical Workflow Accuracy",
        focus="Indications, ream-only benefit, orientation rules: Tibia M/L, Femur A/P",
    ),
    RubricDimension(
        name="Data & Proof Points",
        focus="Tray count 1 vs 10-12, $1,350 savings, 44% femoral utilization",
    ),
    RubricDimension(
        name="Competitive Positioning",
        focus="Contrasting TJO vs Stryker/DePuy/Zimmer accurately",
    ),
    RubricDimension(
        name="Compliance",
        focus="NO hinge claims, NO arbitrary rotation claims, NO identical depth claims",
    ),
]


@lru_cache(maxsize=1)
def load_truth_set() -> Dict[str, Any]:
    """Loads truth_set.json (once per process)"""
    try:
        with open(TRUTH_SET_PATH, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        logger.error(f"Truth set not found: {TRUTH_SET_PATH}")
        raise
