"""Score labels on merged pull requests"""

import logging
from typing import NamedTuple

from .metrics import clamp_score, round_half_up

logger = logging.getLogger(__name__)

SCORE_LABEL_PREFIXES = ("Wellcode Score:", "Wellcode:")

# (minimum score, band, color, description)
SCORE_BANDS = (
    (90, "Excellent", "0e8a16", "Excellent code quality (90-100)"),
    (75, "Good", "85cf32", "Good code quality (75-89)"),
    (60, "Average", "fbca04", "Average code quality (60-74)"),
    (40, "Needs Work", "f79232", "Needs improvement (40-59)"),
    (0, "Critical Issues", "d73a4a", "Significant issues detected (<40)"),
)


class ScoreLabel(NamedTuple):
    name: str
    color: str
    description: str


def generate_score_label(score: float) -> ScoreLabel:
    value = round_half_up(clamp_score(score))
    # Scores below every minimum fall into the lowest band
    _, band, color, description = next((b for b in SCORE_BANDS if value >= b[0]), SCORE_BANDS[-1])
    return ScoreLabel(f"Wellcode Score: {value} - {band}", color, description)


async def apply_score_label(github, pr_number: int, score: float) -> bool:
    """Replace any previous score label of the PR with one for `score`"""
    labels = await github.get_issue_labels(pr_number)
    for label in labels:
        name = label.get("name", "")
        if name.startswith(SCORE_LABEL_PREFIXES):
            await github.remove_label_from_pull_request(pr_number, name)
            logger.info(f"Removed existing score label: {name}")

    label = generate_score_label(score)
    added = await github.add_label_to_pull_request(pr_number, label.name, label.color, label.description)
    if added:
        logger.info(f"Added score label '{label.name}' to PR #{pr_number}")
    else:
        logger.warning(f"Failed to add score label to PR #{pr_number}")
    return added
