"""
Rule-based efficiency suggestions derived from stored metrics.

Implementing a suggestion records the score before and after, and keeps a
running `aiEfficiencyImpact` metric with the minutes saved on the PR.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.database import replace_set, utcnow
from .metrics import metric_description
from .models import AISuggestion, ImpactLevel, PRMetric, PullRequest
from .scoring import update_pr_scores

logger = logging.getLogger(__name__)

IMPACT_METRIC = "aiEfficiencyImpact"

# metric name -> (score below which to suggest, message, minutes saved, impact)
EFFICIENCY_RULES = {
    "prCycleTime": (
        70,
        "Consider breaking down this PR into smaller, focused changes to reduce cycle time.",
        30,
        ImpactLevel.HIGH,
    ),
    "prSizeOptimization": (
        80,
        "This PR is larger than optimal. Consider dividing it into multiple PRs focused on specific changes.",
        45,
        ImpactLevel.MEDIUM,
    ),
    "reviewResponseTime": (
        75,
        "Speed up the review cycle by addressing comments more promptly or requesting reviews earlier.",
        60,
        ImpactLevel.MEDIUM,
    ),
    "commitFrequency": (
        70,
        "Commit more frequently with smaller, focused changes to make review easier and increase development velocity.",
        25,
        ImpactLevel.LOW,
    ),
}


def generate_efficiency_suggestions(pr_id: str, efficiency_scores: Dict[str, float]) -> List[Dict[str, Any]]:
    """Suggestion rows for every efficiency metric scoring under its rule's threshold"""
    suggestions = []
    for name, (threshold, message, minutes, impact) in EFFICIENCY_RULES.items():
        score = efficiency_scores.get(name)
        if score is None or score >= threshold:
            continue
        suggestions.append(
            {
                "pull_request_id": str(pr_id),
                "category": "efficiency",
                "impact_area": name,
                "message": message,
                "estimated_time_saving": minutes,
                "impact_level": impact,
                "is_implemented": False,
                "before_score": score,
            }
        )
    return suggestions


async def store_efficiency_suggestions(session: AsyncSession, pr_id: str) -> int:
    """
    Regenerate the open suggestions of a PR from its stored efficiency metrics.

    Suggestions already marked implemented are kept.
    """
    pr_id = str(pr_id)
    result = await session.execute(
        select(PRMetric.name, PRMetric.value).where(
            PRMetric.pull_request_id == pr_id,
            PRMetric.category == "efficiency",
        )
    )
    scores = {name: value for name, value in result.all()}
    rows = generate_efficiency_suggestions(pr_id, scores)
    count = await replace_set(
        session,
        AISuggestion,
        AISuggestion.pull_request_id,
        pr_id,
        rows,
        AISuggestion.is_implemented.is_(False),
    )
    if count:
        logger.info(f"Stored {count} efficiency suggestions for PR {pr_id}")
    return count


async def mark_suggestion_implemented(
    session: AsyncSession, suggestion_id: int, after_score: Optional[float] = None
) -> AISuggestion:
    """
    Mark a suggestion implemented and rescore its PR.

    The PR's efficiency score at the first implementation is kept as
    `initial_efficiency_score`.

    Raises:
        LookupError: If the suggestion or its PR does not exist
    """
    suggestion = await session.get(AISuggestion, suggestion_id)
    if suggestion is None:
        raise LookupError(f"Suggestion {suggestion_id} not found")
    pull_request = await session.get(PullRequest, suggestion.pull_request_id)
    if pull_request is None:
        raise LookupError(f"PR {suggestion.pull_request_id} not found")

    suggestion.is_implemented = True
    suggestion.implemented_at = utcnow()
    suggestion.after_score = after_score if after_score is not None else pull_request.efficiency_score
    await session.commit()

    result = await session.execute(
        select(AISuggestion).where(
            AISuggestion.pull_request_id == pull_request.id,
            AISuggestion.category == "efficiency",
            AISuggestion.is_implemented.is_(True),
        )
    )
    implemented = result.scalars().all()
    total_saved = sum(s.estimated_time_saving or 0 for s in implemented)

    if len(implemented) == 1:
        pull_request.initial_efficiency_score = pull_request.efficiency_score

    result = await session.execute(
        select(PRMetric).where(PRMetric.pull_request_id == pull_request.id, PRMetric.name == IMPACT_METRIC)
    )
    impact = result.scalar_one_or_none()
    if impact is None:
        session.add(
            PRMetric(
                pull_request_id=pull_request.id,
                category="efficiency",
                name=IMPACT_METRIC,
                value=total_saved,
                raw_value=total_saved,
                unit="minutes",
                description=metric_description(IMPACT_METRIC, "efficiency"),
            )
        )
    else:
        impact.value = total_saved
        impact.raw_value = total_saved
    await session.commit()

    await update_pr_scores(session, pull_request.id)
    logger.info(
        f"Suggestion {suggestion_id} implemented, "
        f"estimated saving {suggestion.estimated_time_saving} minutes ({total_saved} total on PR)"
    )
    return suggestion
