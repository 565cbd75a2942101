"""Persistence side of the scoring engine: metric sets, PR scores and feedback"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.database import replace_set, utcnow
from .entities import PullRequestContext, get_pull_request_context
from .metrics import MetricsContext, calculate_scores, metric_description
from .models import (
    Comment,
    Commit,
    PRFeedback,
    PRMetric,
    PullRequest,
    PullRequestFile,
    Review,
    pull_request_commits,
)

logger = logging.getLogger(__name__)

# Stored alongside the efficiency metrics but not a 0-100 score
SCORE_EXCLUDED_METRICS = {"aiEfficiencyImpact"}

FEEDBACK_TYPES = {"highlight", "suggestion", "warning", "error", "action_item"}


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def metric_rows(pr_id: str, metrics: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Flatten a metric map into PRMetric rows.

    Entries are bare numbers (used as raw value and score) or mappings with
    ``value`` or ``raw``, ``score``, ``unit`` and ``description``. Null and
    non-numeric entries are skipped.
    """
    rows = []
    for category, entries in (metrics or {}).items():
        for name, entry in (entries or {}).items():
            if isinstance(entry, dict):
                raw = entry.get("value")
                if raw is None:
                    raw = entry.get("raw")
                score = entry.get("score")
                unit = entry.get("unit")
                description = entry.get("description")
            else:
                raw = score = entry
                unit = description = None

            if raw is None:
                logger.warning(f"Skipping null value for {category}.{name}")
                continue
            raw_value, score_value = _as_number(raw), _as_number(score)
            if raw_value is None or score_value is None:
                logger.warning(f"Skipping non-numeric value for {category}.{name}: raw={raw}, score={score}")
                continue

            rows.append(
                {
                    "pull_request_id": pr_id,
                    "category": category,
                    "name": name,
                    "value": score_value,
                    "raw_value": raw_value,
                    "unit": unit,
                    "description": description or metric_description(name, category),
                }
            )
    return rows


async def store_metrics(session: AsyncSession, pr_id: str, metrics: Dict[str, Dict[str, Any]]) -> Optional[Dict[str, float]]:
    """
    Replace the metric set of a PR, rescore it and stamp the calculation time.

    Returns the new scores, or None if the PR is not stored.
    """
    pr_id = str(pr_id)
    rows = [row for row in metric_rows(pr_id, metrics) if row["name"] not in SCORE_EXCLUDED_METRICS]
    # The running suggestion impact survives a re-analysis
    count = await replace_set(
        session,
        PRMetric,
        PRMetric.pull_request_id,
        pr_id,
        rows,
        PRMetric.name.notin_(SCORE_EXCLUDED_METRICS),
    )
    logger.info(f"Stored {count} metrics for PR {pr_id}")

    scores = await update_pr_scores(session, pr_id)
    if scores is None:
        return None

    pull_request = await session.get(PullRequest, pr_id)
    pull_request.metrics_calculated_at = utcnow()
    await session.commit()
    return scores


async def load_stored_metrics(session: AsyncSession, pr_id: str) -> Dict[str, Dict[str, Dict[str, Any]]]:
    result = await session.execute(select(PRMetric).where(PRMetric.pull_request_id == str(pr_id)))
    metrics: Dict[str, Dict[str, Dict[str, Any]]] = {"efficiency": {}, "wellness": {}, "quality": {}}
    for row in result.scalars():
        metrics.setdefault(row.category, {})[row.name] = {
            "value": row.raw_value if row.raw_value is not None else row.value,
            "score": row.value,
            "unit": row.unit or "score",
            "description": row.description or metric_description(row.name, row.category),
        }
    return metrics


async def update_pr_scores(session: AsyncSession, pr_id: str) -> Optional[Dict[str, float]]:
    """Recompute the category and overall scores of a PR from its stored metrics alone"""
    context = await get_pull_request_context(session, pr_id)
    if context is None:
        logger.error(f"PR {pr_id} not found when updating scores")
        return None

    metrics = await load_stored_metrics(session, pr_id)
    scorable = {
        category: {name: entry for name, entry in entries.items() if name not in SCORE_EXCLUDED_METRICS}
        for category, entries in metrics.items()
    }
    scores = calculate_scores(scorable, context.account.settings)

    pull_request = context.pull_request
    pull_request.efficiency_score = scores["efficiency"]
    pull_request.wellness_score = scores["wellness"]
    pull_request.quality_score = scores["quality"]
    pull_request.overall_score = scores["overall"]
    await session.commit()

    logger.info(
        f"Updated scores for PR {pr_id}: efficiency={scores['efficiency']}, "
        f"wellness={scores['wellness']}, quality={scores['quality']}, overall={scores['overall']}"
    )
    return scores


async def store_feedback(session: AsyncSession, pr_id: str, feedback: Iterable[Dict[str, Any]]) -> int:
    """Replace the analysis feedback of a PR"""
    rows = []
    for item in feedback or []:
        if not isinstance(item, dict) or not item.get("message"):
            continue
        kind = item.get("type") if item.get("type") in FEEDBACK_TYPES else "suggestion"
        rows.append(
            {
                "pull_request_id": str(pr_id),
                "type": kind,
                "message": str(item["message"]),
                "code_context": item.get("codeContext"),
                "file_location": item.get("fileLocation"),
                "created_at": utcnow(),
            }
        )
    return await replace_set(session, PRFeedback, PRFeedback.pull_request_id, str(pr_id), rows)


async def load_metrics_context(
    session: AsyncSession,
    context: PullRequestContext,
    description: Optional[str] = None,
    code_analysis_score: Optional[float] = None,
) -> MetricsContext:
    """Gather everything `calculate_metrics` needs for a stored PR"""
    pr = context.pull_request

    files = await session.execute(select(PullRequestFile.filename).where(PullRequestFile.pull_request_id == pr.id))
    commits = await session.execute(
        select(Commit.committed_at)
        .join(pull_request_commits, pull_request_commits.c.commit_id == Commit.id)
        .where(pull_request_commits.c.pull_request_id == pr.id)
    )
    reviews = (await session.execute(select(Review).where(Review.pull_request_id == pr.id))).scalars().all()
    comments = (await session.execute(select(Comment).where(Comment.pull_request_id == pr.id))).scalars().all()

    participants = list(pr.reviewer_ids or [])
    participants += [r.author_id for r in reviews] + [c.author_id for c in comments]

    return MetricsContext(
        additions=pr.additions or 0,
        deletions=pr.deletions or 0,
        opened_at=pr.opened_at,
        first_commit_at=pr.first_commit_at,
        merged_at=pr.merged_at,
        closed_at=pr.closed_at,
        author_id=pr.author_id,
        description=description,
        filenames=list(files.scalars()),
        commit_times=[t for t in commits.scalars() if t is not None],
        review_times=[r.submitted_at for r in reviews if r.submitted_at is not None],
        participant_ids=participants,
        comment_sentiments=[c.sentiment_score for c in comments if c.sentiment_score is not None],
        code_analysis_score=code_analysis_score,
        settings=context.account.settings or {},
    )
