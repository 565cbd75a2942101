"""
Points and levels.

Every award increments the user's points atomically in SQL and appends one
PointTransaction; the level is then derived from the new total and only
ever raised.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .core.database import reset_session
from .entities import get_pull_request_context
from .metrics import level_for_points, round_half_up
from .models import PointTransaction, Review, ReviewState, User
from .registrar import get_membership

logger = logging.getLogger(__name__)

REVIEW_POINTS = {
    ReviewState.APPROVED: 10,
    ReviewState.CHANGES_REQUESTED: 15,
    ReviewState.COMMENTED: 5,
}

REASON_PR_MERGED = "pr_merged"
REASON_REVIEW_SUBMITTED = "review_submitted"


def review_points(state) -> int:
    try:
        return REVIEW_POINTS.get(ReviewState(state), 0)
    except ValueError:
        return 0


async def _credit(
    session: AsyncSession,
    user_id: str,
    account_id: str,
    amount: int,
    reason: str,
    reference_id: str,
) -> None:
    """Stage the increment and its ledger entry; the caller commits"""
    await session.execute(update(User).where(User.id == user_id).values(points=User.points + amount))
    session.add(
        PointTransaction(
            user_id=user_id,
            account_id=account_id,
            amount=amount,
            reason=reason,
            reference_id=reference_id,
            reference_type="pullrequest",
        )
    )


async def check_and_update_user_level(session: AsyncSession, user_id: str) -> Optional[int]:
    """Raise the user's level to match their points. Returns the current level."""
    result = await session.execute(select(User.points, User.level).where(User.id == user_id))
    row = result.first()
    if row is None:
        return None

    points, level = row
    new_level = level_for_points(points)
    if new_level <= level:
        return level

    await session.execute(update(User).where(User.id == user_id).values(level=new_level))
    await session.commit()
    logger.info(f"User {user_id} reached level {new_level}")
    return new_level


async def calculate_and_award_points(session: AsyncSession, pr_id: str) -> Optional[int]:
    """
    Award a merged PR's author round(overall score) points.

    Nothing is awarded when the PR has no overall score, already received
    its points, or its author is not a member of the repository's account.
    Returns the points awarded.
    """
    context = await get_pull_request_context(session, pr_id)
    if context is None:
        logger.error(f"PR {pr_id} not found when awarding points")
        return None

    pr = context.pull_request
    if not pr.overall_score:
        logger.info(f"PR {pr_id} has no overall score, no points awarded")
        return None
    if pr.points_awarded is not None:
        logger.info(f"PR {pr_id} already awarded {pr.points_awarded} points")
        return None

    account_id = context.repository.account_id
    if await get_membership(session, pr.author_id, account_id) is None:
        logger.error(f"User {pr.author_id} does not belong to account {account_id}, no points awarded")
        return None

    points = round_half_up(pr.overall_score)
    try:
        await _credit(session, pr.author_id, account_id, points, REASON_PR_MERGED, pr.id)
        pr.points_awarded = points
        await session.commit()
    except Exception:
        await reset_session(session)
        raise

    logger.info(f"Awarded {points} points to user {pr.author_id} for PR {pr_id}")
    await check_and_update_user_level(session, pr.author_id)
    return points


async def award_points_for_review(
    session: AsyncSession,
    reviewer_id: str,
    pr_id: str,
    review_state,
    review_id: Optional[str] = None,
) -> int:
    """
    Award a reviewer points for the review state. Returns the points awarded.

    With `review_id`, the stored review records the award in the same commit
    as the credit, so a redelivered or retried review is credited once.
    """
    points = review_points(review_state)
    if points <= 0:
        return 0

    review = None
    if review_id is not None:
        review = await session.get(Review, str(review_id))
        if review is not None and review.points_awarded is not None:
            logger.info(f"Review {review_id} already awarded {review.points_awarded} points")
            return 0

    context = await get_pull_request_context(session, pr_id)
    if context is None:
        logger.error(f"PR {pr_id} not found when awarding review points")
        return 0

    try:
        await _credit(session, reviewer_id, context.repository.account_id, points, REASON_REVIEW_SUBMITTED, str(pr_id))
        if review is not None:
            review.points_awarded = points
        await session.commit()
    except Exception:
        await reset_session(session)
        raise

    logger.info(f"Awarded {points} review points to user {reviewer_id} on PR {pr_id}")
    await check_and_update_user_level(session, reviewer_id)
    return points
