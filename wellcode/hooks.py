"""Downstream consumers notified as pull requests and reviews move through the pipeline"""

import logging

logger = logging.getLogger(__name__)


class PipelineHooks:
    """
    Default hooks; they only log.

    Persona snapshots and achievement checks subclass this and override the
    methods they care about. Hooks are called best-effort, so an exception
    here never fails the delivery.
    """

    async def on_pull_request_created(self, pr_id: str, author_id: str) -> None:
        logger.debug(f"PR {pr_id} created by {author_id}")

    async def on_pull_request_merged(self, pr_id: str, author_id: str) -> None:
        logger.debug(f"PR {pr_id} merged, author {author_id}")

    async def on_review_submitted(self, review_id: str, reviewer_id: str, pr_id: str) -> None:
        logger.debug(f"Review {review_id} submitted by {reviewer_id} on PR {pr_id}")

    async def check_achievements(self, user_id: str) -> list:
        logger.debug(f"Checking achievements for {user_id}")
        return []
