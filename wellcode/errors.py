"""
Error taxonomy for the event pipeline.

Every named pipeline step has a policy: FATAL steps propagate to the router
(the delivery is marked failed and maybe retried), BEST_EFFORT steps are
logged and swallowed so the enclosing handler carries on.
"""

import enum
import logging
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from wellcode.core.database import reset_session

logger = logging.getLogger(__name__)

NON_RETRYABLE_MARKERS = ("not found", "invalid signature", "already exists")


class ErrorPolicy(str, enum.Enum):
    FATAL = "fatal"
    BEST_EFFORT = "best_effort"


class PayloadValidationError(Exception):
    """The payload is missing data the handler needs; the event is skipped"""


OPERATION_POLICIES = {
    # Entity writes: a failure leaves the delivery failed for reprocessing
    "ensure_repository": ErrorPolicy.FATAL,
    "ensure_user": ErrorPolicy.FATAL,
    "store_pull_request": ErrorPolicy.FATAL,
    "update_pull_request_status": ErrorPolicy.FATAL,
    "store_pull_request_files": ErrorPolicy.FATAL,
    "store_review": ErrorPolicy.FATAL,
    "store_comment": ErrorPolicy.FATAL,
    "store_metrics": ErrorPolicy.FATAL,
    "store_feedback": ErrorPolicy.FATAL,
    "award_points": ErrorPolicy.FATAL,
    "fetch_github": ErrorPolicy.FATAL,
    "installation": ErrorPolicy.FATAL,
    # Enrichment: never fails the handler
    "link_commits": ErrorPolicy.BEST_EFFORT,
    "push_commit": ErrorPolicy.BEST_EFFORT,
    "generate_suggestions": ErrorPolicy.BEST_EFFORT,
    "generate_action_items": ErrorPolicy.BEST_EFFORT,
    "post_score_comment": ErrorPolicy.BEST_EFFORT,
    "manage_labels": ErrorPolicy.BEST_EFFORT,
    "check_achievements": ErrorPolicy.BEST_EFFORT,
    "persona_hooks": ErrorPolicy.BEST_EFFORT,
}


def policy_for(operation: str) -> ErrorPolicy:
    return OPERATION_POLICIES.get(operation, ErrorPolicy.FATAL)


def is_retryable_error(error: BaseException) -> bool:
    """
    Whether a failed delivery is worth retrying.

    Errors mentioning "not found", "invalid signature" or "already exists"
    will fail the same way again.
    """
    message = str(error).lower()
    return not any(marker in message for marker in NON_RETRYABLE_MARKERS)


async def run_step(
    operation: str,
    func: Callable[..., Awaitable[Any]],
    *args,
    session: Optional[AsyncSession] = None,
    **kwargs,
) -> Any:
    """
    Run one pipeline step under its error policy.

    A swallowed failure rolls back `session` (when given) so later steps
    start from a clean transaction, and returns None.
    """
    if policy_for(operation) is ErrorPolicy.FATAL:
        return await func(*args, **kwargs)

    try:
        return await func(*args, **kwargs)
    except Exception:
        logger.exception(f"Best-effort step '{operation}' failed, continuing")
        if session is not None:
            await reset_session(session)
        return None
