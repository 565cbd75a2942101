"""
Event router.

`EventProcessor.process_event` validates a delivery into its typed payload,
resolves the owning account and dispatches to one handler. Each delivery
runs in its own session; every attempt records the delivery status once,
and failures classified retryable are handed to the retry queue.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .ai_analyzer import AIAnalyzer
from .commit_linker import link_commits_to_pull_request
from .config import Settings, get_settings
from .core.database import create_or_get, reset_session, utcnow
from .core.security import ContentCipher
from .entities import (
    get_pr_description,
    get_pull_request_context,
    process_push_commit,
    store_comment,
    store_pull_request,
    store_pull_request_files,
    store_review,
    add_reviewer_to_pull_request,
    update_pull_request_status,
)
from .errors import PayloadValidationError, is_retryable_error, run_step
from .hooks import PipelineHooks
from .installation import handle_installation_event
from .labels import apply_score_label
from .metrics import calculate_metrics, calculate_points, round_half_up
from .models import DeliveryStatus, PRState, PullRequest, WebhookEvent
from .points import award_points_for_review, calculate_and_award_points
from .registrar import ensure_repository_exists, ensure_user_exists
from .retry import RetryQueue
from .schemas import PullRequestData, PullRequestFileData
from .schemas.github import to_files
from .schemas.webhook import (
    InstallationEvent,
    IssueCommentEvent,
    PingEvent,
    PullRequestEvent,
    PullRequestReviewEvent,
    PushEvent,
    RepositoryRef,
    WebhookPayload,
    parse_event,
)
from .scoring import load_metrics_context, store_feedback, store_metrics
from .suggestions import store_efficiency_suggestions

logger = logging.getLogger(__name__)

GitHubFactory = Callable[[int, str], Awaitable[Optional[Any]]]


@dataclass
class PipelineServices:
    """Everything the pipeline talks to; tests swap in fakes"""
    session_factory: async_sessionmaker
    github_factory: GitHubFactory
    cipher: ContentCipher
    analyzer: AIAnalyzer
    hooks: PipelineHooks = field(default_factory=PipelineHooks)
    retry_queue: Optional[RetryQueue] = None
    settings: Settings = field(default_factory=get_settings)


def format_score_summary(bot_name: str, scores: Dict[str, float]) -> str:
    return (
        f"## {bot_name} Analysis Summary\n\n"
        f"- Efficiency Score: {round_half_up(scores['efficiency'])}/100\n"
        f"- Wellness Score: {round_half_up(scores['wellness'])}/100\n"
        f"- Quality Score: {round_half_up(scores['quality'])}/100\n"
        f"- Overall Score: {round_half_up(scores['overall'])}/100\n"
        f"- This PR: +{calculate_points(scores)} points\n"
    )


class EventProcessor:
    def __init__(self, services: PipelineServices):
        self.services = services
        self._handlers = {
            "ping": self.handle_ping,
            "pull_request": self.handle_pull_request,
            "pull_request_review": self.handle_review,
            "push": self.handle_push,
            "issue_comment": self.handle_issue_comment,
            "installation": self.handle_installation,
            "installation_repositories": self.handle_installation,
        }

    # ==========================
    # Routing
    # ==========================

    async def process_event(self, event_type: str, payload: Dict[str, Any], delivery_id: Optional[str] = None) -> str:
        """
        Process one delivery.

        Returns:
            The recorded delivery status, "processed" or "failed"
        """
        tag = delivery_id or "-"
        logger.info(f"[{tag}] Processing {event_type} event (action: {(payload or {}).get('action')})")

        try:
            event = parse_event(event_type, payload)
        except ValidationError as e:
            logger.warning(f"[{tag}] Invalid {event_type} payload, skipping: {e.error_count()} validation errors")
            await self._record_delivery(delivery_id, event_type, payload, DeliveryStatus.PROCESSED, f"skipped: {e}")
            return DeliveryStatus.PROCESSED

        if event is None:
            logger.info(f"[{tag}] Unhandled event type: {event_type}")
            await self._record_delivery(delivery_id, event_type, payload, DeliveryStatus.PROCESSED)
            return DeliveryStatus.PROCESSED

        account_id = event.resolve_account_id()
        if account_id is None:
            logger.error(f"[{tag}] Could not determine account ID for {event_type} event, dropping")
            await self._record_delivery(delivery_id, event_type, payload, DeliveryStatus.PROCESSED, "no account id")
            return DeliveryStatus.PROCESSED

        handler = self._handlers[event_type]
        async with self.services.session_factory() as session:
            try:
                await handler(session, event, account_id)
            except PayloadValidationError as e:
                logger.warning(f"[{tag}] Skipping {event_type} event: {e}")
                await self._record_delivery(delivery_id, event_type, payload, DeliveryStatus.PROCESSED, f"skipped: {e}")
                return DeliveryStatus.PROCESSED
            except Exception as e:
                logger.exception(f"[{tag}] Error processing {event_type} event")
                await reset_session(session)
                attempts = await self._record_delivery(delivery_id, event_type, payload, DeliveryStatus.FAILED, str(e))
                self._schedule_retry(delivery_id, e, attempts)
                return DeliveryStatus.FAILED

        await self._record_delivery(delivery_id, event_type, payload, DeliveryStatus.PROCESSED)
        logger.info(f"[{tag}] Processed {event_type} event")
        return DeliveryStatus.PROCESSED

    async def register_delivery(self, delivery_id: str, event_type: str, payload: Dict[str, Any]) -> bool:
        """
        Record a received delivery as pending.

        Returns:
            False if the delivery was already processed and must not run again
        """
        async with self.services.session_factory() as session:
            delivery = await session.get(WebhookEvent, delivery_id)
            if delivery is None:
                delivery, created = await create_or_get(
                    session,
                    WebhookEvent(
                        id=delivery_id,
                        event=event_type,
                        action=(payload or {}).get("action"),
                        payload=payload,
                        status=DeliveryStatus.PENDING,
                        attempts=0,
                    ),
                    lambda: session.get(WebhookEvent, delivery_id),
                )
                if created:
                    return True

            if delivery.status == DeliveryStatus.PROCESSED:
                logger.info(f"[{delivery_id}] Duplicate delivery, already processed")
                return False
            delivery.status = DeliveryStatus.PENDING
            delivery.payload = payload
            await session.commit()
            return True

    async def retry_delivery(self, delivery_id: str) -> Optional[str]:
        """Reprocess a stored delivery"""
        async with self.services.session_factory() as session:
            delivery = await session.get(WebhookEvent, delivery_id)
            if delivery is None:
                logger.error(f"[{delivery_id}] Delivery not found, cannot retry")
                return None
            event_type, payload = delivery.event, delivery.payload
        return await self.process_event(event_type, payload, delivery_id)

    def _schedule_retry(self, delivery_id: Optional[str], error: Exception, attempts: int) -> None:
        if not is_retryable_error(error):
            logger.info(f"[{delivery_id}] Error is not retryable")
            return
        if self.services.retry_queue is None or not delivery_id:
            logger.warning(f"[{delivery_id}] Retryable failure but no retry queue or delivery id")
            return
        self.services.retry_queue.enqueue(delivery_id, max(attempts, 1))

    async def _record_delivery(
        self,
        delivery_id: Optional[str],
        event_type: str,
        payload: Dict[str, Any],
        status: str,
        error: Optional[str] = None,
    ) -> int:
        """
        Record the outcome of one attempt. Never raises.

        Returns:
            The attempt count of the delivery, 0 if it could not be recorded
        """
        if not delivery_id:
            return 0
        try:
            async with self.services.session_factory() as session:
                delivery = await session.get(WebhookEvent, delivery_id)
                if delivery is None:
                    delivery = WebhookEvent(
                        id=delivery_id,
                        event=event_type,
                        action=(payload or {}).get("action"),
                        payload=payload,
                        attempts=0,
                    )
                    session.add(delivery)
                delivery.attempts = (delivery.attempts or 0) + 1
                delivery.status = status
                delivery.error = error
                delivery.processed_at = utcnow()
                await session.commit()
                return delivery.attempts
        except Exception:
            logger.exception(f"[{delivery_id}] Failed to update delivery status to {status}")
            return 0

    async def _github(self, event: WebhookPayload, repository: RepositoryRef):
        installation_id = event.installation_id
        if installation_id is None:
            return None
        github = await self.services.github_factory(installation_id, repository.full_name)
        if github is None:
            logger.error(f"Failed to get installation token for installation {installation_id}")
        return github

    async def _ensure_repository(self, session: AsyncSession, repository: RepositoryRef, account_id: str):
        return await run_step(
            "ensure_repository",
            ensure_repository_exists,
            session,
            str(repository.id),
            repository.full_name,
            account_id,
            repository.default_branch,
        )

    async def _ensure_user(self, session: AsyncSession, user_id: int, login: str, account_id: str):
        return await run_step("ensure_user", ensure_user_exists, session, str(user_id), login, account_id)

    @staticmethod
    async def _fetch_pull_request(github, pr_number: int) -> Tuple[PullRequestData, List[PullRequestFileData]]:
        pr_data = PullRequestData.model_validate(await github.get_pull_request(pr_number))
        files = to_files(await github.get_pull_request_files(pr_number))
        return pr_data, files

    async def _sync_pull_request(
        self, session: AsyncSession, github, pr_number: int, repository_id: str
    ) -> Tuple[PullRequestData, List[PullRequestFileData]]:
        """Fetch the PR from GitHub, upsert it with its files and link its commits"""
        pr_data, files = await run_step("fetch_github", self._fetch_pull_request, github, pr_number)
        pr_id = str(pr_data.id)
        await run_step("store_pull_request", store_pull_request, session, pr_data, repository_id, self.services.cipher)
        await run_step("store_pull_request_files", store_pull_request_files, session, pr_id, files)
        await run_step(
            "link_commits", link_commits_to_pull_request, session, github, pr_id, pr_number, session=session
        )
        return pr_data, files

    # ==========================
    # Handlers
    # ==========================

    async def handle_ping(self, session: AsyncSession, event: PingEvent, account_id: str) -> None:
        logger.info(f"Ping received: {event.zen}")

    async def handle_pull_request(self, session: AsyncSession, event: PullRequestEvent, account_id: str) -> None:
        action = event.action
        if action in ("opened", "reopened"):
            await self._pull_request_opened(session, event, account_id)
        elif action == "synchronize":
            await self._pull_request_synchronized(session, event, account_id)
        elif action == "closed":
            await self._pull_request_closed(session, event, account_id)
        elif action in ("labeled", "unlabeled"):
            label = event.label.name if event.label else None
            logger.info(f"PR #{event.pull_request.number} {action} {label!r}")
        else:
            logger.info(f"Unhandled pull_request action: {action}")

    async def _pull_request_opened(self, session: AsyncSession, event: PullRequestEvent, account_id: str) -> None:
        pr = event.pull_request
        if event.installation_id is None:
            logger.warning(f"No installation ID for PR #{pr.number}, skipping")
            return
        github = await self._github(event, event.repository)
        if github is None:
            return

        repo_id = str(event.repository.id)
        await self._ensure_repository(session, event.repository, account_id)
        await self._ensure_user(session, pr.user.id, pr.user.login, account_id)
        await self._sync_pull_request(session, github, pr.number, repo_id)

        if event.action == "opened":
            await run_step(
                "persona_hooks",
                self.services.hooks.on_pull_request_created,
                str(pr.id),
                str(pr.user.id),
                session=session,
            )

    async def _pull_request_synchronized(self, session: AsyncSession, event: PullRequestEvent, account_id: str) -> None:
        pr = event.pull_request
        pr_id = str(pr.id)
        repo_id = str(event.repository.id)
        await self._ensure_repository(session, event.repository, account_id)
        await self._ensure_user(session, pr.user.id, pr.user.login, account_id)
        await run_step("store_pull_request", store_pull_request, session, pr, repo_id, self.services.cipher)

        github = await self._github(event, event.repository)
        if github is None:
            logger.warning(f"No GitHub access for PR #{pr.number}, files and commits not refreshed")
            return
        files = await run_step("fetch_github", github.get_pull_request_files, pr.number)
        await run_step("store_pull_request_files", store_pull_request_files, session, pr_id, to_files(files))
        await run_step("link_commits", link_commits_to_pull_request, session, github, pr_id, pr.number, session=session)

    async def _pull_request_closed(self, session: AsyncSession, event: PullRequestEvent, account_id: str) -> None:
        pr = event.pull_request
        pr_id = str(pr.id)
        repo_id = str(event.repository.id)
        state = PRState.MERGED if pr.merged else PRState.CLOSED

        await self._ensure_repository(session, event.repository, account_id)
        await self._ensure_user(session, pr.user.id, pr.user.login, account_id)
        updated = await run_step(
            "update_pull_request_status",
            update_pull_request_status,
            session,
            pr_id,
            state,
            pr.merged_at,
            pr.closed_at,
            self.services.cipher,
        )
        if updated is None:
            # Closed before the opened event was processed
            await run_step("store_pull_request", store_pull_request, session, pr, repo_id, self.services.cipher)

        if not pr.merged:
            logger.info(f"PR #{pr.number} closed without merge")
            return

        github = await self._github(event, event.repository)
        if github is None:
            logger.warning(f"No GitHub access for merged PR #{pr.number}, skipping analysis")
            return

        _, files = await self._sync_pull_request(session, github, pr.number, repo_id)
        await self.analyze_merged_pull_request(session, github, pr_id, pr.number, files)
        await run_step("award_points", calculate_and_award_points, session, pr_id)

        hooks = self.services.hooks
        await run_step("persona_hooks", hooks.on_pull_request_merged, pr_id, str(pr.user.id), session=session)
        await run_step("check_achievements", hooks.check_achievements, str(pr.user.id), session=session)

    async def analyze_merged_pull_request(
        self,
        session: AsyncSession,
        github,
        pr_id: str,
        pr_number: int,
        files: List[PullRequestFileData],
    ) -> Optional[Dict[str, float]]:
        """
        Score a merged PR: code analysis, metrics, scores, feedback and
        suggestions, then the score comment and label.
        """
        services = self.services
        context = await get_pull_request_context(session, pr_id)
        if context is None:
            logger.error(f"PR {pr_id} not found, cannot analyze")
            return None
        account_type = context.account.type
        title = context.pull_request.title
        additions, deletions = context.pull_request.additions, context.pull_request.deletions
        author_id = context.pull_request.author_id

        description = await get_pr_description(session, pr_id, services.cipher)
        file_dicts = [f.model_dump() for f in files]
        analysis = await services.analyzer.analyze_code(file_dicts, account_type)

        metrics_context = await load_metrics_context(session, context, description, analysis["score"])
        metrics = calculate_metrics(metrics_context)
        scores = await run_step("store_metrics", store_metrics, session, pr_id, metrics)
        if scores is None:
            return None

        await run_step("generate_suggestions", store_efficiency_suggestions, session, pr_id, session=session)

        pr_summary = {
            "id": pr_id,
            "number": pr_number,
            "title": title,
            "description": description or "",
            "additions": additions,
            "deletions": deletions,
            "files": [f.filename for f in files][:5],
        }
        action_items = await run_step(
            "generate_action_items",
            services.analyzer.generate_action_items,
            pr_summary,
            metrics,
            user_id=author_id,
            session=session,
        )
        feedback = list(analysis["feedback"])
        for item in (action_items or {}).get("actionItems", []):
            feedback.append(
                {
                    "type": "action_item",
                    "message": f"{item.get('title', '')}: {item.get('description', '')}".strip(": "),
                    "codeContext": item.get("category"),
                }
            )
        await run_step("store_feedback", store_feedback, session, pr_id, feedback)

        if services.settings.post_pr_comments:
            await run_step(
                "post_score_comment",
                github.create_pull_request_comment,
                pr_number,
                format_score_summary(services.settings.bot_name, scores),
                session=session,
            )
        if services.settings.apply_score_labels:
            await run_step("manage_labels", apply_score_label, github, pr_number, scores["overall"], session=session)

        logger.info(f"Analyzed merged PR #{pr_number}: overall score {scores['overall']}")
        return scores

    async def handle_review(self, session: AsyncSession, event: PullRequestReviewEvent, account_id: str) -> None:
        review, pr = event.review, event.pull_request
        pr_id = str(pr.id)
        reviewer_id = str(review.user.id)

        await self._ensure_repository(session, event.repository, account_id)
        await self._ensure_user(session, review.user.id, review.user.login, account_id)

        if await session.get(PullRequest, pr_id) is None:
            # Review delivered before the PR itself
            await self._ensure_user(session, pr.user.id, pr.user.login, account_id)
            await run_step(
                "store_pull_request", store_pull_request, session, pr, str(event.repository.id), self.services.cipher
            )

        stored = await run_step("store_review", store_review, session, review, pr_id)
        await run_step("store_review", add_reviewer_to_pull_request, session, pr_id, reviewer_id)
        await run_step(
            "award_points", award_points_for_review, session, reviewer_id, pr_id, stored.state, stored.id
        )

        if event.action == "submitted":
            await run_step(
                "persona_hooks",
                self.services.hooks.on_review_submitted,
                str(review.id),
                reviewer_id,
                pr_id,
                session=session,
            )

    async def handle_push(self, session: AsyncSession, event: PushEvent, account_id: str) -> None:
        repo_id = str(event.repository.id)
        await self._ensure_repository(session, event.repository, account_id)
        logger.info(f"Processing {len(event.commits)} pushed commits for {event.repository.full_name}")
        for commit in event.commits:
            await run_step("push_commit", process_push_commit, session, commit, repo_id, account_id, session=session)

    async def handle_issue_comment(self, session: AsyncSession, event: IssueCommentEvent, account_id: str) -> None:
        if event.action not in ("created", "edited"):
            logger.info(f"Ignoring issue_comment action: {event.action}")
            return
        if event.issue.pull_request is None:
            logger.info(f"Comment {event.comment.id} is not on a pull request, skipping")
            return

        repo_id = str(event.repository.id)
        commenter = event.comment.user
        await self._ensure_repository(session, event.repository, account_id)
        await self._ensure_user(session, commenter.id, commenter.login, account_id)

        pr_number = event.pr_number
        github = await self._github(event, event.repository)
        if github is not None:
            pr_data = PullRequestData.model_validate(await run_step("fetch_github", github.get_pull_request, pr_number))
            pr_id = str(pr_data.id)
            if await session.get(PullRequest, pr_id) is None:
                await self._ensure_user(session, pr_data.user.id, pr_data.user.login, account_id)
                await run_step("store_pull_request", store_pull_request, session, pr_data, repo_id, self.services.cipher)
        else:
            result = await session.execute(
                select(PullRequest.id).where(PullRequest.repository_id == repo_id, PullRequest.number == pr_number)
            )
            pr_id = result.scalar_one_or_none()
            if pr_id is None:
                raise PayloadValidationError(f"PR #{pr_number} is not stored and GitHub is unavailable")

        await run_step("store_comment", store_comment, session, event.comment, pr_id, self.services.analyzer)

    async def handle_installation(self, session: AsyncSession, event: InstallationEvent, account_id: str) -> None:
        await run_step("installation", handle_installation_event, session, event)
