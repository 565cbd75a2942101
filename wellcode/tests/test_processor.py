"""End-to-end tests for the event router against in-memory SQLite and fake capabilities."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select

from wellcode.ai_analyzer import AIAnalyzer
from wellcode.config import Settings
from wellcode.core.security import ContentCipher
from wellcode.github_client import GitHubAPIError
from wellcode.models import (
    Account,
    Comment,
    Commit,
    DeliveryStatus,
    PointTransaction,
    PRFeedback,
    PRMetric,
    PRState,
    PullRequest,
    PullRequestFile,
    Review,
    User,
    WebhookEvent,
    pull_request_commits,
)
from wellcode.points import award_points_for_review
from wellcode.processor import format_score_summary
from wellcode.metrics import round_half_up
from wellcode.tests.factories import (
    ACCOUNT_ID,
    AUTHOR_ID,
    COMMENTER_ID,
    PR_ID,
    PR_NUMBER,
    REVIEWER_ID,
    installation_event,
    issue_comment_event,
    merged_pull_request_data,
    pr_commit,
    pr_files,
    pull_request_data,
    pull_request_event,
    push_event,
    review_event,
)


@pytest.fixture()
def stocked_github(github):
    github.pull_requests[PR_NUMBER] = pull_request_data()
    github.files[PR_NUMBER] = pr_files()
    github.commits[PR_NUMBER] = [
        pr_commit("c1", "2026-03-02T09:30:00Z"),
        pr_commit("c2", "2026-03-02T11:00:00Z"),
    ]
    return github


async def _scalar(session_factory, query):
    async with session_factory() as session:
        return (await session.execute(query)).scalar()


async def _get(session_factory, model, key):
    async with session_factory() as session:
        return await session.get(model, key)


async def _count(session_factory, model, *criteria) -> int:
    query = select(func.count()).select_from(model)
    if criteria:
        query = query.where(*criteria)
    return await _scalar(session_factory, query)


class TestRouting:
    @pytest.mark.asyncio
    async def test_unknown_event_marked_processed(self, processor, session_factory):
        status = await processor.process_event("star", {"action": "created"}, "d-star")
        assert status == DeliveryStatus.PROCESSED
        delivery = await _get(session_factory, WebhookEvent, "d-star")
        assert delivery.status == DeliveryStatus.PROCESSED
        assert delivery.attempts == 1

    @pytest.mark.asyncio
    async def test_invalid_payload_skipped(self, processor, session_factory):
        status = await processor.process_event("pull_request", {"action": "opened"}, "d-bad")
        assert status == DeliveryStatus.PROCESSED
        delivery = await _get(session_factory, WebhookEvent, "d-bad")
        assert delivery.error.startswith("skipped")

    @pytest.mark.asyncio
    async def test_ping(self, processor):
        assert await processor.process_event("ping", {"zen": "Design for failure.", "sender": {"id": 1}}, "d-ping") == DeliveryStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_no_account_dropped(self, processor):
        assert await processor.process_event("ping", {"zen": "Anything added dilutes everything else."}) == DeliveryStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_register_delivery_detects_duplicates(self, processor):
        payload = pull_request_event("opened")
        assert await processor.register_delivery("d-1", "pull_request", payload) is True
        assert await processor.register_delivery("d-1", "pull_request", payload) is True
        await processor.process_event("star", {}, "d-1")
        assert await processor.register_delivery("d-1", "pull_request", payload) is False


class TestPullRequestLifecycle:
    @pytest.mark.asyncio
    async def test_opened_stores_pr_files_and_commits(self, processor, session_factory, stocked_github):
        status = await processor.process_event("pull_request", pull_request_event("opened"), "d-open")
        assert status == DeliveryStatus.PROCESSED

        pr = await _get(session_factory, PullRequest, str(PR_ID))
        assert pr.state == PRState.OPEN
        assert pr.author_id == str(AUTHOR_ID)
        assert await _count(session_factory, PullRequestFile) == 2
        assert await _count(session_factory, pull_request_commits) == 2
        assert pr.first_commit_at is not None

        user = await _get(session_factory, User, str(AUTHOR_ID))
        assert user.login == "octocat"

    @pytest.mark.asyncio
    async def test_opened_twice_is_idempotent(self, processor, session_factory, stocked_github):
        await processor.process_event("pull_request", pull_request_event("opened"), "d-open")
        await processor.process_event("pull_request", pull_request_event("opened"), "d-open-2")
        assert await _count(session_factory, PullRequest) == 1
        assert await _count(session_factory, PullRequestFile) == 2
        assert await _count(session_factory, Commit) == 2

    @pytest.mark.asyncio
    async def test_opened_without_installation_skipped(self, processor, session_factory):
        payload = pull_request_event("opened", with_installation=False)
        assert await processor.process_event("pull_request", payload, "d-open") == DeliveryStatus.PROCESSED
        assert await _count(session_factory, PullRequest) == 0

    @pytest.mark.asyncio
    async def test_synchronize_without_github_stores_payload(self, processor, session_factory):
        payload = pull_request_event("synchronize", with_installation=False)
        assert await processor.process_event("pull_request", payload, "d-sync") == DeliveryStatus.PROCESSED
        pr = await _get(session_factory, PullRequest, str(PR_ID))
        assert pr.title == "Add widget parser"

    @pytest.mark.asyncio
    async def test_merge_scores_and_awards_points(self, processor, session_factory, stocked_github):
        await processor.process_event("pull_request", pull_request_event("opened"), "d-open")
        await processor.process_event("pull_request_review", review_event(), "d-review")
        stocked_github.pull_requests[PR_NUMBER] = merged_pull_request_data()

        status = await processor.process_event(
            "pull_request", pull_request_event("closed", merged_pull_request_data()), "d-merge"
        )
        assert status == DeliveryStatus.PROCESSED

        pr = await _get(session_factory, PullRequest, str(PR_ID))
        assert pr.state == PRState.MERGED
        assert pr.metrics_calculated_at is not None
        for score in (pr.efficiency_score, pr.wellness_score, pr.quality_score, pr.overall_score):
            assert 0 <= score <= 100
        assert pr.points_awarded == round_half_up(pr.overall_score)
        assert ContentCipher.is_encrypted(pr.description)

        author = await _get(session_factory, User, str(AUTHOR_ID))
        reviewer = await _get(session_factory, User, str(REVIEWER_ID))
        assert author.points == pr.points_awarded
        assert reviewer.points == 10

        assert await _count(session_factory, PRMetric) > 0
        feedback_types = await _scalar(
            session_factory, select(func.count()).select_from(PRFeedback).where(PRFeedback.type == "action_item")
        )
        assert feedback_types == 1

        assert len(stocked_github.comments) == 1
        assert stocked_github.comments[0][1].startswith("## Wellcode Analysis Summary")
        assert len(stocked_github.labels) == 1
        assert stocked_github.labels[0].startswith("Wellcode Score: ")

    @pytest.mark.asyncio
    async def test_merge_redelivery_awards_once(self, processor, session_factory, stocked_github):
        await processor.process_event("pull_request", pull_request_event("opened"), "d-open")
        stocked_github.pull_requests[PR_NUMBER] = merged_pull_request_data()
        payload = pull_request_event("closed", merged_pull_request_data())

        await processor.process_event("pull_request", payload, "d-merge")
        first = (await _get(session_factory, User, str(AUTHOR_ID))).points
        await processor.process_event("pull_request", payload, "d-merge-again")

        assert (await _get(session_factory, User, str(AUTHOR_ID))).points == first
        assert await _count(session_factory, PointTransaction) == 1
        assert len(stocked_github.labels) == 1

    @pytest.mark.asyncio
    async def test_closed_before_opened(self, processor, session_factory, stocked_github):
        payload = pull_request_event("closed", pull_request_data(state="closed", closed_at="2026-03-03T10:00:00Z"))
        assert await processor.process_event("pull_request", payload, "d-close") == DeliveryStatus.PROCESSED
        pr = await _get(session_factory, PullRequest, str(PR_ID))
        assert pr.state == PRState.CLOSED
        assert pr.overall_score is None

    @pytest.mark.asyncio
    async def test_comment_and_label_can_be_disabled(self, processor, session_factory, stocked_github):
        processor.services.settings.post_pr_comments = False
        processor.services.settings.apply_score_labels = False
        stocked_github.pull_requests[PR_NUMBER] = merged_pull_request_data()
        await processor.process_event("pull_request", pull_request_event("closed", merged_pull_request_data()), "d-merge")
        assert stocked_github.comments == []
        assert stocked_github.labels == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_transient_failure_recorded_and_queued(self, processor, session_factory, stocked_github):
        stocked_github.error = GitHubAPIError("GitHub API request failed (502): GET /pulls/7", 502)
        status = await processor.process_event("pull_request", pull_request_event("opened"), "d-fail")
        assert status == DeliveryStatus.FAILED

        delivery = await _get(session_factory, WebhookEvent, "d-fail")
        assert delivery.status == DeliveryStatus.FAILED
        assert "502" in delivery.error
        assert processor.services.retry_queue.qsize() == 1

        stocked_github.error = None
        assert await processor.retry_delivery("d-fail") == DeliveryStatus.PROCESSED
        delivery = await _get(session_factory, WebhookEvent, "d-fail")
        assert delivery.status == DeliveryStatus.PROCESSED
        assert delivery.attempts == 2
        assert await _count(session_factory, PullRequest) == 1

    @pytest.mark.asyncio
    async def test_permanent_failure_not_queued(self, processor, stocked_github):
        stocked_github.error = GitHubAPIError("GitHub resource not found: GET /pulls/7", 404)
        status = await processor.process_event("pull_request", pull_request_event("opened"), "d-404")
        assert status == DeliveryStatus.FAILED
        assert processor.services.retry_queue.qsize() == 0

    @pytest.mark.asyncio
    async def test_best_effort_failures_do_not_fail_delivery(self, processor, session_factory, stocked_github):
        async def broken_label(*args, **kwargs):
            raise RuntimeError("label API down")

        stocked_github.add_label_to_pull_request = broken_label
        stocked_github.pull_requests[PR_NUMBER] = merged_pull_request_data()
        status = await processor.process_event(
            "pull_request", pull_request_event("closed", merged_pull_request_data()), "d-merge"
        )
        assert status == DeliveryStatus.PROCESSED
        pr = await _get(session_factory, PullRequest, str(PR_ID))
        assert pr.points_awarded is not None

    @pytest.mark.asyncio
    async def test_failed_code_analysis_leaves_quality_unscored(self, processor, session_factory, stocked_github):
        openai = MagicMock()
        openai.chat.completions.create.side_effect = RuntimeError("rate limited")
        processor.services.analyzer = AIAnalyzer(
            Settings(openai_api_key="k", huggingface_api_key=""), openai_client=openai
        )
        stocked_github.pull_requests[PR_NUMBER] = merged_pull_request_data()

        status = await processor.process_event(
            "pull_request", pull_request_event("closed", merged_pull_request_data()), "d-merge"
        )
        assert status == DeliveryStatus.PROCESSED

        assert await _count(session_factory, PRMetric, PRMetric.name == "codePatterns") == 0
        assert await _count(session_factory, PRMetric, PRMetric.name == "testPresence") == 1
        pr = await _get(session_factory, PullRequest, str(PR_ID))
        assert pr.quality_score > 0
        assert pr.points_awarded == round_half_up(pr.overall_score)

    @pytest.mark.asyncio
    async def test_review_points_survive_failed_attempt(self, processor, session_factory, monkeypatch):
        calls = []

        async def flaky_award(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise RuntimeError("connection timeout")
            return await award_points_for_review(*args, **kwargs)

        monkeypatch.setattr("wellcode.processor.award_points_for_review", flaky_award)

        status = await processor.process_event("pull_request_review", review_event(), "d-review")
        assert status == DeliveryStatus.FAILED
        assert processor.services.retry_queue.qsize() == 1
        assert await _get(session_factory, Review, "8001") is not None

        assert await processor.retry_delivery("d-review") == DeliveryStatus.PROCESSED
        reviewer = await _get(session_factory, User, str(REVIEWER_ID))
        assert reviewer.points == 10
        review = await _get(session_factory, Review, "8001")
        assert review.points_awarded == 10

        await processor.process_event("pull_request_review", review_event(), "d-review-again")
        assert (await _get(session_factory, User, str(REVIEWER_ID))).points == 10
        assert await _count(session_factory, PointTransaction) == 1

    @pytest.mark.asyncio
    async def test_retry_unknown_delivery(self, processor):
        assert await processor.retry_delivery("missing") is None


class TestReviewsCommentsPushes:
    @pytest.mark.asyncio
    async def test_review_before_pr_upserts_pr(self, processor, session_factory):
        assert await processor.process_event("pull_request_review", review_event(), "d-review") == DeliveryStatus.PROCESSED
        assert await _get(session_factory, PullRequest, str(PR_ID)) is not None
        review = await _get(session_factory, Review, "8001")
        assert review.author_id == str(REVIEWER_ID)
        pr = await _get(session_factory, PullRequest, str(PR_ID))
        assert pr.reviewer_ids == [str(REVIEWER_ID)]

    @pytest.mark.asyncio
    async def test_review_redelivery_awards_once(self, processor, session_factory):
        await processor.process_event("pull_request_review", review_event(state="changes_requested"), "d-review")
        await processor.process_event("pull_request_review", review_event(state="changes_requested"), "d-review-2")
        reviewer = await _get(session_factory, User, str(REVIEWER_ID))
        assert reviewer.points == 15

    @pytest.mark.asyncio
    async def test_comment_on_stored_pr(self, processor, session_factory, analyzer):
        await processor.process_event("pull_request", pull_request_event("synchronize", with_installation=False), "d-sync")
        status = await processor.process_event("issue_comment", issue_comment_event(), "d-comment")
        assert status == DeliveryStatus.PROCESSED

        comment = await _get(session_factory, Comment, "7001")
        assert comment.pull_request_id == str(PR_ID)
        assert comment.author_id == str(COMMENTER_ID)
        assert comment.sentiment_score == pytest.approx(analyzer.sentiment)

    @pytest.mark.asyncio
    async def test_comment_fetches_unknown_pr(self, processor, session_factory, stocked_github):
        status = await processor.process_event("issue_comment", issue_comment_event(with_installation=True), "d-comment")
        assert status == DeliveryStatus.PROCESSED
        assert await _get(session_factory, PullRequest, str(PR_ID)) is not None
        assert await _get(session_factory, Comment, "7001") is not None

    @pytest.mark.asyncio
    async def test_comment_on_unknown_pr_without_github_skipped(self, processor, session_factory):
        status = await processor.process_event("issue_comment", issue_comment_event(), "d-comment")
        assert status == DeliveryStatus.PROCESSED
        assert await _count(session_factory, Comment) == 0

    @pytest.mark.asyncio
    async def test_issue_comment_ignored(self, processor, session_factory):
        await processor.process_event("issue_comment", issue_comment_event(on_pull_request=False), "d-issue")
        assert await _count(session_factory, Comment) == 0

    @pytest.mark.asyncio
    async def test_push_creates_placeholder_authors(self, processor, session_factory):
        commits = [
            {
                "id": "p1",
                "message": "Tweak build",
                "timestamp": "2026-03-02T10:00:00Z",
                "author": {"name": "Jane Dev", "email": "jane@example.com"},
                "modified": ["Makefile"],
            },
            {"id": "p2", "message": "No author"},
        ]
        assert await processor.process_event("push", push_event(commits), "d-push") == DeliveryStatus.PROCESSED
        assert await _count(session_factory, Commit) == 1
        placeholder = await _scalar(session_factory, select(User).where(User.email == "jane@example.com"))
        assert placeholder.is_placeholder is True


class TestInstallationEvents:
    @pytest.mark.asyncio
    async def test_installation_created_and_deleted(self, processor, session_factory):
        repos = {"repositories": [{"id": 300, "full_name": "acme/widgets"}]}
        await processor.process_event("installation", installation_event("created", **repos), "d-install")
        account = await _get(session_factory, Account, str(ACCOUNT_ID))
        assert account.installation_id == "42"
        assert account.settings["active"] is True

        await processor.process_event("installation", installation_event("deleted"), "d-uninstall")
        account = await _get(session_factory, Account, str(ACCOUNT_ID))
        assert account.settings["active"] is False

    @pytest.mark.asyncio
    async def test_installation_repositories_event(self, processor, session_factory):
        payload = installation_event("added", repositories_added=[{"id": 305, "full_name": "acme/tools"}])
        assert await processor.process_event("installation_repositories", payload, "d-added") == DeliveryStatus.PROCESSED
        assert await _count(session_factory, Account) == 1


def test_score_summary():
    body = format_score_summary("Wellcode", {"efficiency": 80.4, "wellness": 60, "quality": 90.6, "overall": 82.1})
    assert "Overall Score: 82/100" in body
    assert "Quality Score: 91/100" in body
    # 36 + 9 + 36 from the 45/15/40 weighting
    assert "This PR: +81 points" in body
