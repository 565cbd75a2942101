"""
Entity upsert layer.

Pull requests, files, reviews, comments and pushed commits are upserted
keyed by their GitHub ids, so replaying a delivery converges on the same rows.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.database import create_or_get, replace_set, utcnow
from .core.security import ContentCipher, DecryptionError, EncryptionError
from .models import (
    Account,
    Comment,
    Commit,
    PRState,
    PullRequest,
    PullRequestFile,
    Repository,
    Review,
    ReviewState,
    User,
)
from .registrar import ensure_membership
from .schemas import PullRequestData, PullRequestFileData
from .schemas.webhook import CommentData, PushCommit, ReviewData

logger = logging.getLogger(__name__)

OFFENSIVE_PENALTY = 0.5


def map_pr_state(state: str, merged: bool) -> PRState:
    if merged:
        return PRState.MERGED
    if (state or "").lower() == "open":
        return PRState.OPEN
    return PRState.CLOSED


def map_review_state(state: str) -> ReviewState:
    try:
        mapped = ReviewState((state or "").upper())
    except ValueError:
        return ReviewState.PENDING
    return mapped


def _protect_description(
    cipher: Optional[ContentCipher], description: Optional[str], state: PRState
) -> Optional[str]:
    """Encrypt the description of a finished PR; plaintext is kept if that fails"""
    if not description or state == PRState.OPEN or cipher is None:
        return description
    if cipher.is_encrypted(description):
        return description
    try:
        return cipher.encrypt(description)
    except EncryptionError as e:
        logger.error(f"Failed to encrypt PR description, storing plaintext: {e}")
        return description


async def store_pull_request(
    session: AsyncSession,
    pr_data: PullRequestData,
    repository_id: str,
    cipher: Optional[ContentCipher] = None,
) -> PullRequest:
    """
    Create or update a pull request from GitHub data.

    The author and repository must already exist. Reviewer ids, score
    fields and `first_commit_at` are left untouched on update.
    """
    pr_id = str(pr_data.id)
    state = map_pr_state(pr_data.state, pr_data.merged)
    description = _protect_description(cipher, pr_data.body, state)

    values = dict(
        number=pr_data.number,
        title=pr_data.title,
        description=description,
        state=state,
        author_id=str(pr_data.user.id),
        repository_id=str(repository_id),
        additions=pr_data.additions,
        deletions=pr_data.deletions,
        changed_files=pr_data.changed_files,
        merged_at=pr_data.merged_at,
        closed_at=pr_data.closed_at,
    )

    pull_request = await session.get(PullRequest, pr_id)
    if pull_request is None:
        pull_request, created = await create_or_get(
            session,
            PullRequest(id=pr_id, opened_at=pr_data.created_at or utcnow(), reviewer_ids=[], **values),
            lambda: session.get(PullRequest, pr_id),
        )
        if created:
            logger.info(f"Stored PR #{pr_data.number} ({pr_id}) state={state.value}")
            return pull_request

    for key, value in values.items():
        setattr(pull_request, key, value)
    if pull_request.opened_at is None and pr_data.created_at:
        pull_request.opened_at = pr_data.created_at
    await session.commit()
    logger.info(f"Updated PR #{pr_data.number} ({pr_id}) state={state.value}")
    return pull_request


async def update_pull_request_status(
    session: AsyncSession,
    pr_id: str,
    state: PRState,
    merged_at: Optional[datetime] = None,
    closed_at: Optional[datetime] = None,
    cipher: Optional[ContentCipher] = None,
) -> Optional[PullRequest]:
    """
    Record that a PR was closed or merged.

    A missing `closed_at` falls back to `merged_at`, then to now. Returns
    None when the PR has not been stored yet.
    """
    pull_request = await session.get(PullRequest, str(pr_id))
    if pull_request is None:
        logger.warning(f"PR {pr_id} not found, skipping status update")
        return None

    pull_request.state = state
    if merged_at is not None:
        pull_request.merged_at = merged_at
    pull_request.closed_at = closed_at or merged_at or utcnow()
    pull_request.description = _protect_description(cipher, pull_request.description, state)
    await session.commit()
    logger.info(f"PR {pr_id} status updated to {state.value}")
    return pull_request


async def get_pr_description(
    session: AsyncSession, pr_id: str, cipher: Optional[ContentCipher] = None
) -> Optional[str]:
    """Stored description in plaintext, or None if it cannot be decrypted"""
    pull_request = await session.get(PullRequest, str(pr_id))
    if pull_request is None or not pull_request.description:
        return None

    description = pull_request.description
    if not ContentCipher.is_encrypted(description):
        return description
    if cipher is None:
        logger.error(f"Description of PR {pr_id} is encrypted but no cipher is configured")
        return None
    try:
        return cipher.decrypt(description)
    except DecryptionError as e:
        logger.error(f"Failed to decrypt description of PR {pr_id}: {e}")
        return None


async def store_pull_request_files(
    session: AsyncSession, pr_id: str, files: List[PullRequestFileData]
) -> int:
    """
    Replace the stored file set of a PR.

    An empty list leaves the stored files alone.
    """
    if not files:
        logger.info(f"No files received for PR {pr_id}, keeping stored files")
        return 0

    rows = [
        {
            "pull_request_id": str(pr_id),
            "filename": f.filename,
            "status": f.status,
            "additions": f.additions,
            "deletions": f.deletions,
            "changes": f.changes,
            "patch": f.patch,
        }
        for f in files
    ]
    count = await replace_set(session, PullRequestFile, PullRequestFile.pull_request_id, str(pr_id), rows)
    logger.info(f"Stored {count} files for PR {pr_id}")
    return count


async def store_review(session: AsyncSession, review_data: ReviewData, pr_id: str) -> Review:
    review_id = str(review_data.id)
    values = dict(
        pull_request_id=str(pr_id),
        author_id=str(review_data.user.id),
        state=map_review_state(review_data.state),
        body=review_data.body,
        submitted_at=review_data.submitted_at or utcnow(),
    )

    review = await session.get(Review, review_id)
    if review is None:
        review, created = await create_or_get(
            session, Review(id=review_id, **values), lambda: session.get(Review, review_id)
        )
        if created:
            logger.info(f"Stored review {review_id} ({review.state.value}) on PR {pr_id}")
            return review

    for key, value in values.items():
        setattr(review, key, value)
    await session.commit()
    return review


async def add_reviewer_to_pull_request(session: AsyncSession, pr_id: str, reviewer_id: str) -> None:
    pull_request = await session.get(PullRequest, str(pr_id))
    if pull_request is None:
        logger.warning(f"PR {pr_id} not found, cannot add reviewer {reviewer_id}")
        return

    reviewer_ids = list(pull_request.reviewer_ids or [])
    if str(reviewer_id) in reviewer_ids:
        return
    # Assign a new list so the JSON column is flagged dirty
    pull_request.reviewer_ids = reviewer_ids + [str(reviewer_id)]
    await session.commit()
    logger.info(f"Added reviewer {reviewer_id} to PR {pr_id}")


async def store_comment(session: AsyncSession, comment_data: CommentData, pr_id: str, analyzer) -> Comment:
    """
    Store a PR comment with its sentiment score.

    Offensive comments are stored too, with a lowered score and the
    `is_flagged` marker for moderation.
    """
    body = comment_data.body or ""
    author_context = {"userId": str(comment_data.user.id), "pullRequestId": str(pr_id)}
    sentiment = await analyzer.analyze_sentiment(body, author_context)
    offensive = await analyzer.is_offensive_content(body, author_context)
    if offensive:
        logger.warning(f"Potentially offensive comment {comment_data.id} on PR {pr_id}")
        sentiment = max(0.0, sentiment - OFFENSIVE_PENALTY)

    comment_id = str(comment_data.id)
    values = dict(
        pull_request_id=str(pr_id),
        author_id=str(comment_data.user.id),
        body=body,
        sentiment_score=sentiment,
        is_flagged=offensive,
        updated_at=comment_data.updated_at or utcnow(),
    )

    comment = await session.get(Comment, comment_id)
    if comment is None:
        comment, created = await create_or_get(
            session,
            Comment(id=comment_id, created_at=comment_data.created_at or utcnow(), **values),
            lambda: session.get(Comment, comment_id),
        )
        if created:
            logger.info(f"Stored comment {comment_id} on PR {pr_id} (sentiment {sentiment:.2f})")
            return comment

    for key, value in values.items():
        setattr(comment, key, value)
    await session.commit()
    return comment


def placeholder_login(name: Optional[str]) -> str:
    if name:
        return re.sub(r"\s+", "", name).lower()[:20]
    return f"commit-author-{uuid.uuid4().hex[:8]}"


async def get_or_create_placeholder_user(
    session: AsyncSession,
    account_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    login: Optional[str] = None,
    user_id: Optional[str] = None,
) -> User:
    """
    User for commit author data that does not map to a known GitHub user.

    Placeholders are keyed by email; one is synthesised from the login when
    the author has none. The placeholder becomes a member of `account_id`.
    """
    login = login or placeholder_login(name)
    email = email or f"{login}@placeholder.com"

    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        new_id = user_id or str(uuid.uuid4())
        user, created = await create_or_get(
            session,
            User(
                id=new_id,
                login=login,
                name=name or "Unknown User",
                email=email,
                account_id=account_id,
                points=0,
                level=1,
                is_placeholder=True,
            ),
            lambda: _user_by_email(session, email),
        )
        if created:
            logger.info(f"Created placeholder user {user.id} for {email}")
    await ensure_membership(session, user.id, account_id)
    return user


async def _user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def process_push_commit(
    session: AsyncSession, commit_data: PushCommit, repository_id: str, account_id: str
) -> Optional[Commit]:
    """
    Store a commit from a push event.

    Push payloads only carry the git author name and email, so the author is
    looked up by email or a placeholder user is created.
    """
    author = commit_data.author
    if author is None or not (author.email or author.name):
        logger.info(f"Skipping commit {commit_data.id}: missing author information")
        return None

    user = await _user_by_email(session, author.email) if author.email else None
    if user is None:
        user = await get_or_create_placeholder_user(
            session, account_id, email=author.email, name=author.name
        )

    changed_files = len(commit_data.added) + len(commit_data.removed) + len(commit_data.modified)
    committed_at = commit_data.timestamp or utcnow()

    commit = await session.get(Commit, commit_data.id)
    if commit is None:
        commit, created = await create_or_get(
            session,
            Commit(
                id=commit_data.id,
                sha=commit_data.id,
                message=commit_data.message,
                author_id=user.id,
                repository_id=str(repository_id),
                committed_at=committed_at,
                additions=0,
                deletions=0,
                changed_files=changed_files,
            ),
            lambda: session.get(Commit, commit_data.id),
        )
        if created:
            logger.info(f"Stored commit {commit_data.id[:7]} with {changed_files} changed files")
            return commit

    commit.message = commit_data.message
    commit.committed_at = committed_at
    commit.author_id = user.id
    await session.commit()
    return commit


@dataclass
class PullRequestContext:
    """A stored PR together with its repository and owning account"""
    pull_request: PullRequest
    repository: Repository
    account: Account


async def get_pull_request_context(session: AsyncSession, pr_id: str) -> Optional[PullRequestContext]:
    result = await session.execute(
        select(PullRequest, Repository, Account)
        .join(Repository, PullRequest.repository_id == Repository.id)
        .join(Account, Repository.account_id == Account.id)
        .where(PullRequest.id == str(pr_id))
    )
    row = result.first()
    if row is None:
        return None
    return PullRequestContext(pull_request=row[0], repository=row[1], account=row[2])
