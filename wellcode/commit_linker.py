"""Associates the commits of a pull request with the stored PR"""

import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import func, insert, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .core.database import reset_session, utcnow
from .entities import get_or_create_placeholder_user
from .models import Commit, PullRequest, Repository, User, pull_request_commits
from .schemas import PullRequestCommitData, UserRef

logger = logging.getLogger(__name__)


async def is_linked(session: AsyncSession, pr_id: str, commit_id: str) -> bool:
    result = await session.execute(
        select(pull_request_commits.c.commit_id).where(
            pull_request_commits.c.pull_request_id == pr_id,
            pull_request_commits.c.commit_id == commit_id,
        )
    )
    return result.first() is not None


async def link_commit(session: AsyncSession, pr_id: str, commit_id: str) -> bool:
    """Connect a stored commit to a PR. Returns False if it was already connected."""
    if await is_linked(session, pr_id, commit_id):
        return False
    try:
        await session.execute(insert(pull_request_commits).values(pull_request_id=pr_id, commit_id=commit_id))
        await session.commit()
    except IntegrityError:
        # Linked concurrently
        await reset_session(session)
        return False
    return True


async def find_commit_author(session: AsyncSession, author: UserRef) -> Optional[User]:
    """Known user for commit author data: by id, then by login or name, then by email"""
    if author.id is not None:
        user = await session.get(User, str(author.id))
        if user is not None:
            return user

    handle = author.login or author.name
    if handle:
        result = await session.execute(select(User).where(User.login == handle).limit(1))
        user = result.scalar_one_or_none()
        if user is not None:
            return user

    if author.email:
        result = await session.execute(select(User).where(User.email == author.email))
        return result.scalar_one_or_none()
    return None


async def update_first_commit_at(session: AsyncSession, pull_request: PullRequest) -> None:
    result = await session.execute(
        select(func.min(Commit.committed_at))
        .join(pull_request_commits, pull_request_commits.c.commit_id == Commit.id)
        .where(pull_request_commits.c.pull_request_id == pull_request.id)
    )
    earliest = result.scalar()
    if earliest is None:
        return
    pull_request.first_commit_at = earliest
    await session.commit()
    logger.info(f"PR {pull_request.id} first commit at {earliest}")


async def link_commits_to_pull_request(session: AsyncSession, github, pr_id: str, pr_number: int) -> int:
    """
    Link every commit GitHub lists for the PR.

    Commits not stored yet are created with their author resolved to a
    known user or a placeholder in the PR repository's account. Commits
    without any author data are skipped. Returns the number of new links.
    """
    pr_id = str(pr_id)
    pull_request = await session.get(PullRequest, pr_id)
    if pull_request is None:
        logger.warning(f"Cannot link commits: PR {pr_id} not found")
        return 0
    repository = await session.get(Repository, pull_request.repository_id)

    commits = await github.get_pull_request_commits(pr_number)
    logger.info(f"Linking {len(commits)} commits to PR #{pr_number}")

    linked = 0
    for item in commits:
        try:
            commit_data = PullRequestCommitData.model_validate(item)
        except ValidationError as e:
            logger.warning(f"Skipping malformed commit entry on PR #{pr_number}: {e}")
            continue
        sha = commit_data.sha

        result = await session.execute(select(Commit).where(or_(Commit.id == sha, Commit.sha == sha)))
        commit = result.scalars().first()
        if commit is not None:
            if await link_commit(session, pr_id, commit.id):
                linked += 1
            continue

        author_ref = commit_data.author_ref()
        if author_ref is None:
            logger.info(f"No author data for commit {sha[:7]}, skipping")
            continue

        author = await find_commit_author(session, author_ref)
        if author is None:
            author = await get_or_create_placeholder_user(
                session,
                repository.account_id,
                email=author_ref.email,
                name=author_ref.name,
                login=author_ref.login,
                user_id=str(author_ref.id) if author_ref.id is not None else None,
            )

        git_author = commit_data.commit.author
        session.add(
            Commit(
                id=sha,
                sha=sha,
                message=commit_data.commit.message,
                author_id=author.id,
                repository_id=pull_request.repository_id,
                committed_at=(git_author.date if git_author and git_author.date else utcnow()),
            )
        )
        try:
            await session.flush()
            await session.execute(insert(pull_request_commits).values(pull_request_id=pr_id, commit_id=sha))
            await session.commit()
        except IntegrityError:
            await reset_session(session)
            if await link_commit(session, pr_id, sha):
                linked += 1
            continue
        logger.info(f"Created and linked commit {sha[:7]}")
        linked += 1

    logger.info(f"Linked {linked} commits to PR #{pr_number}")
    # Re-read: a reset above detaches the instance
    pull_request = await session.get(PullRequest, pr_id)
    await update_first_commit_at(session, pull_request)
    return linked
