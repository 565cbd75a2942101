"""Tests for linking pull request commits."""
from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import func, select

from wellcode.commit_linker import find_commit_author, link_commits_to_pull_request
from wellcode.entities import store_pull_request
from wellcode.models import Commit, PullRequest, User, pull_request_commits
from wellcode.schemas import PullRequestData, UserRef
from wellcode.tests.factories import (
    AUTHOR_ID,
    PR_ID,
    PR_NUMBER,
    REPO_ID,
    FakeGitHub,
    pr_commit,
    pull_request_data,
)


@pytest.fixture()
def github_with_commits():
    github = FakeGitHub()
    github.commits[PR_NUMBER] = [
        pr_commit("c1", "2026-03-02T08:00:00Z"),
        pr_commit("c2", "2026-03-02T10:00:00Z"),
        pr_commit("c3", "2026-03-02T11:00:00Z", author_id=None, email="new@example.com", name="New Dev"),
    ]
    return github


async def _store_pr(session):
    await store_pull_request(session, PullRequestData.model_validate(pull_request_data()), str(REPO_ID))


async def _link_count(session) -> int:
    result = await session.execute(
        select(func.count()).select_from(pull_request_commits).where(pull_request_commits.c.pull_request_id == str(PR_ID))
    )
    return result.scalar()


class TestLinkCommits:
    @pytest.mark.asyncio
    async def test_one_existing_and_two_new_commits(self, seeded, github_with_commits):
        await _store_pr(seeded)
        seeded.add(
            Commit(
                id="c1",
                sha="c1",
                message="Existing",
                author_id=str(AUTHOR_ID),
                repository_id=str(REPO_ID),
                committed_at=datetime(2026, 3, 2, 8, 0),
            )
        )
        await seeded.commit()

        linked = await link_commits_to_pull_request(seeded, github_with_commits, str(PR_ID), PR_NUMBER)

        assert linked == 3
        assert await _link_count(seeded) == 3
        commits = (await seeded.execute(select(func.count()).select_from(Commit))).scalar()
        assert commits == 3

        c3 = await seeded.get(Commit, "c3")
        author = await seeded.get(User, c3.author_id)
        assert author.is_placeholder is True
        assert author.email == "new@example.com"

        pr = await seeded.get(PullRequest, str(PR_ID))
        assert pr.first_commit_at == datetime(2026, 3, 2, 8, 0)

    @pytest.mark.asyncio
    async def test_relinking_adds_nothing(self, seeded, github_with_commits):
        await _store_pr(seeded)
        await link_commits_to_pull_request(seeded, github_with_commits, str(PR_ID), PR_NUMBER)
        again = await link_commits_to_pull_request(seeded, github_with_commits, str(PR_ID), PR_NUMBER)
        assert again == 0
        assert await _link_count(seeded) == 3

    @pytest.mark.asyncio
    async def test_known_author_resolved_by_id(self, seeded, github_with_commits):
        await _store_pr(seeded)
        await link_commits_to_pull_request(seeded, github_with_commits, str(PR_ID), PR_NUMBER)
        c2 = await seeded.get(Commit, "c2")
        assert c2.author_id == str(AUTHOR_ID)

    @pytest.mark.asyncio
    async def test_commit_without_author_data_skipped(self, seeded):
        await _store_pr(seeded)
        github = FakeGitHub()
        github.commits[PR_NUMBER] = [{"sha": "c9", "commit": {"message": "anon"}, "author": None}]
        assert await link_commits_to_pull_request(seeded, github, str(PR_ID), PR_NUMBER) == 0

    @pytest.mark.asyncio
    async def test_missing_pr_links_nothing(self, seeded, github_with_commits):
        assert await link_commits_to_pull_request(seeded, github_with_commits, "404", PR_NUMBER) == 0


class TestFindCommitAuthor:
    @pytest.mark.asyncio
    async def test_by_login_then_email(self, seeded):
        user = await find_commit_author(seeded, UserRef(login="octocat"))
        assert user.id == str(AUTHOR_ID)
        assert await find_commit_author(seeded, UserRef(email="nobody@example.com")) is None
