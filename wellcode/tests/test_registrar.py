"""Tests for account, repository, user and membership bootstrap."""
from __future__ import annotations

import pytest
from sqlalchemy import func, select

from wellcode.models import Account, AccountType, Repository, User, UserOrganization
from wellcode.registrar import (
    ensure_account_exists,
    ensure_membership,
    ensure_repository_exists,
    ensure_user_exists,
    get_membership,
)


async def _count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar()


class TestEnsureAccountExists:
    @pytest.mark.asyncio
    async def test_rejects_empty_id(self, session):
        with pytest.raises(ValueError):
            await ensure_account_exists(session, "", "acme")

    @pytest.mark.asyncio
    async def test_new_account_defaults(self, session):
        account = await ensure_account_exists(session, "900", "acme")
        assert account.type == AccountType.ORGANIZATION
        assert account.installation_id == "unknown"
        assert account.settings == {}

    @pytest.mark.asyncio
    async def test_updates_installation_and_type(self, session):
        await ensure_account_exists(session, "900", "acme")
        account = await ensure_account_exists(session, "900", "acme", installation_id="42", account_type=AccountType.PERSONAL)
        assert account.installation_id == "42"
        assert account.type == AccountType.PERSONAL
        assert await _count(session, Account) == 1

    @pytest.mark.asyncio
    async def test_existing_values_kept_without_overrides(self, session):
        await ensure_account_exists(session, "900", "acme", installation_id="42")
        account = await ensure_account_exists(session, "900", "renamed")
        assert account.installation_id == "42"
        assert account.name == "acme"


class TestEnsureRepositoryExists:
    @pytest.mark.asyncio
    async def test_creates_account_from_owner(self, session):
        repo = await ensure_repository_exists(session, "300", "acme/widgets", "900", "develop")
        assert repo.name == "widgets"
        assert repo.default_branch == "develop"
        account = await session.get(Account, "900")
        assert account.name == "acme"

    @pytest.mark.asyncio
    async def test_idempotent(self, session):
        await ensure_repository_exists(session, "300", "acme/widgets", "900")
        await ensure_repository_exists(session, "300", "acme/widgets", "900")
        assert await _count(session, Repository) == 1
        repo = await session.get(Repository, "300")
        assert repo.default_branch == "main"


class TestEnsureUserExists:
    @pytest.mark.asyncio
    async def test_new_user_with_membership(self, session):
        user = await ensure_user_exists(session, "501", "octocat", "900")
        assert user.points == 0
        assert user.level == 1
        assert user.account_id == "900"
        assert await get_membership(session, "501", "900") is not None

    @pytest.mark.asyncio
    async def test_repeat_calls_create_nothing_new(self, session):
        await ensure_user_exists(session, "501", "octocat", "900")
        await ensure_user_exists(session, "501", "octocat", "900")
        assert await _count(session, User) == 1
        assert await _count(session, UserOrganization) == 1

    @pytest.mark.asyncio
    async def test_second_account_adds_membership_only(self, session):
        await ensure_user_exists(session, "501", "octocat", "900")
        await ensure_user_exists(session, "501", "octocat", "901")
        user = await session.get(User, "501")
        assert user.account_id == "900"
        assert await get_membership(session, "501", "901") is not None
        assert await _count(session, UserOrganization) == 2

    @pytest.mark.asyncio
    async def test_ensure_membership_returns_existing(self, session):
        await ensure_user_exists(session, "501", "octocat", "900")
        first = await get_membership(session, "501", "900")
        again = await ensure_membership(session, "501", "900")
        assert again.id == first.id
