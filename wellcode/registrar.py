"""
Bootstrap of accounts, repositories, users and memberships.

Every function here is safe to call on every event: existing rows are left
alone and concurrent creates of the same id resolve to the stored row.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.database import create_or_get
from .models import Account, AccountType, Repository, User, UserOrganization

logger = logging.getLogger(__name__)

UNKNOWN_INSTALLATION = "unknown"


async def ensure_account_exists(
    session: AsyncSession,
    account_id: str,
    name: str,
    installation_id: Optional[str] = None,
    account_type: Optional[AccountType] = None,
) -> Account:
    """
    Get or create an account.

    New accounts default to ORGANIZATION with an unknown installation until
    an installation event says otherwise. When `installation_id` or
    `account_type` are given they overwrite the stored values.
    """
    if not account_id:
        raise ValueError("Account ID is required")

    account = await session.get(Account, account_id)
    if account is None:
        logger.info(f"Creating account {name} ({account_id})")
        account, created = await create_or_get(
            session,
            Account(
                id=account_id,
                name=name,
                type=account_type or AccountType.ORGANIZATION,
                installation_id=installation_id or UNKNOWN_INSTALLATION,
                settings={},
            ),
            lambda: session.get(Account, account_id),
        )
        if created:
            return account

    changed = False
    if installation_id and account.installation_id != installation_id:
        logger.info(f"Updating installation ID for account {account.name}")
        account.installation_id = installation_id
        changed = True
    if account_type and account.type != account_type:
        account.type = account_type
        changed = True
    if changed:
        await session.commit()
    return account


async def ensure_repository_exists(
    session: AsyncSession,
    repo_id: str,
    full_name: str,
    account_id: str,
    default_branch: Optional[str] = None,
) -> Repository:
    """
    Make sure the owning account and the repository exist.

    A missing account is named after the owner segment of `full_name`.
    """
    owner_name, _, repo_name = full_name.partition("/")
    await ensure_account_exists(session, account_id, owner_name)

    repository = await session.get(Repository, repo_id)
    if repository is not None:
        return repository

    repository, created = await create_or_get(
        session,
        Repository(
            id=repo_id,
            name=repo_name or full_name,
            full_name=full_name,
            account_id=account_id,
            default_branch=default_branch or "main",
        ),
        lambda: session.get(Repository, repo_id),
    )
    if created:
        logger.info(f"Repository created: {full_name} ({repo_id})")
    return repository


async def get_membership(session: AsyncSession, user_id: str, account_id: str) -> Optional[UserOrganization]:
    result = await session.execute(
        select(UserOrganization).where(
            UserOrganization.user_id == user_id,
            UserOrganization.account_id == account_id,
        )
    )
    return result.scalar_one_or_none()


async def ensure_membership(session: AsyncSession, user_id: str, account_id: str) -> UserOrganization:
    membership = await get_membership(session, user_id, account_id)
    if membership is not None:
        return membership

    membership, created = await create_or_get(
        session,
        UserOrganization(user_id=user_id, account_id=account_id, role="member"),
        lambda: get_membership(session, user_id, account_id),
    )
    if created:
        logger.info(f"Added user {user_id} to account {account_id}")
    return membership


async def ensure_user_exists(
    session: AsyncSession,
    user_id: str,
    login: str,
    account_id: str,
) -> User:
    """
    Make sure the account, the user and the user's membership exist.

    New users get `account_id` as their home account, 0 points and level 1.
    Existing users only gain the missing membership.
    """
    await ensure_account_exists(session, account_id, login)

    user = await session.get(User, user_id)
    if user is None:
        user, created = await create_or_get(
            session,
            User(id=user_id, login=login, account_id=account_id, points=0, level=1),
            lambda: session.get(User, user_id),
        )
        if created:
            logger.info(f"User created: {login} ({user_id})")

    await ensure_membership(session, user_id, account_id)
    return user
