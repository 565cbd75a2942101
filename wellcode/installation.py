"""GitHub App installation lifecycle: created, deleted, repositories added and removed"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from .core.database import utcnow
from .metrics import default_settings
from .models import Account, AccountType, Repository
from .registrar import ensure_account_exists, ensure_repository_exists
from .schemas.webhook import AccountRef, InstallationEvent

logger = logging.getLogger(__name__)


def detect_account_type(account: Optional[AccountRef]) -> AccountType:
    """GitHub "Organization" accounts are organizations, everything else is personal"""
    if account is None:
        return AccountType.ORGANIZATION
    account_type = AccountType.ORGANIZATION if account.type == "Organization" else AccountType.PERSONAL
    logger.info(f"Detected account type: {account_type.value} for {account.login}")
    return account_type


def get_personal_account_defaults() -> Dict[str, Any]:
    return default_settings(personal=True)


def get_organization_defaults() -> Dict[str, Any]:
    return default_settings(personal=False)


async def handle_new_installation(session: AsyncSession, event: InstallationEvent) -> Account:
    installation = event.installation
    account_type = detect_account_type(installation.account)
    account_id = str(installation.account.id)

    account = await ensure_account_exists(
        session,
        account_id,
        installation.account.login,
        installation_id=str(installation.id),
        account_type=account_type,
    )
    for repo in event.repositories:
        await ensure_repository_exists(session, str(repo.id), repo.full_name, account_id, repo.default_branch)

    defaults = (
        get_personal_account_defaults() if account_type == AccountType.PERSONAL else get_organization_defaults()
    )
    # Reinstalls keep customised settings but become active again
    settings = {**defaults, **(account.settings or {})}
    settings.pop("uninstalledAt", None)
    settings["active"] = True
    account.settings = settings
    await session.commit()

    logger.info(f"Installation {installation.id} created for {account.name} with {len(event.repositories)} repositories")
    return account


async def handle_uninstallation(session: AsyncSession, event: InstallationEvent) -> Optional[Account]:
    """Deactivate the account; its data is kept for reinstalls"""
    account = await session.get(Account, str(event.installation.account.id))
    if account is None:
        logger.warning(f"Uninstalled account {event.installation.account.id} is not stored")
        return None

    account.settings = {**(account.settings or {}), "active": False, "uninstalledAt": utcnow().isoformat()}
    await session.commit()
    logger.info(f"Account {account.name} uninstalled")
    return account


async def handle_repositories_added(session: AsyncSession, event: InstallationEvent) -> int:
    account_id = str(event.installation.account.id)
    await ensure_account_exists(
        session,
        account_id,
        event.installation.account.login,
        installation_id=str(event.installation.id),
    )
    for repo in event.repositories_added:
        repository = await ensure_repository_exists(
            session, str(repo.id), repo.full_name, account_id, repo.default_branch
        )
        if not repository.is_active:
            repository.is_active = True
            await session.commit()
    logger.info(f"Added {len(event.repositories_added)} repositories to account {account_id}")
    return len(event.repositories_added)


async def handle_repositories_removed(session: AsyncSession, event: InstallationEvent) -> int:
    ids = [str(repo.id) for repo in event.repositories_removed]
    if not ids:
        return 0
    await session.execute(update(Repository).where(Repository.id.in_(ids)).values(is_active=False))
    await session.commit()
    logger.info(f"Deactivated {len(ids)} repositories of account {event.installation.account.id}")
    return len(ids)


async def handle_installation_event(session: AsyncSession, event: InstallationEvent):
    action = event.action
    if action == "created":
        return await handle_new_installation(session, event)
    if action == "deleted":
        return await handle_uninstallation(session, event)
    if action == "added":
        return await handle_repositories_added(session, event)
    if action == "removed":
        return await handle_repositories_removed(session, event)
    logger.info(f"Unhandled installation action: {action}")
    return None
