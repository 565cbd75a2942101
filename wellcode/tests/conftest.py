from __future__ import annotations

import pytest
import pytest_asyncio

from wellcode.config import Settings
from wellcode.core.database import build_engine, build_session_factory, create_tables
from wellcode.core.security import ContentCipher
from wellcode.processor import EventProcessor, PipelineServices
from wellcode.registrar import ensure_repository_exists, ensure_user_exists
from wellcode.retry import RetryQueue
from wellcode.tests.factories import (
    ACCOUNT_ID,
    AUTHOR_ID,
    REPO_ID,
    TEST_ENCRYPTION_KEY,
    FakeAnalyzer,
    FakeGitHub,
    FakeGitHubFactory,
)


@pytest_asyncio.fixture()
async def engine():
    """In-memory SQLite; the engine shares one connection across sessions."""
    eng = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture()
async def session(session_factory):
    async with session_factory() as sess:
        yield sess


@pytest_asyncio.fixture()
async def seeded(session):
    """Account 900 owning repository acme/widgets, with member user 501."""
    await ensure_repository_exists(session, str(REPO_ID), "acme/widgets", str(ACCOUNT_ID))
    await ensure_user_exists(session, str(AUTHOR_ID), "octocat", str(ACCOUNT_ID))
    return session


@pytest.fixture()
def settings():
    return Settings(
        encryption_key=TEST_ENCRYPTION_KEY,
        post_pr_comments=True,
        apply_score_labels=True,
        retry_max_attempts=3,
        retry_backoff_base=0.0,
    )


@pytest.fixture()
def cipher():
    return ContentCipher(TEST_ENCRYPTION_KEY)


@pytest.fixture()
def github():
    return FakeGitHub()


@pytest.fixture()
def analyzer():
    return FakeAnalyzer()


@pytest.fixture()
def processor(session_factory, github, analyzer, cipher, settings):
    services = PipelineServices(
        session_factory=session_factory,
        github_factory=FakeGitHubFactory(github),
        cipher=cipher,
        analyzer=analyzer,
        retry_queue=RetryQueue.from_settings(settings),
        settings=settings,
    )
    return EventProcessor(services)
