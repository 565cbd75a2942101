"""Pydantic schemas for webhook payloads and GitHub API responses"""

from wellcode.schemas.github import (
    Actor,
    CommitDetail,
    GitAuthor,
    PullRequestCommitData,
    PullRequestData,
    PullRequestFileData,
    UserRef,
)
from wellcode.schemas.webhook import (
    EVENT_MODELS,
    InstallationEvent,
    IssueCommentEvent,
    PingEvent,
    PullRequestEvent,
    PullRequestReviewEvent,
    PushEvent,
    WebhookPayload,
    parse_event,
)

__all__ = [
    "Actor",
    "CommitDetail",
    "GitAuthor",
    "PullRequestCommitData",
    "PullRequestData",
    "PullRequestFileData",
    "UserRef",
    "EVENT_MODELS",
    "InstallationEvent",
    "IssueCommentEvent",
    "PingEvent",
    "PullRequestEvent",
    "PullRequestReviewEvent",
    "PushEvent",
    "WebhookPayload",
    "parse_event",
]
