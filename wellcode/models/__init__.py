"""Database models for the Wellcode pipeline"""

from wellcode.models.account import Account, AccountType
from wellcode.models.repository import Repository
from wellcode.models.user import User, UserOrganization
from wellcode.models.pull_request import PRState, PullRequest, PullRequestFile, pull_request_commits
from wellcode.models.commit import Commit
from wellcode.models.review import Review, ReviewState
from wellcode.models.comment import Comment
from wellcode.models.metric import AISuggestion, ImpactLevel, PRFeedback, PRMetric
from wellcode.models.points import PointTransaction
from wellcode.models.webhook_event import DeliveryStatus, WebhookEvent

__all__ = [
    "Account",
    "AccountType",
    "Repository",
    "User",
    "UserOrganization",
    "PRState",
    "PullRequest",
    "PullRequestFile",
    "pull_request_commits",
    "Commit",
    "Review",
    "ReviewState",
    "Comment",
    "AISuggestion",
    "ImpactLevel",
    "PRFeedback",
    "PRMetric",
    "PointTransaction",
    "DeliveryStatus",
    "WebhookEvent",
]
