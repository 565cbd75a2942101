"""
Webhook payload variants, one model per event type.

The router validates the raw payload into the model registered for the
event type before dispatching, so handlers work with typed objects.
"""

from typing import Dict, List, Optional, Type

from pydantic import Field

from wellcode.schemas.github import (
    Actor,
    GitHubModel,
    Label,
    PullRequestData,
    UtcDatetime,
)


class AccountRef(GitHubModel):
    id: int
    login: str = ""
    type: Optional[str] = None  # "Organization" or "User"


class InstallationRef(GitHubModel):
    id: Optional[int] = None
    account: Optional[AccountRef] = None


class OrganizationRef(GitHubModel):
    id: int
    login: str = ""


class RepositoryRef(GitHubModel):
    id: int
    name: str = ""
    full_name: str
    owner: Optional[Actor] = None
    default_branch: Optional[str] = None

    @property
    def owner_name(self) -> str:
        return self.full_name.split("/")[0]


class WebhookPayload(GitHubModel):
    """Fields shared by every webhook payload"""
    action: Optional[str] = None
    installation: Optional[InstallationRef] = None
    organization: Optional[OrganizationRef] = None
    repository: Optional[RepositoryRef] = None
    sender: Optional[Actor] = None

    @property
    def installation_id(self) -> Optional[int]:
        return self.installation.id if self.installation else None

    def resolve_account_id(self) -> Optional[str]:
        """
        Account the event belongs to, first match wins:
        installation account, organization, repository owner, sender.
        """
        if self.installation and self.installation.account:
            return str(self.installation.account.id)
        if self.organization:
            return str(self.organization.id)
        if self.repository and self.repository.owner:
            return str(self.repository.owner.id)
        if self.sender:
            return str(self.sender.id)
        return None


class PingEvent(WebhookPayload):
    zen: Optional[str] = None


class PullRequestEvent(WebhookPayload):
    action: str
    pull_request: PullRequestData
    repository: RepositoryRef
    label: Optional[Label] = None


class ReviewData(GitHubModel):
    id: int
    user: Actor
    state: str = ""
    body: Optional[str] = None
    submitted_at: Optional[UtcDatetime] = None


class PullRequestReviewEvent(WebhookPayload):
    action: str
    review: ReviewData
    pull_request: PullRequestData
    repository: RepositoryRef


class PushAuthor(GitHubModel):
    name: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None


class PushCommit(GitHubModel):
    id: str
    message: str = ""
    timestamp: Optional[UtcDatetime] = None
    author: Optional[PushAuthor] = None
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    modified: List[str] = Field(default_factory=list)


class PushEvent(WebhookPayload):
    repository: RepositoryRef
    ref: Optional[str] = None
    commits: List[PushCommit] = Field(default_factory=list)
    pusher: Optional[PushAuthor] = None


class IssuePullRequestRef(GitHubModel):
    url: str


class IssueRef(GitHubModel):
    number: int
    pull_request: Optional[IssuePullRequestRef] = None


class CommentData(GitHubModel):
    id: int
    body: Optional[str] = ""
    user: Actor
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None


class IssueCommentEvent(WebhookPayload):
    action: str
    issue: IssueRef
    comment: CommentData
    repository: RepositoryRef

    @property
    def pr_number(self) -> int:
        """PR number from the issue's pull_request API url"""
        return int(self.issue.pull_request.url.rstrip("/").split("/")[-1])


class InstallationRepository(GitHubModel):
    id: int
    name: str = ""
    full_name: str
    default_branch: Optional[str] = None


class InstallationData(GitHubModel):
    id: int
    account: AccountRef


class InstallationEvent(WebhookPayload):
    action: str
    installation: InstallationData
    repositories: List[InstallationRepository] = Field(default_factory=list)
    repositories_added: List[InstallationRepository] = Field(default_factory=list)
    repositories_removed: List[InstallationRepository] = Field(default_factory=list)

    def resolve_account_id(self) -> Optional[str]:
        return str(self.installation.account.id)

    @property
    def installation_id(self) -> Optional[int]:
        return self.installation.id


EVENT_MODELS: Dict[str, Type[WebhookPayload]] = {
    "ping": PingEvent,
    "pull_request": PullRequestEvent,
    "pull_request_review": PullRequestReviewEvent,
    "push": PushEvent,
    "issue_comment": IssueCommentEvent,
    "installation": InstallationEvent,
    "installation_repositories": InstallationEvent,
}


def parse_event(event_type: str, payload: dict) -> Optional[WebhookPayload]:
    """
    Validate a raw payload into the model for its event type.

    Returns None for event types the pipeline does not handle.

    Raises:
        pydantic.ValidationError: If the payload does not match the model
    """
    model = EVENT_MODELS.get(event_type)
    if model is None:
        return None
    return model.model_validate(payload or {})
