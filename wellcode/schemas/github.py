"""Shapes of the GitHub objects the pipeline reads"""

from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, field_validator

from wellcode.core.database import naive_utc

UtcDatetime = Annotated[datetime, AfterValidator(naive_utc)]


class GitHubModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class UserRef(GitHubModel):
    """A GitHub user reference; every field may be missing in commit data"""
    id: Optional[int] = None
    login: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    type: Optional[str] = None


class Actor(GitHubModel):
    """A GitHub account that performed an action; the id is required"""
    id: int
    login: str = ""
    type: Optional[str] = None


class PullRequestData(GitHubModel):
    """A pull request, as found in webhooks and in GET /pulls/{number}"""
    id: int
    number: int
    title: str = ""
    body: Optional[str] = None
    state: str = "open"
    merged: bool = False
    user: Actor
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    created_at: Optional[UtcDatetime] = None
    merged_at: Optional[UtcDatetime] = None
    closed_at: Optional[UtcDatetime] = None

    @field_validator("merged", mode="before")
    @classmethod
    def _merged_null_is_false(cls, value):
        return bool(value)

    @field_validator("additions", "deletions", "changed_files", mode="before")
    @classmethod
    def _counts_null_is_zero(cls, value):
        return value or 0


class PullRequestFileData(GitHubModel):
    filename: str
    status: Optional[str] = None
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: Optional[str] = None


class GitAuthor(GitHubModel):
    name: Optional[str] = None
    email: Optional[str] = None
    date: Optional[UtcDatetime] = None


class CommitDetail(GitHubModel):
    message: str = ""
    author: Optional[GitAuthor] = None


class PullRequestCommitData(GitHubModel):
    """An entry of GET /pulls/{number}/commits"""
    sha: str
    commit: CommitDetail
    author: Optional[UserRef] = None  # linked GitHub account, null for unknown emails

    def author_ref(self) -> Optional[UserRef]:
        """
        Merge the GitHub account (id, login) with the git author (name, email).
        """
        git_author = self.commit.author
        if self.author is None and git_author is None:
            return None
        return UserRef(
            id=self.author.id if self.author else None,
            login=self.author.login if self.author else None,
            name=git_author.name if git_author else None,
            email=git_author.email if git_author else None,
        )


class Label(GitHubModel):
    name: str
    color: Optional[str] = None


def to_files(items: List[dict]) -> List[PullRequestFileData]:
    return [PullRequestFileData.model_validate(item) for item in items or []]
