"""Pull request, PR file and PR/commit link models"""

import enum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)

from wellcode.core.database import Base, utcnow


class PRState(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MERGED = "MERGED"


# Many-to-many: a commit can belong to several PRs
pull_request_commits = Table(
    "pull_request_commits",
    Base.metadata,
    Column("pull_request_id", String(64), ForeignKey("pull_requests.id"), primary_key=True),
    Column("commit_id", String(64), ForeignKey("commits.id"), primary_key=True),
)


class PullRequest(Base):
    """A pull request with its lifecycle timestamps and computed scores"""

    __tablename__ = "pull_requests"

    id = Column(String(64), primary_key=True)  # GitHub PR id
    number = Column(Integer, nullable=False)
    title = Column(String(1000), nullable=False, default="")
    description = Column(Text)  # encrypted once CLOSED or MERGED
    state = Column(Enum(PRState, name="pr_state"), nullable=False, default=PRState.OPEN)

    author_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    repository_id = Column(String(64), ForeignKey("repositories.id"), nullable=False, index=True)

    additions = Column(Integer, default=0)
    deletions = Column(Integer, default=0)
    changed_files = Column(Integer, default=0)
    reviewer_ids = Column(JSON, nullable=False, default=list)

    opened_at = Column(DateTime)
    first_commit_at = Column(DateTime)
    merged_at = Column(DateTime)
    closed_at = Column(DateTime)

    # Scores (0-100)
    efficiency_score = Column(Float)
    wellness_score = Column(Float)
    quality_score = Column(Float)
    overall_score = Column(Float)
    initial_efficiency_score = Column(Float)

    points_awarded = Column(Integer)
    metrics_calculated_at = Column(DateTime)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<PullRequest(id={self.id}, number={self.number}, state={self.state})>"


class PullRequestFile(Base):
    """A file changed by a pull request (replaced as a set on every sync)"""

    __tablename__ = "pull_request_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pull_request_id = Column(String(64), ForeignKey("pull_requests.id"), nullable=False, index=True)
    filename = Column(String(1000), nullable=False)
    status = Column(String(50))  # added, removed, modified, renamed
    additions = Column(Integer, default=0)
    deletions = Column(Integer, default=0)
    changes = Column(Integer, default=0)
    patch = Column(Text)

    def __repr__(self):
        return f"<PullRequestFile(pull_request_id={self.pull_request_id}, filename={self.filename})>"
