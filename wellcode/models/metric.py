"""Per-PR metrics, analysis feedback and efficiency suggestions"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from wellcode.core.database import Base, utcnow


class PRMetric(Base):
    """One normalized metric of a PR; the whole set is replaced on recomputation"""

    __tablename__ = "pr_metrics"
    __table_args__ = (UniqueConstraint("pull_request_id", "category", "name", name="uq_pr_metric"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    pull_request_id = Column(String(64), ForeignKey("pull_requests.id"), nullable=False, index=True)
    category = Column(String(50), nullable=False)  # efficiency, wellness, quality
    name = Column(String(100), nullable=False)
    value = Column(Float, nullable=False)  # normalized score
    raw_value = Column(Float)
    unit = Column(String(50))
    description = Column(Text)

    def __repr__(self):
        return f"<PRMetric({self.category}.{self.name}={self.value})>"


class PRFeedback(Base):
    """Code analysis feedback item for a PR"""

    __tablename__ = "pr_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pull_request_id = Column(String(64), ForeignKey("pull_requests.id"), nullable=False, index=True)
    type = Column(String(50), nullable=False)  # highlight, suggestion, warning, error, action_item
    message = Column(Text, nullable=False)
    code_context = Column(Text)
    file_location = Column(String(1000))

    created_at = Column(DateTime, default=utcnow)


class ImpactLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class AISuggestion(Base):
    """An efficiency improvement suggestion derived from stored metrics"""

    __tablename__ = "ai_suggestions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pull_request_id = Column(String(64), ForeignKey("pull_requests.id"), nullable=False, index=True)
    category = Column(String(50), nullable=False, default="efficiency")
    impact_area = Column(String(100), nullable=False)
    message = Column(Text, nullable=False)
    estimated_time_saving = Column(Integer, default=0)  # minutes
    impact_level = Column(Enum(ImpactLevel, name="impact_level"), nullable=False)
    is_implemented = Column(Boolean, default=False)
    implemented_at = Column(DateTime)
    before_score = Column(Float)
    after_score = Column(Float)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
