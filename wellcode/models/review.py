"""Review model"""

import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text

from wellcode.core.database import Base


class ReviewState(str, enum.Enum):
    PENDING = "PENDING"
    COMMENTED = "COMMENTED"
    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"


class Review(Base):
    """A pull request review"""

    __tablename__ = "reviews"

    id = Column(String(64), primary_key=True)  # GitHub review id
    pull_request_id = Column(String(64), ForeignKey("pull_requests.id"), nullable=False, index=True)
    author_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    state = Column(Enum(ReviewState, name="review_state"), nullable=False, default=ReviewState.PENDING)
    body = Column(Text)
    submitted_at = Column(DateTime)
    points_awarded = Column(Integer)  # set once the reviewer was credited

    def __repr__(self):
        return f"<Review(id={self.id}, state={self.state})>"
