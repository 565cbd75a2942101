"""Comment model"""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, String, Text

from wellcode.core.database import Base, utcnow


class Comment(Base):
    """A PR conversation comment with its sentiment score"""

    __tablename__ = "comments"

    id = Column(String(64), primary_key=True)  # GitHub comment id
    pull_request_id = Column(String(64), ForeignKey("pull_requests.id"), nullable=False, index=True)
    author_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    body = Column(Text, default="")
    sentiment_score = Column(Float)  # 0-1
    is_flagged = Column(Boolean, default=False)  # offensive content, for moderation

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Comment(id={self.id}, sentiment_score={self.sentiment_score})>"
