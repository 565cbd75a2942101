"""Commit model"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from wellcode.core.database import Base, utcnow


class Commit(Base):
    """A git commit, keyed by SHA"""

    __tablename__ = "commits"

    id = Column(String(64), primary_key=True)  # SHA
    sha = Column(String(64), nullable=False, index=True)
    message = Column(Text, default="")
    author_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    repository_id = Column(String(64), ForeignKey("repositories.id"), nullable=False, index=True)
    committed_at = Column(DateTime, nullable=False)
    additions = Column(Integer, default=0)
    deletions = Column(Integer, default=0)
    changed_files = Column(Integer, default=0)

    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Commit(sha={self.sha[:7]}, author_id={self.author_id})>"
