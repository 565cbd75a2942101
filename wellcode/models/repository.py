"""Repository model"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String

from wellcode.core.database import Base, utcnow


class Repository(Base):
    """A GitHub repository owned by an account"""

    __tablename__ = "repositories"

    id = Column(String(64), primary_key=True)  # GitHub repository id
    name = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)  # owner/repo
    account_id = Column(String(64), ForeignKey("accounts.id"), nullable=False, index=True)
    default_branch = Column(String(255), default="main")
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Repository(id={self.id}, full_name={self.full_name})>"
