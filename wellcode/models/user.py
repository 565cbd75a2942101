"""User and account membership models"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from wellcode.core.database import Base, utcnow


class User(Base):
    """
    A GitHub user, or a placeholder synthesized from commit author data.

    `points` only ever grows; `level` is derived from it.
    """

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)  # GitHub user id or placeholder id
    login = Column(String(255), nullable=False, index=True)
    name = Column(String(255))
    email = Column(String(255), unique=True, index=True)
    account_id = Column(String(64), ForeignKey("accounts.id"), nullable=False)  # home account
    points = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
    is_placeholder = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, login={self.login}, points={self.points}, level={self.level})>"


class UserOrganization(Base):
    """Membership of a user in an account"""

    __tablename__ = "user_organizations"
    __table_args__ = (UniqueConstraint("user_id", "account_id", name="uq_user_account"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    account_id = Column(String(64), ForeignKey("accounts.id"), nullable=False, index=True)
    role = Column(String(50), default="member")

    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<UserOrganization(user_id={self.user_id}, account_id={self.account_id})>"
