"""Account model: the tenant boundary (organization or personal account)"""

import enum

from sqlalchemy import JSON, Column, DateTime, Enum, String

from wellcode.core.database import Base, utcnow


class AccountType(str, enum.Enum):
    ORGANIZATION = "ORGANIZATION"
    PERSONAL = "PERSONAL"


class Account(Base):
    """A GitHub organization or user account the app is installed on"""

    __tablename__ = "accounts"

    id = Column(String(64), primary_key=True)  # GitHub account id
    name = Column(String(255), nullable=False)
    type = Column(Enum(AccountType, name="account_type"), nullable=False, default=AccountType.ORGANIZATION)
    installation_id = Column(String(64), nullable=False, default="unknown")

    # Weights, thresholds, working hours, active flag
    settings = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Account(id={self.id}, name={self.name}, type={self.type})>"
