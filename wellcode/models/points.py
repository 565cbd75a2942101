"""Point transaction ledger"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from wellcode.core.database import Base, utcnow


class PointTransaction(Base):
    """Append-only ledger entry; never updated or deleted"""

    __tablename__ = "point_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    account_id = Column(String(64), ForeignKey("accounts.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String(50), nullable=False)  # pr_merged, review_submitted
    reference_id = Column(String(64))
    reference_type = Column(String(50))

    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f"<PointTransaction(user_id={self.user_id}, amount={self.amount}, reason={self.reason})>"
