"""WebhookEvent model: one row per delivery"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from wellcode.core.database import Base, utcnow


class DeliveryStatus:
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookEvent(Base):
    """A received webhook delivery and its processing status"""

    __tablename__ = "webhook_events"

    id = Column(String(64), primary_key=True)  # X-GitHub-Delivery
    event = Column(String(100), nullable=False)
    action = Column(String(100))
    payload = Column(JSON)

    status = Column(String(50), nullable=False, default=DeliveryStatus.PENDING)
    error = Column(Text)
    attempts = Column(Integer, nullable=False, default=0)

    received_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime)

    def __repr__(self):
        return f"<WebhookEvent(id={self.id}, event={self.event}, status={self.status})>"
