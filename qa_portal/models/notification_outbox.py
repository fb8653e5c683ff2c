"""
Notification Outbox Model

A notification intent written by the save path and delivered later by the
outbox consumer. Rows are never deleted; ``status`` moves from pending to
sent or failed.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Index

from qa_portal.database import Base
from qa_portal.models.qa_record import JSONType


class NotificationIntent(Base):
    __tablename__ = "notification_outbox"

    STATUS_PENDING = "pending"
    STATUS_SENT = "sent"
    STATUS_FAILED = "failed"

    id = Column(Integer, primary_key=True)
    kind = Column(String(50), nullable=False)
    payload = Column(JSONType, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=STATUS_PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_notification_outbox_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<NotificationIntent {self.id} {self.kind} {self.status}>"
