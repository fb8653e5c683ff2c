"""
App Document Model

Process-wide JSON documents (LINE settings, notification settings, the
recipient registry). One row per document key; ``version`` is bumped on
every write and used as the compare-and-swap token.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime

from qa_portal.database import Base
from qa_portal.models.qa_record import JSONType


class AppDocument(Base):
    __tablename__ = "app_documents"

    id = Column(Integer, primary_key=True)
    key = Column(String(100), nullable=False, unique=True, index=True)
    data = Column(JSONType, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<AppDocument {self.key} v{self.version}>"
