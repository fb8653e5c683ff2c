"""
QA Record Model

One submission of indicator values for a department in a fiscal month.
The (department_id, fiscal_year, month) triple is the record's identity;
the unique constraint below is what the upsert conflicts on.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import JSONB

from qa_portal.database import Base
from qa_portal.time_config import isoformat

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class QARecord(Base):
    __tablename__ = "qa_records"

    id = Column(Integer, primary_key=True)
    department_id = Column(String(50), nullable=False, index=True)
    department_name = Column(String(255), nullable=False)
    fiscal_year = Column(Integer, nullable=False, index=True)
    month = Column(String(50), nullable=False)
    data = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("department_id", "fiscal_year", "month", name="qa_unique_index"),
        Index("ix_qa_records_year_department", "fiscal_year", "department_id"),
    )

    UNIQUE_COLUMNS = ["department_id", "fiscal_year", "month"]

    @property
    def record_key(self) -> str:
        return f"{self.department_id}-{self.fiscal_year}-{self.month}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "departmentId": self.department_id,
            "departmentName": self.department_name,
            "fiscalYear": self.fiscal_year,
            "month": self.month,
            "data": dict(self.data or {}),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<QARecord {self.record_key}>"
