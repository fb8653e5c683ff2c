"""
QA record store.

Records are keyed by (department, fiscal year, month). Writes go through
the database's native insert-or-update on the ``qa_unique_index``
constraint, so two concurrent saves for the same period can never create
two rows.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from qa_portal.departments import department_name as roster_name
from qa_portal.errors import PersistenceError, ValidationError
from qa_portal.models import QARecord
from qa_portal.services.fiscal import month_sort_key
from qa_portal.services.validators import (
    _is_empty,
    parse_fiscal_year,
    validate_period,
    validate_record_data,
)
from qa_portal.time_config import utc_naive

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class PeriodKey:
    department_id: str
    fiscal_year: int
    month: str

    @classmethod
    def build(cls, department_id: Any, fiscal_year: Any, month: Any) -> "PeriodKey":
        """Validated key; fiscal_year is normalized to int."""
        validate_period(department_id, fiscal_year, month).raise_if_invalid()
        return cls(
            department_id=str(department_id).strip(),
            fiscal_year=parse_fiscal_year(fiscal_year),
            month=month,
        )

    @property
    def record_id(self) -> str:
        return f"{self.department_id}-{self.fiscal_year}-{self.month}"


@dataclass
class DuplicateCheck:
    exists: bool
    record: Optional[QARecord]
    record_id: str


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    try:
        return _DIALECT_INSERTS[dialect]
    except KeyError:
        raise PersistenceError(f"Upsert is not supported on the {dialect} dialect")


def upsert_record(
    db: Session,
    department_id: Any,
    department_name: Optional[str],
    fiscal_year: Any,
    month: Any,
    data: Optional[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> QARecord:
    """
    Create or overwrite the record for a period.

    A new record gets created_at == updated_at == now. An existing one keeps
    its id and created_at; department_name, data and updated_at are replaced.
    """
    key = PeriodKey.build(department_id, fiscal_year, month)
    validate_record_data(data).raise_if_invalid()

    if _is_empty(department_name):
        department_name = roster_name(key.department_id)

    timestamp = utc_naive(now)
    insert = _insert_for(db)
    stmt = insert(QARecord).values(
        department_id=key.department_id,
        department_name=department_name,
        fiscal_year=key.fiscal_year,
        month=key.month,
        data=data,
        created_at=timestamp,
        updated_at=timestamp,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=QARecord.UNIQUE_COLUMNS,
        set_={
            "department_name": stmt.excluded.department_name,
            "data": stmt.excluded.data,
            "updated_at": stmt.excluded.updated_at,
        },
    )

    try:
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save QA record {key.record_id}: {e}")
        raise PersistenceError(f"Failed to save QA record {key.record_id}") from e

    record = _query_period(db, key).first()
    if record is None:
        raise PersistenceError(f"QA record {key.record_id} missing after save")
    return record


def _query_period(db: Session, key: PeriodKey):
    return db.query(QARecord).filter(
        QARecord.department_id == key.department_id,
        QARecord.fiscal_year == key.fiscal_year,
        QARecord.month == key.month,
    )


def get_by_period(db: Session, department_id: Any, fiscal_year: Any, month: Any) -> Optional[QARecord]:
    key = PeriodKey.build(department_id, fiscal_year, month)
    return _query_period(db, key).first()


def get_by_year(db: Session, department_id: str, fiscal_year: Any) -> List[QARecord]:
    """All records of a department in a fiscal year, in no particular order."""
    if _is_empty(department_id):
        raise ValidationError("departmentId is required", field="departmentId")
    year = _require_year(fiscal_year)
    return (
        db.query(QARecord)
        .filter(QARecord.department_id == department_id, QARecord.fiscal_year == year)
        .all()
    )


def get_by_department(db: Session, department_id: str) -> List[QARecord]:
    """Every record of one department, newest fiscal year first."""
    records = (
        db.query(QARecord)
        .filter(QARecord.department_id == department_id)
        .all()
    )
    return sorted(records, key=lambda r: (-r.fiscal_year, month_sort_key(r.month)))


def get_all(db: Session, fiscal_year: Any = None) -> List[QARecord]:
    query = db.query(QARecord)
    if not _is_empty(fiscal_year):
        query = query.filter(QARecord.fiscal_year == _require_year(fiscal_year))
    return query.order_by(QARecord.id).all()


def delete_record(db: Session, department_id: Any, fiscal_year: Any, month: Any) -> bool:
    """Delete the record for a period. Returns False when there was none."""
    key = PeriodKey.build(department_id, fiscal_year, month)
    try:
        deleted = _query_period(db, key).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete QA record {key.record_id}: {e}")
        raise PersistenceError(f"Failed to delete QA record {key.record_id}") from e

    if deleted:
        logger.info(f"Deleted QA record {key.record_id}")
    return deleted > 0


def check_duplicate(db: Session, department_id: Any, fiscal_year: Any, month: Any) -> DuplicateCheck:
    """Read-only: is there already a record for this period?"""
    key = PeriodKey.build(department_id, fiscal_year, month)
    record = _query_period(db, key).first()
    return DuplicateCheck(exists=record is not None, record=record, record_id=key.record_id)


def by_fiscal_month(records: Iterable[QARecord]) -> Dict[str, QARecord]:
    """Month label -> record, in fiscal month order."""
    ordered = sorted(records, key=lambda r: month_sort_key(r.month))
    return {record.month: record for record in ordered}


def sort_for_display(records: Iterable[QARecord]) -> List[QARecord]:
    """Order by department id, then fiscal month (not calendar or alphabetical)."""
    return sorted(records, key=lambda r: (r.department_id, month_sort_key(r.month)))


def _require_year(fiscal_year: Any) -> int:
    year = parse_fiscal_year(fiscal_year)
    if year is None:
        raise ValidationError(f"fiscalYear must be an integer, got {fiscal_year!r}", field="fiscalYear")
    return year
