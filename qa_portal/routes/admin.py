from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from qa_portal.auth import require_admin
from qa_portal.database import get_db
from qa_portal.departments import normalize_group
from qa_portal.errors import ValidationError
from qa_portal.services import qa_store
from qa_portal.services.aggregation import build_dashboard
from qa_portal.services.validators import parse_fiscal_year

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _optional_year(fiscal_year: Optional[str]) -> Optional[int]:
    if not fiscal_year:
        return None
    year = parse_fiscal_year(fiscal_year)
    if year is None:
        raise ValidationError(f"fiscalYear must be an integer, got {fiscal_year!r}", field="fiscalYear")
    return year


@router.get("/all-data")
async def all_data(
    fiscal_year: Optional[str] = Query(None, alias="fiscalYear"),
    db: Session = Depends(get_db),
    session: dict = Depends(require_admin),
):
    """Every record (optionally one fiscal year), by department then fiscal month."""
    records = qa_store.sort_for_display(qa_store.get_all(db, _optional_year(fiscal_year)))
    return {
        "success": True,
        "data": [r.to_dict() for r in records],
        "totalRecords": len(records),
    }


@router.get("/dashboard")
async def dashboard(
    fiscal_year: Optional[str] = Query(None, alias="fiscalYear"),
    group: Optional[str] = Query(None),
    month: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None, alias="departmentId"),
    db: Session = Depends(get_db),
    session: dict = Depends(require_admin),
):
    """Statistics, monthly trends, ranking and completion matrix."""
    year = _optional_year(fiscal_year)
    if group and group != "all":
        group = normalize_group(group)
        if group is None:
            raise ValidationError("ประเภทแผนกไม่ถูกต้อง", field="group")

    records = qa_store.get_all(db, year)
    payload = build_dashboard(records, group=group, month=month, department_id=department_id, fiscal_year=year)
    return {"success": True, **payload}
