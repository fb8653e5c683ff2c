from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from qa_portal.auth import require_admin
from qa_portal.database import get_db
from qa_portal.errors import ValidationError
from qa_portal.services import qa_store
from qa_portal.services.export import (
    XLSX_MEDIA_TYPE,
    build_group_workbook,
    build_table_workbook,
    group_export_filename,
)
from qa_portal.services.validators import parse_fiscal_year

router = APIRouter(prefix="/api/export", tags=["export"])


def _xlsx_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@router.get("/qa-excel")
async def export_group_workbook(
    department_type: Optional[str] = Query(None, alias="departmentType"),
    fiscal_year: Optional[str] = Query(None, alias="fiscalYear"),
    month: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    session: dict = Depends(require_admin),
):
    """One sheet per department of the group; omit ``month`` for the whole year."""
    year = parse_fiscal_year(fiscal_year)
    if not department_type or year is None:
        raise ValidationError("กรุณาระบุประเภทแผนกและปีงบประมาณ")

    month = month or None
    content = build_group_workbook(qa_store.get_all(db, year), department_type, year, month)
    return _xlsx_response(content, group_export_filename(department_type, year, month))


@router.get("/qa-table")
async def export_table_workbook(
    preset: str = Query("full"),
    fiscal_year: Optional[str] = Query(None, alias="fiscalYear"),
    months: Optional[str] = Query(None),
    department_ids: Optional[str] = Query(None, alias="departmentIds"),
    db: Session = Depends(get_db),
    session: dict = Depends(require_admin),
):
    """Flat table of the selected records with an average row. Lists are comma-separated."""
    year = None
    if fiscal_year:
        year = parse_fiscal_year(fiscal_year)
        if year is None:
            raise ValidationError(f"fiscalYear must be an integer, got {fiscal_year!r}", field="fiscalYear")

    content = build_table_workbook(
        qa_store.get_all(db, year),
        preset=preset,
        months=_split(months),
        department_ids=_split(department_ids),
    )
    return _xlsx_response(content, f"QA_Table_{preset}_{year or 'All'}.xlsx")
