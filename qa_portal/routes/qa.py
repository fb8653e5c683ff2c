import logging
from typing import Any, Callable, Dict, Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from qa_portal.background_jobs import outbox_job
from qa_portal.database import get_db
from qa_portal.errors import NotFoundError
from qa_portal.line_client import LineClient, get_client_factory
from qa_portal.services import qa_store
from qa_portal.services.outbox import enqueue_data_entry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/qa", tags=["qa"])


class SaveRecordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    department_id: Optional[str] = Field(None, alias="departmentId")
    department_name: Optional[str] = Field(None, alias="departmentName")
    fiscal_year: Optional[Union[int, str]] = Field(None, alias="fiscalYear")
    month: Optional[str] = None
    fields: Optional[Dict[str, Any]] = None
    data: Optional[Dict[str, Any]] = None


class PeriodRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    department_id: Optional[str] = Field(None, alias="departmentId")
    fiscal_year: Optional[Union[int, str]] = Field(None, alias="fiscalYear")
    month: Optional[str] = None


@router.post("/save")
async def save_record(
    payload: SaveRecordRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    make_client: Callable[[str], LineClient] = Depends(get_client_factory),
):
    """Create or overwrite the record for a period, then queue the data-entry notice."""
    record = qa_store.upsert_record(
        db,
        department_id=payload.department_id,
        department_name=payload.department_name,
        fiscal_year=payload.fiscal_year,
        month=payload.month,
        data=payload.fields if payload.fields is not None else payload.data,
    )
    logger.info(f"Saved QA record {record.record_key}")

    if enqueue_data_entry(db, record) is not None:
        background_tasks.add_task(outbox_job, make_client)

    return {"success": True, "record": record.to_dict()}


@router.get("/by-period")
async def get_by_period(
    department_id: Optional[str] = Query(None, alias="departmentId"),
    fiscal_year: Optional[str] = Query(None, alias="fiscalYear"),
    month: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    record = qa_store.get_by_period(db, department_id, fiscal_year, month)
    return {"success": True, "record": record.to_dict() if record else None}


@router.get("/by-year")
async def get_by_year(
    department_id: Optional[str] = Query(None, alias="departmentId"),
    fiscal_year: Optional[str] = Query(None, alias="fiscalYear"),
    db: Session = Depends(get_db),
):
    """Records for one department and fiscal year, keyed by month."""
    records = qa_store.get_by_year(db, department_id, fiscal_year)
    by_month = qa_store.by_fiscal_month(records)

    return {
        "success": True,
        "data": {
            month: {"id": r.id, "updatedAt": r.to_dict()["updatedAt"], "data": dict(r.data or {})}
            for month, r in by_month.items()
        },
        "records": [r.to_dict() for r in qa_store.sort_for_display(records)],
    }


@router.get("/check-duplicate")
async def check_duplicate(
    department_id: Optional[str] = Query(None, alias="departmentId"),
    fiscal_year: Optional[str] = Query(None, alias="fiscalYear"),
    month: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Is there already a record for this period? Never writes."""
    check = qa_store.check_duplicate(db, department_id, fiscal_year, month)
    return {
        "success": True,
        "exists": check.exists,
        "record": check.record.to_dict() if check.record else None,
        "recordId": check.record_id,
    }


@router.post("/delete")
async def delete_record(payload: PeriodRequest, db: Session = Depends(get_db)):
    if not qa_store.delete_record(db, payload.department_id, payload.fiscal_year, payload.month):
        raise NotFoundError("ไม่พบข้อมูลที่ต้องการลบ")
    return {"success": True, "message": "ลบข้อมูลสำเร็จ"}
