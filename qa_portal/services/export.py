"""
Spreadsheet export of QA records (openpyxl).

Two layouts:

- group workbook: one sheet per department of a group, indicator rows by
  month columns, plus a summary column for multi-month exports;
- table workbook: one flat row per record with a chosen set of fields,
  an average row, and a monthly overview sheet.
"""

import io
import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from qa_portal.departments import DEPARTMENTS, GROUP_IPD, GROUP_OPD, GROUP_SPECIAL, normalize_group
from qa_portal.errors import ValidationError
from qa_portal.services.aggregation import AggregatePolicy, aggregate, parse_numeric
from qa_portal.services.fiscal import FISCAL_MONTHS, month_sort_key

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

MISSING = "-"
SHEET_NAME_LIMIT = 31
LABEL_COLUMN_WIDTH = 40
MONTH_COLUMN_WIDTH = 12

IPD_FIELD_LABELS = {
    "s1_1": "จำนวนผู้ป่วย Admit",
    "s1_2": "จำนวนผู้ป่วย D/C",
    "s1_3": "จำนวนวันนอนรวม",
    "s1_4": "จำนวนเตียงจริง",
    "s2_1": "แรกรับ ล้มเหลว",
    "s2_2": "แรกรับ สำเร็จ",
    "s3_1": "Pressure Ulcer นอกรพ.",
    "s3_2": "Pressure Ulcer ในรพ.",
    "s4_1": "Admit ภายใน28วัน จากนอกรพ.",
    "s4_2": "Admit ภายใน28วัน จากแผนกเดิม",
    "s5_1": "Pain Score ≤3 Moderate",
    "s5_2": "Pain Score ≤3 Severe",
    "s6_1": "ผู้ป่วยError ได้รับความเสียหายระดับE-I",
    "s6_2": "ผู้ป่วยError ไม่ได้รับความเสียหาย",
    "s7_1": "ลื่น/หกล้ม ได้รับบาดเจ็บ",
    "s7_2": "ลื่น/หกล้ม ไม่ได้รับบาดเจ็บ",
    "s8_1": "ภาวะแทรกซ้อนจากการให้เลือด",
    "s9_1": "phlebitis",
    "s10_1": "สำลัก/อุดตันหลอดลม",
    "s11_1_rn": "RN FTE",
    "s11_1_aux": "AUX FTE",
    "s11_2": "HPPD มาตรฐาน",
    "productivityValue": "Productivity (%)",
    "averageLOS": "ALOS (วัน)",
    "pressureUlcerRate": "อัตรา Pressure Ulcer (%)",
    "readmissionRate": "อัตรา Readmission (%)",
}

OPD_FIELD_LABELS = {
    "opd_1_1": "จำนวนผู้รับบริการทั้งหมด",
    "opd_1_2": "จำนวนผู้รับบริการใหม่",
    "opd_2_1": "ความพึงพอใจ ≥80%",
    "opd_2_2": "จำนวนผู้ตอบแบบสอบถาม",
    "opd_3_1": "CPR สำเร็จ",
    "opd_3_2": "CPR ไม่สำเร็จ",
    "opd_4_1": "รอพบแพทย์ ≤60นาที",
    "opd_4_2": "รอพบแพทย์ ทั้งหมด",
    "opd_5_1": "ผิดพลาดทางยา(ไม่เกิดอันตราย)",
    "opd_5_2": "ผิดพลาดทางยา(เกิดอันตราย)",
    "opd_6_1": "หกล้ม",
    "opd_7_1": "ส่งต่อER/Admit",
}

SPECIAL_FIELD_LABELS = {
    "or_1_1": "จำนวนผ่าตัด Elective",
    "or_1_2": "จำนวนผ่าตัด Emergency",
    "or_2_1": "ความพึงพอใจ ≥80%",
    "or_2_2": "จำนวนผู้ตอบแบบสอบถาม",
    "or_3_1": "CPR สำเร็จ",
    "or_3_2": "CPR ไม่สำเร็จ",
    "or_4_1": "ภาวะแทรกซ้อน",
    "or_5_1": "OR SSI",
    "or_6_1": "ผิดพลาดทางยา",
    "or_7_1": "Cancel case",
}

GROUP_FIELD_LABELS = {
    GROUP_IPD: IPD_FIELD_LABELS,
    GROUP_OPD: OPD_FIELD_LABELS,
    GROUP_SPECIAL: SPECIAL_FIELD_LABELS,
}

GROUP_FILE_LABELS = {
    GROUP_IPD: "IPD",
    GROUP_OPD: "OPD",
    GROUP_SPECIAL: "SpecialUnit",
}

# Substrings marking a rate-style field (summarized by average, not sum)
RATE_FIELD_MARKERS = ("Rate", "productivity", "LOS")

TABLE_PRESETS = {
    "summary": [
        "productivityValue", "actualHPPD", "averageLOS", "pressureUlcerRate",
        "readmissionRate", "s7_1", "s7_3",
    ],
    "safety": ["s1_1", "s1_2", "s1_3", "s1_4", "s1_5", "s1_7", "s1_8", "s1_9", "s1_10"],
    "cpr": ["s7_1", "s7_2", "s7_3"],
    "full": None,  # every field present in the selected records
}

TABLE_PRESET_NAMES = {
    "full": "ข้อมูลทั้งหมด",
    "summary": "สรุปภาพรวม",
    "safety": "อุบัติการณ์ความปลอดภัย",
    "cpr": "สถิติ CPR",
}

HEADER_FILL = PatternFill(fill_type="solid", fgColor="4F46E5")
HEADER_FONT = Font(bold=True, color="FFFFFF")
SUMMARY_FILL = PatternFill(fill_type="solid", fgColor="F3F4F6")
BOLD = Font(bold=True)

INVALID_SHEET_CHARS = re.compile(r"[\\/?*\[\]:]")


def is_rate_field(field_key: str) -> bool:
    return any(marker in field_key for marker in RATE_FIELD_MARKERS)


def summarize_field(field_key: str, values: Sequence) -> str:
    """
    Summary cell for one indicator across months.

    Rate-style fields: average of positive values, 2 decimals.
    Count fields: sum, no decimals. "-" when there is nothing to summarize.
    """
    if is_rate_field(field_key):
        result = aggregate(values, AggregatePolicy.AVERAGE_POSITIVE, empty=None)
        return MISSING if result is None else f"{result:.2f}"

    result = aggregate(values, AggregatePolicy.SUM, empty=None)
    return MISSING if result is None else f"{result:.0f}"


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def sheet_title(name: str) -> str:
    """Excel-safe sheet title: invalid characters become "-", cut to 31 characters."""
    return INVALID_SHEET_CHARS.sub("-", name)[:SHEET_NAME_LIMIT]


def _style_header(row) -> None:
    for cell in row:
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _to_bytes(workbook: Workbook) -> bytes:
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


# ============================================================
# GROUP WORKBOOK (sheet per department)
# ============================================================

def group_sheet_rows(
    records: Iterable,
    field_labels: Dict[str, str],
    months: Sequence[str],
) -> List[list]:
    """Header plus one row per indicator for a single department."""
    by_month = {record.month: record for record in records}
    with_summary = len(months) > 1

    header = ["ข้อมูล", *months]
    if with_summary:
        header.append("สรุป")
    rows = [header]

    for field_key, label in field_labels.items():
        row = [label]
        values = []
        for month in months:
            record = by_month.get(month)
            value = (record.data or {}).get(field_key) if record is not None else None
            if _is_missing(value):
                row.append(MISSING)
            else:
                row.append(value)
                values.append(value)
        if with_summary:
            row.append(summarize_field(field_key, values))
        rows.append(row)

    return rows


def build_group_workbook(records: Iterable, group: str, fiscal_year: int, month: Optional[str] = None) -> bytes:
    """
    Workbook with one sheet per department of ``group`` for one fiscal year.

    ``month`` limits the export to a single month (no summary column).
    """
    group_key = normalize_group(group)
    if group_key is None:
        raise ValidationError("ประเภทแผนกไม่ถูกต้อง", field="departmentType")
    if month is not None and month not in FISCAL_MONTHS:
        raise ValidationError(f"Unknown month {month!r}", field="month")

    months = [month] if month else list(FISCAL_MONTHS)
    field_labels = GROUP_FIELD_LABELS[group_key]
    year_records = [r for r in records if r.fiscal_year == int(fiscal_year)]

    workbook = Workbook()
    workbook.remove(workbook.active)

    for dept in DEPARTMENTS[group_key]:
        dept_records = [r for r in year_records if r.department_id == dept["id"]]
        sheet = workbook.create_sheet(title=sheet_title(dept["name"]))
        for row in group_sheet_rows(dept_records, field_labels, months):
            sheet.append(row)

        sheet.column_dimensions["A"].width = LABEL_COLUMN_WIDTH
        for column_cells in sheet.iter_cols(min_col=2, max_col=sheet.max_column, max_row=1):
            sheet.column_dimensions[column_cells[0].column_letter].width = MONTH_COLUMN_WIDTH
        _style_header(sheet[1])

    logger.info(f"Built {group_key} export for {fiscal_year} ({len(months)} month(s))")
    return _to_bytes(workbook)


def group_export_filename(group: str, fiscal_year: int, month: Optional[str] = None) -> str:
    group_key = normalize_group(group)
    period = "Monthly" if month else "FullYear"
    return f"QA_{GROUP_FILE_LABELS.get(group_key, 'QA')}_{fiscal_year}_{period}.xlsx"


# ============================================================
# TABLE WORKBOOK (flat rows)
# ============================================================

ALL_FIELD_LABELS = {**SPECIAL_FIELD_LABELS, **OPD_FIELD_LABELS, **IPD_FIELD_LABELS}


def fields_for_preset(preset: str, records: Sequence) -> List[str]:
    if preset not in TABLE_PRESETS:
        raise ValidationError(f"Unknown export preset {preset!r}", field="preset")

    fields = TABLE_PRESETS[preset]
    if fields is not None:
        return list(fields)

    keys = set()
    for record in records:
        keys.update((record.data or {}).keys())
    return sorted(keys)


def _cell_value(raw):
    """Numbers as numbers, everything else as stored."""
    if _is_missing(raw):
        return ""
    number = parse_numeric(raw)
    return number if number is not None else raw


def average_row(records: Sequence, fields: Sequence[str]) -> List:
    """Average of the non-zero values of each field, "-" when none."""
    row = ["ค่าเฉลี่ยรวม (Average)", MISSING, MISSING]
    for field_key in fields:
        values = [parse_numeric((r.data or {}).get(field_key)) for r in records]
        values = [v for v in values if v is not None and v != 0]
        row.append(round(sum(values) / len(values), 2) if values else MISSING)
    return row


def build_table_workbook(
    records: Iterable,
    preset: str = "full",
    months: Optional[Sequence[str]] = None,
    department_ids: Optional[Sequence[str]] = None,
) -> bytes:
    selected = [
        r for r in records
        if (not months or r.month in months) and (not department_ids or r.department_id in department_ids)
    ]
    if not selected:
        raise ValidationError("ไม่มีข้อมูลที่จะ Export")

    selected.sort(key=lambda r: (r.department_id, r.fiscal_year, month_sort_key(r.month)))
    fields = fields_for_preset(preset, selected)

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "ข้อมูล QA"
    sheet.append(["แผนก", "เดือน", "ปีงบประมาณ", *[ALL_FIELD_LABELS.get(f, f) for f in fields]])
    _style_header(sheet[1])
    sheet.freeze_panes = "A2"

    for record in selected:
        data = record.data or {}
        sheet.append([
            record.department_name,
            record.month,
            record.fiscal_year,
            *[_cell_value(data.get(f)) for f in fields],
        ])

    sheet.append(average_row(selected, fields))
    for cell in sheet[sheet.max_row]:
        cell.fill = SUMMARY_FILL
        cell.font = BOLD

    sheet.auto_filter.ref = f"A1:{sheet.cell(row=1, column=sheet.max_column).column_letter}1"
    sheet.column_dimensions["A"].width = 30

    monthly = workbook.create_sheet("สรุปรายเดือน")
    monthly.append(["เดือน", "จำนวนแผนก", "Productivity เฉลี่ย", "LOS เฉลี่ย", "แผลกดทับ เฉลี่ย", "Readmission เฉลี่ย"])
    _style_header(monthly[1])
    for month in FISCAL_MONTHS:
        month_records = [r for r in selected if r.month == month]

        def month_average(field_key):
            values = [(r.data or {}).get(field_key) for r in month_records]
            return round(aggregate(values, AggregatePolicy.AVERAGE_POSITIVE), 2)

        monthly.append([
            month,
            len(month_records),
            month_average("productivityValue"),
            month_average("averageLOS"),
            month_average("pressureUlcerRate"),
            month_average("readmissionRate"),
        ])

    logger.info(f"Built {preset} table export with {len(selected)} record(s)")
    return _to_bytes(workbook)
