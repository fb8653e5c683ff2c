"""
Department roster, grouped by care-unit category.

This is the canonical list used for reminders, exports and display-name
fallbacks. Stored records keep their own denormalized department name,
which may drift from the names here.
"""

from typing import Dict, List, Optional

GROUP_IPD = "ipd"
GROUP_OPD = "opd"
GROUP_SPECIAL = "special"

GROUPS = [GROUP_IPD, GROUP_OPD, GROUP_SPECIAL]

GROUP_LABELS = {
    GROUP_IPD: "ผู้ป่วยใน (IPD)",
    GROUP_OPD: "ผู้ป่วยนอก (OPD)",
    GROUP_SPECIAL: "หน่วยงานพิเศษ",
}

# Older clients sent "special_unit" for the special-unit group
GROUP_ALIASES = {
    "special_unit": GROUP_SPECIAL,
}

DEPARTMENTS: Dict[str, List[dict]] = {
    GROUP_IPD: [
        {"id": "DEPT001", "name": "หอผู้ป่วยอายุรกรรมชาย"},
        {"id": "DEPT002", "name": "หอผู้ป่วยอายุรกรรมหญิง"},
        {"id": "DEPT003", "name": "หอผู้ป่วยจิตเวช"},
        {"id": "DEPT004", "name": "หอผู้ป่วยพิเศษรวมน้ำใจ"},
        {"id": "DEPT005", "name": "หอผู้ป่วยศัลยกรรมชาย"},
        {"id": "DEPT006", "name": "หอผู้ป่วยศัลยกรรมหญิง"},
        {"id": "DEPT007", "name": "หอผู้ป่วยหนักอายุรกรรมชั้น 1(ICU-MED_1)"},
        {"id": "DEPT008", "name": "หอผู้ป่วยหนักอายุรกรรมชั้น 2(ICU-MED_2)"},
        {"id": "DEPT009", "name": "หอผู้ป่วยกระดูกและข้อ"},
        {"id": "DEPT010", "name": "หอผู้ป่วยพิเศษอายุรกรรมชั้น4"},
        {"id": "DEPT011", "name": "หอผู้ป่วยพิเศษศัลยกรรมชั้น4"},
        {"id": "DEPT012", "name": "หอผู้ป่วยกุมารเวช"},
        {"id": "DEPT013", "name": "หอผู้ป่วยอภิบาลสงฆ์"},
        {"id": "DEPT014", "name": "หอผู้ป่วยโสต ศอ นาสิก"},
        {"id": "DEPT015", "name": "หอผู้ป่วยพิเศษสูติ-นรีเวช ชั้น5"},
        {"id": "DEPT016", "name": "หอผู้ป่วยพิเศษสูติ-นรีเวช ชั้น4"},
        {"id": "DEPT017", "name": "หอผู้ป่วยพิเศษกุมารเวช"},
        {"id": "DEPT018", "name": "หอผู้ป่วยศัลยกรรมระบบประสาทและสมอง"},
        {"id": "DEPT019", "name": "หอผู้ป่วยหนักกุมารเวช(NICU)"},
        {"id": "DEPT020", "name": "หอผู้ป่วยสูติ-นรีเวช (PP)"},
        {"id": "DEPT021", "name": "หอผู้ป่วยหนักรวม(ICU_รวม)"},
    ],
    GROUP_SPECIAL: [
        {"id": "SPECIAL001", "name": "ห้องผ่าตัด (OR)"},
        {"id": "SPECIAL002", "name": "ห้องอุบัติเหตุ ฉุกเฉิน (ER)"},
        {"id": "SPECIAL003", "name": "วิสัญญีพยาบาล (Anesth)"},
        {"id": "SPECIAL004", "name": "ห้องคลอด (LR)"},
    ],
    GROUP_OPD: [
        {"id": "OPD001", "name": "OPD ศัลยกรรม"},
        {"id": "OPD002", "name": "OPD กุมารเวช"},
        {"id": "OPD003", "name": "OPD (Med+GP+Ortho+หัวใจ+พิเศษ)"},
        {"id": "OPD004", "name": "OPD ANC"},
        {"id": "OPD005", "name": "OPD Uro"},
        {"id": "OPD006", "name": "OPD Neuro"},
        {"id": "OPD007", "name": "OPD จักษุ"},
        {"id": "OPD008", "name": "OPD ENT"},
        {"id": "OPD009", "name": "OPD DM/HT"},
        {"id": "OPD010", "name": "OPD CAPD"},
    ],
}

DEPARTMENT_NAMES = {
    dept["id"]: dept["name"]
    for departments in DEPARTMENTS.values()
    for dept in departments
}


def normalize_group(group: Optional[str]) -> Optional[str]:
    if not group:
        return None
    group = group.strip().lower()
    group = GROUP_ALIASES.get(group, group)
    return group if group in DEPARTMENTS else None


def group_for_department(department_id: str) -> Optional[str]:
    """Care-unit category from the department id prefix."""
    if not department_id:
        return None
    if department_id.startswith("DEPT"):
        return GROUP_IPD
    if department_id.startswith("OPD"):
        return GROUP_OPD
    if department_id.startswith("SPECIAL"):
        return GROUP_SPECIAL
    return None


def group_label(department_id: str) -> str:
    group = group_for_department(department_id)
    return GROUP_LABELS.get(group, "อื่นๆ")


def department_name(department_id: str) -> str:
    return DEPARTMENT_NAMES.get(department_id, department_id)


def iter_roster():
    """Yield (group, department) pairs in roster order."""
    for group in GROUPS:
        for dept in DEPARTMENTS[group]:
            yield group, dept
