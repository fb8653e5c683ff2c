"""
Dashboard aggregation over QA records.

Pure functions: records in, plain dicts and dataclasses out. Indicator
values are stored as strings ("85.50%", "3", "-", ""), so every statistic
goes through parse_numeric first. Unparsable and empty values are left
out of a statistic entirely; they are never counted as zero.

Which indicator field feeds which statistic depends on the kind of unit
a department is (in-patient ward, out-patient clinic, or one of the four
special units). The mapping is resolved once per department before any
value is read.
"""

import enum
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from qa_portal.departments import GROUP_OPD, department_name, group_for_department
from qa_portal.services.fiscal import FISCAL_MONTHS, month_sort_key

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_LEADING_NUMBER = re.compile(r"^-?(\d+\.?\d*|\.\d+)")

RANKING_LIMIT = 10


def parse_numeric(value) -> Optional[float]:
    """
    Parse a stored indicator value.

    Every character outside [0-9.-] is dropped (so "85.5%" -> 85.5), then the
    leading number is taken ("1.5.2" -> 1.5). Returns None for missing, blank
    or unparsable values.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value)
    if text.strip() == "":
        return None

    match = _LEADING_NUMBER.match(_NON_NUMERIC.sub("", text))
    if not match:
        return None
    return float(match.group(0))


class AggregatePolicy(enum.Enum):
    SUM = "sum"
    AVERAGE_POSITIVE = "average_positive"
    AVERAGE_NON_NEGATIVE = "average_non_negative"


def aggregate(values: Iterable, policy: AggregatePolicy, empty=0.0):
    """
    Combine raw values under a policy.

    SUM keeps every parsed value (zeros included). AVERAGE_POSITIVE keeps
    values > 0, AVERAGE_NON_NEGATIVE keeps values >= 0. When nothing is
    kept, ``empty`` is returned.
    """
    parsed = [v for v in (parse_numeric(raw) for raw in values) if v is not None]

    if policy is AggregatePolicy.SUM:
        kept = parsed
    elif policy is AggregatePolicy.AVERAGE_POSITIVE:
        kept = [v for v in parsed if v > 0]
    elif policy is AggregatePolicy.AVERAGE_NON_NEGATIVE:
        kept = [v for v in parsed if v >= 0]
    else:
        raise ValueError(f"Unknown aggregate policy: {policy}")

    if not kept:
        return empty
    if policy is AggregatePolicy.SUM:
        return sum(kept)
    return sum(kept) / len(kept)


# ============================================================
# FIELD MAPPINGS
# ============================================================

class UnitKind(enum.Enum):
    IPD = "ipd"
    OPD = "opd"
    OR = "or"
    ER = "er"
    ANESTH = "anesth"
    LR = "lr"


@dataclass(frozen=True)
class FieldMapping:
    """Indicator field names feeding each statistic. None = not tracked."""
    productivity: Optional[str] = None
    los: Optional[str] = None
    pressure_ulcer: Optional[str] = None
    readmission: Optional[str] = None
    cpr_success: Optional[str] = None
    satisfaction: Optional[str] = None
    incidents: Tuple[str, ...] = ()
    breakdown: Dict[str, str] = field(default_factory=dict)


FIELD_MAPPINGS: Dict[UnitKind, FieldMapping] = {
    UnitKind.IPD: FieldMapping(
        productivity="productivityValue",
        los="averageLOS",
        pressure_ulcer="pressureUlcerRate",
        readmission="readmissionRate",
        cpr_success="s11_3_rate",
        satisfaction="s8_3",
        incidents=(
            "s1_1", "s1_2", "s1_3", "s1_4", "s1_5",
            "s1_7", "s1_8", "s1_9", "s1_10",
            "s2_1",
        ),
        breakdown={
            "wrong_patient": "s1_1",
            "wrong_treatment": "s1_2",
            "unexpected_death": "s1_5",
        },
    ),
    UnitKind.OPD: FieldMapping(
        cpr_success="opd_cpr_rate",
        satisfaction="opd_pain_3_result",
        incidents=(
            "opd_1_1", "opd_1_2", "opd_1_3", "opd_1_4", "opd_1_5", "opd_1_6",
            "opd_2", "opd_3", "opd_4",
            "opd_5_1", "opd_5_2",
        ),
        breakdown={
            "wrong_patient": "opd_1_1",
            "wrong_treatment": "opd_1_2",
            "unexpected_death": "opd_2",
            "staff_accident": "opd_3",
        },
    ),
    UnitKind.OR: FieldMapping(
        productivity="or_2_3",
        satisfaction="or_h2_3_3",
        incidents=tuple(f"or_1_{i}" for i in range(1, 10)),
        breakdown={
            "wrong_patient": "or_1_1",
            "unexpected_death": "or_1_5",
            "pt_death": "or_4_1",
            "staff_accident": "or_1_7",
            "wrong_surgery": "or_1_3",
            "foreign_body": "or_1_4",
        },
    ),
    UnitKind.ER: FieldMapping(
        cpr_success="er_h3_3_3",
        incidents=tuple(f"er_1_{i}" for i in range(1, 10)),
        breakdown={
            "wrong_patient": "er_1_1",
            "unexpected_death": "er_1_5",
            "pt_death": "er_4_1",
            "cpr_total": "er_5_2",
            "cpr_success": "er_5_3",
            "readmission_48hr": "er_h3_4",
        },
    ),
    UnitKind.ANESTH: FieldMapping(
        incidents=tuple(f"an_1_{i}" for i in range(1, 10)),
        breakdown={
            "wrong_patient": "an_1_1",
            "unexpected_death": "an_1_5",
            "pt_death": "an_4_1",
            "staff_accident": "an_1_7",
            "aspiration": "an_h3_2_1",
            "intubation_error": "an_h3_2_2",
            "drug_allergy": "an_h3_2_3",
            "or_death": "an_h3_2_4",
        },
    ),
    UnitKind.LR: FieldMapping(
        pressure_ulcer="lr_1_6_5",
        incidents=tuple(f"lr_1_{i}" for i in range(1, 6)),
        breakdown={
            "wrong_patient": "lr_1_1",
            "unexpected_death": "lr_1_5",
            "pt_death": "lr_4_1",
            "staff_accident": "lr_1_7",
        },
    ),
}

SPECIAL_UNIT_KINDS = {
    "SPECIAL001": UnitKind.OR,
    "SPECIAL002": UnitKind.ER,
    "SPECIAL003": UnitKind.ANESTH,
    "SPECIAL004": UnitKind.LR,
}


def unit_kind_for(department_id: str) -> UnitKind:
    """Unit kind of a department. Unknown ids are treated as in-patient wards."""
    if department_id in SPECIAL_UNIT_KINDS:
        return SPECIAL_UNIT_KINDS[department_id]
    if group_for_department(department_id) == GROUP_OPD:
        return UnitKind.OPD
    return UnitKind.IPD


def mapping_for_department(department_id: str) -> FieldMapping:
    return FIELD_MAPPINGS[unit_kind_for(department_id)]


def resolve_mappings(records: Iterable) -> Dict[str, FieldMapping]:
    """department_id -> FieldMapping for every department in ``records``."""
    mappings = {}
    for record in records:
        if record.department_id not in mappings:
            mappings[record.department_id] = mapping_for_department(record.department_id)
    return mappings


# ============================================================
# STATISTICS
# ============================================================

@dataclass
class DashboardStats:
    total_records: int = 0
    unique_departments: int = 0
    avg_productivity: float = 0.0
    avg_los: float = 0.0
    avg_satisfaction: float = 0.0
    cpr_success_rate: float = 0.0
    pressure_ulcer_rate: float = 0.0
    avg_readmission_rate: float = 0.0
    total_incidents: float = 0.0
    breakdown: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "totalRecords": self.total_records,
            "uniqueDepartments": self.unique_departments,
            "avgProductivity": self.avg_productivity,
            "avgLOS": self.avg_los,
            "avgSatisfaction": self.avg_satisfaction,
            "cprSuccessRate": self.cpr_success_rate,
            "pressureUlcerRate": self.pressure_ulcer_rate,
            "avgReadmissionRate": self.avg_readmission_rate,
            "totalIncidents": self.total_incidents,
            "breakdown": self.breakdown,
        }


def filter_records(
    records: Iterable,
    group: Optional[str] = None,
    month: Optional[str] = None,
    department_id: Optional[str] = None,
) -> List:
    """Records matching every filter given. "all" or None disables a filter."""
    result = []
    for record in records:
        if group and group != "all" and group_for_department(record.department_id) != group:
            continue
        if month and month != "all" and record.month != month:
            continue
        if department_id and department_id != "all" and record.department_id != department_id:
            continue
        result.append(record)
    return result


def _field_values(records: Sequence, mappings: Dict[str, FieldMapping], attr: str) -> List:
    """Raw values of the mapped field for each record that tracks it."""
    values = []
    for record in records:
        field_name = getattr(mappings[record.department_id], attr)
        if field_name:
            values.append((record.data or {}).get(field_name))
    return values


def _incident_total(records: Sequence, mappings: Dict[str, FieldMapping]) -> float:
    values = []
    for record in records:
        data = record.data or {}
        values.extend(data.get(name) for name in mappings[record.department_id].incidents)
    return aggregate(values, AggregatePolicy.SUM)


def _breakdown(records: Sequence, mappings: Dict[str, FieldMapping]) -> Dict[str, Dict[str, float]]:
    """Per unit kind: breakdown label -> summed count."""
    totals: Dict[str, Dict[str, float]] = {}
    for record in records:
        kind = unit_kind_for(record.department_id)
        mapping = mappings[record.department_id]
        unit_totals = totals.setdefault(kind.value, {label: 0.0 for label in mapping.breakdown})
        data = record.data or {}
        for label, field_name in mapping.breakdown.items():
            unit_totals[label] += aggregate([data.get(field_name)], AggregatePolicy.SUM)
    return totals


def _merge_breakdown(breakdown: Dict[str, Dict[str, float]]) -> Dict[str, float]:
    merged: Dict[str, float] = {}
    for unit_totals in breakdown.values():
        for label, value in unit_totals.items():
            merged[label] = merged.get(label, 0.0) + value
    return merged


def dashboard_stats(
    records: Iterable,
    group: Optional[str] = None,
    month: Optional[str] = None,
    department_id: Optional[str] = None,
) -> DashboardStats:
    """Headline statistics for the selected group / month / department."""
    selected = filter_records(records, group=group, month=month, department_id=department_id)
    mappings = resolve_mappings(selected)

    stats = DashboardStats(
        total_records=len(selected),
        unique_departments=len(mappings),
    )
    if not selected:
        return stats

    stats.avg_productivity = aggregate(_field_values(selected, mappings, "productivity"), AggregatePolicy.AVERAGE_POSITIVE)
    stats.avg_los = aggregate(_field_values(selected, mappings, "los"), AggregatePolicy.AVERAGE_POSITIVE)
    stats.avg_satisfaction = aggregate(_field_values(selected, mappings, "satisfaction"), AggregatePolicy.AVERAGE_POSITIVE)
    stats.cpr_success_rate = aggregate(_field_values(selected, mappings, "cpr_success"), AggregatePolicy.AVERAGE_POSITIVE)
    stats.pressure_ulcer_rate = aggregate(
        _field_values(selected, mappings, "pressure_ulcer"), AggregatePolicy.AVERAGE_NON_NEGATIVE
    )
    stats.avg_readmission_rate = aggregate(
        _field_values(selected, mappings, "readmission"), AggregatePolicy.AVERAGE_NON_NEGATIVE
    )
    stats.total_incidents = _incident_total(selected, mappings)
    stats.breakdown = _breakdown(selected, mappings)
    return stats


def monthly_trends(
    records: Iterable,
    department_id: Optional[str] = None,
    group: Optional[str] = None,
) -> List[dict]:
    """One row per fiscal month (always twelve, in fiscal order)."""
    selected = filter_records(records, group=group, department_id=department_id)
    mappings = resolve_mappings(selected)

    by_month: Dict[str, List] = {month: [] for month in FISCAL_MONTHS}
    for record in selected:
        if record.month in by_month:
            by_month[record.month].append(record)

    rows = []
    for month in FISCAL_MONTHS:
        month_records = by_month[month]
        productivity = aggregate(_field_values(month_records, mappings, "productivity"), AggregatePolicy.AVERAGE_POSITIVE)
        los = aggregate(_field_values(month_records, mappings, "los"), AggregatePolicy.AVERAGE_POSITIVE)
        rows.append({
            "month": month[:3],
            "monthFull": month,
            "productivity": round(productivity, 2),
            "los": round(los, 2),
            "incidents": _incident_total(month_records, mappings),
            "records": len(month_records),
            "breakdown": _merge_breakdown(_breakdown(month_records, mappings)),
        })
    return rows


def department_ranking(
    records: Iterable,
    limit: int = RANKING_LIMIT,
    group: Optional[str] = None,
) -> List[dict]:
    """
    Departments ranked by average productivity (positive values only).

    Ties keep the order in which departments were first seen; departments
    without a productivity value rank with an average of 0.
    """
    selected = filter_records(records, group=group)
    mappings = resolve_mappings(selected)

    entries: Dict[str, dict] = {}
    for record in selected:
        entry = entries.get(record.department_id)
        if entry is None:
            entry = {
                "id": record.department_id,
                "name": record.department_name or department_name(record.department_id),
                "values": [],
            }
            entries[record.department_id] = entry
        field_name = mappings[record.department_id].productivity
        if field_name:
            value = parse_numeric((record.data or {}).get(field_name))
            if value is not None and value > 0:
                entry["values"].append(value)

    ranking = [
        {
            "id": entry["id"],
            "name": entry["name"],
            "avgValue": aggregate(entry["values"], AggregatePolicy.AVERAGE_POSITIVE),
            "records": len(entry["values"]),
        }
        for entry in entries.values()
    ]
    # sorted() is stable, so equal averages keep encounter order
    ranking = sorted(ranking, key=lambda row: row["avgValue"], reverse=True)
    return ranking[:limit]


def completion_matrix(
    records: Iterable,
    fiscal_year: Optional[int] = None,
    department_id: Optional[str] = None,
    group: Optional[str] = None,
) -> dict:
    """
    Which departments submitted which months.

    Returns {"departments": [...], "months": [...], "matrix": {dept: {month: bool}}}
    with every fiscal month present for every department listed.
    """
    selected = filter_records(records, group=group, department_id=department_id)
    if fiscal_year is not None:
        selected = [r for r in selected if r.fiscal_year == int(fiscal_year)]

    departments: List[str] = []
    matrix: Dict[str, Dict[str, bool]] = {}
    for record in selected:
        if record.department_id not in matrix:
            departments.append(record.department_id)
            matrix[record.department_id] = {month: False for month in FISCAL_MONTHS}
        if record.month in matrix[record.department_id]:
            matrix[record.department_id][record.month] = True

    return {
        "departments": departments,
        "months": list(FISCAL_MONTHS),
        "matrix": matrix,
    }


def completion_rate(matrix: dict) -> float:
    """Share of filled (department, month) cells, 0-100."""
    cells = [filled for row in matrix["matrix"].values() for filled in row.values()]
    if not cells:
        return 0.0
    return round(100.0 * sum(cells) / len(cells), 2)


def build_dashboard(
    records: Iterable,
    group: Optional[str] = None,
    month: Optional[str] = None,
    department_id: Optional[str] = None,
    fiscal_year: Optional[int] = None,
) -> dict:
    """Everything the admin dashboard shows, in one payload."""
    records = sorted(records, key=lambda r: (r.department_id, month_sort_key(r.month)))
    matrix = completion_matrix(records, fiscal_year=fiscal_year, department_id=department_id, group=group)

    # Ranking only makes sense across departments
    ranking = [] if department_id and department_id != "all" else department_ranking(records, group=group)

    return {
        "stats": dashboard_stats(records, group=group, month=month, department_id=department_id).to_dict(),
        "trends": monthly_trends(records, department_id=department_id, group=group),
        "ranking": ranking,
        "completion": {**matrix, "rate": completion_rate(matrix)},
    }
