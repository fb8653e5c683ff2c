"""
Input Validators

Centralized validation for period keys, settings documents and recipients.
Validators collect every problem into a ValidationResult; callers decide
whether to raise.
"""

import re
from typing import Any, Dict, List, Optional

from qa_portal.errors import ValidationError
from qa_portal.services.fiscal import FISCAL_MONTHS

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

RECIPIENT_TYPES = ("user", "group")
TARGET_TYPES = ("all", "users", "groups")


class ValidationResult:
    """Container for validation results including warnings."""
    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.fields: List[str] = []

    def add_error(self, msg: str, field: Optional[str] = None):
        self.errors.append(msg)
        if field:
            self.fields.append(field)

    def add_warning(self, msg: str):
        self.warnings.append(msg)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def raise_if_invalid(self):
        """Raise ValidationError if there are blocking errors."""
        if self.errors:
            field = self.fields[0] if self.fields else None
            raise ValidationError("; ".join(self.errors), field=field)


def _is_empty(value: Any) -> bool:
    """Check if value is None or empty string."""
    if value is None:
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    return False


def parse_fiscal_year(value: Any) -> Optional[int]:
    """Integer fiscal year from an int or numeric string, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


# ============================================================
# PERIOD KEY VALIDATION
# ============================================================

def validate_period(department_id: Any, fiscal_year: Any, month: Any) -> ValidationResult:
    """
    Validate the parts of a (department, fiscal year, month) key.

    Required: department_id, fiscal_year (integer or digit string),
    month (one of the twelve fiscal month labels).
    """
    result = ValidationResult()

    if _is_empty(department_id):
        result.add_error("departmentId is required", field="departmentId")

    if _is_empty(fiscal_year):
        result.add_error("fiscalYear is required", field="fiscalYear")
    elif parse_fiscal_year(fiscal_year) is None:
        result.add_error(f"fiscalYear must be an integer, got {fiscal_year!r}", field="fiscalYear")

    if _is_empty(month):
        result.add_error("month is required", field="month")
    elif month not in FISCAL_MONTHS:
        result.add_error(f"Unknown month {month!r}", field="month")

    return result


def validate_record_data(data: Any) -> ValidationResult:
    result = ValidationResult()
    if data is None:
        result.add_error("fields are required", field="fields")
    elif not isinstance(data, dict):
        result.add_error("fields must be an object", field="fields")
    return result


# ============================================================
# SETTINGS VALIDATION
# ============================================================

def validate_notification_settings(data: Dict[str, Any]) -> ValidationResult:
    """
    Validate a (partial) notification-settings document.

    reminder.dayOfMonth must be 1-31, reminder.time must be HH:MM.
    Enable flags must be booleans when present.
    """
    result = ValidationResult()

    on_data_entry = data.get("onDataEntry")
    if on_data_entry is not None:
        if not isinstance(on_data_entry, dict):
            result.add_error("onDataEntry must be an object", field="onDataEntry")
        elif "enabled" in on_data_entry and not isinstance(on_data_entry["enabled"], bool):
            result.add_error("onDataEntry.enabled must be true or false", field="onDataEntry.enabled")

    reminder = data.get("reminder")
    if reminder is None:
        return result
    if not isinstance(reminder, dict):
        result.add_error("reminder must be an object", field="reminder")
        return result

    if "enabled" in reminder and not isinstance(reminder["enabled"], bool):
        result.add_error("reminder.enabled must be true or false", field="reminder.enabled")

    if "dayOfMonth" in reminder:
        day = reminder["dayOfMonth"]
        if isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= 31:
            result.add_error("reminder.dayOfMonth must be between 1 and 31", field="reminder.dayOfMonth")
        elif day > 28:
            result.add_warning(f"Day {day} does not occur in every month; those months get no reminder")

    if "time" in reminder:
        time_value = reminder["time"]
        if not isinstance(time_value, str) or not TIME_PATTERN.match(time_value):
            result.add_error("reminder.time must be HH:MM", field="reminder.time")

    return result


def parse_reminder_hour(time_value: str) -> int:
    """Hour part of an HH:MM string."""
    match = TIME_PATTERN.match(time_value or "")
    if not match:
        raise ValidationError(f"Invalid reminder time {time_value!r}", field="reminder.time")
    return int(match.group(1))


# ============================================================
# RECIPIENT VALIDATION
# ============================================================

def validate_recipient(recipient_id: Any, recipient_type: Any) -> ValidationResult:
    result = ValidationResult()

    if _is_empty(recipient_id):
        result.add_error("Missing id", field="id")

    if _is_empty(recipient_type):
        result.add_error("Missing type", field="type")
    elif recipient_type not in RECIPIENT_TYPES:
        result.add_error("Invalid type", field="type")

    return result


def validate_target_type(target_type: Any) -> ValidationResult:
    result = ValidationResult()
    if target_type not in TARGET_TYPES:
        result.add_error(f"Invalid targetType {target_type!r}", field="targetType")
    return result
