#!/usr/bin/env python3
"""
Legacy QA data import for the QA Indicator Portal

Usage:
    python scripts/migrate_json_to_db.py [path/to/qa-data.json]

The file is the old file-storage format:
    {"records": [{"departmentId", "departmentName", "fiscalYear",
                  "month", "data", "updatedAt"}, ...]}

Behavior:
    - Every record goes through the normal upsert, keyed by
      (departmentId, fiscalYear, month)
    - updatedAt from the file becomes created_at/updated_at of new rows
    - A bad record is reported and skipped; the rest still import
    - Idempotent: safe to run multiple times
"""

import json
import os
import sys
from datetime import datetime

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from qa_portal.database import SessionLocal, init_db
from qa_portal.errors import QAError
from qa_portal.services.qa_store import upsert_record

DEFAULT_PATH = os.path.join("data", "qa-data.json")


def parse_timestamp(value):
    """ISO timestamp from the legacy file, or None."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def migrate_records(db, records):
    """
    Upsert each legacy record. Returns (imported, failed) where failed is a
    list of "key: reason" strings.
    """
    imported = 0
    failed = []

    for r in records:
        key = f"{r.get('departmentId')} {r.get('fiscalYear')} {r.get('month')}"
        try:
            upsert_record(
                db,
                department_id=r.get("departmentId"),
                department_name=r.get("departmentName"),
                fiscal_year=str(r.get("fiscalYear", "")),
                month=r.get("month"),
                data=r.get("data"),
                now=parse_timestamp(r.get("updatedAt")),
            )
            imported += 1
            sys.stdout.write(".")
            sys.stdout.flush()
        except QAError as e:
            failed.append(f"{key}: {e.message}")

    return imported, failed


def main():
    path = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_PATH
    if not os.path.exists(path):
        print(f"No data file found at {path}")
        return

    print(f"Reading data from {path}")
    with open(path, encoding="utf-8") as f:
        records = json.load(f).get("records", [])
    print(f"Found {len(records)} records to migrate.")

    init_db()
    db = SessionLocal()
    try:
        imported, failed = migrate_records(db, records)
    finally:
        db.close()

    print("\n\n=== Migration Summary ===\n")
    if failed:
        print("Failed:")
        for item in failed:
            print(f"  ! {item}")
    print(f"\nTotal: {imported} imported, {len(failed)} failed")


if __name__ == "__main__":
    main()
