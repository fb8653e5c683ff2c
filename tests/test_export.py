"""
Tests for the spreadsheet exports.

Rules:
1. Group workbooks have one sheet per roster department of the group
2. Multi-month exports add a summary column; single-month ones do not
3. Rate fields summarize by positive average, count fields by sum
4. Table exports end with an average row over non-zero values
"""

import io

import pytest
from openpyxl import load_workbook
from types import SimpleNamespace

from qa_portal.departments import DEPARTMENTS
from qa_portal.errors import ValidationError
from qa_portal.services.export import (
    MISSING,
    build_group_workbook,
    build_table_workbook,
    fields_for_preset,
    group_export_filename,
    sheet_title,
    summarize_field,
)
from qa_portal.services.fiscal import FISCAL_MONTHS


def rec(dept, month="ตุลาคม", data=None, year=2568, name=None):
    return SimpleNamespace(
        department_id=dept,
        department_name=name or dept,
        fiscal_year=year,
        month=month,
        data=data or {},
    )


def open_workbook(content):
    return load_workbook(io.BytesIO(content))


def find_row(sheet, label):
    for row in sheet.iter_rows(values_only=True):
        if row[0] == label:
            return row
    raise AssertionError(f"row {label!r} not found")


class TestSummarizeField:
    """Tests for summarize_field function."""

    def test_rate_field_positive_average(self):
        assert summarize_field("productivityValue", ["80", "90", "0"]) == "85.00"

    def test_count_field_sum(self):
        assert summarize_field("s1_1", ["2", "0", "3"]) == "5"

    def test_count_field_zero_sum(self):
        assert summarize_field("s1_1", ["0", "0"]) == "0"

    def test_nothing_to_summarize(self):
        assert summarize_field("s1_1", []) == MISSING
        assert summarize_field("averageLOS", ["0"]) == MISSING


class TestSheetTitle:
    """Tests for sheet_title function."""

    def test_invalid_characters_replaced(self):
        assert sheet_title("OPD DM/HT") == "OPD DM-HT"

    def test_long_names_cut(self):
        assert len(sheet_title("x" * 40)) == 31


class TestGroupWorkbook:
    """Tests for build_group_workbook function."""

    def test_one_sheet_per_department(self):
        workbook = open_workbook(build_group_workbook([], "opd", 2568))
        assert len(workbook.sheetnames) == len(DEPARTMENTS["opd"])
        assert workbook.sheetnames[0] == "OPD ศัลยกรรม"
        assert "OPD DM-HT" in workbook.sheetnames

    def test_full_year_has_summary_column(self):
        records = [
            rec("OPD001", month="ตุลาคม", data={"opd_1_1": "10"}),
            rec("OPD001", month="พฤศจิกายน", data={"opd_1_1": "5"}),
            rec("OPD001", month="ธันวาคม", data={"opd_1_1": "99"}, year=2567),
        ]
        sheet = open_workbook(build_group_workbook(records, "opd", 2568))["OPD ศัลยกรรม"]

        header = next(sheet.iter_rows(min_row=1, max_row=1, values_only=True))
        assert list(header) == ["ข้อมูล", *FISCAL_MONTHS, "สรุป"]

        row = find_row(sheet, "จำนวนผู้รับบริการทั้งหมด")
        assert row[1] == "10"
        assert row[2] == "5"
        assert row[3] == MISSING
        assert row[-1] == "15"

    def test_single_month_has_no_summary(self):
        records = [rec("OPD001", month="มกราคม", data={"opd_1_1": "7"})]
        sheet = open_workbook(build_group_workbook(records, "opd", 2568, "มกราคม"))["OPD ศัลยกรรม"]

        header = next(sheet.iter_rows(min_row=1, max_row=1, values_only=True))
        assert list(header) == ["ข้อมูล", "มกราคม"]
        assert find_row(sheet, "จำนวนผู้รับบริการทั้งหมด")[1] == "7"

    def test_legacy_group_alias(self):
        workbook = open_workbook(build_group_workbook([], "special_unit", 2568))
        assert len(workbook.sheetnames) == len(DEPARTMENTS["special"])

    def test_invalid_group(self):
        with pytest.raises(ValidationError) as exc:
            build_group_workbook([], "icu", 2568)
        assert exc.value.message == "ประเภทแผนกไม่ถูกต้อง"

    def test_invalid_month(self):
        with pytest.raises(ValidationError):
            build_group_workbook([], "ipd", 2568, "October")

    def test_filenames(self):
        assert group_export_filename("ipd", 2568) == "QA_IPD_2568_FullYear.xlsx"
        assert group_export_filename("special_unit", 2568, "ตุลาคม") == "QA_SpecialUnit_2568_Monthly.xlsx"


class TestTableWorkbook:
    """Tests for build_table_workbook function."""

    RECORDS = [
        rec("DEPT002", data={"s1_1": "0", "s1_2": "1"}, name="Ward B"),
        rec("DEPT001", data={"s1_1": "2"}, name="Ward A"),
        rec("DEPT001", month="พฤศจิกายน", data={"s1_1": "4"}, name="Ward A"),
    ]

    def test_rows_sorted_with_average_row(self):
        sheet = open_workbook(build_table_workbook(self.RECORDS, preset="safety")).worksheets[0]
        rows = list(sheet.iter_rows(values_only=True))

        assert rows[0][:3] == ("แผนก", "เดือน", "ปีงบประมาณ")
        assert [r[:2] for r in rows[1:4]] == [("Ward A", "ตุลาคม"), ("Ward A", "พฤศจิกายน"), ("Ward B", "ตุลาคม")]

        average = rows[-1]
        assert average[0] == "ค่าเฉลี่ยรวม (Average)"
        # s1_1: zeros excluded -> (2 + 4) / 2
        assert average[3] == 3
        assert average[4] == 1
        assert average[5] == MISSING

    def test_values_written_as_numbers(self):
        sheet = open_workbook(build_table_workbook(self.RECORDS, preset="safety")).worksheets[0]
        assert sheet.cell(row=2, column=4).value == 2

    def test_filters_months_and_departments(self):
        content = build_table_workbook(self.RECORDS, preset="safety", months=["ตุลาคม"], department_ids=["DEPT001"])
        rows = list(open_workbook(content).worksheets[0].iter_rows(values_only=True))
        assert len(rows) == 3  # header, one record, average

    def test_monthly_overview_sheet(self):
        workbook = open_workbook(build_table_workbook(self.RECORDS))
        monthly = workbook["สรุปรายเดือน"]
        rows = list(monthly.iter_rows(values_only=True))
        assert len(rows) == 13
        assert rows[1][:2] == ("ตุลาคม", 2)

    def test_full_preset_uses_every_field(self):
        assert fields_for_preset("full", self.RECORDS) == ["s1_1", "s1_2"]

    def test_unknown_preset(self):
        with pytest.raises(ValidationError):
            build_table_workbook(self.RECORDS, preset="everything")

    def test_nothing_selected(self):
        with pytest.raises(ValidationError) as exc:
            build_table_workbook(self.RECORDS, months=["มีนาคม"])
        assert exc.value.message == "ไม่มีข้อมูลที่จะ Export"
