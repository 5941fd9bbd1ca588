import pandas as pd

from school_attendance.attendance_service import AttendanceService
from school_attendance.report_service import REPORT_COLUMNS, ReportService

from conftest import SCHOOL_DAY


def test_daily_report_has_one_row_per_student(enrolled_db):
    attendance = AttendanceService(enrolled_db)
    attendance.record_presence("stu-a", SCHOOL_DAY, 0.93)
    attendance.mark("stu-b", SCHOOL_DAY, "absent", marked_by="teacher-1")

    df = ReportService(enrolled_db).daily_report(SCHOOL_DAY)

    assert list(df.columns) == REPORT_COLUMNS
    assert sorted(df["Student ID"]) == ["stu-a", "stu-b"]
    assert set(df["Status"]) == {"present", "absent"}


def test_empty_day_gives_empty_report(enrolled_db):
    report = ReportService(enrolled_db)

    assert report.daily_report(SCHOOL_DAY).empty
    assert report.summary(SCHOOL_DAY) == {
        "present": 0,
        "absent": 0,
        "late": 0,
        "excused": 0,
        "total": 0,
    }


def test_summary_counts_statuses(enrolled_db):
    attendance = AttendanceService(enrolled_db)
    attendance.mark("stu-a", SCHOOL_DAY, "late")
    attendance.mark("stu-b", SCHOOL_DAY, "late")

    summary = ReportService(enrolled_db).summary(SCHOOL_DAY)

    assert summary["late"] == 2
    assert summary["total"] == 2


def test_export_csv_writes_file(enrolled_db, tmp_path):
    AttendanceService(enrolled_db).record_presence("stu-a", SCHOOL_DAY, 0.81)

    path = ReportService(enrolled_db).export_csv(SCHOOL_DAY, tmp_path / "out" / "day.csv")

    exported = pd.read_csv(path)
    assert exported.loc[0, "Name"] == "Ada Lovelace"
    assert "81.0% match" in exported.loc[0, "Remarks"]
