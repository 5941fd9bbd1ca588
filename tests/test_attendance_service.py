import pytest

from school_attendance.attendance_service import AttendanceService, presence_remarks
from school_attendance.database import AttendanceStatus
from school_attendance.exceptions import AttendanceError, StudentNotFoundError

from conftest import SCHOOL_DAY


def test_presence_remarks_encode_confidence_percentage():
    assert presence_remarks(0.9346) == "Auto-marked via facial recognition (93.5% match)"


def test_record_presence_inserts_present_row(enrolled_db):
    service = AttendanceService(enrolled_db)

    record = service.record_presence("stu-a", SCHOOL_DAY, 0.91)

    assert record.status is AttendanceStatus.PRESENT
    assert record.date == SCHOOL_DAY.isoformat()
    assert record.marked_by == "face_recognition"
    assert "91.0% match" in record.remarks


def test_record_presence_twice_keeps_second_values(enrolled_db):
    service = AttendanceService(enrolled_db)

    service.record_presence("stu-a", SCHOOL_DAY, 0.75)
    service.record_presence("stu-a", SCHOOL_DAY, 0.98)

    assert enrolled_db.count_attendance("stu-a", SCHOOL_DAY) == 1
    stored = enrolled_db.get_attendance("stu-a", SCHOOL_DAY)
    assert "98.0% match" in stored.remarks


def test_record_presence_overwrites_manual_entry(enrolled_db):
    service = AttendanceService(enrolled_db)
    service.mark("stu-a", SCHOOL_DAY, "excused", remarks="doctor's note", marked_by="teacher-1")

    service.record_presence("stu-a", SCHOOL_DAY, 0.8)

    stored = enrolled_db.get_attendance("stu-a", SCHOOL_DAY)
    assert stored.status is AttendanceStatus.PRESENT
    assert stored.marked_by == "face_recognition"


def test_record_presence_surfaces_storage_failure(db):
    service = AttendanceService(db)

    with pytest.raises(StudentNotFoundError):
        service.record_presence("not-enrolled", SCHOOL_DAY, 0.9)

    assert db.attendance_for_date(SCHOOL_DAY) == []


def test_mark_for_unknown_student_is_not_found(enrolled_db):
    service = AttendanceService(enrolled_db)

    with pytest.raises(StudentNotFoundError, match="ghost"):
        service.mark("ghost", SCHOOL_DAY, "absent")

    assert enrolled_db.count_attendance("ghost", SCHOOL_DAY) == 0


def test_mark_rejects_unknown_status(enrolled_db):
    service = AttendanceService(enrolled_db)

    with pytest.raises(AttendanceError, match="Invalid attendance status"):
        service.mark("stu-a", SCHOOL_DAY, "asleep")


def test_records_for_lists_the_day(enrolled_db):
    service = AttendanceService(enrolled_db)
    service.mark("stu-a", SCHOOL_DAY, "late", remarks="bus")
    service.record_presence("stu-b", SCHOOL_DAY, 0.88)

    records = {r.student_id: r for r in service.records_for(SCHOOL_DAY)}

    assert records["stu-a"].status is AttendanceStatus.LATE
    assert records["stu-b"].full_name == "Grace Hopper"
