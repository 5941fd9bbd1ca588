from datetime import date
from typing import List, Optional

from .config import AUTO_MARKED_BY
from .database import AttendanceRecord, AttendanceStatus, SchoolDatabase
from .exceptions import AttendanceError, DatabaseError, RecordError, StudentNotFoundError, UnknownStudentError
from .logger import setup_logger


def presence_remarks(confidence: float) -> str:
    return f"Auto-marked via facial recognition ({confidence * 100:.1f}% match)"


class AttendanceService:
    """Writes attendance rows keyed on (student_id, date).

    Every write is an upsert, so a later write for the same student and day
    replaces the earlier one, including rows a teacher entered manually.
    """

    def __init__(self, db: SchoolDatabase, marked_by: str = AUTO_MARKED_BY):
        self.db = db
        self.marked_by = marked_by
        self.logger = setup_logger(self.__class__.__name__)

    def record_presence(self, student_id: str, day: date, confidence: float) -> AttendanceRecord:
        try:
            record = self.db.upsert_attendance(
                student_id=student_id,
                day=day,
                status=AttendanceStatus.PRESENT,
                remarks=presence_remarks(confidence),
                marked_by=self.marked_by,
            )
        except UnknownStudentError as exc:
            raise StudentNotFoundError(f"Student {student_id} is not registered.") from exc
        except DatabaseError as exc:
            raise RecordError(f"Attendance not marked for {student_id}: {exc}") from exc

        self.logger.info(
            "Presence recorded for %s on %s (%.1f%%)",
            student_id,
            day.isoformat(),
            confidence * 100,
        )
        return record

    def mark(
        self,
        student_id: str,
        day: date,
        status: str,
        remarks: str = "",
        marked_by: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> AttendanceRecord:
        try:
            status_value = AttendanceStatus(status)
        except ValueError as exc:
            allowed = ", ".join(item.value for item in AttendanceStatus)
            raise AttendanceError(f"Invalid attendance status '{status}'. Use one of: {allowed}.") from exc

        try:
            record = self.db.upsert_attendance(
                student_id=student_id,
                day=day,
                status=status_value,
                remarks=remarks,
                marked_by=marked_by,
                class_id=class_id,
            )
        except UnknownStudentError as exc:
            raise StudentNotFoundError(f"Student {student_id} is not registered.") from exc
        except DatabaseError as exc:
            raise RecordError(f"Attendance not marked for {student_id}: {exc}") from exc

        self.logger.info("Attendance for %s on %s set to %s", student_id, day.isoformat(), status_value.value)
        return record

    def records_for(self, day: date) -> List[AttendanceRecord]:
        return self.db.attendance_for_date(day)
