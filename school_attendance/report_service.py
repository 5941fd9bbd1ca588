from datetime import date
from pathlib import Path
from typing import Any

import pandas as pd

from .database import AttendanceStatus, SchoolDatabase

REPORT_COLUMNS = ["Student ID", "Name", "Date", "Status", "Remarks", "Marked By", "Updated At"]


class ReportService:
    def __init__(self, db: SchoolDatabase):
        self.db = db

    def daily_report(self, day: date) -> pd.DataFrame:
        rows = self.db.attendance_for_date(day)
        data: list[dict[str, Any]] = [
            {
                "Student ID": row.student_id,
                "Name": row.full_name,
                "Date": row.date,
                "Status": row.status.value,
                "Remarks": row.remarks,
                "Marked By": row.marked_by or "",
                "Updated At": row.updated_at,
            }
            for row in rows
        ]
        return pd.DataFrame(data, columns=REPORT_COLUMNS)

    def summary(self, day: date) -> dict[str, int]:
        df = self.daily_report(day)
        counts = df["Status"].value_counts()
        result = {status.value: int(counts.get(status.value, 0)) for status in AttendanceStatus}
        result["total"] = int(len(df))
        return result

    def export_csv(self, day: date, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.daily_report(day).to_csv(path, index=False)
        return path
