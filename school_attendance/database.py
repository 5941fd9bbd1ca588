import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

import numpy as np

from .exceptions import DatabaseError, UnknownStudentError


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"


@dataclass
class GalleryEntry:
    student_id: str
    embedding: np.ndarray
    display_name: str


@dataclass
class StudentProfile:
    student_id: str
    index_number: str
    full_name: str
    enrolled: bool
    created_at: str
    updated_at: str


@dataclass
class AttendanceRecord:
    student_id: str
    date: str
    status: AttendanceStatus
    remarks: str
    marked_by: Optional[str]
    class_id: Optional[str]
    created_at: str
    updated_at: str
    full_name: str = ""


class SchoolDatabase:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _initialize(self) -> None:
        try:
            with self._connect() as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS students (
                        student_id TEXT PRIMARY KEY,
                        index_number TEXT NOT NULL,
                        full_name TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS student_face_embeddings (
                        student_id TEXT PRIMARY KEY,
                        embedding BLOB NOT NULL,
                        embedding_dim INTEGER NOT NULL,
                        image_url TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        FOREIGN KEY (student_id) REFERENCES students(student_id)
                    );

                    CREATE TABLE IF NOT EXISTS attendance (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        class_id TEXT,
                        date TEXT NOT NULL,
                        status TEXT NOT NULL CHECK (status IN ('present', 'absent', 'late', 'excused')),
                        remarks TEXT NOT NULL DEFAULT '',
                        marked_by TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        FOREIGN KEY (student_id) REFERENCES students(student_id),
                        -- One attendance row per student per day; writes go through upsert.
                        UNIQUE(student_id, date)
                    );
                    """
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to initialize database: {exc}") from exc

    def upsert_student(self, student_id: str, full_name: str, index_number: str = "") -> None:
        now = datetime.now().isoformat(timespec="seconds")
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO students (student_id, index_number, full_name, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(student_id) DO UPDATE SET
                        index_number = excluded.index_number,
                        full_name = excluded.full_name,
                        updated_at = excluded.updated_at
                    """,
                    (student_id, index_number or student_id, full_name, now, now),
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to save student {student_id}: {exc}") from exc

    def upsert_face_embedding(
        self,
        student_id: str,
        embedding: np.ndarray,
        image_url: Optional[str] = None,
    ) -> None:
        vector = np.asarray(embedding, dtype=np.float32)
        if vector.ndim != 1 or vector.size == 0:
            raise DatabaseError("Embedding must be a non-empty 1D vector.")

        now = datetime.now().isoformat(timespec="seconds")
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO student_face_embeddings (
                        student_id, embedding, embedding_dim, image_url, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(student_id) DO UPDATE SET
                        embedding = excluded.embedding,
                        embedding_dim = excluded.embedding_dim,
                        image_url = excluded.image_url,
                        updated_at = excluded.updated_at
                    """,
                    (student_id, vector.tobytes(), vector.size, image_url, now, now),
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to save face embedding for {student_id}: {exc}") from exc

    def list_gallery(self) -> List[GalleryEntry]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT f.student_id, f.embedding, f.embedding_dim, s.full_name
                    FROM student_face_embeddings f
                    LEFT JOIN students s ON s.student_id = f.student_id
                    ORDER BY f.student_id ASC
                    """
                ).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load face gallery: {exc}") from exc

        entries: List[GalleryEntry] = []
        for row in rows:
            # A blob shorter than its declared dimension yields a shorter vector;
            # the matcher skips it instead of failing the whole read.
            available = len(row["embedding"]) // np.dtype(np.float32).itemsize
            count = min(int(row["embedding_dim"]), available)
            embedding = np.frombuffer(row["embedding"], dtype=np.float32, count=count)
            entries.append(
                GalleryEntry(
                    student_id=row["student_id"],
                    embedding=embedding.copy(),
                    display_name=row["full_name"] or "Unknown",
                )
            )
        return entries

    def list_students(self) -> List[StudentProfile]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT s.student_id, s.index_number, s.full_name, s.created_at, s.updated_at,
                           f.student_id IS NOT NULL AS enrolled
                    FROM students s
                    LEFT JOIN student_face_embeddings f ON f.student_id = s.student_id
                    ORDER BY s.index_number ASC
                    """
                ).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load students: {exc}") from exc

        return [
            StudentProfile(
                student_id=row["student_id"],
                index_number=row["index_number"],
                full_name=row["full_name"],
                enrolled=bool(row["enrolled"]),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    def upsert_attendance(
        self,
        student_id: str,
        day: date,
        status: AttendanceStatus,
        remarks: str,
        marked_by: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> AttendanceRecord:
        now = datetime.now().isoformat(timespec="seconds")
        attendance_date = day.isoformat()

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO attendance (
                        student_id, class_id, date, status, remarks, marked_by, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(student_id, date) DO UPDATE SET
                        class_id = COALESCE(excluded.class_id, attendance.class_id),
                        status = excluded.status,
                        remarks = excluded.remarks,
                        marked_by = excluded.marked_by,
                        updated_at = excluded.updated_at
                    """,
                    (
                        student_id,
                        class_id,
                        attendance_date,
                        AttendanceStatus(status).value,
                        remarks,
                        marked_by,
                        now,
                        now,
                    ),
                )
                row = conn.execute(
                    """
                    SELECT a.student_id, a.class_id, a.date, a.status, a.remarks, a.marked_by,
                           a.created_at, a.updated_at, COALESCE(s.full_name, '') AS full_name
                    FROM attendance a
                    LEFT JOIN students s ON s.student_id = a.student_id
                    WHERE a.student_id = ? AND a.date = ?
                    """,
                    (student_id, attendance_date),
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            if "FOREIGN KEY" in str(exc):
                raise UnknownStudentError(f"Unknown student {student_id}") from exc
            raise DatabaseError(f"Failed to save attendance for {student_id}: {exc}") from exc
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to save attendance for {student_id}: {exc}") from exc

        return self._to_attendance_record(row)

    def get_attendance(self, student_id: str, day: date) -> Optional[AttendanceRecord]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT a.student_id, a.class_id, a.date, a.status, a.remarks, a.marked_by,
                           a.created_at, a.updated_at, COALESCE(s.full_name, '') AS full_name
                    FROM attendance a
                    LEFT JOIN students s ON s.student_id = a.student_id
                    WHERE a.student_id = ? AND a.date = ?
                    """,
                    (student_id, day.isoformat()),
                ).fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load attendance for {student_id}: {exc}") from exc

        if row is None:
            return None
        return self._to_attendance_record(row)

    def attendance_for_date(self, day: date) -> List[AttendanceRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT a.student_id, a.class_id, a.date, a.status, a.remarks, a.marked_by,
                           a.created_at, a.updated_at, COALESCE(s.full_name, '') AS full_name
                    FROM attendance a
                    LEFT JOIN students s ON s.student_id = a.student_id
                    WHERE a.date = ?
                    ORDER BY a.created_at DESC, a.id DESC
                    """,
                    (day.isoformat(),),
                ).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load attendance for {day.isoformat()}: {exc}") from exc

        return [self._to_attendance_record(row) for row in rows]

    def count_attendance(self, student_id: str, day: date) -> int:
        try:
            with self._connect() as conn:
                return int(
                    conn.execute(
                        "SELECT COUNT(*) AS c FROM attendance WHERE student_id = ? AND date = ?",
                        (student_id, day.isoformat()),
                    ).fetchone()["c"]
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to count attendance for {student_id}: {exc}") from exc

    @staticmethod
    def _to_attendance_record(row: sqlite3.Row) -> AttendanceRecord:
        return AttendanceRecord(
            student_id=row["student_id"],
            date=row["date"],
            status=AttendanceStatus(row["status"]),
            remarks=row["remarks"],
            marked_by=row["marked_by"],
            class_id=row["class_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            full_name=row["full_name"],
        )
