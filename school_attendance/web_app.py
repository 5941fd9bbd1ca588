from datetime import date
from typing import List, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from .attendance_service import AttendanceService
from .config import DB_PATH, DEVICE, EMBEDDING_MODEL, RECOGNITION_THRESHOLD
from .database import AttendanceRecord, SchoolDatabase
from .enrollment_service import EnrollmentService
from .exceptions import (
    AttendanceError,
    ExtractionError,
    MatchError,
    PipelineBusyError,
    RecognitionCancelled,
    RecordError,
    StudentNotFoundError,
)
from .face_engine import EmbeddingExtractor, FaceEngine, decode_image
from .logger import setup_logger
from .recognition_service import RecognitionService

logger = setup_logger("web_app")


class MarkAttendanceBody(BaseModel):
    student_id: str
    day: Optional[date] = None
    status: str = "present"
    remarks: str = ""
    marked_by: Optional[str] = None
    class_id: Optional[str] = None


def _status_code_for(exc: AttendanceError) -> int:
    if isinstance(exc, (PipelineBusyError, RecognitionCancelled)):
        return 409
    if isinstance(exc, ExtractionError):
        return 422
    if isinstance(exc, StudentNotFoundError):
        return 404
    if isinstance(exc, (MatchError, RecordError)):
        return 503
    return 400


def _record_payload(record: AttendanceRecord) -> dict:
    return {
        "student_id": record.student_id,
        "full_name": record.full_name,
        "date": record.date,
        "status": record.status.value,
        "remarks": record.remarks,
        "marked_by": record.marked_by,
        "class_id": record.class_id,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def create_web_app(
    db: Optional[SchoolDatabase] = None,
    extractor: Optional[EmbeddingExtractor] = None,
    threshold: float = RECOGNITION_THRESHOLD,
) -> FastAPI:
    app = FastAPI(title="School Face Attendance", version="1.0.0")

    db = db or SchoolDatabase(DB_PATH)
    extractor = extractor or FaceEngine(model_name=EMBEDDING_MODEL, device=DEVICE)
    attendance = AttendanceService(db)
    enrollment = EnrollmentService(db, extractor)
    recognition = RecognitionService(
        db=db,
        extractor=extractor,
        attendance=attendance,
        threshold=threshold,
    )
    app.state.recognition = recognition

    @app.get("/api/health")
    def health():
        loaded = extractor.is_loaded if isinstance(extractor, FaceEngine) else True
        return {
            "ok": True,
            "model_loaded": loaded,
            "pipeline_state": recognition.state.value,
            "threshold": recognition.threshold,
        }

    @app.post("/api/recognize")
    def recognize(image: UploadFile = File(...)):
        payload = image.file.read()
        try:
            frame = decode_image(payload)
            outcome = recognition.capture_and_mark(frame=frame)
        except AttendanceError as exc:
            raise HTTPException(status_code=_status_code_for(exc), detail=str(exc)) from exc

        body = {
            "matched": outcome.match.matched,
            "message": outcome.message,
            "record": _record_payload(outcome.record) if outcome.record is not None else None,
        }
        if outcome.match.matched:
            body["student_id"] = outcome.match.student_id
            body["display_name"] = outcome.match.display_name
            body["similarity"] = outcome.match.similarity
        else:
            body["best_similarity"] = outcome.match.best_similarity
        return body

    @app.get("/api/attendance")
    def list_attendance(day: Optional[date] = None):
        target = day or date.today()
        try:
            records = attendance.records_for(target)
        except AttendanceError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"date": target.isoformat(), "records": [_record_payload(r) for r in records]}

    @app.post("/api/attendance")
    def mark_attendance(payload: MarkAttendanceBody):
        try:
            record = attendance.mark(
                student_id=payload.student_id,
                day=payload.day or date.today(),
                status=payload.status,
                remarks=payload.remarks,
                marked_by=payload.marked_by,
                class_id=payload.class_id,
            )
        except AttendanceError as exc:
            raise HTTPException(status_code=_status_code_for(exc), detail=str(exc)) from exc
        return {"ok": True, "record": _record_payload(record)}

    @app.get("/api/students")
    def list_students():
        try:
            students = db.list_students()
        except AttendanceError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return [
            {
                "student_id": s.student_id,
                "index_number": s.index_number,
                "full_name": s.full_name,
                "enrolled": s.enrolled,
            }
            for s in students
        ]

    @app.post("/api/students/{student_id}/enroll")
    def enroll_student(
        student_id: str,
        full_name: str = Form(...),
        index_number: str = Form(""),
        images: List[UploadFile] = File(...),
    ):
        try:
            frames = [decode_image(upload.file.read()) for upload in images]
            enrollment.enroll_student(
                student_id=student_id,
                full_name=full_name,
                images=frames,
                index_number=index_number,
            )
        except AttendanceError as exc:
            raise HTTPException(status_code=_status_code_for(exc), detail=str(exc)) from exc
        logger.info("Enrolled %s via API with %d image(s)", student_id, len(frames))
        return {"ok": True, "student_id": student_id, "samples": len(frames)}

    return app
