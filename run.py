import argparse
import sys
from datetime import date
from pathlib import Path
from typing import List

import cv2
import numpy as np
import uvicorn

from school_attendance.attendance_service import AttendanceService
from school_attendance.camera import CameraStream
from school_attendance.config import (
    CAMERA_INDEX,
    DB_PATH,
    DEVICE,
    EMBEDDING_MODEL,
    ENROLLMENT_SAMPLES,
    RECOGNITION_THRESHOLD,
)
from school_attendance.database import AttendanceStatus, SchoolDatabase
from school_attendance.enrollment_service import EnrollmentService
from school_attendance.exceptions import AttendanceError, CameraError
from school_attendance.face_engine import FaceEngine
from school_attendance.logger import setup_logger
from school_attendance.recognition_service import RecognitionService
from school_attendance.report_service import ReportService


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="School face-recognition attendance")
    subparsers = parser.add_subparsers(dest="command", required=True)

    enroll = subparsers.add_parser("enroll", help="Enroll or update a student's face embedding")
    enroll.add_argument("--id", required=True, dest="student_id", help="Student ID")
    enroll.add_argument("--name", required=True, help="Student full name")
    enroll.add_argument("--index", default="", dest="index_number", help="School index number")
    enroll.add_argument("--image", type=Path, nargs="+", default=None, help="Face image files")
    enroll.add_argument("--camera", type=int, default=CAMERA_INDEX, help="Webcam index when no images are given")
    enroll.add_argument("--samples", type=int, default=ENROLLMENT_SAMPLES, help="Frames to sample from the webcam")

    mark = subparsers.add_parser("mark", help="Open the camera and mark attendance on SPACE")
    mark.add_argument("--camera", type=int, default=CAMERA_INDEX, help="Webcam index")
    mark.add_argument(
        "--threshold",
        type=float,
        default=RECOGNITION_THRESHOLD,
        help="Cosine similarity threshold for recognition",
    )

    listing = subparsers.add_parser("attendance", help="Show attendance for one day")
    listing.add_argument("--date", type=_parse_date, default=None, dest="day", help="YYYY-MM-DD (default today)")

    manual = subparsers.add_parser("set-status", help="Manually set a student's attendance status")
    manual.add_argument("--id", required=True, dest="student_id", help="Student ID")
    manual.add_argument("--status", required=True, choices=[s.value for s in AttendanceStatus])
    manual.add_argument("--date", type=_parse_date, default=None, dest="day", help="YYYY-MM-DD (default today)")
    manual.add_argument("--remarks", default="", help="Free-text remarks")
    manual.add_argument("--by", default=None, dest="marked_by", help="Who made the entry")

    export = subparsers.add_parser("export", help="Export one day's attendance to CSV")
    export.add_argument("--date", type=_parse_date, default=None, dest="day", help="YYYY-MM-DD (default today)")
    export.add_argument("--output", type=Path, required=True, help="CSV output path")

    subparsers.add_parser("list-students", help="List students and enrollment state")

    web = subparsers.add_parser("web", help="Serve the attendance HTTP API")
    web.add_argument("--host", default="0.0.0.0", help="Host interface")
    web.add_argument("--port", type=int, default=8000, help="Port")

    return parser


def _draw_status_bar(frame: np.ndarray, message: str) -> None:
    cv2.rectangle(frame, (0, 0), (frame.shape[1], 50), (35, 35, 35), -1)
    cv2.putText(
        frame,
        message,
        (20, 33),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.75,
        (255, 255, 255),
        2,
        cv2.LINE_AA,
    )


def run_camera_session(service: RecognitionService, camera: CameraStream) -> List[str]:
    window_name = "Attendance - SPACE to capture, Q to exit"
    marked: List[str] = []
    status = "Press SPACE to capture"

    try:
        while True:
            preview = camera.read()
            _draw_status_bar(preview, status)
            cv2.imshow(window_name, preview)

            key = cv2.waitKey(1) & 0xFF
            if key == ord("q"):
                break
            if key != ord(" "):
                continue

            try:
                outcome = service.capture_and_mark()
            except CameraError:
                raise
            except AttendanceError as exc:
                status = f"Failed: {exc}"
                continue

            status = outcome.message
            if outcome.marked:
                marked.append(outcome.match.display_name)
    finally:
        cv2.destroyAllWindows()
    return marked


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = setup_logger("main")

    try:
        if args.command == "enroll":
            db = SchoolDatabase(DB_PATH)
            engine = FaceEngine(model_name=EMBEDDING_MODEL, device=DEVICE)
            service = EnrollmentService(db=db, extractor=engine)
            if args.image:
                images = []
                for path in args.image:
                    image = cv2.imread(str(path))
                    if image is None:
                        raise AttendanceError(f"Unable to read image {path}")
                    images.append(image)
                image_url = str(args.image[0])
            else:
                with CameraStream(args.camera) as cam:
                    images = service.capture_samples(cam, count=args.samples)
                image_url = None
            service.enroll_student(
                student_id=args.student_id,
                full_name=args.name,
                images=images,
                index_number=args.index_number,
                image_url=image_url,
            )
            print(f"Enrollment successful for {args.student_id} ({args.name}).")
            return 0

        if args.command == "mark":
            db = SchoolDatabase(DB_PATH)
            engine = FaceEngine(model_name=EMBEDDING_MODEL, device=DEVICE)
            engine.warm_up()
            with CameraStream(args.camera) as cam:
                service = RecognitionService(db=db, extractor=engine, camera=cam, threshold=args.threshold)
                marked = run_camera_session(service, cam)
            print(f"Session closed. Marked {len(marked)} student(s).")
            return 0

        if args.command == "attendance":
            db = SchoolDatabase(DB_PATH)
            day = args.day or date.today()
            records = AttendanceService(db).records_for(day)
            if not records:
                print(f"No attendance recorded for {day.isoformat()}.")
                return 0

            print(f"{'Student ID':<16} {'Name':<28} {'Status':<9} Remarks")
            print("-" * 80)
            for record in records:
                print(f"{record.student_id:<16} {record.full_name:<28} {record.status.value:<9} {record.remarks}")
            return 0

        if args.command == "set-status":
            db = SchoolDatabase(DB_PATH)
            record = AttendanceService(db).mark(
                student_id=args.student_id,
                day=args.day or date.today(),
                status=args.status,
                remarks=args.remarks,
                marked_by=args.marked_by,
            )
            print(f"{record.student_id} marked {record.status.value} on {record.date}.")
            return 0

        if args.command == "export":
            db = SchoolDatabase(DB_PATH)
            day = args.day or date.today()
            output = ReportService(db).export_csv(day, args.output)
            print(f"Exported attendance for {day.isoformat()} to {output}")
            return 0

        if args.command == "list-students":
            db = SchoolDatabase(DB_PATH)
            students = db.list_students()
            if not students:
                print("No students enrolled.")
                return 0

            print(f"{'Student ID':<16} {'Index':<12} {'Enrolled':<9} Name")
            print("-" * 64)
            for student in students:
                flag = "yes" if student.enrolled else "no"
                print(f"{student.student_id:<16} {student.index_number:<12} {flag:<9} {student.full_name}")
            return 0

        if args.command == "web":
            from school_attendance.web_app import create_web_app

            app = create_web_app()
            uvicorn.run(app, host=args.host, port=args.port, log_level="info")
            return 0

    except AttendanceError as exc:
        logger.error("Application error: %s", exc)
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
