class AttendanceError(Exception):
    """Base exception for the school attendance system."""


class CameraError(AttendanceError):
    """Raised when the capture device is unavailable or stops delivering frames."""


class ExtractionError(AttendanceError):
    """Raised when the embedding model cannot load or cannot process an image."""


class DatabaseError(AttendanceError):
    """Raised when database operations fail."""


class MatchError(AttendanceError):
    """Raised when the face gallery cannot be read."""


class RecordError(AttendanceError):
    """Raised when an attendance row cannot be written."""


class PipelineBusyError(AttendanceError):
    """Raised when a capture is requested while another one is still running."""


class RecognitionCancelled(AttendanceError):
    """Raised when a recognition attempt is cancelled before anything was recorded."""


class UnknownStudentError(DatabaseError):
    """Raised when a write references a student_id that is not in the students table."""


class StudentNotFoundError(RecordError):
    """Raised when attendance is recorded for a student that does not exist."""
