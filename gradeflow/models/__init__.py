from .assignment import Assignment
from .submission import Submission, SubmissionStatus
from .assessment import Assessment

__all__ = [
    "Assignment",
    "Submission",
    "SubmissionStatus",
    "Assessment"
]
