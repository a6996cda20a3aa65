from portal.models.exam_result import ExamResultRecord

__all__ = [
    "ExamResultRecord",
]
