from portal.routers import exams, health

__all__ = [
    "exams",
    "health",
]
