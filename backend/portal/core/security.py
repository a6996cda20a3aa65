from __future__ import annotations

import re

from fastapi import HTTPException, Request

_STUDENT_ID_RE = re.compile(r"^[A-Za-z0-9_.:@-]{1,64}$")


def get_current_student_id(request: Request) -> str:
    """Student identity handed over by the portal shell in ``X-Student-Id``."""
    student_id = str(request.headers.get("X-Student-Id") or "").strip()
    if not student_id:
        raise HTTPException(status_code=401, detail="not authenticated")
    if not _STUDENT_ID_RE.match(student_id):
        raise HTTPException(status_code=401, detail="invalid student id")

    request.state.user_id = student_id
    return student_id
