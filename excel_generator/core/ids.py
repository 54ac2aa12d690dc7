"""
ID 생성: job_id, render_id

둘 다 고유성 보장용 (UUID v4 기반), 결정론적이지 않다.
"""

import uuid
from datetime import UTC, datetime


def _timestamp() -> str:
    return datetime.now(UTC).strftime("%Y%m%d%H%M%S")


def generate_job_id() -> str:
    """
    Job ID 생성.

    포맷: JOB-{timestamp}-{uuid[:8]}

    Returns:
        job_id 문자열
    """
    return f"JOB-{_timestamp()}-{uuid.uuid4().hex[:8]}"


def generate_render_id() -> str:
    """
    Render ID 생성 (렌더링 1회 = RenderLog 1개).

    포맷: RENDER-{timestamp}-{uuid[:8]}
    """
    return f"RENDER-{_timestamp()}-{uuid.uuid4().hex[:8]}"
