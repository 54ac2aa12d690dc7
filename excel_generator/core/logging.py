"""
Render logging: RenderLog 생성/완료/저장

- 경고는 code, message, sheet, cell을 가진다
- 실패 시 error_code, error_context 기록
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from excel_generator.core.files import atomic_write_json
from excel_generator.core.ids import generate_render_id
from excel_generator.domain.constants import RENDER_LOG_PREFIX
from excel_generator.domain.errors import ExcelGeneratorError
from excel_generator.domain.schemas import RenderLog


def create_render_log() -> RenderLog:
    """새 RenderLog 생성."""
    return RenderLog(
        render_id=generate_render_id(),
        started_at=datetime.now(UTC).isoformat(),
        result="pending",
    )


def complete_render_log(
    render_log: RenderLog,
    result: str,
    rows_processed: int = 0,
    error: ExcelGeneratorError | None = None,
) -> None:
    """
    RenderLog 완료 처리.

    Args:
        result: "success", "failed", "cancelled"
        error: 실패 원인 (실패/취소 시)
    """
    render_log.finished_at = datetime.now(UTC).isoformat()
    render_log.result = result
    render_log.rows_processed = rows_processed
    if error is not None:
        render_log.error_code = error.code
        render_log.error_context = {key: str(value) for key, value in error.context.items()}


def save_render_log(render_log: RenderLog, logs_dir: Path) -> Path:
    """
    RenderLog를 JSON 파일로 저장.

    Returns:
        저장된 파일 경로
    """
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"{RENDER_LOG_PREFIX}{render_log.render_id}.json"
    atomic_write_json(log_path, render_log.to_dict())
    return log_path


def load_render_log(log_path: Path) -> dict[str, Any]:
    data: dict[str, Any] = json.loads(log_path.read_text(encoding="utf-8"))
    return data
