"""
Data schemas for the generator.

규칙:
- 설정값은 서로 독립적으로 지정 가능 (순서 의존 없음)
- 결과/진행 객체는 불변 (frozen dataclass)
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

# =============================================================================
# Enums
# =============================================================================

class StreamingMode(str, Enum):
    """렌더링 모드 선택."""
    DISABLED = "disabled"  # 항상 메모리 모드
    ENABLED = "enabled"    # 항상 스트리밍 모드
    AUTO = "auto"          # 예상 행 수가 임계값을 넘으면 스트리밍


class MissingDataBehavior(str, Enum):
    """템플릿이 요구하는 데이터가 없을 때의 동작."""
    WARN = "warn"    # 경고 로그 후 가능한 만큼 렌더링
    THROW = "throw"  # MissingTemplateDataError


class FileNamingMode(str, Enum):
    """출력 파일명 규칙."""
    NONE = "none"            # {base}.xlsx
    TIMESTAMP = "timestamp"  # {base}_{timestamp}.xlsx


class FileConflictPolicy(str, Enum):
    """출력 파일이 이미 있을 때."""
    ERROR = "error"        # OutputFileExistsError
    SEQUENCE = "sequence"  # {name}_1.xlsx, {name}_2.xlsx, ...


class CountMismatchPolicy(str, Enum):
    """
    get_item_count() 힌트와 실제 순회 개수가 다를 때 (스트리밍 모드).

    레이아웃은 힌트를 기준으로 먼저 확정된다.
    """
    PAD = "pad"            # 부족분은 빈 아이템 슬롯, 초과분은 잘라냄 (경고)
    TRUNCATE = "truncate"  # 초과분은 잘라냄 (경고), 부족하면 에러
    ERROR = "error"        # 불일치 시 항상 에러


class RepeatDirection(str, Enum):
    """반복 확장 방향."""
    DOWN = "DOWN"
    RIGHT = "RIGHT"


class JobState(str, Enum):
    """
    작업 상태.

    PENDING → RUNNING → {COMPLETED | FAILED | CANCELLED}
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class GeneratorConfig:
    """
    생성기 설정.

    default.yaml의 `generator:` 섹션과 키가 동일하다.
    """
    streaming_mode: StreamingMode = StreamingMode.AUTO
    streaming_row_threshold: int = 10_000
    progress_report_interval: int = 100
    missing_data_behavior: MissingDataBehavior = MissingDataBehavior.WARN
    preserve_template_layout: bool = True
    pivot_integer_format_index: int = 37
    pivot_decimal_format_index: int = 39
    file_naming_mode: FileNamingMode = FileNamingMode.TIMESTAMP
    timestamp_format: str = "%Y%m%d_%H%M%S"
    file_conflict_policy: FileConflictPolicy = FileConflictPolicy.SEQUENCE
    count_mismatch_policy: CountMismatchPolicy = CountMismatchPolicy.PAD
    max_workers: int = 4
    lock_timeout: float = 10.0
    max_retained_jobs: int = 100

    def __post_init__(self) -> None:
        if self.streaming_row_threshold < 1:
            raise ValueError("streaming_row_threshold must be >= 1")
        if self.progress_report_interval < 1:
            raise ValueError("progress_report_interval must be >= 1")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.max_retained_jobs < 1:
            raise ValueError("max_retained_jobs must be >= 1")

    def with_(self, **changes: Any) -> "GeneratorConfig":
        """일부 값만 바꾼 새 설정."""
        return dataclasses.replace(self, **changes)


# =============================================================================
# Document Metadata
# =============================================================================

@dataclass(frozen=True)
class DocumentMetadata:
    """
    문서 속성 (파일 > 정보 > 속성).

    None인 항목은 템플릿 값을 유지한다.
    """
    title: str | None = None
    author: str | None = None
    subject: str | None = None
    keywords: str | None = None
    description: str | None = None
    category: str | None = None
    company: str | None = None
    manager: str | None = None
    created: datetime | None = None


# =============================================================================
# Render Log
# =============================================================================

@dataclass(frozen=True)
class RenderWarning:
    """렌더링 중 발생한 경고 (실패 아님)."""
    code: str
    message: str
    sheet: str | None = None
    cell: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "sheet": self.sheet,
            "cell": self.cell,
        }


@dataclass
class RenderLog:
    """
    렌더링 1회의 기록.

    WARN 정책의 누락 데이터, 중복 마커, 개수 불일치 등을 모은다.
    """
    render_id: str
    started_at: str
    finished_at: str | None = None
    result: str = "pending"  # pending, success, failed, cancelled
    mode: str | None = None
    rows_processed: int = 0
    warnings: list[RenderWarning] = field(default_factory=list)
    error_code: str | None = None
    error_context: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "render_id": self.render_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "result": self.result,
            "mode": self.mode,
            "rows_processed": self.rows_processed,
            "warnings": [w.to_dict() for w in self.warnings],
            "error_code": self.error_code,
            "error_context": self.error_context,
        }


# =============================================================================
# Job Results
# =============================================================================

@dataclass(frozen=True)
class ProgressInfo:
    """진행 상황. total_rows를 모르면 percentage는 None."""
    processed_rows: int
    total_rows: int | None = None

    @classmethod
    def of(cls, processed_rows: int, total_rows: int | None = None) -> "ProgressInfo":
        return cls(processed_rows=processed_rows, total_rows=total_rows)

    @property
    def percentage(self) -> float | None:
        if not self.total_rows:
            return None
        return min(100.0, self.processed_rows * 100.0 / self.total_rows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed_rows": self.processed_rows,
            "total_rows": self.total_rows,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class GenerationResult:
    """
    작업 1건의 결과.

    file_path(파일 출력) 또는 content(바이트 출력) 중 하나가 채워진다.
    """
    job_id: str
    rows_processed: int
    duration_ms: int
    completed_at: datetime
    file_path: Path | None = None
    content: bytes | None = None
    warnings: tuple[RenderWarning, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """API 응답용 (content는 크기만)."""
        return {
            "job_id": self.job_id,
            "rows_processed": self.rows_processed,
            "duration_ms": self.duration_ms,
            "completed_at": self.completed_at.isoformat(),
            "file_path": str(self.file_path) if self.file_path else None,
            "content_size": len(self.content) if self.content is not None else None,
            "warnings": [w.to_dict() for w in self.warnings],
        }
