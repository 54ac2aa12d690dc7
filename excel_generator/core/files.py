"""
Output files: 결과 파일 이름 결정 + 원자적 쓰기.

규칙:
- 이름 결정과 쓰기는 출력 디렉터리 락(filelock) 안에서 수행 (동시 생성 시 이름 충돌 방지)
- 원자적 쓰기: temp → rename + fsync
- fsync 실패 시 경고 남기고 계속 진행
"""

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Generator

from filelock import FileLock, Timeout

from excel_generator.domain.constants import OUTPUT_EXTENSION, OUTPUT_LOCK_FILENAME
from excel_generator.domain.errors import ErrorCodes, ExcelGeneratorError, OutputFileExistsError
from excel_generator.domain.schemas import FileConflictPolicy, FileNamingMode, GeneratorConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Naming
# =============================================================================

def build_file_name(base_name: str, config: GeneratorConfig, now: datetime | None = None) -> str:
    """
    기본 파일 이름.

    - NONE: {base}.xlsx
    - TIMESTAMP: {base}_{timestamp}.xlsx
    """
    stem = base_name[: -len(OUTPUT_EXTENSION)] if base_name.lower().endswith(OUTPUT_EXTENSION) else base_name
    if config.file_naming_mode == FileNamingMode.TIMESTAMP:
        stem = f"{stem}_{(now or datetime.now()).strftime(config.timestamp_format)}"
    return f"{stem}{OUTPUT_EXTENSION}"


def resolve_conflict(path: Path, policy: FileConflictPolicy) -> Path:
    """
    같은 이름의 파일이 있을 때의 처리.

    Raises:
        OutputFileExistsError: ERROR 정책
    """
    if not path.exists():
        return path
    if policy == FileConflictPolicy.ERROR:
        raise OutputFileExistsError(str(path))
    sequence = 1
    while True:
        candidate = path.with_name(f"{path.stem}_{sequence}{path.suffix}")
        if not candidate.exists():
            return candidate
        sequence += 1


# =============================================================================
# Lock
# =============================================================================

@contextmanager
def output_lock(output_dir: Path, timeout: float) -> Generator[None, None, None]:
    """
    출력 디렉터리 락.

    Raises:
        ExcelGeneratorError: OUTPUT_LOCK_TIMEOUT
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    lock = FileLock(output_dir / OUTPUT_LOCK_FILENAME, timeout=timeout)
    try:
        lock.acquire()
    except Timeout as e:
        raise ExcelGeneratorError(
            ErrorCodes.OUTPUT_LOCK_TIMEOUT,
            output_dir=str(output_dir),
            timeout=timeout,
        ) from e
    try:
        yield
    finally:
        lock.release()


def publish_output(temp_path: Path, output_dir: Path, base_name: str, config: GeneratorConfig) -> Path:
    """
    렌더링이 끝난 임시 파일을 최종 이름으로 옮긴다.

    이름 결정과 rename을 출력 디렉터리 락 안에서 수행하므로 동시에 생성해도
    같은 이름을 두 번 쓰지 않는다. temp_path는 output_dir 안에 있어야 한다 (같은 파일 시스템).

    Returns:
        저장된 파일 경로

    Raises:
        OutputFileExistsError: ERROR 정책에서 같은 이름 존재
        ExcelGeneratorError: OUTPUT_LOCK_TIMEOUT
    """
    with output_lock(output_dir, config.lock_timeout):
        path = resolve_conflict(output_dir / build_file_name(base_name, config), config.file_conflict_policy)
        os.replace(temp_path, path)
    _fsync_dir(output_dir)
    logger.info(f"Output written: {path}")
    return path


def create_temp_output(output_dir: Path) -> Path:
    """출력 디렉터리 안의 임시 파일 경로 (렌더링 결과를 먼저 여기에 쓴다)."""
    output_dir.mkdir(parents=True, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix=".excel_generator_", suffix=".tmp", dir=output_dir)
    os.close(fd)
    return Path(path)


# =============================================================================
# Atomic Write
# =============================================================================

def _fsync_dir(dir_path: Path) -> None:
    try:
        dir_fd = os.open(str(dir_path), os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except (OSError, AttributeError) as e:
        # O_DIRECTORY 미지원, 권한 문제 등
        logger.warning(f"Directory fsync failed for {dir_path}: {e}")


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """
    원자적 바이트 쓰기.

    - 중간 상태 없음: temp → rename
    - 실패 시 temp 파일 삭제, 기존 파일 보존
    """
    dir_path = path.parent
    dir_path.mkdir(parents=True, exist_ok=True)

    temp_path = None
    try:
        with tempfile.NamedTemporaryFile(mode="wb", dir=dir_path, suffix=".tmp", delete=False) as f:
            temp_path = Path(f.name)
            f.write(data)
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError as e:
                logger.warning(f"File fsync failed for {path}: {e}")
        os.replace(temp_path, path)
        _fsync_dir(dir_path)
    except BaseException:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        raise


def atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    atomic_write_bytes(path, json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8"))
