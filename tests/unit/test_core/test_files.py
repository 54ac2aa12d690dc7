"""
test_files.py - 출력 파일 이름/쓰기 테스트

테스트 케이스:
- TC1: 파일명 규칙 (NONE / TIMESTAMP)
- TC2: 충돌 정책 (SEQUENCE / ERROR)
- TC3: 임시 파일 → 최종 이름 (락 안에서)
- TC4: 원자적 쓰기
"""

import json
import threading
from datetime import datetime
from pathlib import Path

import pytest
from filelock import FileLock

from excel_generator.core.files import (
    atomic_write_bytes,
    atomic_write_json,
    build_file_name,
    create_temp_output,
    output_lock,
    publish_output,
    resolve_conflict,
)
from excel_generator.domain.constants import OUTPUT_LOCK_FILENAME
from excel_generator.domain.errors import ErrorCodes, ExcelGeneratorError, OutputFileExistsError
from excel_generator.domain.schemas import FileConflictPolicy, FileNamingMode, GeneratorConfig


# =============================================================================
# TC1: 파일명
# =============================================================================

class TestBuildFileName:
    """파일명 규칙."""

    def test_none_mode(self):
        config = GeneratorConfig(file_naming_mode=FileNamingMode.NONE)

        assert build_file_name("report", config) == "report.xlsx"

    def test_extension_not_duplicated(self):
        config = GeneratorConfig(file_naming_mode=FileNamingMode.NONE)

        assert build_file_name("report.xlsx", config) == "report.xlsx"

    def test_timestamp_mode(self):
        config = GeneratorConfig(file_naming_mode=FileNamingMode.TIMESTAMP)
        now = datetime(2024, 3, 5, 14, 30, 0)

        assert build_file_name("report", config, now) == "report_20240305_143000.xlsx"

    def test_custom_timestamp_format(self):
        config = GeneratorConfig(timestamp_format="%Y-%m-%d")
        now = datetime(2024, 3, 5)

        assert build_file_name("월간보고", config, now) == "월간보고_2024-03-05.xlsx"


# =============================================================================
# TC2: 충돌 정책
# =============================================================================

class TestResolveConflict:
    """같은 이름이 있을 때."""

    def test_free_name_unchanged(self, tmp_path: Path):
        path = tmp_path / "report.xlsx"

        assert resolve_conflict(path, FileConflictPolicy.ERROR) == path

    def test_sequence_suffix(self, tmp_path: Path):
        (tmp_path / "report.xlsx").write_bytes(b"x")
        (tmp_path / "report_1.xlsx").write_bytes(b"x")

        resolved = resolve_conflict(tmp_path / "report.xlsx", FileConflictPolicy.SEQUENCE)

        assert resolved.name == "report_2.xlsx"

    def test_error_policy(self, tmp_path: Path):
        (tmp_path / "report.xlsx").write_bytes(b"x")

        with pytest.raises(OutputFileExistsError) as exc_info:
            resolve_conflict(tmp_path / "report.xlsx", FileConflictPolicy.ERROR)

        assert exc_info.value.code == ErrorCodes.OUTPUT_FILE_EXISTS


# =============================================================================
# TC3: publish
# =============================================================================

class TestPublishOutput:
    """임시 파일 이동."""

    @pytest.fixture
    def config(self) -> GeneratorConfig:
        return GeneratorConfig(file_naming_mode=FileNamingMode.NONE, lock_timeout=0.5)

    def test_temp_file_in_output_dir(self, tmp_path: Path):
        output_dir = tmp_path / "out"
        temp = create_temp_output(output_dir)

        assert temp.parent == output_dir
        assert temp.exists()
        assert temp.suffix == ".tmp"

    def test_publish_moves_temp(self, tmp_path: Path, config):
        temp = create_temp_output(tmp_path)
        temp.write_bytes(b"content")

        path = publish_output(temp, tmp_path, "report", config)

        assert path == tmp_path / "report.xlsx"
        assert path.read_bytes() == b"content"
        assert not temp.exists()

    def test_concurrent_publish_gets_distinct_names(self, tmp_path: Path, config):
        temps = []
        for i in range(5):
            temp = create_temp_output(tmp_path)
            temp.write_bytes(str(i).encode())
            temps.append(temp)
        results: list[Path] = []
        lock = threading.Lock()

        def publish(temp: Path) -> None:
            path = publish_output(temp, tmp_path, "report", config.with_(lock_timeout=5.0))
            with lock:
                results.append(path)

        threads = [threading.Thread(target=publish, args=(temp,)) for temp in temps]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({p.name for p in results}) == 5
        assert sorted(p.read_bytes() for p in results) == [b"0", b"1", b"2", b"3", b"4"]

    def test_lock_timeout(self, tmp_path: Path):
        holder = FileLock(tmp_path / OUTPUT_LOCK_FILENAME)
        holder.acquire()
        try:
            # 다른 스레드에서 획득 시도 (FileLock은 같은 스레드에서 재진입 가능)
            errors: list[ExcelGeneratorError] = []

            def try_lock() -> None:
                try:
                    with output_lock(tmp_path, timeout=0.1):
                        pass
                except ExcelGeneratorError as e:
                    errors.append(e)

            t = threading.Thread(target=try_lock)
            t.start()
            t.join()
        finally:
            holder.release()

        assert len(errors) == 1
        assert errors[0].code == ErrorCodes.OUTPUT_LOCK_TIMEOUT


# =============================================================================
# TC4: 원자적 쓰기
# =============================================================================

class TestAtomicWrite:
    """temp → rename."""

    def test_write_bytes(self, tmp_path: Path):
        path = tmp_path / "nested" / "data.bin"

        atomic_write_bytes(path, b"abc")

        assert path.read_bytes() == b"abc"
        assert list(path.parent.glob("*.tmp")) == []

    def test_write_json_keeps_unicode(self, tmp_path: Path):
        path = tmp_path / "log.json"

        atomic_write_json(path, {"message": "한글"})

        assert "한글" in path.read_text(encoding="utf-8")
        assert json.loads(path.read_text(encoding="utf-8")) == {"message": "한글"}
