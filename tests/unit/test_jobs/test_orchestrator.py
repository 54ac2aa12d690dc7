"""
test_orchestrator.py - JobOrchestrator 테스트

테스트 케이스:
- TC1: bytes 결과 작업 / 파일 출력 작업
- TC2: 작업 조회 (get, require, jobs)
- TC3: 실패한 작업은 다른 작업에 영향 없음
- TC4: shutdown 이후 제출 거부, cancel_pending은 대기 중인 작업만 취소
- TC5: 종료된 작업 보관 한도와 제거
"""

from io import BytesIO
from pathlib import Path

import threading

import pytest
from openpyxl import load_workbook

from excel_generator.domain.errors import ErrorCodes, ExcelGeneratorError, JobStateError
from excel_generator.domain.schemas import JobState
from excel_generator.jobs.orchestrator import JobOrchestrator, OutputDestination
from excel_generator.render.data import SimpleDataSource


@pytest.fixture
def orchestrator(memory_config):
    orchestrator = JobOrchestrator(memory_config)
    yield orchestrator
    orchestrator.shutdown(wait=True)


@pytest.fixture
def employee_data(employees) -> SimpleDataSource:
    return SimpleDataSource.of({"title": "직원 목록", "employees": employees})


@pytest.fixture
def gate():
    """컬렉션 조회 시 멈추는 데이터 소스용 (started, release) 이벤트."""
    started, release = threading.Event(), threading.Event()
    yield started, release
    release.set()


def _gated_data(gate, employees) -> SimpleDataSource:
    started, release = gate

    def supplier():
        started.set()
        release.wait(10)
        return iter(employees)

    return SimpleDataSource(values={"title": "직원 목록"}, collections={"employees": supplier})


# =============================================================================
# TC1: 제출
# =============================================================================

class TestSubmit:
    """작업 제출 → 백그라운드 렌더링."""

    def test_bytes_job(self, orchestrator, employee_template, employee_data):
        job = orchestrator.submit(employee_template, employee_data)

        result = job.await_result(timeout=30)

        assert job.state == JobState.COMPLETED
        ws = load_workbook(BytesIO(result.content))["Report"]
        assert ws["A1"].value == "직원 목록"
        assert ws["A3"].value == "김철수"
        assert result.rows_processed > 0
        assert job.render_log.result == "success"

    def test_file_job(self, orchestrator, employee_template, employee_data, tmp_path: Path):
        destination = OutputDestination(tmp_path / "out", "employees")
        job = orchestrator.submit(employee_template, employee_data, destination)

        result = job.await_result(timeout=30)

        assert result.file_path == tmp_path / "out" / "employees.xlsx"
        assert result.file_path.exists()
        assert result.content is None

    def test_concurrent_jobs(self, orchestrator, employee_template, employees):
        jobs = [
            orchestrator.submit(employee_template, SimpleDataSource.of({"title": f"보고서 {i}", "employees": employees}))
            for i in range(6)
        ]

        titles = [
            load_workbook(BytesIO(job.await_result(timeout=60).content))["Report"]["A1"].value for job in jobs
        ]
        assert titles == [f"보고서 {i}" for i in range(6)]
        assert len({job.job_id for job in jobs}) == 6


# =============================================================================
# TC2: 조회
# =============================================================================

class TestLookup:
    """작업 조회."""

    def test_get_and_require(self, orchestrator, employee_template, employee_data):
        job = orchestrator.submit(employee_template, employee_data)

        assert orchestrator.get(job.job_id) is job
        assert orchestrator.require(job.job_id) is job
        assert job in orchestrator.jobs()
        job.await_result(timeout=30)

    def test_unknown_job(self, orchestrator):
        assert orchestrator.get("JOB-missing") is None
        with pytest.raises(JobStateError) as exc_info:
            orchestrator.require("JOB-missing")
        assert exc_info.value.code == ErrorCodes.JOB_NOT_FOUND

        with pytest.raises(JobStateError):
            orchestrator.cancel("JOB-missing")


# =============================================================================
# TC3: 실패 격리
# =============================================================================

class TestFailureIsolation:
    """실패한 작업만 FAILED."""

    def test_bad_template_fails_only_its_job(self, orchestrator, employee_template, employee_data):
        broken = orchestrator.submit(b"not a workbook", employee_data)
        healthy = orchestrator.submit(employee_template, employee_data)

        with pytest.raises(ExcelGeneratorError) as exc_info:
            broken.await_result(timeout=30)
        assert exc_info.value.code == ErrorCodes.TEMPLATE_INVALID
        assert broken.state == JobState.FAILED
        assert healthy.await_result(timeout=30).content


# =============================================================================
# TC4: 종료
# =============================================================================

class TestShutdown:
    """shutdown."""

    def test_submit_after_shutdown(self, memory_config, employee_template, employee_data):
        orchestrator = JobOrchestrator(memory_config)
        orchestrator.shutdown()

        with pytest.raises(JobStateError) as exc_info:
            orchestrator.submit(employee_template, employee_data)
        assert exc_info.value.code == ErrorCodes.JOB_ALREADY_FINISHED

    def test_context_manager_waits(self, memory_config, employee_template, employee_data):
        with JobOrchestrator(memory_config) as orchestrator:
            job = orchestrator.submit(employee_template, employee_data)

        assert job.state == JobState.COMPLETED

    def test_cancel_pending_keeps_running_job(self, memory_config, employee_template, employees, gate):
        started, release = gate
        orchestrator = JobOrchestrator(memory_config.with_(max_workers=1))
        running = orchestrator.submit(employee_template, _gated_data(gate, employees))
        assert started.wait(10)
        pending = orchestrator.submit(employee_template, _gated_data(gate, employees))

        orchestrator.shutdown(wait=False, cancel_pending=True)

        assert pending.state == JobState.CANCELLED
        assert running.state == JobState.RUNNING
        assert not running.cancel_token.is_cancelled
        release.set()
        assert running.await_result(timeout=30).rows_processed > 0
        assert running.state == JobState.COMPLETED


# =============================================================================
# TC5: 보관 한도와 제거
# =============================================================================

class TestRetention:
    """종료된 작업 목록 관리."""

    def test_oldest_finished_jobs_are_evicted(self, memory_config, employee_template, employee_data):
        with JobOrchestrator(memory_config.with_(max_retained_jobs=2)) as orchestrator:
            finished = [orchestrator.submit(employee_template, employee_data) for _ in range(3)]
            for job in finished:
                job.await_result(timeout=30)

            latest = orchestrator.submit(employee_template, employee_data)

            assert orchestrator.get(finished[0].job_id) is None
            assert orchestrator.get(finished[1].job_id) is finished[1]
            assert orchestrator.get(finished[2].job_id) is finished[2]
            assert orchestrator.get(latest.job_id) is latest
            latest.await_result(timeout=30)

    def test_live_jobs_are_never_evicted(self, memory_config, employee_template, employees, gate):
        started, release = gate
        with JobOrchestrator(memory_config.with_(max_retained_jobs=1, max_workers=2)) as orchestrator:
            blocked = [orchestrator.submit(employee_template, _gated_data(gate, employees)) for _ in range(2)]
            assert started.wait(10)
            third = orchestrator.submit(employee_template, _gated_data(gate, employees))

            assert all(orchestrator.get(job.job_id) is job for job in [*blocked, third])
            release.set()

    def test_remove_finished_job(self, orchestrator, employee_template, employee_data):
        job = orchestrator.submit(employee_template, employee_data)
        job.await_result(timeout=30)

        assert orchestrator.remove(job.job_id) is job
        assert orchestrator.get(job.job_id) is None
        with pytest.raises(JobStateError) as exc_info:
            orchestrator.remove(job.job_id)
        assert exc_info.value.code == ErrorCodes.JOB_NOT_FOUND

    def test_remove_running_job_is_refused(self, orchestrator, employee_template, employees, gate):
        started, release = gate
        job = orchestrator.submit(employee_template, _gated_data(gate, employees))
        assert started.wait(10)

        with pytest.raises(JobStateError) as exc_info:
            orchestrator.remove(job.job_id)

        assert exc_info.value.code == ErrorCodes.JOB_NOT_COMPLETED
        assert orchestrator.get(job.job_id) is job
        release.set()
        job.await_result(timeout=30)
