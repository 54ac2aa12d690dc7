"""
Job orchestrator: 렌더링을 공유 워커 풀에서 백그라운드 작업으로 실행.

- 작업 간에는 병렬, 작업 1건의 렌더링은 순차
- 실패한 작업은 해당 작업만 FAILED (풀은 계속 동작)
- 작업 목록은 메모리에만 보관 (API 조회용)
- 종료된 작업은 max_retained_jobs개까지만 보관, 초과분은 오래된 것부터 제거
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from excel_generator.core.logging import create_render_log
from excel_generator.domain.errors import ErrorCodes, JobStateError
from excel_generator.domain.schemas import GeneratorConfig, RenderLog
from excel_generator.jobs.job import GenerationJob, GenerationListener
from excel_generator.render.data import DataSource
from excel_generator.render.engine import TemplateRenderingEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputDestination:
    """파일 출력 대상. 없으면 결과는 bytes."""
    output_dir: Path
    base_file_name: str


class JobOrchestrator:
    """
    작업 실행기.

    Usage:
        with JobOrchestrator(config) as orchestrator:
            job = orchestrator.submit(template_bytes, data_source, listener=listener)
            result = job.await_result()
    """

    def __init__(self, config: GeneratorConfig | None = None, engine: TemplateRenderingEngine | None = None):
        self.config = config or GeneratorConfig()
        self.engine = engine or TemplateRenderingEngine(self.config)
        self._executor = ThreadPoolExecutor(max_workers=self.config.max_workers, thread_name_prefix="excel-job")
        self._jobs: dict[str, GenerationJob] = {}
        self._lock = threading.Lock()
        self._closed = False

    def submit(
        self,
        template: bytes,
        data_source: DataSource,
        destination: OutputDestination | None = None,
        listener: GenerationListener | None = None,
        **render_options: Any,
    ) -> GenerationJob:
        """
        렌더링 작업 제출 (즉시 반환).

        Args:
            template: XLSX 템플릿 내용
            data_source: 데이터 제공자
            destination: 파일 출력 대상 (None이면 결과 content에 bytes)
            listener: 이벤트 리스너
            render_options: TemplateRenderingEngine.render() 키워드 인자
                (blueprint, mode, password)

        Raises:
            JobStateError: shutdown 이후 제출
        """
        def task(running: GenerationJob) -> tuple[Any, RenderLog]:
            render_log = create_render_log()
            options = dict(
                render_options,
                cancel_token=running.cancel_token,
                progress_callback=running.report_progress,
                render_log=render_log,
            )
            if destination is None:
                output: Any = self.engine.render(template, data_source, **options)
            else:
                output = self.engine.render_to_file(
                    template, data_source, destination.output_dir, destination.base_file_name, **options
                )
            return output, render_log

        with self._lock:
            if self._closed:
                raise JobStateError(ErrorCodes.JOB_ALREADY_FINISHED, reason="orchestrator is shut down")
            job = GenerationJob(listener)
            self._jobs[job.job_id] = job
            self._evict_finished()
            self._executor.submit(job.run, task)
        logger.info(f"Job submitted: {job.job_id}")
        return job

    def get(self, job_id: str) -> GenerationJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def require(self, job_id: str) -> GenerationJob:
        """
        Raises:
            JobStateError: JOB_NOT_FOUND
        """
        job = self.get(job_id)
        if job is None:
            raise JobStateError(ErrorCodes.JOB_NOT_FOUND, job_id=job_id)
        return job

    def jobs(self) -> list[GenerationJob]:
        with self._lock:
            return list(self._jobs.values())

    def cancel(self, job_id: str) -> bool:
        return self.require(job_id).cancel()

    def remove(self, job_id: str) -> GenerationJob:
        """
        종료된 작업을 목록에서 제거.

        Raises:
            JobStateError: JOB_NOT_FOUND, 아직 종료되지 않은 작업이면 JOB_NOT_COMPLETED
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobStateError(ErrorCodes.JOB_NOT_FOUND, job_id=job_id)
            if not job.is_done:
                raise JobStateError(ErrorCodes.JOB_NOT_COMPLETED, job_id=job_id, state=job.state.value)
            del self._jobs[job_id]
        logger.info(f"Job removed: {job_id}")
        return job

    def _evict_finished(self) -> None:
        """보관 한도를 넘은 종료 작업을 제출 순서대로 제거 (lock 안에서 호출)."""
        finished = [job_id for job_id, job in self._jobs.items() if job.is_done]
        excess = len(finished) - self.config.max_retained_jobs
        for job_id in finished[:max(excess, 0)]:
            del self._jobs[job_id]
            logger.debug(f"Job evicted: {job_id}")

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        """
        워커 풀 종료.

        Args:
            wait: 실행 중인 작업이 끝날 때까지 대기
            cancel_pending: 아직 시작하지 않은(PENDING) 작업 취소. 실행 중인 작업은 끝까지 진행
        """
        with self._lock:
            self._closed = True
            jobs = list(self._jobs.values())
        if cancel_pending:
            for job in jobs:
                job.cancel_if_pending()
        self._executor.shutdown(wait=wait)
        logger.info("Job orchestrator shut down")

    def __enter__(self) -> "JobOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown(wait=True)
