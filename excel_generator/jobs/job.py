"""
Generation job: 백그라운드 렌더링 1건.

상태 전이:
    PENDING → RUNNING → {COMPLETED | FAILED | CANCELLED}

완료를 기다리는 방법 4가지는 모두 같은 실행 1회에 대한 어댑터다:
- listener 콜백 (GenerationListener)
- await_result(): 블로킹 대기
- future(): concurrent.futures.Future
- await job / await_async(): asyncio

리스너 이벤트는 작업별 queue.Queue를 거쳐 단일 dispatcher 스레드가 순서대로 전달한다.
"""

import asyncio
import logging
import queue
import threading
import time
from collections.abc import Callable, Generator
from concurrent.futures import Future
from datetime import UTC, datetime
from typing import Any

from excel_generator.core.ids import generate_job_id
from excel_generator.domain.errors import ErrorCodes, ExcelGeneratorError, JobStateError, RenderCancelledError
from excel_generator.domain.schemas import GenerationResult, JobState, ProgressInfo, RenderLog
from excel_generator.render.context import CancelToken

logger = logging.getLogger(__name__)


class GenerationListener:
    """
    작업 이벤트 리스너. 필요한 메서드만 override.

    콜백은 작업의 dispatcher 스레드에서 호출된다. 순서:
    on_started → on_progress* → (on_completed | on_failed | on_cancelled) 1회
    """

    def on_started(self, job_id: str) -> None:
        pass

    def on_progress(self, job_id: str, progress: ProgressInfo) -> None:
        pass

    def on_completed(self, job_id: str, result: GenerationResult) -> None:
        pass

    def on_failed(self, job_id: str, error: ExcelGeneratorError) -> None:
        pass

    def on_cancelled(self, job_id: str) -> None:
        pass


# 작업 본문: (job) → (file_path | content, render_log)
JobTask = Callable[["GenerationJob"], tuple[Any, RenderLog]]

_STOP = object()


class GenerationJob:
    """
    생성 작업 핸들.

    JobOrchestrator.submit()이 만들어 반환한다. 직접 실행하려면 run(task).
    """

    def __init__(self, listener: GenerationListener | None = None, job_id: str | None = None):
        self.job_id = job_id or generate_job_id()
        self.listener = listener
        self.cancel_token = CancelToken()
        self.created_at = datetime.now(UTC)

        self._lock = threading.Lock()
        self._state = JobState.PENDING
        self._progress: ProgressInfo | None = None
        self._render_log: RenderLog | None = None
        self._future: Future[GenerationResult] = Future()

        self._events: queue.Queue = queue.Queue()
        self._dispatcher: threading.Thread | None = None
        if listener is not None:
            self._dispatcher = threading.Thread(
                target=self._dispatch, name=f"{self.job_id}-events", daemon=True
            )
            self._dispatcher.start()

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def progress(self) -> ProgressInfo | None:
        return self._progress

    @property
    def render_log(self) -> RenderLog | None:
        return self._render_log

    @property
    def is_cancelled(self) -> bool:
        return self._state == JobState.CANCELLED or self.cancel_token.is_cancelled

    @property
    def is_done(self) -> bool:
        return self._state.is_terminal

    def _transition(self, expected: tuple[JobState, ...], target: JobState) -> bool:
        """expected 상태일 때만 target으로 전이 (먼저 커밋된 전이가 이긴다)."""
        with self._lock:
            if self._state not in expected:
                return False
            self._state = target
        logger.info(f"Job {self.job_id}: {target.value}")
        return True

    def cancel(self) -> bool:
        """
        취소 요청.

        PENDING이면 즉시 CANCELLED, RUNNING이면 렌더러가 다음 행에서 중단한다.

        Returns:
            요청이 받아들여졌는지 (이미 종료된 작업이면 False)
        """
        if self.cancel_if_pending():
            return True
        with self._lock:
            if self._state != JobState.RUNNING:
                return False
            self.cancel_token.cancel()
        logger.info(f"Job {self.job_id}: cancellation requested")
        return True

    def cancel_if_pending(self) -> bool:
        """아직 시작하지 않은 작업만 취소. 실행 중인 작업은 그대로 둔다."""
        if not self._transition((JobState.PENDING,), JobState.CANCELLED):
            return False
        self.cancel_token.cancel()
        self._finish(lambda: self._future.set_exception(RenderCancelledError()), ("cancelled",))
        return True

    # =========================================================================
    # Execution
    # =========================================================================

    def report_progress(self, progress: ProgressInfo) -> None:
        """렌더러 progress_callback."""
        self._progress = progress
        self._emit("progress", progress)

    def run(self, task: JobTask) -> None:
        """
        작업 본문 실행 (워커 스레드에서 호출).

        예외는 밖으로 던지지 않고 작업 결과(FAILED/CANCELLED)로 기록한다.
        """
        if not self._transition((JobState.PENDING,), JobState.RUNNING):
            return
        self._emit("started")
        started = time.perf_counter()
        try:
            output, render_log = task(self)
        except RenderCancelledError as e:
            self._complete_cancelled(e)
            return
        except ExcelGeneratorError as e:
            self._complete_failed(e)
            return
        except Exception as e:
            logger.exception(f"Job {self.job_id} failed unexpectedly")
            error = ExcelGeneratorError(ErrorCodes.RENDER_FAILED, error=str(e), type=type(e).__name__)
            error.__cause__ = e
            self._complete_failed(error)
            return

        self._render_log = render_log
        result = GenerationResult(
            job_id=self.job_id,
            rows_processed=render_log.rows_processed,
            duration_ms=int((time.perf_counter() - started) * 1000),
            completed_at=datetime.now(UTC),
            file_path=output if not isinstance(output, bytes) else None,
            content=output if isinstance(output, bytes) else None,
            warnings=tuple(render_log.warnings),
        )
        if not self._transition((JobState.RUNNING,), JobState.COMPLETED):
            return
        self._finish(lambda: self._future.set_result(result), ("completed", result))

    def _complete_failed(self, error: ExcelGeneratorError) -> None:
        if self._transition((JobState.RUNNING,), JobState.FAILED):
            logger.error(f"Job {self.job_id} failed: {error}")
            self._finish(lambda: self._future.set_exception(error), ("failed", error))

    def _complete_cancelled(self, error: RenderCancelledError) -> None:
        if self._transition((JobState.RUNNING,), JobState.CANCELLED):
            self._finish(lambda: self._future.set_exception(error), ("cancelled",))

    # =========================================================================
    # Events
    # =========================================================================

    def _emit(self, kind: str, *payload: Any) -> None:
        if self._dispatcher is not None:
            self._events.put((kind, payload))

    def _finish(self, settle: Callable[[], None], event: tuple[Any, ...]) -> None:
        """종료 이벤트를 리스너에 전달한 뒤 future를 확정 (리스너 없으면 즉시)."""
        if self._dispatcher is None:
            settle()
            return
        kind, *payload = event
        self._events.put((kind, tuple(payload)))
        self._events.put((_STOP, settle))

    def _dispatch(self) -> None:
        listener = self.listener
        handlers = {
            "started": listener.on_started,
            "progress": listener.on_progress,
            "completed": listener.on_completed,
            "failed": listener.on_failed,
            "cancelled": listener.on_cancelled,
        }
        while True:
            kind, payload = self._events.get()
            if kind is _STOP:
                payload()
                return
            try:
                handlers[kind](self.job_id, *payload)
            except Exception:
                logger.exception(f"Job {self.job_id}: listener {kind} callback failed")

    # =========================================================================
    # Completion Adapters
    # =========================================================================

    def await_result(self, timeout: float | None = None) -> GenerationResult:
        """
        완료까지 블로킹 대기.

        Raises:
            ExcelGeneratorError: 작업 실패 (RenderCancelledError 포함)
            TimeoutError: timeout 초과
        """
        return self._future.result(timeout)

    def future(self) -> Future:
        """concurrent.futures.Future (같은 실행을 공유)."""
        return self._future

    async def await_async(self) -> GenerationResult:
        """asyncio에서 대기."""
        return await asyncio.wrap_future(self._future)

    def __await__(self) -> Generator[Any, None, GenerationResult]:
        return self.await_async().__await__()

    def result(self) -> GenerationResult:
        """
        완료된 작업의 결과 (대기하지 않음).

        Raises:
            JobStateError: 아직 종료되지 않았거나 성공하지 못한 작업
        """
        if self._state != JobState.COMPLETED or not self._future.done():
            raise JobStateError(ErrorCodes.JOB_NOT_COMPLETED, job_id=self.job_id, state=self._state.value)
        return self._future.result()

    def error(self) -> ExcelGeneratorError | None:
        if not self._future.done():
            return None
        error = self._future.exception()
        return error if isinstance(error, ExcelGeneratorError) else None

    def to_dict(self) -> dict[str, Any]:
        """API 응답용 상태 요약."""
        data: dict[str, Any] = {
            "job_id": self.job_id,
            "state": self._state.value,
            "created_at": self.created_at.isoformat(),
            "progress": self._progress.to_dict() if self._progress else None,
            "result": None,
            "error": None,
        }
        if self._future.done():
            error = self.error()
            if error is not None:
                data["error"] = error.to_dict()
            elif self._state == JobState.COMPLETED:
                data["result"] = self._future.result().to_dict()
        return data

    def __repr__(self) -> str:
        return f"GenerationJob(job_id={self.job_id!r}, state={self._state.value})"
