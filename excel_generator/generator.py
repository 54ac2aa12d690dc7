"""
ExcelGenerator: 템플릿 기반 XLSX 생성 진입점.

Usage:
    with ExcelGenerator(config) as generator:
        content = generator.generate(template_path, {"title": "보고서", "employees": rows})
        path = generator.generate_to_file(template_path, data, output_dir, "report")
        job = generator.submit(template_path, data, listener=listener)
"""

import hashlib
import logging
import threading
from collections import OrderedDict
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from excel_generator.domain.blueprint import Blueprint
from excel_generator.domain.schemas import GeneratorConfig
from excel_generator.jobs.job import GenerationJob, GenerationListener
from excel_generator.jobs.orchestrator import JobOrchestrator, OutputDestination
from excel_generator.render.data import DataSource, SimpleDataSource
from excel_generator.render.engine import TemplateRenderingEngine
from excel_generator.templates.analyzer import TemplateAnalyzer

logger = logging.getLogger(__name__)

BLUEPRINT_CACHE_SIZE = 32

TemplateInput = bytes | str | Path
DataInput = DataSource | Mapping[str, Any]


def read_template(template: TemplateInput) -> bytes:
    """템플릿 경로 또는 바이트 → 바이트."""
    if isinstance(template, (bytes, bytearray)):
        return bytes(template)
    return Path(template).read_bytes()


def as_data_source(data: DataInput) -> DataSource:
    """dict는 SimpleDataSource.of()로 감싼다."""
    if isinstance(data, Mapping):
        return SimpleDataSource.of(data)
    return data


class ExcelGenerator:
    """
    생성기 facade.

    같은 템플릿(내용 기준 sha256)은 한 번만 분석하고, 그 Blueprint를 모든 렌더링이
    읽기 전용으로 공유한다. 비동기 작업은 내부 JobOrchestrator가 처음 필요할 때 만든다.
    """

    def __init__(self, config: GeneratorConfig | None = None):
        self.config = config or GeneratorConfig()
        self.analyzer = TemplateAnalyzer()
        self.engine = TemplateRenderingEngine(self.config, self.analyzer)
        self._blueprints: OrderedDict[str, Blueprint] = OrderedDict()
        self._cache_lock = threading.Lock()
        self._orchestrator: JobOrchestrator | None = None
        self._orchestrator_lock = threading.Lock()

    # =========================================================================
    # Blueprint Cache
    # =========================================================================

    def blueprint(self, template: TemplateInput) -> Blueprint:
        """
        템플릿 분석 결과 (캐시).

        Raises:
            TemplateProcessingError: 마커 오류
        """
        return self._blueprint_for(read_template(template))

    def _blueprint_for(self, content: bytes) -> Blueprint:
        digest = hashlib.sha256(content).hexdigest()
        with self._cache_lock:
            cached = self._blueprints.get(digest)
            if cached is not None:
                self._blueprints.move_to_end(digest)
                return cached

        # 분석은 락 밖에서 (같은 템플릿이 동시에 분석되면 먼저 저장된 것을 사용)
        blueprint = self.analyzer.analyze(content)
        with self._cache_lock:
            blueprint = self._blueprints.setdefault(digest, blueprint)
            self._blueprints.move_to_end(digest)
            while len(self._blueprints) > BLUEPRINT_CACHE_SIZE:
                self._blueprints.popitem(last=False)
        logger.debug(f"Blueprint cached: {digest[:12]} ({len(blueprint.sheets)} sheets)")
        return blueprint

    # =========================================================================
    # Synchronous
    # =========================================================================

    def generate(self, template: TemplateInput, data: DataInput, **options: Any) -> bytes:
        """
        XLSX 생성 (동기).

        Args:
            options: mode, password, cancel_token, progress_callback, render_log
        """
        content = read_template(template)
        return self.engine.render(
            content, as_data_source(data), blueprint=self._blueprint_for(content), **options
        )

    def generate_to_file(
        self,
        template: TemplateInput,
        data: DataInput,
        output_dir: Path | str,
        base_file_name: str,
        **options: Any,
    ) -> Path:
        """XLSX 생성 후 파일 저장 (동기). 반환값은 실제 저장된 경로."""
        content = read_template(template)
        return self.engine.render_to_file(
            content,
            as_data_source(data),
            Path(output_dir),
            base_file_name,
            blueprint=self._blueprint_for(content),
            **options,
        )

    # =========================================================================
    # Asynchronous (Jobs)
    # =========================================================================

    @property
    def orchestrator(self) -> JobOrchestrator:
        with self._orchestrator_lock:
            if self._orchestrator is None:
                self._orchestrator = JobOrchestrator(self.config, self.engine)
            return self._orchestrator

    def submit(
        self,
        template: TemplateInput,
        data: DataInput,
        listener: GenerationListener | None = None,
        **options: Any,
    ) -> GenerationJob:
        """
        백그라운드 생성 작업 제출. 결과는 GenerationResult.content.

        템플릿 분석 오류는 제출 시점에 바로 발생한다.
        """
        content = read_template(template)
        blueprint = self._blueprint_for(content)
        return self.orchestrator.submit(
            content, as_data_source(data), listener=listener, blueprint=blueprint, **options
        )

    def submit_to_file(
        self,
        template: TemplateInput,
        data: DataInput,
        output_dir: Path | str,
        base_file_name: str,
        listener: GenerationListener | None = None,
        **options: Any,
    ) -> GenerationJob:
        """백그라운드 생성 작업 제출. 결과는 GenerationResult.file_path."""
        content = read_template(template)
        blueprint = self._blueprint_for(content)
        destination = OutputDestination(Path(output_dir), base_file_name)
        return self.orchestrator.submit(
            content, as_data_source(data), destination, listener, blueprint=blueprint, **options
        )

    def close(self, wait: bool = True, cancel_pending: bool = False) -> None:
        """워커 풀 종료 + 캐시 비우기."""
        with self._orchestrator_lock:
            orchestrator, self._orchestrator = self._orchestrator, None
        if orchestrator is not None:
            orchestrator.shutdown(wait=wait, cancel_pending=cancel_pending)
        with self._cache_lock:
            self._blueprints.clear()

    def __enter__(self) -> "ExcelGenerator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
