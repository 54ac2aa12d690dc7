"""
Template rendering engine: Blueprint + DataSource → XLSX.

처리 순서:
1. 템플릿 분석 (Blueprint가 주어지지 않은 경우)
2. 누락 데이터 확인 (THROW면 출력 전에 중단)
3. 컬렉션 준비: 크기 확정 (메모리 모드는 list로, 스트리밍은 힌트 또는 임시 파일 spool)
4. 시트별 PositionMap 계산 → 모드 결정 (AUTO)
5. 전략(메모리/스트리밍)으로 렌더링

렌더링 1회의 상태는 RenderContext에만 있고 엔진 인스턴스는 상태를 갖지 않는다.
같은 엔진을 여러 스레드에서 동시에 써도 된다.
"""

import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, BinaryIO

from excel_generator.core.files import create_temp_output, publish_output
from excel_generator.core.logging import complete_render_log, create_render_log, save_render_log
from excel_generator.core.position import PositionMap, calculate
from excel_generator.domain.blueprint import Blueprint, RepeatRegionSpec
from excel_generator.domain.constants import EXCEL_MAX_COLUMNS, EXCEL_MAX_ROWS, RENDER_LOG_DIR
from excel_generator.domain.errors import (
    ErrorCodes,
    ExcelGeneratorError,
    MissingTemplateDataError,
    RenderCancelledError,
)
from excel_generator.domain.schemas import (
    GeneratorConfig,
    MissingDataBehavior,
    RenderLog,
    RepeatDirection,
    StreamingMode,
)
from excel_generator.render.buffer import CollectionBuffer, CollectionFeed
from excel_generator.render.context import CancelToken, ProgressCallback, RenderContext
from excel_generator.render.data import DataSource
from excel_generator.render.memory import InMemoryStrategy
from excel_generator.render.streaming import StreamingStrategy
from excel_generator.templates.analyzer import TemplateAnalyzer, load_template

logger = logging.getLogger(__name__)


@dataclass
class PreparedCollections:
    """컬렉션 이름 → 공급기/크기. 렌더링이 끝나면 close()로 임시 파일 정리."""
    feeds: dict[str, CollectionFeed] = field(default_factory=dict)
    sizes: dict[str, int] = field(default_factory=dict)
    missing: set[str] = field(default_factory=set)

    def close(self) -> None:
        for feed in self.feeds.values():
            feed.close()

    def finish(self) -> None:
        for feed in self.feeds.values():
            feed.finish()


def _region_usage(blueprint: Blueprint) -> dict[str, list[RepeatRegionSpec]]:
    usage: dict[str, list[RepeatRegionSpec]] = defaultdict(list)
    for region in blueprint.regions:
        usage[region.collection].append(region)
    return usage


def _close_iterator(items: Any) -> None:
    close = getattr(items, "close", None)
    if callable(close):
        close()


class TemplateRenderingEngine:
    """
    템플릿 렌더링 엔진.

    Usage:
        engine = TemplateRenderingEngine(config)
        content = engine.render(template_bytes, data_source)
        path = engine.render_to_file(template_bytes, data_source, output_dir, "report")
    """

    def __init__(self, config: GeneratorConfig | None = None, analyzer: TemplateAnalyzer | None = None):
        self.config = config or GeneratorConfig()
        self.analyzer = analyzer or TemplateAnalyzer()

    # =========================================================================
    # Public API
    # =========================================================================

    def render(
        self,
        template: bytes,
        data_source: DataSource,
        *,
        blueprint: Blueprint | None = None,
        mode: StreamingMode | None = None,
        password: str | None = None,
        cancel_token: CancelToken | None = None,
        progress_callback: ProgressCallback | None = None,
        render_log: RenderLog | None = None,
    ) -> bytes:
        """
        템플릿에 데이터를 채워 XLSX 바이트 생성.

        Args:
            template: XLSX 템플릿 내용
            data_source: 데이터 제공자
            blueprint: 미리 분석한 Blueprint (없으면 template 분석)
            mode: 설정의 streaming_mode 대신 쓸 모드
            password: 통합 문서/시트 보호 암호
            cancel_token: 협조적 취소 플래그
            progress_callback: progress_report_interval 행마다 호출
            render_log: 경고/결과를 기록할 RenderLog (없으면 내부에서 생성)

        Returns:
            결과 XLSX 바이트

        Raises:
            TemplateProcessingError: 템플릿 마커 오류
            MissingTemplateDataError: THROW 정책에서 데이터 누락
            FormulaExpansionError: 수식 확장 한계 초과
            CollectionCountMismatchError: 크기 힌트 불일치 (정책에 따라)
            RenderCancelledError: 취소됨
            ExcelGeneratorError: RENDER_FAILED (그 외 예외)
        """
        buffer = BytesIO()
        self._render(
            template, data_source, buffer,
            blueprint=blueprint, mode=mode, password=password, cancel_token=cancel_token,
            progress_callback=progress_callback, render_log=render_log,
        )
        return buffer.getvalue()

    def render_to_file(
        self,
        template: bytes,
        data_source: DataSource,
        output_dir: Path,
        base_file_name: str,
        **options: Any,
    ) -> Path:
        """
        렌더링 결과를 output_dir에 저장.

        결과는 먼저 출력 디렉터리의 임시 파일에 쓰고, 성공하면 락 안에서 최종 이름
        (FileNamingMode / FileConflictPolicy)으로 옮긴다. 실패/취소 시 임시 파일은 삭제된다.
        RenderLog는 결과와 관계없이 output_dir/logs/render_{id}.json으로 저장된다.

        Args:
            options: render()와 같은 키워드 인자

        Returns:
            저장된 파일 경로

        Raises:
            OutputFileExistsError: ERROR 정책에서 같은 이름 존재
            ExcelGeneratorError: OUTPUT_LOCK_TIMEOUT
        """
        output_dir = Path(output_dir)
        render_log = options.pop("render_log", None) or create_render_log()
        temp_path = create_temp_output(output_dir)
        try:
            with temp_path.open("wb") as output:
                self._render(template, data_source, output, render_log=render_log, **options)
            try:
                return publish_output(temp_path, output_dir, base_file_name, self.config)
            except ExcelGeneratorError as e:
                complete_render_log(render_log, "failed", render_log.rows_processed, e)
                raise
        finally:
            temp_path.unlink(missing_ok=True)
            save_render_log(render_log, output_dir / RENDER_LOG_DIR)

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _render(
        self,
        template: bytes,
        data_source: DataSource,
        output: BinaryIO,
        blueprint: Blueprint | None = None,
        mode: StreamingMode | None = None,
        password: str | None = None,
        cancel_token: CancelToken | None = None,
        progress_callback: ProgressCallback | None = None,
        render_log: RenderLog | None = None,
    ) -> None:
        render_log = render_log or create_render_log()
        blueprint = blueprint or self.analyzer.analyze(template)
        requested = mode or self.config.streaming_mode
        context = RenderContext(
            data_source, self.config, render_log, cancel_token=cancel_token, progress_callback=progress_callback
        )
        collections = PreparedCollections()
        try:
            context.check_cancelled()
            collections = self._prepare_collections(blueprint, data_source, requested, context)
            self._check_missing_data(blueprint, data_source, collections, context)

            position_maps = self._position_maps(blueprint, collections.sizes)
            selected = self._select_mode(requested, position_maps)
            if selected == StreamingMode.DISABLED and requested != StreamingMode.DISABLED:
                self._materialize(collections)
                position_maps = self._position_maps(blueprint, collections.sizes)

            context.feeds = collections.feeds
            context.sizes = collections.sizes
            context.total_rows = sum(pmap.get_total_rows() for pmap in position_maps.values())
            strategy_class = StreamingStrategy if selected == StreamingMode.ENABLED else InMemoryStrategy
            render_log.mode = strategy_class.mode
            logger.info(
                f"Render started: {render_log.render_id} mode={strategy_class.mode} "
                f"rows={context.total_rows} sheets={len(blueprint.sheets)}"
            )

            template_wb = load_template(template)
            try:
                strategy = strategy_class(blueprint, position_maps, context)
                strategy.render(template_wb, output, password=password)
                collections.finish()
            finally:
                template_wb.close()

        except RenderCancelledError as e:
            complete_render_log(render_log, "cancelled", context.rows_processed, e)
            logger.info(f"Render cancelled: {render_log.render_id} after {context.rows_processed} rows")
            raise
        except ExcelGeneratorError as e:
            complete_render_log(render_log, "failed", context.rows_processed, e)
            logger.error(f"Render failed: {render_log.render_id} [{e.code}]")
            raise
        except Exception as e:
            error = ExcelGeneratorError(ErrorCodes.RENDER_FAILED, error=str(e), type=type(e).__name__)
            complete_render_log(render_log, "failed", context.rows_processed, error)
            logger.exception(f"Render failed: {render_log.render_id}")
            raise error from e
        finally:
            collections.close()

        complete_render_log(render_log, "success", context.rows_processed)
        logger.info(
            f"Render completed: {render_log.render_id} rows={context.rows_processed} "
            f"warnings={len(render_log.warnings)}"
        )

    # =========================================================================
    # Collections
    # =========================================================================

    def _prepare_collections(
        self,
        blueprint: Blueprint,
        data_source: DataSource,
        mode: StreamingMode,
        context: RenderContext,
    ) -> PreparedCollections:
        """
        컬렉션마다 get_items를 정확히 한 번 호출해 크기를 확정.

        - DISABLED: list로 읽음 (실제 개수)
        - 힌트가 있고 DOWN 영역 1개에서만 쓰이는 컬렉션: 힌트를 믿고 iterator를 그대로 사용
          (불일치는 count_mismatch_policy로 처리)
        - 그 외: 임시 파일에 spool (RIGHT 영역이나 여러 영역에서 쓰이면 다시 읽어야 함)
        """
        prepared = PreparedCollections()
        usage = _region_usage(blueprint)

        def warn(code: str, message: str) -> None:
            context.warn(code, message)

        try:
            for name in sorted(blueprint.required_collections):
                context.check_cancelled()
                items = data_source.get_items(name)
                if items is None:
                    prepared.missing.add(name)
                    prepared.sizes[name] = 0
                    continue
                regions = usage.get(name, [])
                hint = data_source.get_item_count(name)

                if mode == StreamingMode.DISABLED:
                    materialized = list(items)
                    prepared.sizes[name] = len(materialized)
                    prepared.feeds[name] = CollectionFeed(name, materialized, len(materialized))
                    continue

                if not regions and hint is not None:
                    _close_iterator(items)
                    prepared.sizes[name] = hint
                    continue

                single_down = len(regions) == 1 and regions[0].direction == RepeatDirection.DOWN
                if hint is not None and single_down:
                    prepared.sizes[name] = hint
                    prepared.feeds[name] = CollectionFeed(
                        name, items, hint, self.config.count_mismatch_policy, reconcile=True, warn=warn
                    )
                    continue

                buffer = CollectionBuffer.spool(name, items)
                prepared.sizes[name] = len(buffer)
                prepared.feeds[name] = CollectionFeed(name, buffer, len(buffer))
        except BaseException:
            prepared.close()
            raise
        return prepared

    @staticmethod
    def _materialize(collections: PreparedCollections) -> None:
        """AUTO가 메모리 모드로 결정된 경우: 모든 컬렉션을 list로 (실제 개수로 레이아웃)."""
        for name, feed in list(collections.feeds.items()):
            items = list(feed.iter_all())
            feed.close()
            collections.sizes[name] = len(items)
            collections.feeds[name] = CollectionFeed(name, items, len(items))

    # =========================================================================
    # Missing Data
    # =========================================================================

    def _check_missing_data(
        self,
        blueprint: Blueprint,
        data_source: DataSource,
        collections: PreparedCollections,
        context: RenderContext,
    ) -> None:
        """
        Raises:
            MissingTemplateDataError: THROW 정책에서 하나라도 누락 (출력 생성 전)
        """
        collection_names = set(blueprint.required_collections)
        missing_variables = {
            name
            for name in blueprint.required_variables
            if name not in collection_names and data_source.get_value(name) is None
        }
        missing_collections = set(collections.missing)
        missing_images = {name for name in blueprint.required_images if data_source.get_image(name) is None}
        if not (missing_variables or missing_collections or missing_images):
            return

        if self.config.missing_data_behavior == MissingDataBehavior.THROW:
            raise MissingTemplateDataError(missing_variables, missing_collections, missing_images)

        for name in sorted(missing_variables):
            context.warn_once("variable", name, f"변수 '{name}' 데이터 없음 (빈 값으로 렌더링)")
        for name in sorted(missing_collections):
            context.warn_once("collection", name, f"컬렉션 '{name}' 데이터 없음 (0개로 렌더링)")
        for name in sorted(missing_images):
            context.warn_once("image", name, f"이미지 '{name}' 데이터 없음 (생략)")

    # =========================================================================
    # Layout / Mode
    # =========================================================================

    @staticmethod
    def _position_maps(blueprint: Blueprint, sizes: Mapping[str, int]) -> dict[str, PositionMap]:
        """
        Raises:
            ExcelGeneratorError: RENDER_FAILED (Excel 행/열 한계 초과)
        """
        position_maps = {}
        for sheet in blueprint.sheets:
            position_map = calculate(sheet.regions, sizes, sheet.last_row)
            total_rows = position_map.get_total_rows()
            if total_rows > EXCEL_MAX_ROWS:
                raise ExcelGeneratorError(
                    ErrorCodes.RENDER_FAILED,
                    sheet=sheet.name,
                    error=f"row count {total_rows} exceeds {EXCEL_MAX_ROWS}",
                )
            for layout in position_map.right_layouts:
                last_col = position_map.get_final_position(layout.region.start_row, sheet.last_col)[1]
                if last_col >= EXCEL_MAX_COLUMNS:
                    raise ExcelGeneratorError(
                        ErrorCodes.RENDER_FAILED,
                        sheet=sheet.name,
                        error=f"column count {last_col + 1} exceeds {EXCEL_MAX_COLUMNS}",
                    )
            position_maps[sheet.name] = position_map
        return position_maps

    def _select_mode(self, requested: StreamingMode, position_maps: Mapping[str, PositionMap]) -> StreamingMode:
        if requested != StreamingMode.AUTO:
            return requested
        largest = max((pmap.get_total_rows() for pmap in position_maps.values()), default=0)
        selected = (
            StreamingMode.ENABLED if largest > self.config.streaming_row_threshold else StreamingMode.DISABLED
        )
        logger.debug(f"AUTO mode: largest sheet {largest} rows -> {selected.value}")
        return selected
