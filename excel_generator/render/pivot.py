"""
Pivot tables: 데이터 확장 후 소스 범위/위치 재계산.

피벗 캐시 레코드는 그대로 두고 refreshOnLoad로 Excel이 열 때 다시 집계하게 한다.
"""

import logging
from collections.abc import Mapping

from openpyxl.utils import range_boundaries

from excel_generator.core.formula import Reference
from excel_generator.core.position import PositionMap
from excel_generator.domain.schemas import GeneratorConfig

logger = logging.getLogger(__name__)


def _shift_location(ref: str, position_map: PositionMap) -> str:
    """피벗 위치는 크기를 유지한 채 좌상단 셀 기준으로 이동."""
    reference = Reference.parse(ref)
    if reference is None:
        return ref
    start = reference.start
    end = reference.end or start
    row, col = position_map.get_final_position(start.row, start.col)
    d_row, d_col = row - start.row, col - start.col
    moved_start = start.moved(row, col)
    moved_end = end.moved(end.row + d_row, end.col + d_col)
    return reference.render(moved_start, None if moved_start == moved_end else moved_end)


def adjust_pivots(pivots: list, sheet_name: str, position_maps: Mapping[str, PositionMap]) -> None:
    """
    피벗 테이블 소스 범위와 위치 조정.

    Args:
        pivots: 시트의 TableDefinition 목록 (ws._pivots)
        sheet_name: 피벗이 놓인 시트
        position_maps: 시트 이름 → PositionMap
    """
    own_map = position_maps.get(sheet_name)
    for pivot in pivots:
        if own_map is not None and pivot.location is not None and pivot.location.ref:
            pivot.location.ref = _shift_location(pivot.location.ref, own_map)

        cache = pivot.cache
        if cache is None:
            continue
        cache.refreshOnLoad = True
        source = cache.cacheSource.worksheetSource if cache.cacheSource is not None else None
        if source is None or not source.ref:
            continue
        source_map = position_maps.get(source.sheet or sheet_name)
        if source_map is None:
            continue
        min_col, min_row, max_col, max_row = range_boundaries(source.ref.replace("$", ""))
        final = source_map.get_final_range(min_row - 1, min_col - 1, max_row - 1, max_col - 1)
        if final is None:
            logger.warning(f"pivot source removed: {source.sheet}!{source.ref}")
            continue
        reference = Reference.parse(source.ref)
        start_row, start_col, end_row, end_col = final
        source.ref = reference.render(
            reference.start.moved(start_row, start_col),
            (reference.end or reference.start).moved(end_row, end_col),
        )
        logger.debug(f"pivot source adjusted: {source.sheet}!{source.ref}")


def apply_pivot_number_formats(wb, config: GeneratorConfig) -> None:
    """
    피벗 데이터 필드 숫자 서식 (메모리 모드 전용, 렌더링된 소스 데이터 기준).

    서식이 지정되지 않은 데이터 필드만 대상. 소스 열 값이 모두 정수면
    pivot_integer_format_index, 아니면 pivot_decimal_format_index.
    """
    for ws in wb.worksheets:
        for pivot in ws._pivots:
            cache = pivot.cache
            source = cache.cacheSource.worksheetSource if cache and cache.cacheSource else None
            if source is None or not source.ref:
                continue
            source_ws = wb[source.sheet] if source.sheet in wb.sheetnames else ws
            min_col, min_row, max_col, max_row = range_boundaries(source.ref.replace("$", ""))
            for field in pivot.dataFields or ():
                if field.numFmtId:
                    continue
                column = min_col + field.fld
                if column > max_col:
                    continue
                values = [
                    row[0]
                    for row in source_ws.iter_rows(
                        min_row=min_row + 1, max_row=max_row, min_col=column, max_col=column, values_only=True
                    )
                    if isinstance(row[0], (int, float)) and not isinstance(row[0], bool)
                ]
                if not values:
                    continue
                is_integer = all(float(v).is_integer() for v in values)
                field.numFmtId = (
                    config.pivot_integer_format_index if is_integer else config.pivot_decimal_format_index
                )
