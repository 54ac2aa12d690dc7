"""
Drawings: 이미지 마커 삽입 + 템플릿 차트/이미지 위치 조정.

이미지 크기 (픽셀):
- 0: 앵커 셀(또는 병합 영역)에 맞춤
- -1: 원본 크기
- 그 외: 지정 픽셀
"""

import logging
from collections.abc import Iterator, Mapping
from io import BytesIO

from openpyxl.drawing.image import Image
from PIL import UnidentifiedImageError

from excel_generator.core.formula import FormulaAdjuster
from excel_generator.core.position import PositionMap
from excel_generator.domain.blueprint import PlacedImage, RangeSpec, SheetSpec
from excel_generator.domain.constants import (
    DEFAULT_COLUMN_WIDTH,
    DEFAULT_ROW_HEIGHT,
    PIXELS_PER_POINT,
    PIXELS_PER_WIDTH_UNIT,
)
from excel_generator.domain.errors import ErrorCodes
from excel_generator.domain.schemas import MissingDataBehavior
from excel_generator.render.context import RenderContext
from excel_generator.render.planner import cell_coordinate

logger = logging.getLogger(__name__)


# =============================================================================
# Image Markers
# =============================================================================

def _anchor_area(sheet: SheetSpec, placed: PlacedImage) -> RangeSpec:
    """명시 위치가 없으면 마커 셀, 마커 셀이 병합 영역의 시작이면 그 영역."""
    if placed.marker.anchor is not None:
        return placed.marker.anchor
    for area in sheet.merged_ranges:
        if area.start_row == placed.row and area.start_col == placed.col:
            return area
    return RangeSpec(placed.row, placed.col, placed.row, placed.col)


def _area_pixels(sheet: SheetSpec, area: RangeSpec) -> tuple[int, int]:
    widths = {column.index: column.width for column in sheet.columns}
    width = sum(
        (widths.get(col) or DEFAULT_COLUMN_WIDTH) * PIXELS_PER_WIDTH_UNIT
        for col in range(area.start_col, area.end_col + 1)
    )
    height = 0.0
    for index in range(area.start_row, area.end_row + 1):
        row = sheet.row(index)
        points = row.height if row is not None and row.height is not None else DEFAULT_ROW_HEIGHT
        height += points * PIXELS_PER_POINT
    return round(width), round(height)


def _anchor_positions(
    sheet: SheetSpec, placed: PlacedImage, area: RangeSpec, position_map: PositionMap
) -> Iterator[tuple[int, int]]:
    """이미지 좌상단 최종 좌표. 반복 영역 안 마커는 아이템마다 1개."""
    layout = position_map.layout_at(placed.row, placed.col)
    if layout is None:
        if not position_map.is_removed(area.start_row, area.start_col):
            yield position_map.get_final_position(area.start_row, area.start_col)
        return
    if layout.is_removed:
        return
    if not layout.region.contains(area.start_row, area.start_col):
        yield position_map.get_final_position(area.start_row, area.start_col)
        return
    for k in range(layout.item_count):
        yield position_map.get_item_position(area.start_row, area.start_col, k)


def _new_image(data: bytes) -> Image:
    return Image(BytesIO(data))


def insert_images(ws, sheet: SheetSpec, position_map: PositionMap, context: RenderContext) -> int:
    """
    이미지 마커 위치에 데이터 소스 이미지 삽입.

    Returns:
        삽입한 이미지 수
    """
    inserted = 0
    for placed in sheet.images:
        marker = placed.marker
        data = context.data_source.get_image(marker.name)
        if data is None:
            if context.config.missing_data_behavior == MissingDataBehavior.WARN:
                context.warn_once("image", marker.name, f"이미지 '{marker.name}' 데이터 없음 (생략)")
            continue

        area = _anchor_area(sheet, placed)
        fit_width, fit_height = _area_pixels(sheet, area)
        for row, col in _anchor_positions(sheet, placed, area, position_map):
            try:
                image = _new_image(data)
            except (UnidentifiedImageError, OSError) as e:
                context.warn(
                    ErrorCodes.IMAGE_INSERT_FAILED,
                    f"이미지 '{marker.name}' 읽기 실패: {e}",
                    sheet=sheet.name,
                    cell=cell_coordinate(row, col),
                )
                break
            size = marker.size
            if size.width == 0:
                image.width = fit_width
            elif size.width > 0:
                image.width = size.width
            if size.height == 0:
                image.height = fit_height
            elif size.height > 0:
                image.height = size.height
            image.anchor = cell_coordinate(row, col)
            ws.add_image(image)
            inserted += 1
    if inserted:
        logger.debug(f"Images inserted: {sheet.name} ({inserted})")
    return inserted


# =============================================================================
# Template Charts / Images
# =============================================================================

def _shift_marker(marker, position_map: PositionMap) -> None:
    row, col = position_map.get_final_position(marker.row, marker.col)
    marker.row, marker.col = row, col


def shift_anchor(anchor, position_map: PositionMap) -> None:
    """TwoCellAnchor/OneCellAnchor의 from/to 셀 이동 (AbsoluteAnchor는 그대로)."""
    start = getattr(anchor, "_from", None)
    if start is None:
        return
    end = getattr(anchor, "to", None)
    if end is not None:
        end_row, end_col = position_map.get_final_position(end.row, end.col)
        _shift_marker(start, position_map)
        end.row, end.col = max(end_row, start.row), max(end_col, start.col)
    else:
        _shift_marker(start, position_map)


def _chart_parts(chart) -> list:
    parts = [chart]
    for sub in getattr(chart, "_charts", None) or ():
        if all(sub is not part for part in parts):
            parts.append(sub)
    return parts


def _series_references(series) -> Iterator:
    """시리즈의 수식 참조를 가진 객체 (numRef/strRef)."""
    for attr in ("val", "cat", "xVal", "yVal", "zVal"):
        source = getattr(series, attr, None)
        if source is None:
            continue
        for ref_attr in ("numRef", "strRef", "multiLvlStrRef"):
            ref = getattr(source, ref_attr, None)
            if ref is not None and ref.f:
                yield ref
    tx = getattr(series, "tx", None)
    if tx is not None and tx.strRef is not None and tx.strRef.f:
        yield tx.strRef


def adjust_chart(chart, adjuster: FormulaAdjuster, position_map: PositionMap, context: RenderContext) -> None:
    """차트 시리즈 참조 조정, 앵커 이동, 제목 변수 치환."""
    for part in _chart_parts(chart):
        for series in part.series:
            for ref in _series_references(series):
                ref.f = adjuster.adjust(ref.f, 0, 0)
    shift_anchor(chart.anchor, position_map)
    substitute_chart_titles(chart, context)


def substitute_chart_titles(chart, context: RenderContext) -> None:
    titles = [getattr(chart, "title", None)]
    for axis_name in ("x_axis", "y_axis"):
        axis = getattr(chart, axis_name, None)
        if axis is not None:
            titles.append(getattr(axis, "title", None))
    for title in titles:
        rich = getattr(getattr(title, "tx", None), "rich", None)
        if rich is None:
            continue
        for paragraph in rich.p or ():
            for run in paragraph.r or ():
                if run.t and "${" in run.t:
                    run.t = context.interpolate(run.t)


def transplant_drawings(
    source_ws,
    target_ws,
    sheet_name: str,
    position_maps: Mapping[str, PositionMap],
    context: RenderContext,
) -> None:
    """
    템플릿 시트의 차트/이미지를 target 시트로 옮기며 위치 조정.

    메모리 모드에서는 source_ws와 target_ws가 같은 시트.
    """
    position_map = position_maps[sheet_name]
    adjuster = FormulaAdjuster(sheet_name, position_maps)
    charts = list(source_ws._charts)
    images = list(source_ws._images)
    for chart in charts:
        adjust_chart(chart, adjuster, position_map, context)
    for image in images:
        shift_anchor(image.anchor, position_map)
    if target_ws is not source_ws:
        target_ws._charts.extend(charts)
        target_ws._images.extend(images)
    if charts or images:
        logger.debug(f"Drawings adjusted: {sheet_name} (charts={len(charts)}, images={len(images)})")

