"""
Sheet layout: 셀 밖의 시트 구성 요소를 최종 좌표로 옮긴다.

- 병합 셀 (반복 영역 안이면 아이템마다 복제)
- 열 너비 / 조건부 서식 / 데이터 유효성 검사
- 틀 고정, 인쇄 영역, 자동 필터, 헤더/푸터 변수 치환
- 정의된 이름
- 시트 설정 복사 (스트리밍 모드의 새 시트용)
"""

import logging
from collections.abc import Mapping
from copy import copy, deepcopy

from openpyxl.formatting.formatting import ConditionalFormattingList
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.cell_range import MultiCellRange
from openpyxl.worksheet.datavalidation import DataValidationList
from openpyxl.worksheet.page import PrintPageSetup

from excel_generator.core.formula import CellRef, FormulaAdjuster
from excel_generator.core.position import PositionMap
from excel_generator.domain.blueprint import ColumnSpec, RangeSpec, SheetSpec
from excel_generator.domain.schemas import RepeatDirection
from excel_generator.render.context import RenderContext
from excel_generator.templates.analyzer import HEADER_FOOTER_PARTS, split_sheet_prefix

logger = logging.getLogger(__name__)


# =============================================================================
# Merged Cells / Columns
# =============================================================================

def plan_merged_ranges(
    sheet: SheetSpec,
    position_map: PositionMap,
    sheets: Mapping[str, SheetSpec],
) -> list[RangeSpec]:
    """
    병합 영역의 최종 위치.

    - 반복 영역 안: 아이템마다 복제 (빈 컬렉션이면 제거)
    - 영역 밖: 위치 이동, 영역을 걸치면 확장
    - emptyRange 블록의 병합은 대체 위치에 복제
    """
    result: list[RangeSpec] = []
    for area in sheet.merged_ranges:
        layout = position_map.layout_at(area.start_row, area.start_col)
        if layout is not None and layout.region.contains(area.end_row, area.end_col):
            if layout.is_removed:
                continue
            start_row, start_col = position_map.get_final_position(area.start_row, area.start_col)
            end_row, end_col = position_map.get_final_position(area.end_row, area.end_col)
            region = layout.region
            for k in range(layout.item_count):
                if region.direction == RepeatDirection.DOWN:
                    delta = k * region.height
                    result.append(RangeSpec(start_row + delta, start_col, end_row + delta, end_col))
                else:
                    delta = k * region.width
                    result.append(RangeSpec(start_row, start_col + delta, end_row, end_col + delta))
            continue
        final = position_map.get_final_range(area.start_row, area.start_col, area.end_row, area.end_col)
        if final is not None:
            result.append(RangeSpec(*final))

    for layout in position_map.layouts:
        if not layout.uses_empty:
            continue
        region = layout.region
        empty = region.empty_range
        source = sheets.get(empty.sheet, sheet) if empty.sheet else sheet
        origin_row, origin_col = position_map.get_final_position(region.start_row, region.start_col)
        for area in source.merged_ranges:
            if not (empty.contains(area.start_row, area.start_col) and empty.contains(area.end_row, area.end_col)):
                continue
            top, left = area.start_row - empty.start_row, area.start_col - empty.start_col
            bottom, right = area.end_row - empty.start_row, area.end_col - empty.start_col
            if region.direction == RepeatDirection.DOWN and right >= region.width:
                continue
            if region.direction == RepeatDirection.RIGHT and bottom >= region.height:
                continue
            result.append(RangeSpec(origin_row + top, origin_col + left, origin_row + bottom, origin_col + right))

    unique = list(dict.fromkeys(result))
    return [area for area in unique if area.height > 1 or area.width > 1]


def plan_columns(sheet: SheetSpec, position_map: PositionMap, preserve: bool = True) -> list[ColumnSpec]:
    """
    열 너비의 최종 위치.

    RIGHT 영역이 있으면 첫 번째 RIGHT 영역의 행 기준으로 열을 복제/이동한다.
    preserve=False면 두 번째 아이템부터는 기본 너비.
    """
    if not position_map.right_layouts:
        return list(sheet.columns)
    reference_row = position_map.right_layouts[0].region.start_row
    result: dict[int, ColumnSpec] = {}
    for column in sheet.columns:
        for final_col, item_index in position_map.column_positions(reference_row, column.index):
            if item_index and not preserve:
                continue
            result[final_col] = ColumnSpec(index=final_col, width=column.width, hidden=column.hidden)
    return [result[key] for key in sorted(result)]


# =============================================================================
# Conditional Formatting / Data Validation
# =============================================================================

def _adjusted_ranges(multi_range: MultiCellRange, adjuster: FormulaAdjuster) -> list[str]:
    ranges = []
    for cell_range in multi_range.sorted():
        adjusted = adjuster.adjust_range_text(cell_range.coord)
        if adjusted:
            ranges.append(adjusted)
    return ranges


def _formula_origin(multi_range: MultiCellRange, position_map: PositionMap) -> tuple[int, int, int | None]:
    """범위 좌상단 템플릿 셀과, 반복 영역 안이면 item 0."""
    first = multi_range.sorted()[0]
    row, col = first.min_row - 1, first.min_col - 1
    return row, col, 0 if position_map.layout_at(row, col) is not None else None


def rebuild_conditional_formatting(source_ws, target_ws, adjuster: FormulaAdjuster, position_map: PositionMap) -> int:
    """
    조건부 서식 범위 확장 + 규칙 수식 조정.

    Returns:
        옮긴 규칙 수
    """
    rebuilt = ConditionalFormattingList()
    count = 0
    for formatting in source_ws.conditional_formatting:
        ranges = _adjusted_ranges(formatting.sqref, adjuster)
        if not ranges:
            continue
        row, col, item_index = _formula_origin(formatting.sqref, position_map)
        for rule in formatting.rules:
            new_rule = copy(rule)
            new_rule.formula = [adjuster.adjust(f, row, col, item_index) for f in rule.formula or ()]
            rebuilt.add(" ".join(ranges), new_rule)
            count += 1
    target_ws.conditional_formatting = rebuilt
    return count


def rebuild_data_validations(source_ws, target_ws, adjuster: FormulaAdjuster, position_map: PositionMap) -> int:
    """데이터 유효성 검사 범위 확장 + 수식 조정."""
    rebuilt = DataValidationList()
    for validation in list(source_ws.data_validations.dataValidation):
        ranges = _adjusted_ranges(validation.sqref, adjuster)
        if not ranges:
            continue
        row, col, item_index = _formula_origin(validation.sqref, position_map)
        new_validation = copy(validation)
        new_validation.sqref = MultiCellRange(" ".join(ranges))
        if validation.formula1:
            new_validation.formula1 = adjuster.adjust(validation.formula1, row, col, item_index)
        if validation.formula2:
            new_validation.formula2 = adjuster.adjust(validation.formula2, row, col, item_index)
        rebuilt.append(new_validation)
    target_ws.data_validations = rebuilt
    return len(rebuilt.dataValidation)


# =============================================================================
# Freeze Panes / Print Area / Auto Filter / Header-Footer
# =============================================================================

def mapped_freeze_panes(source_ws, position_map: PositionMap) -> str | None:
    """틀 고정 기준 셀의 최종 위치."""
    panes = source_ws.freeze_panes
    if not panes:
        return None
    cell = CellRef.parse(panes)
    row, col = position_map.get_final_position(cell.row, cell.col)
    return cell.moved(row, col).to_a1()


def adjust_print_settings(source_ws, target_ws, adjuster: FormulaAdjuster) -> None:
    """인쇄 영역, 인쇄 제목, 자동 필터."""
    print_area = source_ws.print_area
    if print_area:
        areas = []
        for part in print_area.split(","):
            _, area = split_sheet_prefix(part)
            adjusted = adjuster.adjust_range_text(area.replace("$", ""))
            if adjusted:
                areas.append(adjusted)
        if areas:
            target_ws.print_area = areas

    if target_ws is not source_ws:
        if source_ws.print_title_rows:
            target_ws.print_title_rows = source_ws.print_title_rows
        if source_ws.print_title_cols:
            target_ws.print_title_cols = source_ws.print_title_cols
        target_ws.auto_filter = deepcopy(source_ws.auto_filter)

    if source_ws.auto_filter.ref:
        adjusted = adjuster.adjust_range_text(source_ws.auto_filter.ref)
        target_ws.auto_filter.ref = adjusted


def substitute_header_footer(ws, context: RenderContext) -> None:
    """헤더/푸터 L/C/R 텍스트의 변수 치환."""
    for attr in HEADER_FOOTER_PARTS:
        item = getattr(ws, attr, None)
        if item is None:
            continue
        for part in (item.left, item.center, item.right):
            if part is not None and part.text and "${" in part.text:
                part.text = context.interpolate(part.text)


def copy_sheet_settings(source_ws, target_ws) -> None:
    """
    스트리밍 모드의 새 시트에 템플릿 시트 설정 복사.

    첫 행을 쓰기 전에 호출해야 한다 (views/format/cols는 시트 앞부분에 기록됨).
    """
    target_ws.sheet_properties = deepcopy(source_ws.sheet_properties)
    target_ws.sheet_format = deepcopy(source_ws.sheet_format)
    target_ws.views = deepcopy(source_ws.views)
    target_ws.page_margins = deepcopy(source_ws.page_margins)
    target_ws.print_options = deepcopy(source_ws.print_options)
    target_ws.HeaderFooter = deepcopy(source_ws.HeaderFooter)
    target_ws.protection = deepcopy(source_ws.protection)
    target_ws.sheet_state = source_ws.sheet_state

    setup = source_ws.page_setup
    target_ws.page_setup = PrintPageSetup(
        worksheet=target_ws,
        **{name: getattr(setup, name) for name in setup.__attrs__ if name != "id"},
    )


def apply_columns(ws, columns: list[ColumnSpec]) -> None:
    for column in columns:
        dimension = ws.column_dimensions[get_column_letter(column.index + 1)]
        if column.width is not None:
            dimension.width = column.width
        if column.hidden:
            dimension.hidden = True


# =============================================================================
# Defined Names
# =============================================================================

def adjust_defined_names(source_wb, target_wb, position_maps: Mapping[str, PositionMap]) -> None:
    """
    정의된 이름의 참조 조정 (통합 문서/시트 범위 모두).

    target_wb가 source_wb와 다르면 이름을 복사한다.
    """
    workbook_adjuster = FormulaAdjuster("", position_maps)
    for name, defined in list(source_wb.defined_names.items()):
        if name.startswith("_xlnm."):
            continue
        target = defined if target_wb is source_wb else copy(defined)
        if defined.attr_text:
            target.attr_text = workbook_adjuster.adjust(defined.attr_text, 0, 0)
        if target_wb is not source_wb:
            target_wb.defined_names[name] = target

    for source_ws in source_wb.worksheets:
        adjuster = FormulaAdjuster(source_ws.title, position_maps)
        target_ws = target_wb[source_ws.title]
        for name, defined in list(source_ws.defined_names.items()):
            target = defined if target_ws is source_ws else copy(defined)
            if defined.attr_text:
                target.attr_text = adjuster.adjust(defined.attr_text, 0, 0)
            if target_ws is not source_ws:
                target_ws.defined_names[name] = target
