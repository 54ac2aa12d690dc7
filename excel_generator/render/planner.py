"""
Row planner: 최종 행 단위로 출력할 셀 목록을 만든다.

메모리 모드와 스트리밍 모드가 같은 planner를 쓰고, 결과를 쓰는 방식(sink)만 다르다.
- 메모리 모드: ws.cell(...)에 임의 접근 쓰기
- 스트리밍 모드: write-only 시트에 행 단위 append
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from openpyxl.utils import get_column_letter
from openpyxl.worksheet.formula import ArrayFormula

from excel_generator.core.formula import FormulaAdjuster
from excel_generator.core.position import PositionMap, RegionLayout, RowInfo
from excel_generator.domain.blueprint import (
    CellSpec,
    CellStyle,
    ImageMarker,
    RepeatMarker,
    RepeatRegionSpec,
    SheetSpec,
    SizeMarker,
    Static,
    VariableRef,
)
from excel_generator.domain.schemas import RepeatDirection
from excel_generator.render.context import EMPTY_SCOPE, RenderContext, Scope, numeric_format_for
from excel_generator.templates.markers import is_whole_token


@dataclass(frozen=True)
class CellWrite:
    """출력 셀 1개 (0-based 최종 좌표)."""
    row: int
    col: int
    value: Any
    style: CellStyle | None = None
    number_format: str | None = None  # style 위에 덮어쓰는 서식

    @property
    def coordinate(self) -> str:
        return f"{get_column_letter(self.col + 1)}{self.row + 1}"


@dataclass(frozen=True)
class RowPlan:
    row: int
    cells: list[CellWrite]
    height: float | None = None
    hidden: bool = False


def cell_coordinate(row: int, col: int) -> str:
    return f"{get_column_letter(col + 1)}{row + 1}"


class SheetPlanner:
    """
    시트 1개의 행 계획.

    Usage:
        planner = SheetPlanner(sheet, position_map, context, adjuster, sheets)
        for plan in planner.rows():
            sink.write(plan)
    """

    def __init__(
        self,
        sheet: SheetSpec,
        position_map: PositionMap,
        context: RenderContext,
        adjuster: FormulaAdjuster,
        sheets: Mapping[str, SheetSpec],
    ):
        self.sheet = sheet
        self.position_map = position_map
        self.context = context
        self.adjuster = adjuster
        self.sheets = sheets
        columns = {cell.col for row in sheet.rows for cell in row.cells}
        for layout in position_map.layouts:
            if layout.uses_empty:
                columns.update(range(layout.region.start_col, layout.region.end_col + 1))
        self.columns = sorted(columns)
        self._empty_right = [layout for layout in position_map.right_layouts if layout.uses_empty]

    # =========================================================================
    # Rows
    # =========================================================================

    def rows(self) -> Iterator[RowPlan]:
        """최종 행 0..total-1 순서대로 (행 사이마다 취소 확인)."""
        for final_row in range(self.position_map.get_total_rows()):
            self.context.check_cancelled()
            yield self.plan_row(final_row)
            self.context.row_done()

    def plan_row(self, final_row: int) -> RowPlan:
        writes: list[CellWrite] = []
        empty_columns: set[tuple[RepeatRegionSpec, int]] = set()

        for col in self.columns:
            info = self.position_map.get_row_info_for_column(final_row, col)
            match info:
                case None:
                    continue
                case RowInfo.Repeat(region=region, template_row_offset=offset, empty=True):
                    writes.extend(self._empty_block_cells(region, offset, col, final_row))
                case RowInfo.Repeat(region=region, item_index=index) as repeat:
                    spec = self.sheet.cell(repeat.template_row, col)
                    if spec is None:
                        continue
                    scope = {region.variable: self.context.item(region.collection, index)}
                    writes.extend(self._cell_writes(spec, repeat.template_row, final_row, scope, index))
                case RowInfo.Static(template_row=template_row):
                    spec = self.sheet.cell(template_row, col)
                    if spec is not None:
                        writes.extend(self._cell_writes(spec, template_row, final_row, EMPTY_SCOPE, None))
                    for layout in self._empty_right:
                        region = layout.region
                        key = (region, template_row)
                        if region.start_col == col and region.start_row <= template_row <= region.end_row:
                            if key not in empty_columns:
                                empty_columns.add(key)
                                writes.extend(self._empty_right_cells(layout, template_row, final_row))

        row_info = self.position_map.get_row_info(final_row)
        height, hidden = self._row_dimension(row_info)
        writes.sort(key=lambda w: w.col)
        return RowPlan(row=final_row, cells=writes, height=height, hidden=hidden)

    def _row_dimension(self, info: RowInfo.Static | RowInfo.Repeat) -> tuple[float | None, bool]:
        match info:
            case RowInfo.Repeat(region=region, template_row_offset=offset, empty=True):
                empty = region.empty_range
                source = self.sheets.get(empty.sheet) if empty.sheet else self.sheet
                row = source.row(empty.start_row + offset) if source else None
            case RowInfo.Repeat(item_index=index) if index > 0 and not self.context.config.preserve_template_layout:
                row = None
            case RowInfo.Repeat() as repeat:
                row = self.sheet.row(repeat.template_row)
            case RowInfo.Static(template_row=template_row):
                row = self.sheet.row(template_row)
        if row is None:
            return None, False
        return row.height, row.hidden

    # =========================================================================
    # Cells
    # =========================================================================

    def _cell_writes(
        self,
        spec: CellSpec,
        template_row: int,
        final_row: int,
        scope: Scope,
        item_index: int | None,
    ) -> list[CellWrite]:
        writes = []
        for final_col, right_index in self.position_map.column_positions(template_row, spec.col):
            cell_scope = scope
            index = item_index
            if right_index is not None:
                layout = self.position_map.layout_at(template_row, spec.col)
                region = layout.region
                cell_scope = {**scope, region.variable: self.context.item(region.collection, right_index)}
                index = right_index
            coordinate = cell_coordinate(final_row, final_col)
            value, number_format = self.render_content(spec, template_row, cell_scope, index, coordinate)
            writes.append(CellWrite(final_row, final_col, value, spec.style, number_format))
        return writes

    def render_content(
        self,
        spec: CellSpec,
        template_row: int,
        scope: Scope,
        item_index: int | None,
        coordinate: str,
        adjust: bool = True,
    ) -> tuple[Any, str | None]:
        """
        CellContent → 출력 값 (+ General 숫자 서식).

        수식은 참조를 최종 위치 기준으로 조정한다.
        """
        match spec.content:
            case Static(value=str() as value) if value.startswith("=") and adjust:
                return self.adjuster.adjust(value, template_row, spec.col, item_index, coordinate), None
            case Static(value=ArrayFormula() as value) if adjust:
                text = self.adjuster.adjust(value.text, template_row, spec.col, item_index, coordinate)
                return ArrayFormula(ref=coordinate, text=text), None
            case Static(value=value):
                return value, None
            case VariableRef(text=text, is_formula=True):
                formula = self.context.interpolate(text, scope)
                if not adjust:
                    return formula, None
                return self.adjuster.adjust(formula, template_row, spec.col, item_index, coordinate), None
            case VariableRef(text=text):
                if is_whole_token(text):
                    value = self.context.whole_value(text, scope)
                    return value, numeric_format_for(value, spec.style)
                return self.context.interpolate(text, scope), None
            case SizeMarker(text=text, collection=collection):
                if is_whole_token(text):
                    value = self.context.size(collection)
                    return value, numeric_format_for(value, spec.style)
                return self.context.interpolate(text, scope), None
            case ImageMarker() | RepeatMarker():
                return None, None

    # =========================================================================
    # Empty Range
    # =========================================================================

    def _empty_source(self, region: RepeatRegionSpec) -> SheetSpec:
        empty = region.empty_range
        if empty.sheet and empty.sheet in self.sheets:
            return self.sheets[empty.sheet]
        return self.sheet

    def _empty_block_cells(self, region: RepeatRegionSpec, offset: int, col: int, final_row: int) -> list[CellWrite]:
        """DOWN 영역의 빈 컬렉션 대체 블록 (영역 너비로 잘라서 복사)."""
        empty = region.empty_range
        col_offset = col - region.start_col
        if col_offset >= empty.width:
            return []
        source = self._empty_source(region)
        source_row = empty.start_row + offset
        spec = source.cell(source_row, empty.start_col + col_offset)
        if spec is None:
            return []
        final_col = self.position_map.get_final_position(region.start_row, col)[1]
        coordinate = cell_coordinate(final_row, final_col)
        value, number_format = self.render_content(
            spec, source_row, EMPTY_SCOPE, None, coordinate, adjust=False
        )
        return [CellWrite(final_row, final_col, value, spec.style, number_format)]

    def _empty_right_cells(self, layout: RegionLayout, template_row: int, final_row: int) -> list[CellWrite]:
        """RIGHT 영역의 빈 컬렉션 대체 블록 (영역 높이로 잘라서 복사)."""
        region = layout.region
        empty = region.empty_range
        row_offset = template_row - region.start_row
        if row_offset >= empty.height or region.direction != RepeatDirection.RIGHT:
            return []
        source = self._empty_source(region)
        source_row = empty.start_row + row_offset
        base = self.position_map.right_base(layout, template_row)
        writes = []
        for j in range(empty.width):
            spec = source.cell(source_row, empty.start_col + j)
            if spec is None:
                continue
            coordinate = cell_coordinate(final_row, base + j)
            value, number_format = self.render_content(
                spec, source_row, EMPTY_SCOPE, None, coordinate, adjust=False
            )
            writes.append(CellWrite(final_row, base + j, value, spec.style, number_format))
        return writes
