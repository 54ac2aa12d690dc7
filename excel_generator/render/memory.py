"""
In-memory rendering: 템플릿 Workbook을 그대로 열어 셀을 다시 채운다.

템플릿의 시트 설정, 스타일, 차트, 피벗 캐시가 그대로 보존되므로 작은/중간 크기
문서에 적합하다. 전체 결과가 메모리에 올라간다.
"""

import logging
from typing import BinaryIO

from openpyxl.workbook import Workbook

from excel_generator.domain.blueprint import SheetSpec
from excel_generator.render.layout import adjust_defined_names, apply_columns, plan_columns
from excel_generator.render.pivot import apply_pivot_number_formats
from excel_generator.render.planner import RowPlan
from excel_generator.render.strategy import RenderingStrategy, apply_metadata, apply_password, convert_value

logger = logging.getLogger(__name__)


class InMemoryStrategy(RenderingStrategy):
    """
    메모리 모드 렌더링.

    템플릿 Workbook을 직접 수정하므로 렌더링마다 새로 로드한 Workbook을 넘겨야 한다.
    """

    mode = "in_memory"

    def render(self, template_wb: Workbook, output: BinaryIO, password: str | None = None) -> None:
        for sheet in self.blueprint.sheets:
            self._render_sheet(template_wb[sheet.name], sheet)

        adjust_defined_names(template_wb, template_wb, self.position_maps)
        apply_pivot_number_formats(template_wb, self.context.config)
        apply_metadata(template_wb, self.context.data_source.get_metadata())
        apply_password(template_wb, password)

        template_wb.save(output)

    def _render_sheet(self, ws, sheet: SheetSpec) -> None:
        position_map = self.position_maps[sheet.name]
        freeze = self.freeze_panes(ws, sheet)
        merged = self.merged_ranges(sheet)

        # 셀 밖 구성 요소는 템플릿 좌표를 읽으므로 셀을 지우기 전에 옮긴다
        self.decorate(ws, ws, sheet)
        self._clear(ws)

        for plan in self.planner(sheet).rows():
            self._write_row(ws, plan)

        for area in merged:
            ws.merge_cells(
                start_row=area.start_row + 1,
                start_column=area.start_col + 1,
                end_row=area.end_row + 1,
                end_column=area.end_col + 1,
            )
        if position_map.right_layouts:
            for key in list(ws.column_dimensions):
                del ws.column_dimensions[key]
            apply_columns(ws, plan_columns(sheet, position_map, self.context.config.preserve_template_layout))
        ws.freeze_panes = freeze
        logger.debug(f"Sheet rendered (in-memory): {sheet.name} ({position_map.get_total_rows()} rows)")

    @staticmethod
    def _clear(ws) -> None:
        """템플릿 셀/병합/행 높이 제거 (시트 설정은 유지)."""
        for merged in list(ws.merged_cells.ranges):
            ws.unmerge_cells(merged.coord)
        if ws.max_row:
            ws.delete_rows(1, ws.max_row)
        for key in list(ws.row_dimensions):
            del ws.row_dimensions[key]

    @staticmethod
    def _write_row(ws, plan: RowPlan) -> None:
        for write in plan.cells:
            cell = ws.cell(row=write.row + 1, column=write.col + 1)
            cell.value = convert_value(write.value)
            style = write.style
            if style is not None:
                cell.font = style.font
                cell.fill = style.fill
                cell.border = style.border
                cell.alignment = style.alignment
                cell.protection = style.protection
                cell.number_format = style.number_format
            if write.number_format is not None:
                cell.number_format = write.number_format
        if plan.height is not None or plan.hidden:
            dimension = ws.row_dimensions[plan.row + 1]
            dimension.height = plan.height
            dimension.hidden = plan.hidden
