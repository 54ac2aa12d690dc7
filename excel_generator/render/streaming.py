"""
Streaming rendering: write-only Workbook에 행을 순서대로 append.

메모리 사용이 결과 크기와 무관하게 일정하다. openpyxl write-only 시트의 제약:
- 열 너비, 틀 고정, 시트 설정은 첫 행 append 전에 설정
- 행 높이는 해당 행 append 직전에 설정
- 병합/조건부 서식/유효성 검사/드로잉은 저장 시점에 기록되므로 행 이후에 설정 가능
"""

import logging
from typing import BinaryIO

from openpyxl.cell import WriteOnlyCell
from openpyxl.workbook import Workbook
from openpyxl.worksheet.cell_range import CellRange

from excel_generator.domain.blueprint import SheetSpec
from excel_generator.render.layout import adjust_defined_names, apply_columns, copy_sheet_settings, plan_columns
from excel_generator.render.planner import RowPlan
from excel_generator.render.strategy import RenderingStrategy, apply_metadata, apply_password, convert_value

logger = logging.getLogger(__name__)


def discard_workbook(wb: Workbook) -> None:
    """취소/실패한 write-only Workbook의 임시 파일 정리."""
    for ws in wb.worksheets:
        rows = getattr(ws, "_rows", None)
        if rows is not None:
            rows.close()
        writer = getattr(ws, "_writer", None)
        if writer is not None:
            writer.close()
            writer.cleanup()
            ws._writer = None


class StreamingStrategy(RenderingStrategy):
    """
    스트리밍 모드 렌더링.

    템플릿 Workbook은 설정/드로잉/피벗을 읽는 용도로만 쓰고, 결과는 새 write-only
    Workbook에 쓴다. 취소되거나 실패하면 부분 결과와 임시 파일을 버린다.
    """

    mode = "streaming"

    def render(self, template_wb: Workbook, output: BinaryIO, password: str | None = None) -> None:
        result = Workbook(write_only=True)
        try:
            for sheet in self.blueprint.sheets:
                source_ws = template_wb[sheet.name]
                target_ws = result.create_sheet(title=sheet.name)
                self._render_sheet(source_ws, target_ws, sheet)

            adjust_defined_names(template_wb, result, self.position_maps)
            apply_metadata(result, self.context.data_source.get_metadata())
            apply_password(result, password)
            active = template_wb.active
            if active is not None and active.title in result.sheetnames:
                result.active = result.sheetnames.index(active.title)

            result.save(output)
        except BaseException:
            discard_workbook(result)
            raise

    def _render_sheet(self, source_ws, target_ws, sheet: SheetSpec) -> None:
        position_map = self.position_maps[sheet.name]

        # 첫 append 전에 기록되는 항목
        copy_sheet_settings(source_ws, target_ws)
        apply_columns(target_ws, plan_columns(sheet, position_map, self.context.config.preserve_template_layout))
        target_ws.freeze_panes = self.freeze_panes(source_ws, sheet)

        for plan in self.planner(sheet).rows():
            self._append_row(target_ws, plan)

        for area in self.merged_ranges(sheet):
            target_ws.merged_cells.add(
                CellRange(
                    min_row=area.start_row + 1,
                    min_col=area.start_col + 1,
                    max_row=area.end_row + 1,
                    max_col=area.end_col + 1,
                )
            )
        self.decorate(source_ws, target_ws, sheet)
        logger.debug(f"Sheet rendered (streaming): {sheet.name} ({position_map.get_total_rows()} rows)")

    @staticmethod
    def _append_row(ws, plan: RowPlan) -> None:
        row_number = plan.row + 1
        if plan.height is not None or plan.hidden:
            dimension = ws.row_dimensions[row_number]
            dimension.height = plan.height
            dimension.hidden = plan.hidden

        values: list = [None] * (plan.cells[-1].col + 1 if plan.cells else 0)
        for write in plan.cells:
            cell = WriteOnlyCell(ws, value=convert_value(write.value))
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
            values[write.col] = cell
        ws.append(values)

        # 행 속성은 append 시점에 기록되므로 바로 버린다
        ws.row_dimensions.pop(row_number, None)
