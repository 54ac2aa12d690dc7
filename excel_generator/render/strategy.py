"""
Rendering strategies: 메모리 모드와 스트리밍 모드의 공통 골격.

두 모드 모두 같은 SheetPlanner로 행을 만들고, 셀 밖의 구성 요소(병합, 조건부 서식,
유효성 검사, 인쇄 설정, 차트/이미지, 피벗, 정의된 이름)도 같은 layout 함수로 옮긴다.
다른 점은 결과를 시트에 쓰는 방법뿐이다.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, BinaryIO

from openpyxl.workbook import Workbook
from openpyxl.workbook.protection import WorkbookProtection

from excel_generator.core.formula import FormulaAdjuster
from excel_generator.core.position import PositionMap
from excel_generator.domain.blueprint import Blueprint, RangeSpec, SheetSpec
from excel_generator.domain.schemas import DocumentMetadata
from excel_generator.render.context import RenderContext
from excel_generator.render.images import insert_images, transplant_drawings
from excel_generator.render.layout import (
    adjust_print_settings,
    mapped_freeze_panes,
    plan_merged_ranges,
    rebuild_conditional_formatting,
    rebuild_data_validations,
    substitute_header_footer,
)
from excel_generator.render.pivot import adjust_pivots
from excel_generator.render.planner import SheetPlanner

logger = logging.getLogger(__name__)


def convert_value(value: Any) -> Any:
    """값 변환 (Decimal → float 등)."""
    if isinstance(value, Decimal):
        # Excel은 Decimal을 직접 지원하지 않음
        return float(value)
    return value


def apply_metadata(wb: Workbook, metadata: DocumentMetadata | None) -> None:
    """문서 속성 (None 항목은 템플릿 값 유지)."""
    if metadata is None:
        return
    properties = wb.properties
    for field in ("title", "subject", "keywords", "description", "category", "created"):
        value = getattr(metadata, field)
        if value is not None:
            setattr(properties, field, value)
    if metadata.author is not None:
        properties.creator = metadata.author
    # company/manager는 확장 속성(docProps/app.xml)이라 openpyxl이 쓰지 않는다
    for field in ("company", "manager"):
        value = getattr(metadata, field)
        if value is not None:
            logger.debug(f"metadata.{field} not written (extended property): {value}")


def apply_password(wb: Workbook, password: str | None) -> None:
    """통합 문서 구조 보호 + 모든 시트 보호."""
    if not password:
        return
    wb.security = WorkbookProtection(workbookPassword=password, lockStructure=True)
    for ws in wb.worksheets:
        ws.protection.set_password(password)
        ws.protection.enable()


class RenderingStrategy(ABC):
    """
    렌더링 전략 공통 부분.

    Usage:
        strategy = InMemoryStrategy(blueprint, position_maps, context)
        strategy.render(template_wb, output, password=None)
    """

    mode: str = ""

    def __init__(
        self,
        blueprint: Blueprint,
        position_maps: Mapping[str, PositionMap],
        context: RenderContext,
    ):
        self.blueprint = blueprint
        self.position_maps = position_maps
        self.context = context
        self.sheets = {sheet.name: sheet for sheet in blueprint.sheets}

    @abstractmethod
    def render(self, template_wb: Workbook, output: BinaryIO, password: str | None = None) -> None:
        """템플릿 Workbook → 결과 XLSX를 output 스트림에 쓴다."""

    def planner(self, sheet: SheetSpec) -> SheetPlanner:
        adjuster = FormulaAdjuster(sheet.name, self.position_maps)
        return SheetPlanner(sheet, self.position_maps[sheet.name], self.context, adjuster, self.sheets)

    def merged_ranges(self, sheet: SheetSpec) -> list[RangeSpec]:
        return plan_merged_ranges(sheet, self.position_maps[sheet.name], self.sheets)

    def decorate(self, source_ws, target_ws, sheet: SheetSpec) -> None:
        """
        셀 밖의 시트 구성 요소를 최종 좌표로 옮겨 target 시트에 반영.

        병합 셀과 열 너비, 틀 고정은 모드마다 쓰는 시점이 달라 여기서 다루지 않는다.
        """
        position_map = self.position_maps[sheet.name]
        adjuster = FormulaAdjuster(sheet.name, self.position_maps)
        rebuild_conditional_formatting(source_ws, target_ws, adjuster, position_map)
        rebuild_data_validations(source_ws, target_ws, adjuster, position_map)
        adjust_print_settings(source_ws, target_ws, adjuster)
        substitute_header_footer(target_ws, self.context)
        transplant_drawings(source_ws, target_ws, sheet.name, self.position_maps, self.context)
        insert_images(target_ws, sheet, position_map, self.context)
        adjust_pivots(source_ws._pivots, sheet.name, self.position_maps)
        if target_ws is not source_ws:
            target_ws._pivots.extend(source_ws._pivots)

    def freeze_panes(self, source_ws, sheet: SheetSpec) -> str | None:
        return mapped_freeze_panes(source_ws, self.position_maps[sheet.name])
