"""
Template analyzer: XLSX 템플릿 → Blueprint.

규칙:
- 모든 시트의 모든 셀 + 헤더/푸터 + 차트 제목 텍스트에서 마커 탐색
- 잘못된 마커, 알 수 없는 ${func()}, 겹치는 repeat 범위 → TemplateProcessingError
- 같은 repeat(컬렉션+범위) / image(이름+위치+크기) 중복 → 경고 로그 후 하나만 사용
- 결과 Blueprint는 불변이며 여러 렌더링이 공유
"""

import logging
import re
from io import BytesIO
from typing import Any
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils import column_index_from_string, range_boundaries
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from excel_generator.core.position import validate_regions
from excel_generator.domain.blueprint import (
    FIT_TO_CELL,
    ORIGINAL_SIZE,
    Blueprint,
    CellContent,
    CellSpec,
    CellStyle,
    ColumnSpec,
    ImageMarker,
    ImageSize,
    PlacedImage,
    RangeSpec,
    RepeatMarker,
    RepeatRegionSpec,
    RowSpec,
    SheetSpec,
    SizeMarker,
    Static,
    VariableRef,
)
from excel_generator.domain.constants import MARKER_IMAGE, MARKER_REPEAT, MARKER_SIZE
from excel_generator.domain.errors import ErrorCodes, ExcelGeneratorError, TemplateProcessingError
from excel_generator.domain.schemas import RepeatDirection
from excel_generator.templates.markers import (
    MarkerCall,
    find_tokens,
    is_whole_token,
    parse_formula_marker,
    path_root,
)

logger = logging.getLogger(__name__)

_SINGLE_CELL_RE = re.compile(r"^\$?[A-Za-z]{1,3}\$?\d+$")
_AREA_RE = re.compile(r"^\$?[A-Za-z]{1,3}\$?\d+:\$?[A-Za-z]{1,3}\$?\d+$")
_SIZE_RE = re.compile(r"^\s*(-?\d+)\s*[:xX]\s*(-?\d+)\s*$")

HEADER_FOOTER_PARTS = ("oddHeader", "oddFooter", "evenHeader", "evenFooter", "firstHeader", "firstFooter")


def load_template(template_bytes: bytes) -> Workbook:
    """
    템플릿 바이트 → openpyxl Workbook.

    Raises:
        ExcelGeneratorError: TEMPLATE_INVALID
    """
    try:
        return load_workbook(BytesIO(template_bytes))
    except (BadZipFile, KeyError, ValueError, OSError) as e:
        raise ExcelGeneratorError(ErrorCodes.TEMPLATE_INVALID, error=str(e)) from e


def split_sheet_prefix(value: str) -> tuple[str | None, str]:
    """"'Data Sheet'!A1:C1" → ("Data Sheet", "A1:C1")."""
    if "!" not in value:
        return None, value
    sheet, _, rest = value.rpartition("!")
    sheet = sheet.strip()
    if len(sheet) >= 2 and sheet[0] == sheet[-1] == "'":
        sheet = sheet[1:-1].replace("''", "'")
    return sheet, rest.strip()


def header_footer_texts(ws: Worksheet) -> list[str]:
    """헤더/푸터의 L/C/R 섹션 텍스트."""
    texts = []
    for attr in HEADER_FOOTER_PARTS:
        item = getattr(ws, attr, None)
        if item is None:
            continue
        for part in (item.left, item.center, item.right):
            if part is not None and part.text:
                texts.append(part.text)
    return texts


def chart_texts(chart: Any) -> list[str]:
    """차트 제목/축 제목의 rich text run 문자열."""
    texts = []
    titles = [getattr(chart, "title", None)]
    for axis_name in ("x_axis", "y_axis"):
        axis = getattr(chart, axis_name, None)
        if axis is not None:
            titles.append(getattr(axis, "title", None))
    for title in titles:
        if title is None or isinstance(title, str):
            if title:
                texts.append(title)
            continue
        rich = getattr(getattr(title, "tx", None), "rich", None)
        if rich is None:
            continue
        for paragraph in rich.p or ():
            for run in paragraph.r or ():
                if run.t:
                    texts.append(run.t)
    return texts


class TemplateAnalyzer:
    """
    템플릿 분석기.

    Usage:
        blueprint = TemplateAnalyzer().analyze(template_bytes)
    """

    def analyze(self, template_bytes: bytes) -> Blueprint:
        """
        템플릿 구조 분석.

        Args:
            template_bytes: XLSX 파일 내용

        Returns:
            Blueprint

        Raises:
            TemplateProcessingError: 마커 문법 오류, 범위 오류, 겹치는 repeat 영역
            ExcelGeneratorError: TEMPLATE_INVALID (xlsx가 아님)
        """
        wb = load_template(template_bytes)
        try:
            return self.analyze_workbook(wb)
        finally:
            wb.close()

    def analyze_workbook(self, wb: Workbook) -> Blueprint:
        # 1차: 모든 시트에서 repeat 영역 수집 (영역은 다른 시트를 가리킬 수 있음)
        regions_by_sheet: dict[str, list[RepeatRegionSpec]] = {ws.title: [] for ws in wb.worksheets}
        seen_regions: set[tuple] = set()
        for ws in wb.worksheets:
            for cell in self._marker_cells(ws):
                for call in self._calls_in(cell.value):
                    if call.name != MARKER_REPEAT:
                        continue
                    sheet_name, region = self._build_region(wb, ws, call)
                    key = (sheet_name, *region.key)
                    if key in seen_regions:
                        logger.warning(
                            f"[{ErrorCodes.DUPLICATE_MARKER}] 중복 repeat 마커 무시: "
                            f"{ws.title}!{cell.coordinate} {call.text}"
                        )
                        continue
                    seen_regions.add(key)
                    regions_by_sheet[sheet_name].append(region)

        for regions in regions_by_sheet.values():
            validate_regions(regions)

        sheets = []
        required_variables: set[str] = set()
        required_collections: set[str] = set()
        required_images: set[str] = set()
        for index, ws in enumerate(wb.worksheets):
            regions = tuple(sorted(regions_by_sheet[ws.title], key=lambda r: (r.start_row, r.start_col)))
            sheet = self._analyze_sheet(ws, index, regions)
            sheets.append(sheet)

            required_collections.update(region.collection for region in regions)
            for row in sheet.rows:
                for cell in row.cells:
                    match cell.content:
                        case VariableRef(paths=paths, text=text):
                            region = sheet.region_at(row.index, cell.col)
                            bound = region.variable if region else None
                            required_variables.update(p for p in map(path_root, paths) if p != bound)
                            required_collections.update(
                                call.param(0, "collection", required=True)
                                for call in self._calls_in(text)
                                if call.name == MARKER_SIZE
                            )
                        case SizeMarker(collection=collection):
                            required_collections.add(collection)
                        case Static() | ImageMarker() | RepeatMarker():
                            pass
            required_variables.update(path_root(path) for path in sheet.text_variables)
            required_images.update(image.marker.name for image in sheet.images)

        blueprint = Blueprint(
            sheets=tuple(sheets),
            required_variables=frozenset(required_variables),
            required_collections=frozenset(required_collections),
            required_images=frozenset(required_images),
        )
        logger.debug(
            f"Template analyzed: sheets={blueprint.sheet_names}, "
            f"regions={[r.describe() for r in blueprint.regions]}"
        )
        return blueprint

    # =========================================================================
    # Sheet
    # =========================================================================

    def _analyze_sheet(self, ws: Worksheet, index: int, regions: tuple[RepeatRegionSpec, ...]) -> SheetSpec:
        rows: list[RowSpec] = []
        images: list[PlacedImage] = []
        seen_images: set[tuple] = set()
        last_row = -1
        last_col = -1

        for cells in ws.iter_rows():
            specs: list[CellSpec] = []
            row_index = cells[0].row - 1 if cells else 0
            for cell in cells:
                style = CellStyle.from_cell(cell)
                if cell.value is None and style is None:
                    continue
                col = cell.column - 1
                content = self._classify(ws, cell)
                match content:
                    case ImageMarker() as marker:
                        anchor = marker.anchor or RangeSpec(row_index, col, row_index, col)
                        key = (marker.name, anchor, marker.size)
                        if key in seen_images:
                            logger.warning(
                                f"[{ErrorCodes.DUPLICATE_MARKER}] 중복 image 마커 무시: "
                                f"{ws.title}!{cell.coordinate} {marker.name}"
                            )
                        else:
                            seen_images.add(key)
                            images.append(PlacedImage(row_index, col, marker))
                    case _:
                        pass
                specs.append(CellSpec(col=col, content=content, style=style))
                if cell.value is not None:
                    last_row = max(last_row, row_index)
                    last_col = max(last_col, col)
            dimension = ws.row_dimensions.get(row_index + 1)
            height = dimension.height if dimension is not None else None
            hidden = bool(dimension.hidden) if dimension is not None else False
            if specs or height is not None or hidden:
                rows.append(RowSpec(index=row_index, cells=tuple(specs), height=height, hidden=hidden))

        # 셀 없이 높이/숨김만 있는 행 (iter_rows 범위 밖 포함)
        recorded = {row.index for row in rows}
        for key, dimension in ws.row_dimensions.items():
            row_index = key - 1
            if row_index in recorded or (dimension.height is None and not dimension.hidden):
                continue
            rows.append(RowSpec(index=row_index, height=dimension.height, hidden=bool(dimension.hidden)))
            last_row = max(last_row, row_index)
        rows.sort(key=lambda row: row.index)

        for row in rows:
            for cell in row.cells:
                last_row = max(last_row, row.index)
                last_col = max(last_col, cell.col)
        for region in regions:
            last_row = max(last_row, region.end_row)
            last_col = max(last_col, region.end_col)

        merged = tuple(
            RangeSpec(r.min_row - 1, r.min_col - 1, r.max_row - 1, r.max_col - 1)
            for r in ws.merged_cells.ranges
        )
        for area in merged:
            last_row = max(last_row, area.end_row)
            last_col = max(last_col, area.end_col)

        columns = []
        for key, dimension in ws.column_dimensions.items():
            if dimension.width is None and not dimension.hidden:
                continue
            start = (dimension.min or column_index_from_string(key)) - 1
            end = (dimension.max or start + 1) - 1
            for col in range(start, max(start, end) + 1):
                columns.append(ColumnSpec(index=col, width=dimension.width, hidden=bool(dimension.hidden)))

        text_variables = []
        for text in header_footer_texts(ws) + [t for chart in ws._charts for t in chart_texts(chart)]:
            for _, parsed in find_tokens(text):
                if isinstance(parsed, str):
                    text_variables.append(parsed)

        return SheetSpec(
            name=ws.title,
            index=index,
            rows=tuple(rows),
            regions=regions,
            merged_ranges=merged,
            columns=tuple(columns),
            images=tuple(images),
            last_row=last_row,
            last_col=last_col,
            text_variables=tuple(dict.fromkeys(text_variables)),
        )

    @staticmethod
    def _marker_cells(ws: Worksheet):
        for row in ws.iter_rows():
            for cell in row:
                if isinstance(cell.value, str) and ("${" in cell.value or cell.value.startswith("=")):
                    yield cell

    @staticmethod
    def _calls_in(value: str) -> list[MarkerCall]:
        formula_call = parse_formula_marker(value) if value.startswith("=") else None
        if formula_call is not None:
            return [formula_call]
        return [parsed for _, parsed in find_tokens(value) if isinstance(parsed, MarkerCall)]

    # =========================================================================
    # Cell Classification
    # =========================================================================

    def _classify(self, ws: Worksheet, cell: Any) -> CellContent:
        value = cell.value
        if not isinstance(value, str):
            return Static(value)

        if value.startswith("="):
            call = parse_formula_marker(value)
            if call is not None:
                return self._content_for_call(ws, call)

        tokens = find_tokens(value)
        if not tokens:
            return Static(value)

        is_formula = value.startswith("=")
        calls = [parsed for _, parsed in tokens if isinstance(parsed, MarkerCall)]
        paths = tuple(parsed for _, parsed in tokens if isinstance(parsed, str))

        for call in calls:
            if call.name in (MARKER_REPEAT, MARKER_IMAGE):
                return self._content_for_call(ws, call)

        if calls and not paths and len(tokens) == 1 and is_whole_token(value):
            return self._content_for_call(ws, calls[0])

        if not paths:
            # size 토큰만 섞인 텍스트
            collection = calls[0].param(0, "collection", required=True)
            return SizeMarker(collection=collection, text=value, is_formula=is_formula)
        return VariableRef(path=paths[0], text=value, paths=paths, is_formula=is_formula)

    def _content_for_call(self, ws: Worksheet, call: MarkerCall) -> CellContent:
        match call.name:
            case "repeat":
                _, region = self._build_region(ws.parent, ws, call)
                return RepeatMarker(region)
            case "size":
                collection = call.param(0, "collection", required=True)
                return SizeMarker(collection=collection, text=f"${{size({collection})}}", is_formula=False)
            case "image":
                return self._build_image(call)
            case _:
                raise TemplateProcessingError.invalid_marker(call.text, "알 수 없는 마커")

    # =========================================================================
    # Marker Builders
    # =========================================================================

    def _build_region(self, wb: Workbook, ws: Worksheet, call: MarkerCall) -> tuple[str, RepeatRegionSpec]:
        collection = call.param(0, "collection", required=True)
        range_text = call.param(1, "range", required=True)
        variable = call.param(2, "var", "variable") or collection
        direction_text = call.param(3, "direction") or RepeatDirection.DOWN.value
        empty_text = call.param(4, "empty", "emptyrange")

        try:
            direction = RepeatDirection(direction_text.strip().upper())
        except ValueError as e:
            raise TemplateProcessingError.invalid_value("direction", direction_text, "DOWN, RIGHT") from e

        target = self.resolve_range(wb, ws, range_text)
        sheet_name = target.sheet or ws.title
        empty_range = self.resolve_range(wb, ws, empty_text, keep_sheet=True) if empty_text else None

        region = RepeatRegionSpec(
            collection=collection,
            variable=variable,
            start_row=target.start_row,
            end_row=target.end_row,
            start_col=target.start_col,
            end_col=target.end_col,
            direction=direction,
            empty_range=empty_range,
        )
        return sheet_name, region

    def _build_image(self, call: MarkerCall) -> ImageMarker:
        name = call.param(0, "name", required=True)
        position = call.param(1, "position", "pos", "cell")
        size_text = call.param(2, "size")

        anchor = None
        if position:
            if not (_SINGLE_CELL_RE.match(position) or _AREA_RE.match(position)):
                raise TemplateProcessingError.invalid_range(position, "잘못된 이미지 위치")
            min_col, min_row, max_col, max_row = range_boundaries(position.replace("$", ""))
            anchor = RangeSpec(min_row - 1, min_col - 1, max_row - 1, max_col - 1)
        return ImageMarker(name=name, anchor=anchor, size=self.parse_image_size(size_text))

    @staticmethod
    def parse_image_size(text: str | None) -> ImageSize:
        """fit / original / "W:H" (0 = 맞춤, -1 = 원본)."""
        if text is None or not text.strip() or text.strip().lower() == "fit":
            return FIT_TO_CELL
        if text.strip().lower() == "original":
            return ORIGINAL_SIZE
        match = _SIZE_RE.match(text)
        if match is None:
            raise TemplateProcessingError.invalid_value("size", text, "fit, original, W:H")
        width, height = int(match.group(1)), int(match.group(2))
        if width < -1 or height < -1:
            raise TemplateProcessingError.invalid_value("size", text, "-1 이상의 정수")
        return ImageSize(width, height)

    @staticmethod
    def resolve_range(wb: Workbook, ws: Worksheet, value: str, keep_sheet: bool = False) -> RangeSpec:
        """
        범위 문자열 → RangeSpec.

        허용: A6:C8, $A$6:$C$8, A6, 'Sheet'!A6:C8, 정의된 이름

        Raises:
            TemplateProcessingError: INVALID_RANGE_FORMAT, SHEET_NOT_FOUND
        """
        sheet, area = split_sheet_prefix(value.strip())
        if sheet is not None and sheet not in wb.sheetnames:
            raise TemplateProcessingError.sheet_not_found(sheet)

        if not (_SINGLE_CELL_RE.match(area) or _AREA_RE.match(area)):
            sheet, area = TemplateAnalyzer._resolve_defined_name(wb, ws, area)

        try:
            min_col, min_row, max_col, max_row = range_boundaries(area.replace("$", ""))
        except ValueError as e:
            raise TemplateProcessingError.invalid_range(value) from e
        if None in (min_col, min_row, max_col, max_row):
            raise TemplateProcessingError.invalid_range(value, "행/열 전체 범위는 지원하지 않음")
        target_sheet = sheet if (keep_sheet or sheet != ws.title) else None
        return RangeSpec(min_row - 1, min_col - 1, max_row - 1, max_col - 1, sheet=target_sheet)

    @staticmethod
    def _resolve_defined_name(wb: Workbook, ws: Worksheet, name: str) -> tuple[str | None, str]:
        defined = ws.defined_names.get(name) if name in ws.defined_names else None
        if defined is None and name in wb.defined_names:
            defined = wb.defined_names[name]
        if defined is None:
            raise TemplateProcessingError.invalid_range(name, "정의되지 않은 이름")
        if "#REF!" in (defined.attr_text or ""):
            raise TemplateProcessingError.invalid_range(name, "이름이 #REF!를 가리킴")
        destinations = list(defined.destinations)
        if len(destinations) != 1:
            raise TemplateProcessingError.invalid_range(name, "이름은 단일 범위여야 함")
        sheet, area = destinations[0]
        if sheet not in wb.sheetnames:
            raise TemplateProcessingError.sheet_not_found(sheet)
        return sheet, area
