"""
Formula adjuster: 수식 문자열 안의 셀/범위 참조 재작성.

규칙:
- 순수 문자열 변환 (수식을 계산하지 않음, 같은 입력 → 같은 출력)
- 참조 토큰은 openpyxl Tokenizer의 OPERAND/RANGE 토큰만 대상
- 문자열 리터럴, 함수 이름, 정의된 이름은 건드리지 않음
- `$` 절대 참조는 확장/이동 함수에서 그대로 유지

좌표는 0-based (A1 = row 0, col 0).
"""

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from openpyxl.formula.tokenizer import Token, Tokenizer, TokenizerError
from openpyxl.utils import column_index_from_string, get_column_letter

from excel_generator.core.position import PositionMap
from excel_generator.domain.constants import EXCEL_MAX_FORMULA_LENGTH, EXCEL_MAX_FUNCTION_ARGS
from excel_generator.domain.errors import FormulaExpansionError
from excel_generator.domain.schemas import RepeatDirection

REF_ERROR = "#REF!"

_SHEET = r"(?:'(?:[^']|'')+'|[^'!\[\]:*?/\\ ,()]+)!"
_CELL = r"\$?[A-Za-z]{1,3}\$?[0-9]{1,7}"
REFERENCE_RE = re.compile(rf"^(?P<sheet>{_SHEET})?(?P<start>{_CELL})(?::(?P<end>{_CELL}))?$")
CELL_RE = re.compile(r"^(?P<col_abs>\$?)(?P<col>[A-Za-z]{1,3})(?P<row_abs>\$?)(?P<row>[0-9]{1,7})$")


# =============================================================================
# References
# =============================================================================

@dataclass(frozen=True)
class CellRef:
    """A1 셀 참조 (0-based)."""
    row: int
    col: int
    row_absolute: bool = False
    col_absolute: bool = False

    @classmethod
    def parse(cls, text: str) -> "CellRef":
        match = CELL_RE.match(text)
        if match is None:
            raise ValueError(f"not a cell reference: {text}")
        return cls(
            row=int(match.group("row")) - 1,
            col=column_index_from_string(match.group("col").upper()) - 1,
            row_absolute=bool(match.group("row_abs")),
            col_absolute=bool(match.group("col_abs")),
        )

    def to_a1(self) -> str:
        col = ("$" if self.col_absolute else "") + get_column_letter(self.col + 1)
        row = ("$" if self.row_absolute else "") + str(self.row + 1)
        return col + row

    def moved(self, row: int, col: int) -> "CellRef":
        return replace(self, row=row, col=col)


@dataclass(frozen=True)
class Reference:
    """
    수식 안의 참조 1개 (단일 셀 또는 범위, 시트 접두사 선택).

    prefix: 원문 그대로의 시트 접두사 ("'My Sheet'!" 형태), 없으면 ""
    """
    start: CellRef
    end: CellRef | None = None
    sheet: str | None = None
    prefix: str = ""

    @classmethod
    def parse(cls, text: str) -> "Reference | None":
        match = REFERENCE_RE.match(text)
        if match is None:
            return None
        prefix = match.group("sheet") or ""
        sheet = None
        if prefix:
            sheet = prefix[:-1]
            if sheet.startswith("'"):
                sheet = sheet[1:-1].replace("''", "'")
            if sheet.startswith("["):
                return None  # 외부 통합 문서
        end = match.group("end")
        return cls(
            start=CellRef.parse(match.group("start")),
            end=CellRef.parse(end) if end else None,
            sheet=sheet,
            prefix=prefix,
        )

    def render(self, start: CellRef, end: CellRef | None = None) -> str:
        text = self.prefix + start.to_a1()
        if end is not None:
            text += ":" + end.to_a1()
        return text


ReferenceRewriter = Callable[[Reference, bool], str | None]


def _neighbour(items: list[Token], index: int, step: int) -> Token | None:
    index += step
    while 0 <= index < len(items):
        if items[index].type != Token.WSPACE:
            return items[index]
        index += step
    return None


def _is_function_argument(items: list[Token], index: int) -> bool:
    """참조 토큰 하나가 그대로 함수 인자 자리에 있는지 (SUM(C6), SUM(A1,C6))."""
    before = _neighbour(items, index, -1)
    after = _neighbour(items, index, 1)
    if before is None or after is None:
        return False
    opens = (before.type == Token.FUNC and before.subtype == Token.OPEN) or (
        before.type == Token.SEP and before.subtype == Token.ARG
    )
    closes = (after.type == Token.FUNC and after.subtype == Token.CLOSE) or (
        after.type == Token.SEP and after.subtype == Token.ARG
    )
    return opens and closes


def rewrite_references(formula: str, rewrite: ReferenceRewriter) -> str:
    """
    수식의 모든 셀/범위 참조에 rewrite를 적용.

    Args:
        formula: "=SUM(A1:A3)" 또는 "SUM(A1:A3)" (선행 "=" 유무 유지)
        rewrite: (참조, 함수 인자 여부) → 새 참조 문자열, None이면 유지

    Returns:
        재작성된 수식. 바뀐 참조가 없으면 원문 그대로.
    """
    has_equals = formula.startswith("=")
    try:
        tokenizer = Tokenizer(formula if has_equals else "=" + formula)
    except TokenizerError as e:
        raise FormulaExpansionError("", "", formula, reason=f"tokenize failed: {e}") from e

    items = tokenizer.items
    changed = False
    for index, token in enumerate(items):
        if token.type != Token.OPERAND or token.subtype != Token.RANGE:
            continue
        reference = Reference.parse(token.value)
        if reference is None:
            continue
        new_value = rewrite(reference, _is_function_argument(items, index))
        if new_value is not None and new_value != token.value:
            token.value = new_value
            changed = True

    if not changed:
        return formula
    rendered = tokenizer.render()
    return rendered if has_equals else rendered[1:]


def _bounds(value: Any, axis: str = "row") -> tuple[int, int]:
    """(start, end) 튜플, range 객체, 또는 start_row/end_row 속성 → 포함 범위."""
    if isinstance(value, range):
        return value.start, max(value.stop - 1, value.start)
    if hasattr(value, f"start_{axis}"):
        return getattr(value, f"start_{axis}"), getattr(value, f"end_{axis}")
    start, end = value
    return int(start), int(end)


# =============================================================================
# Pure Adjustments
# =============================================================================

def adjust_for_row_expansion(formula: str, repeat_rows: Any, row_offset: int) -> str:
    """
    반복 영역이 row_offset행 늘어났을 때의 참조 조정.

    - 영역 끝 이후의 참조 → row_offset만큼 아래로 이동
    - 끝이 영역 안에 있는 범위 → 끝만 늘려서 확장 (SUM(C6:C6) → SUM(C6:C8))
    - `$` 절대 행은 그대로

    Args:
        formula: 수식 문자열
        repeat_rows: 영역 행 범위 (start, end) 0-based 포함
        row_offset: 늘어난 행 수
    """
    start, end = _bounds(repeat_rows)

    def rewrite(ref: Reference, _: bool) -> str:
        first = ref.start
        if not first.row_absolute and first.row > end:
            first = first.moved(first.row + row_offset, first.col)
        if ref.end is None:
            return ref.render(first)
        last = ref.end
        if not last.row_absolute and last.row >= start:
            last = last.moved(last.row + row_offset, last.col)
        return ref.render(first, last)

    return rewrite_references(formula, rewrite)


def adjust_for_column_expansion(formula: str, repeat_cols: Any, col_offset: int) -> str:
    """adjust_for_row_expansion의 열(RIGHT) 버전."""
    start, end = _bounds(repeat_cols, axis="col")

    def rewrite(ref: Reference, _: bool) -> str:
        first = ref.start
        if not first.col_absolute and first.col > end:
            first = first.moved(first.row, first.col + col_offset)
        if ref.end is None:
            return ref.render(first)
        last = ref.end
        if not last.col_absolute and last.col >= start:
            last = last.moved(last.row, last.col + col_offset)
        return ref.render(first, last)

    return rewrite_references(formula, rewrite)


def adjust_for_repeat_index(
    formula: str,
    item_index: int,
    region_height: int = 1,
    direction: RepeatDirection = RepeatDirection.DOWN,
) -> str:
    """
    반복 블록 안 수식을 item_index번째 복사본용으로 이동.

    "A6*B6", k → "A{6+k}*B{6+k}" (높이 1 기준). `$` 절대 참조는 그대로.
    """
    delta = item_index * region_height
    if delta == 0:
        return formula

    def shift(cell: CellRef) -> CellRef:
        if direction == RepeatDirection.DOWN:
            return cell if cell.row_absolute else cell.moved(cell.row + delta, cell.col)
        return cell if cell.col_absolute else cell.moved(cell.row, cell.col + delta)

    def rewrite(ref: Reference, _: bool) -> str:
        return ref.render(shift(ref.start), shift(ref.end) if ref.end else None)

    return rewrite_references(formula, rewrite)


def expand_single_ref_to_range(
    ref: str,
    item_count: int,
    region_height: int = 1,
    direction: RepeatDirection = RepeatDirection.DOWN,
    sheet_name: str = "",
    cell_ref: str = "",
) -> str:
    """
    반복 영역 안 단일 셀 참조를 모든 아이템을 덮도록 확장.

    - 높이(너비) 1 영역 → 연속 범위 "C6:C8"
    - 그 외 → 쉼표 목록 "C6,C8,C10" (최대 255개)

    Raises:
        FormulaExpansionError: 인자 수 초과
    """
    reference = Reference.parse(ref)
    if reference is None or reference.end is not None:
        raise ValueError(f"not a single cell reference: {ref}")
    cell = reference.start
    if item_count <= 1:
        return ref

    def nth(k: int) -> CellRef:
        if direction == RepeatDirection.DOWN:
            return cell.moved(cell.row + k * region_height, cell.col)
        return cell.moved(cell.row, cell.col + k * region_height)

    if region_height == 1:
        return reference.render(cell, nth(item_count - 1))
    if item_count > EXCEL_MAX_FUNCTION_ARGS:
        raise FormulaExpansionError(
            sheet_name,
            cell_ref,
            ref,
            reason=f"{item_count} arguments exceed limit {EXCEL_MAX_FUNCTION_ARGS}",
        )
    return ",".join(reference.render(nth(k)) for k in range(item_count))


# =============================================================================
# Position-Map Adjuster (engine)
# =============================================================================

class FormulaAdjuster:
    """
    PositionMap 기반 수식 조정기 (시트 1개).

    - 같은 반복 블록 안 참조 → 해당 아이템 복사본
    - 영역을 걸친 범위 → 모든 복사본으로 확장
    - 영역 밖에서 영역 안 단일 셀을 함수 인자로 참조 → 모든 아이템으로 확장
    - 다른 시트 참조 → 그 시트의 PositionMap 사용
    - 제거된 블록 참조 → #REF!

    Usage:
        adjuster = FormulaAdjuster("Sheet1", position_maps)
        adjuster.adjust("=SUM(C6)", template_row=8, template_col=2)
    """

    def __init__(self, sheet_name: str, position_maps: Mapping[str, PositionMap]):
        self.sheet_name = sheet_name
        self.position_maps = position_maps

    def adjust(
        self,
        formula: str,
        template_row: int,
        template_col: int,
        item_index: int | None = None,
        cell_ref: str = "",
    ) -> str:
        """
        템플릿 셀 (template_row, template_col)의 수식을 최종 위치 기준으로 조정.

        Args:
            item_index: 수식 셀이 반복 블록 안에 있을 때 아이템 번호
            cell_ref: 에러 메시지용 출력 셀 주소

        Raises:
            FormulaExpansionError: 확장 인자 수 또는 수식 길이 초과
        """
        own_map = self.position_maps.get(self.sheet_name)
        own_layout = None
        if own_map is not None and item_index is not None:
            own_layout = own_map.layout_at(template_row, template_col)

        def rewrite(ref: Reference, is_argument: bool) -> str | None:
            sheet = ref.sheet or self.sheet_name
            position_map = self.position_maps.get(sheet)
            if position_map is None:
                return None
            own_block = own_layout if sheet == self.sheet_name else None
            if ref.end is None:
                return self._single(ref, position_map, own_block, item_index, is_argument, formula, cell_ref)
            return self._range(ref, position_map, own_block, item_index)

        try:
            adjusted = rewrite_references(formula, rewrite)
        except FormulaExpansionError as e:
            if e.sheet_name:
                raise
            raise FormulaExpansionError(self.sheet_name, cell_ref, formula, reason=e.context.get("reason", "")) from e

        if len(adjusted) > EXCEL_MAX_FORMULA_LENGTH:
            raise FormulaExpansionError(
                self.sheet_name,
                cell_ref,
                formula,
                reason=f"formula length {len(adjusted)} exceeds {EXCEL_MAX_FORMULA_LENGTH}",
            )
        return adjusted

    def _single(self, ref, position_map, own_block, item_index, is_argument, formula, cell_ref) -> str:
        cell = ref.start
        if own_block is not None and own_block.region.contains(cell.row, cell.col):
            row, col = position_map.get_item_position(cell.row, cell.col, item_index)
            return ref.render(cell.moved(row, col))

        layout = position_map.layout_at(cell.row, cell.col)
        if layout is not None and layout.is_removed:
            return REF_ERROR

        row, col = position_map.get_final_position(cell.row, cell.col)
        moved = ref.render(cell.moved(row, col))
        if layout is None or layout.item_count <= 1 or not is_argument:
            return moved

        region = layout.region
        if region.direction == RepeatDirection.DOWN:
            if cell.row_absolute:
                return moved
            unit = region.height
        else:
            if cell.col_absolute:
                return moved
            unit = region.width
        return expand_single_ref_to_range(
            moved,
            layout.item_count,
            unit,
            region.direction,
            sheet_name=self.sheet_name,
            cell_ref=cell_ref or formula,
        )

    @staticmethod
    def _range(ref, position_map, own_block, item_index) -> str:
        first, last = ref.start, ref.end
        if (
            own_block is not None
            and own_block.region.contains(first.row, first.col)
            and own_block.region.contains(last.row, last.col)
        ):
            start_row, start_col = position_map.get_item_position(first.row, first.col, item_index)
            end_row, end_col = position_map.get_item_position(last.row, last.col, item_index)
            return ref.render(first.moved(start_row, start_col), last.moved(end_row, end_col))

        final = position_map.get_final_range(first.row, first.col, last.row, last.col)
        if final is None:
            return REF_ERROR
        start_row, start_col, end_row, end_col = final
        return ref.render(first.moved(start_row, start_col), last.moved(end_row, end_col))

    def adjust_range_text(self, text: str) -> str | None:
        """
        범위 문자열 조정 (조건부 서식 sqref, 인쇄 영역 등).

        공백으로 구분된 여러 범위를 허용. 모두 제거되면 None.
        """
        position_map = self.position_maps.get(self.sheet_name)
        if position_map is None:
            return text
        parts = []
        for part in text.split():
            reference = Reference.parse(part)
            if reference is None:
                parts.append(part)
                continue
            end = reference.end or reference.start
            final = position_map.get_final_range(reference.start.row, reference.start.col, end.row, end.col)
            if final is None:
                continue
            start_row, start_col, end_row, end_col = final
            first = reference.start.moved(start_row, start_col)
            last = end.moved(end_row, end_col)
            parts.append(reference.render(first, None if first == last else last))
        return " ".join(parts) if parts else None
