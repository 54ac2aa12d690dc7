"""
test_formula.py - 수식 참조 조정 테스트

테스트 케이스:
- TC1: 행/열 확장에 따른 이동과 범위 확장
- TC2: 반복 블록 복사본용 이동
- TC3: 단일 셀 → 범위 / 목록 확장
- TC4: PositionMap 기반 FormulaAdjuster
- TC5: 문자열 리터럴, 다른 시트, 절대 참조
"""

import pytest

from excel_generator.core.formula import (
    REF_ERROR,
    FormulaAdjuster,
    Reference,
    adjust_for_column_expansion,
    adjust_for_repeat_index,
    adjust_for_row_expansion,
    expand_single_ref_to_range,
)
from excel_generator.core.position import calculate
from excel_generator.domain.blueprint import RepeatRegionSpec
from excel_generator.domain.errors import FormulaExpansionError
from excel_generator.domain.schemas import RepeatDirection


def _region(collection="items", rows=(2, 2), cols=(0, 2), direction=RepeatDirection.DOWN):
    return RepeatRegionSpec(collection, "it", rows[0], rows[1], cols[0], cols[1], direction)


# =============================================================================
# TC1: 확장
# =============================================================================

class TestRowExpansion:
    """adjust_for_row_expansion."""

    def test_range_ending_in_region_grows(self):
        assert adjust_for_row_expansion("SUM(C6:C6)", range(5, 5), 2) == "SUM(C6:C8)"

    def test_refs_below_region_move(self):
        assert adjust_for_row_expansion("A10+B10", range(0, 5), 2) == "A12+B12"

    def test_refs_above_region_unchanged(self):
        assert adjust_for_row_expansion("=A1*2", (5, 5), 3) == "=A1*2"

    def test_absolute_rows_kept(self):
        assert adjust_for_row_expansion("=$A$10+A10", (0, 4), 2) == "=$A$10+A12"

    def test_leading_equals_preserved(self):
        assert adjust_for_row_expansion("=SUM(B3:B3)", (2, 2), 4) == "=SUM(B3:B7)"


class TestColumnExpansion:
    """adjust_for_column_expansion."""

    def test_refs_right_of_region_move(self):
        assert adjust_for_column_expansion("=D1+SUM(B1:B1)", (1, 1), 2) == "=F1+SUM(B1:D1)"


# =============================================================================
# TC2: 복사본 이동
# =============================================================================

class TestRepeatIndex:
    """adjust_for_repeat_index."""

    @pytest.mark.parametrize("k", [0, 1, 4])
    def test_shift_by_item(self, k):
        assert adjust_for_repeat_index("A6*B6", k) == f"A{6 + k}*B{6 + k}"

    def test_multi_row_region(self):
        assert adjust_for_repeat_index("=A6+A7", 2, region_height=2) == "=A10+A11"

    def test_absolute_reference_kept(self):
        assert adjust_for_repeat_index("=A6*$B$1", 3) == "=A9*$B$1"

    def test_right_direction(self):
        assert adjust_for_repeat_index("=B2*2", 2, direction=RepeatDirection.RIGHT) == "=D2*2"


# =============================================================================
# TC3: 단일 셀 확장
# =============================================================================

class TestExpandSingleRef:
    """expand_single_ref_to_range."""

    def test_contiguous_range(self):
        assert expand_single_ref_to_range("C6", 3) == "C6:C8"

    def test_single_item_unchanged(self):
        assert expand_single_ref_to_range("C6", 1) == "C6"

    def test_multi_row_region_uses_list(self):
        assert expand_single_ref_to_range("C6", 3, region_height=2) == "C6,C8,C10"

    def test_right_direction(self):
        assert expand_single_ref_to_range("B2", 3, direction=RepeatDirection.RIGHT) == "B2:D2"

    def test_too_many_arguments(self):
        with pytest.raises(FormulaExpansionError) as exc_info:
            expand_single_ref_to_range("C6", 300, region_height=2, sheet_name="Report", cell_ref="D20")

        assert exc_info.value.sheet_name == "Report"
        assert exc_info.value.cell_ref == "D20"

    def test_range_input_rejected(self):
        with pytest.raises(ValueError):
            expand_single_ref_to_range("C6:C7", 3)


# =============================================================================
# TC4: FormulaAdjuster
# =============================================================================

class TestFormulaAdjuster:
    """A3:C3 영역 (아이템 3개), 합계 행 4."""

    @pytest.fixture
    def adjuster(self):
        pmap = calculate([_region()], {"items": 3}, last_template_row=3)
        return FormulaAdjuster("Report", {"Report": pmap})

    def test_formula_inside_block_follows_item(self, adjuster):
        assert adjuster.adjust("=B3*2", 2, 2, item_index=1) == "=B4*2"

    def test_single_ref_argument_expands(self, adjuster):
        assert adjuster.adjust("=SUM(B3)", 3, 1) == "=SUM(B3:B5)"

    def test_single_ref_operand_only_moves(self, adjuster):
        assert adjuster.adjust("=B3+1", 3, 1) == "=B3+1"

    def test_range_over_region_expands(self, adjuster):
        assert adjuster.adjust("=AVERAGE(B3:B3)", 3, 1) == "=AVERAGE(B3:B5)"

    def test_footer_reference_moves(self, adjuster):
        assert adjuster.adjust("=B4*10", 5, 0) == "=B6*10"

    def test_string_literal_untouched(self, adjuster):
        assert adjuster.adjust('=CONCAT("B4", B4)', 5, 0) == '=CONCAT("B4", B6)'

    def test_other_sheet_reference(self):
        pmap = calculate([_region()], {"items": 3}, last_template_row=3)
        adjuster = FormulaAdjuster("Summary", {"Report": pmap})

        assert adjuster.adjust("=SUM(Report!B3:B3)", 0, 0) == "=SUM(Report!B3:B5)"
        assert adjuster.adjust("=Report!B4", 0, 0) == "=Report!B6"

    def test_removed_block_becomes_ref_error(self):
        pmap = calculate([_region()], {"items": 0}, last_template_row=3)
        adjuster = FormulaAdjuster("Report", {"Report": pmap})

        assert adjuster.adjust("=SUM(B3:B3)", 3, 1) == f"=SUM({REF_ERROR})"

    def test_adjust_range_text(self, adjuster):
        assert adjuster.adjust_range_text("C3 A4:C4") == "C3:C5 A6:C6"


class TestReference:
    """참조 파싱."""

    def test_quoted_sheet(self):
        ref = Reference.parse("'My Sheet'!$A$1:B2")

        assert ref.sheet == "My Sheet"
        assert ref.start.row_absolute is True
        assert ref.end.to_a1() == "B2"

    def test_non_reference(self):
        assert Reference.parse("TRUE") is None
