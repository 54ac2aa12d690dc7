"""
test_layout.py - 시트 구성 요소 이동 테스트

테스트 케이스:
- TC1: 열 너비 복제 (RIGHT 영역, preserve_template_layout)
- TC2: 데이터 유효성 검사 / 인쇄 영역 / 자동 필터
- TC3: 헤더/푸터 변수 치환, 정의된 이름
- TC4: 반복 행 높이
"""

from io import BytesIO

import pytest
from openpyxl import Workbook, load_workbook
from openpyxl.workbook.defined_name import DefinedName
from openpyxl.worksheet.datavalidation import DataValidation

from excel_generator.core.position import calculate
from excel_generator.domain.blueprint import ColumnSpec
from excel_generator.domain.schemas import StreamingMode
from excel_generator.render.data import SimpleDataSource
from excel_generator.render.engine import TemplateRenderingEngine
from excel_generator.render.layout import plan_columns
from excel_generator.templates.analyzer import TemplateAnalyzer

MODES = [StreamingMode.DISABLED, StreamingMode.ENABLED]


def _open(content: bytes):
    return load_workbook(BytesIO(content))


@pytest.fixture
def items() -> list[dict]:
    return [{"name": f"품목{i}", "qty": i} for i in range(3)]


# =============================================================================
# TC1: 열 너비
# =============================================================================

class TestPlanColumns:
    """RIGHT 영역 열 너비."""

    @pytest.fixture
    def sheet(self, make_template):
        def build(wb: Workbook) -> None:
            ws = wb["Report"]
            ws["A1"] = "${repeat(months, B2:B2, m, RIGHT)}"
            ws["B2"] = "${m}"
            ws["C2"] = "합계"
            ws.column_dimensions["B"].width = 20
            ws.column_dimensions["C"].width = 5

        return TemplateAnalyzer().analyze(make_template(build)).sheets[0]

    def test_widths_follow_copies(self, sheet):
        pmap = calculate(sheet.regions, {"months": 3}, sheet.last_row)

        columns = plan_columns(sheet, pmap)

        assert columns == [
            ColumnSpec(1, 20, False),
            ColumnSpec(2, 20, False),
            ColumnSpec(3, 20, False),
            ColumnSpec(4, 5, False),
        ]

    def test_preserve_disabled(self, sheet):
        pmap = calculate(sheet.regions, {"months": 3}, sheet.last_row)

        columns = plan_columns(sheet, pmap, preserve=False)

        assert [c.index for c in columns] == [1, 4]

    @pytest.mark.parametrize("mode", MODES)
    def test_rendered_widths(self, memory_config, make_template, mode):
        def build(wb: Workbook) -> None:
            ws = wb["Report"]
            ws["A1"] = "${repeat(months, B2:B2, m, RIGHT)}"
            ws["B2"] = "${m}"
            ws["C2"] = "합계"
            ws.column_dimensions["B"].width = 20
            ws.column_dimensions["C"].width = 5

        data = SimpleDataSource.of({"months": ["1월", "2월", "3월"]})
        content = TemplateRenderingEngine(memory_config).render(make_template(build), data, mode=mode)
        ws = _open(content)["Report"]

        assert ws.column_dimensions["D"].width == 20
        assert ws.column_dimensions["E"].width == 5


# =============================================================================
# TC2 / TC3: 시트 구성 요소
# =============================================================================

@pytest.fixture
def layout_template(make_template) -> bytes:
    def build(wb: Workbook) -> None:
        ws = wb["Report"]
        ws["A1"] = "${repeat(items, A2:C2, it)}"
        ws["A2"] = "${it.name}"
        ws["C2"] = "${it.qty}"
        ws["A3"] = "합계"
        ws.row_dimensions[2].height = 30

        validation = DataValidation(type="list", formula1='"예,아니오"')
        validation.add("B2")
        ws.add_data_validation(validation)

        ws.print_area = "A1:C3"
        ws.auto_filter.ref = "A1:C2"
        ws.oddHeader.center.text = "${title}"
        wb.defined_names["ItemArea"] = DefinedName("ItemArea", attr_text="Report!$A$2:$C$2")

    return make_template(build, "layout.xlsx")


@pytest.mark.parametrize("mode", MODES)
class TestSheetComponents:
    """아이템 3개 렌더링 후 구성 요소 위치."""

    @pytest.fixture
    def wb(self, memory_config, layout_template, items, mode):
        data = SimpleDataSource.of({"title": "재고 현황", "items": items})
        return _open(TemplateRenderingEngine(memory_config).render(layout_template, data, mode=mode))

    def test_data_validation_expanded(self, wb):
        validations = wb["Report"].data_validations.dataValidation

        assert [str(v.sqref) for v in validations] == ["B2:B4"]

    def test_print_area_moved(self, wb):
        assert wb["Report"].print_area.endswith("$A$1:$C$5")

    def test_auto_filter_expanded(self, wb):
        assert wb["Report"].auto_filter.ref == "A1:C4"

    def test_header_substituted(self, wb):
        assert wb["Report"].oddHeader.center.text == "재고 현황"

    def test_defined_name_expanded(self, wb):
        assert wb.defined_names["ItemArea"].attr_text == "Report!$A$2:$C$4"

    def test_row_height_repeated(self, wb):
        ws = wb["Report"]

        assert [ws.row_dimensions[r].height for r in (2, 3, 4)] == [30, 30, 30]
