"""
test_pivot.py - 피벗 테이블 조정 테스트

테스트 케이스:
- TC1: 소스 범위 확장, 위치 이동, refreshOnLoad
- TC2: 소스가 모두 제거되면 경고 후 유지 / 매핑 없는 시트는 그대로
- TC3: 데이터 필드 숫자 서식 (정수 / 소수 / 지정된 서식 유지)
"""

import logging

import pytest
from openpyxl import Workbook
from openpyxl.pivot.cache import CacheDefinition, CacheSource, WorksheetSource
from openpyxl.pivot.table import DataField, Location, TableDefinition

from excel_generator.core.position import calculate
from excel_generator.domain.blueprint import RepeatRegionSpec
from excel_generator.domain.schemas import GeneratorConfig, RepeatDirection
from excel_generator.render.pivot import adjust_pivots, apply_pivot_number_formats


def _pivot(source_ref: str, location: str = "E10:F14", sheet: str = "Report", data_fields=()) -> TableDefinition:
    pivot = TableDefinition(
        name="ItemPivot",
        cacheId=1,
        dataCaption="Values",
        location=Location(ref=location, firstHeaderRow=1, firstDataRow=1, firstDataCol=1),
        dataFields=data_fields,
    )
    pivot.cache = CacheDefinition(
        cacheSource=CacheSource(type="worksheet", worksheetSource=WorksheetSource(ref=source_ref, sheet=sheet))
    )
    return pivot


def _position_maps(item_count: int) -> dict:
    """A2:C2 반복 영역 (헤더는 1행)."""
    region = RepeatRegionSpec(
        collection="items",
        variable="it",
        start_row=1,
        end_row=1,
        start_col=0,
        end_col=2,
        direction=RepeatDirection.DOWN,
    )
    return {"Report": calculate([region], {"items": item_count}, last_template_row=13)}


# =============================================================================
# TC1: 범위 / 위치 조정
# =============================================================================

class TestAdjustPivots:
    """데이터 확장 후 피벗 정의 조정."""

    def test_source_expands_and_location_shifts(self):
        pivot = _pivot("A1:C2")

        adjust_pivots([pivot], "Report", _position_maps(3))

        assert pivot.cache.cacheSource.worksheetSource.ref == "A1:C4"
        assert pivot.location.ref == "E12:F16"
        assert pivot.cache.refreshOnLoad is True

    def test_absolute_source_keeps_markers(self):
        pivot = _pivot("$A$1:$C$2")

        adjust_pivots([pivot], "Report", _position_maps(4))

        assert pivot.cache.cacheSource.worksheetSource.ref == "$A$1:$C$5"


# =============================================================================
# TC2: 조정하지 않는 경우
# =============================================================================

class TestUnadjustedPivots:
    """제거된 소스, 매핑 없는 시트."""

    def test_removed_source_warns(self, caplog):
        pivot = _pivot("A2:C2")

        with caplog.at_level(logging.WARNING):
            adjust_pivots([pivot], "Report", _position_maps(0))

        assert pivot.cache.cacheSource.worksheetSource.ref == "A2:C2"
        assert "pivot source removed" in caplog.text

    def test_source_on_unmapped_sheet(self):
        pivot = _pivot("A1:C2", sheet="Raw")

        adjust_pivots([pivot], "Report", _position_maps(3))

        assert pivot.cache.cacheSource.worksheetSource.ref == "A1:C2"
        assert pivot.location.ref == "E12:F16"


# =============================================================================
# TC3: 숫자 서식
# =============================================================================

class TestPivotNumberFormats:
    """렌더링된 소스 값 기준 데이터 필드 서식."""

    @pytest.fixture
    def workbook(self) -> Workbook:
        wb = Workbook()
        ws = wb.active
        ws.title = "Report"
        ws.append(["이름", "수량", "단가"])
        ws.append(["볼펜", 3, 1.5])
        ws.append(["공책", 12, 2.25])
        return wb

    def test_integer_and_decimal_fields(self, workbook):
        fields = [
            DataField(name="합계: 수량", fld=1),
            DataField(name="합계: 단가", fld=2),
            DataField(name="개수: 수량", fld=1, numFmtId=3),
            DataField(name="범위 밖", fld=5),
        ]
        workbook["Report"]._pivots.append(_pivot("A1:C3", data_fields=fields))

        apply_pivot_number_formats(workbook, GeneratorConfig())

        assert [field.numFmtId for field in fields] == [37, 39, 3, None]

    def test_configured_format_indexes(self, workbook):
        fields = [DataField(name="합계: 수량", fld=1)]
        workbook["Report"]._pivots.append(_pivot("A1:C3", data_fields=fields))

        apply_pivot_number_formats(workbook, GeneratorConfig(pivot_integer_format_index=3))

        assert fields[0].numFmtId == 3
