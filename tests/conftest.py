"""
Pytest fixtures for the generator tests.

템플릿은 tmp_path에 openpyxl로 직접 만든다.
- 정상 케이스, 누락 데이터 케이스 등 분리
"""

from collections.abc import Callable
from pathlib import Path

import pytest
import yaml
from openpyxl import Workbook

from excel_generator.domain.schemas import FileNamingMode, GeneratorConfig, StreamingMode

TemplateBuilder = Callable[[Workbook], None]


# =============================================================================
# Path Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """프로젝트 루트 경로."""
    return Path(__file__).parent.parent


@pytest.fixture
def default_config_path(project_root: Path) -> Path:
    """default.yaml 경로."""
    return project_root / "default.yaml"


@pytest.fixture
def default_config(default_config_path: Path) -> dict:
    """기본 설정 로드."""
    with open(default_config_path, encoding="utf-8") as f:
        return yaml.safe_load(f)


# =============================================================================
# Template Fixtures
# =============================================================================

@pytest.fixture
def make_template(tmp_path: Path) -> Callable[..., bytes]:
    """
    템플릿 생성 헬퍼.

    Usage:
        content = make_template(lambda wb: wb.active.__setitem__("A1", "${title}"))
    """
    def _make(build: TemplateBuilder, name: str = "template.xlsx") -> bytes:
        wb = Workbook()
        wb.active.title = "Report"
        build(wb)
        path = tmp_path / name
        wb.save(path)
        return path.read_bytes()

    return _make


def _build_employee_report(wb: Workbook) -> None:
    """
    직원 보고서 템플릿.

    1: 제목
    2: repeat 마커 (A3:C3, 변수 emp)
    3: 이름 / 나이 / 나이*2
    4: 합계 / SUM / 인원 수
    """
    ws = wb["Report"]
    ws["A1"] = "${title}"
    ws["A2"] = "${repeat(employees, A3:C3, emp)}"
    ws["A3"] = "${emp.name}"
    ws["B3"] = "${emp.age}"
    ws["C3"] = "=B3*2"
    ws["A4"] = "합계"
    ws["B4"] = "=SUM(B3)"
    ws["C4"] = "${size(employees)}"


@pytest.fixture
def employee_template(make_template) -> bytes:
    """직원 목록 반복 템플릿."""
    return make_template(_build_employee_report, "employees.xlsx")


@pytest.fixture
def employees() -> list[dict]:
    return [
        {"name": "김철수", "age": 30},
        {"name": "이영희", "age": 41},
        {"name": "박민수", "age": 25},
    ]


@pytest.fixture
def side_by_side_template(make_template) -> bytes:
    """
    같은 행에 나란한 두 반복 영역.

    A2:B2 ← left (x), D2:E2 ← right (y)
    """
    def build(wb: Workbook) -> None:
        ws = wb["Report"]
        ws["A1"] = "${repeat(left, A2:B2, x)}"
        ws["D1"] = "${repeat(right, D2:E2, y)}"
        ws["A2"] = "${x.name}"
        ws["B2"] = "${x.value}"
        ws["D2"] = "${y.name}"
        ws["E2"] = "${y.value}"

    return make_template(build, "side_by_side.xlsx")


@pytest.fixture
def memory_config() -> GeneratorConfig:
    """메모리 모드 고정, 파일명 그대로."""
    return GeneratorConfig(streaming_mode=StreamingMode.DISABLED, file_naming_mode=FileNamingMode.NONE)


@pytest.fixture
def streaming_config() -> GeneratorConfig:
    """스트리밍 모드 고정, 파일명 그대로."""
    return GeneratorConfig(streaming_mode=StreamingMode.ENABLED, file_naming_mode=FileNamingMode.NONE)
