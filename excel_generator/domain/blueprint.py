"""
Blueprint: 템플릿 구조 모델 (불변).

템플릿 1개당 한 번 분석되어 여러 렌더링에서 읽기 전용으로 공유된다.
좌표는 모두 0-based (row, col).

셀 내용은 태그된 합 타입(CellContent)으로 표현한다:
- Static: 리터럴 값 또는 수식 (그대로 복사, 수식은 참조만 조정)
- VariableRef: ${path} 치환
- SizeMarker: ${size(collection)} → 아이템 수
- ImageMarker: ${image.name} / ${image(name, position, size)}
- RepeatMarker: 반복 영역 선언 (셀 자체는 비워서 출력)
"""

from copy import copy
from dataclasses import dataclass, field
from typing import Any

from openpyxl.utils import get_column_letter

from excel_generator.domain.constants import GENERAL_NUMBER_FORMAT
from excel_generator.domain.schemas import RepeatDirection

# =============================================================================
# Ranges
# =============================================================================

@dataclass(frozen=True)
class RangeSpec:
    """셀 범위 (0-based, 양끝 포함). sheet가 None이면 같은 시트."""
    start_row: int
    start_col: int
    end_row: int
    end_col: int
    sheet: str | None = None

    @property
    def height(self) -> int:
        return self.end_row - self.start_row + 1

    @property
    def width(self) -> int:
        return self.end_col - self.start_col + 1

    def contains(self, row: int, col: int) -> bool:
        return self.start_row <= row <= self.end_row and self.start_col <= col <= self.end_col

    def to_a1(self) -> str:
        start = f"{get_column_letter(self.start_col + 1)}{self.start_row + 1}"
        if self.height == 1 and self.width == 1:
            return start
        return f"{start}:{get_column_letter(self.end_col + 1)}{self.end_row + 1}"


@dataclass(frozen=True)
class RepeatRegionSpec:
    """
    반복 영역 명세.

    같은 시트에서 행과 열이 모두 겹치는 두 영역은 설정 오류.
    행만 공유하고 열이 다른 영역은 독립적으로 나란히 확장된다.
    """
    collection: str
    variable: str
    start_row: int
    end_row: int
    start_col: int
    end_col: int
    direction: RepeatDirection = RepeatDirection.DOWN
    empty_range: RangeSpec | None = None

    @property
    def height(self) -> int:
        return self.end_row - self.start_row + 1

    @property
    def width(self) -> int:
        return self.end_col - self.start_col + 1

    @property
    def key(self) -> tuple[str, int, int, int, int]:
        """중복 판정 키 (collection + 대상 범위)."""
        return (self.collection, self.start_row, self.end_row, self.start_col, self.end_col)

    def contains(self, row: int, col: int) -> bool:
        return self.start_row <= row <= self.end_row and self.start_col <= col <= self.end_col

    def overlaps_rows(self, other: "RepeatRegionSpec") -> bool:
        return self.start_row <= other.end_row and other.start_row <= self.end_row

    def overlaps_columns(self, other: "RepeatRegionSpec") -> bool:
        return self.start_col <= other.end_col and other.start_col <= self.end_col

    def overlaps(self, other: "RepeatRegionSpec") -> bool:
        return self.overlaps_rows(other) and self.overlaps_columns(other)

    def describe(self) -> str:
        area = RangeSpec(self.start_row, self.start_col, self.end_row, self.end_col).to_a1()
        return f"{self.collection}({self.direction.value}, {area})"


# =============================================================================
# Cell Content (sum type)
# =============================================================================

@dataclass(frozen=True)
class ImageSize:
    """
    이미지 크기 (픽셀).

    0 = 해당 축은 셀(또는 병합 영역)에 맞춤, -1 = 원본 크기 유지.
    """
    width: int = 0
    height: int = 0


FIT_TO_CELL = ImageSize(0, 0)
ORIGINAL_SIZE = ImageSize(-1, -1)


@dataclass(frozen=True)
class Static:
    value: Any


@dataclass(frozen=True)
class VariableRef:
    """
    변수 참조. text 전체가 토큰 하나면 값의 원래 타입을 유지한다.

    paths: text에 포함된 모든 변수 경로 (첫 번째가 path)
    """
    path: str
    text: str
    paths: tuple[str, ...] = ()
    is_formula: bool = False


@dataclass(frozen=True)
class SizeMarker:
    collection: str
    text: str
    is_formula: bool = False


@dataclass(frozen=True)
class ImageMarker:
    name: str
    anchor: RangeSpec | None = None  # None이면 마커가 있는 셀
    size: ImageSize = FIT_TO_CELL


@dataclass(frozen=True)
class RepeatMarker:
    region: RepeatRegionSpec


CellContent = Static | VariableRef | SizeMarker | ImageMarker | RepeatMarker


# =============================================================================
# Styles
# =============================================================================

@dataclass(frozen=True)
class CellStyle:
    """
    템플릿 셀의 스타일 스냅샷.

    렌더링된 모든 셀(정적, 복사, 반복)은 대응하는 템플릿 셀의 스타일을 그대로 가진다.
    """
    font: Any = None
    fill: Any = None
    border: Any = None
    alignment: Any = None
    number_format: str = GENERAL_NUMBER_FORMAT
    protection: Any = None

    @classmethod
    def from_cell(cls, cell: Any) -> "CellStyle | None":
        if not cell.has_style:
            return None
        return cls(
            font=copy(cell.font),
            fill=copy(cell.fill),
            border=copy(cell.border),
            alignment=copy(cell.alignment),
            number_format=cell.number_format,
            protection=copy(cell.protection),
        )

    @property
    def is_general(self) -> bool:
        return self.number_format in (None, "", GENERAL_NUMBER_FORMAT)


# =============================================================================
# Structure
# =============================================================================

@dataclass(frozen=True)
class CellSpec:
    col: int
    content: CellContent
    style: CellStyle | None = None


@dataclass(frozen=True)
class RowSpec:
    index: int
    cells: tuple[CellSpec, ...] = ()
    height: float | None = None
    hidden: bool = False

    def cell(self, col: int) -> CellSpec | None:
        for cell in self.cells:
            if cell.col == col:
                return cell
        return None


@dataclass(frozen=True)
class ColumnSpec:
    """열 너비/숨김 (preserve_template_layout 용)."""
    index: int
    width: float | None = None
    hidden: bool = False


@dataclass(frozen=True)
class PlacedImage:
    """시트 안의 이미지 마커 위치."""
    row: int
    col: int
    marker: ImageMarker


@dataclass(frozen=True)
class SheetSpec:
    name: str
    index: int
    rows: tuple[RowSpec, ...] = ()
    regions: tuple[RepeatRegionSpec, ...] = ()
    merged_ranges: tuple[RangeSpec, ...] = ()
    columns: tuple[ColumnSpec, ...] = ()
    images: tuple[PlacedImage, ...] = ()
    last_row: int = -1
    last_col: int = -1
    # 헤더/푸터, 차트 제목 등 셀 밖 텍스트에서 발견한 변수 경로
    text_variables: tuple[str, ...] = ()
    _row_index: dict[int, RowSpec] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        self._row_index.update({row.index: row for row in self.rows})

    def row(self, index: int) -> RowSpec | None:
        return self._row_index.get(index)

    def cell(self, row: int, col: int) -> CellSpec | None:
        spec = self._row_index.get(row)
        return spec.cell(col) if spec else None

    def region_at(self, row: int, col: int) -> RepeatRegionSpec | None:
        for region in self.regions:
            if region.contains(row, col):
                return region
        return None


@dataclass(frozen=True)
class Blueprint:
    """
    템플릿 전체 구조.

    required_*: 데이터 소스가 제공해야 하는 이름 (누락 데이터 정책 판정용)
    """
    sheets: tuple[SheetSpec, ...]
    required_variables: frozenset[str] = frozenset()
    required_collections: frozenset[str] = frozenset()
    required_images: frozenset[str] = frozenset()

    def sheet(self, name: str) -> SheetSpec | None:
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None

    @property
    def sheet_names(self) -> list[str]:
        return [sheet.name for sheet in self.sheets]

    @property
    def regions(self) -> list[RepeatRegionSpec]:
        return [region for sheet in self.sheets for region in sheet.regions]
