"""
Position calculator: 템플릿 좌표 → 최종 출력 좌표.

규칙:
- DOWN 영역은 행 범위가 겹치는 것끼리 하나의 band로 묶는다
  (행을 공유하고 열이 다른 영역 = 나란히 독립 확장)
- band의 최종 높이 = 영역별 (앞쪽 정적 행 + 렌더링 행 + 뒤쪽 정적 행)의 최댓값
- band 아래의 행은 band 확장량만큼 통째로 이동
- RIGHT 영역은 해당 템플릿 행에서만 오른쪽 열을 민다
- n=0 + emptyRange 없음 → 블록 제거, n=0 + emptyRange → 대체 블록 높이(너비)

좌표는 모두 0-based.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from functools import cached_property

from excel_generator.domain.blueprint import RepeatRegionSpec
from excel_generator.domain.errors import TemplateErrorType, TemplateProcessingError
from excel_generator.domain.schemas import RepeatDirection

# =============================================================================
# Row Info (sum type)
# =============================================================================

class RowInfo:
    """최종 행 분류. Static 또는 Repeat 중 정확히 하나."""

    @dataclass(frozen=True)
    class Static:
        """확장되지 않는 행. template_row는 원본 템플릿 행."""
        template_row: int

    @dataclass(frozen=True)
    class Repeat:
        """
        반복 행.

        empty=True면 빈 컬렉션 대체 블록(emptyRange)의 template_row_offset번째 행.
        """
        region: RepeatRegionSpec
        item_index: int
        template_row_offset: int
        empty: bool = False

        @property
        def template_row(self) -> int:
            return self.region.start_row + self.template_row_offset


# =============================================================================
# Layout
# =============================================================================

@dataclass(frozen=True)
class RegionLayout:
    """영역 하나의 확장 결과."""
    region: RepeatRegionSpec
    item_count: int
    uses_empty: bool
    rendered_size: int  # DOWN이면 행 수, RIGHT면 열 수

    @property
    def template_size(self) -> int:
        if self.region.direction == RepeatDirection.DOWN:
            return self.region.height
        return self.region.width

    @property
    def expansion(self) -> int:
        return self.rendered_size - self.template_size

    @property
    def is_removed(self) -> bool:
        """템플릿 블록이 출력되지 않음 (빈 컬렉션)."""
        return self.item_count == 0


@dataclass(frozen=True)
class RowBand:
    """행 범위가 겹치는 DOWN 영역 묶음."""
    start_row: int
    end_row: int
    final_start: int
    final_height: int
    layouts: tuple[RegionLayout, ...]

    @property
    def template_height(self) -> int:
        return self.end_row - self.start_row + 1

    @property
    def expansion(self) -> int:
        return self.final_height - self.template_height

    def layout_for_column(self, col: int) -> RegionLayout | None:
        for layout in self.layouts:
            if layout.region.start_col <= col <= layout.region.end_col:
                return layout
        return None


def _make_layout(region: RepeatRegionSpec, size: int) -> RegionLayout:
    unit = region.height if region.direction == RepeatDirection.DOWN else region.width
    if size > 0:
        return RegionLayout(region, size, False, size * unit)
    if region.empty_range is not None:
        empty = region.empty_range
        empty_size = empty.height if region.direction == RepeatDirection.DOWN else empty.width
        return RegionLayout(region, 0, True, empty_size)
    return RegionLayout(region, 0, False, 0)


def _band_height(start_row: int, end_row: int, layouts: Iterable[RegionLayout]) -> int:
    return max(
        (layout.region.start_row - start_row)
        + layout.rendered_size
        + (end_row - layout.region.end_row)
        for layout in layouts
    )


def validate_regions(regions: Iterable[RepeatRegionSpec]) -> None:
    """
    같은 시트의 영역끼리 행과 열이 모두 겹치면 에러.

    Raises:
        TemplateProcessingError: OVERLAPPING_REPEAT_REGIONS
    """
    regions = list(regions)
    for i, first in enumerate(regions):
        for second in regions[i + 1:]:
            if first.overlaps(second):
                raise TemplateProcessingError(
                    TemplateErrorType.OVERLAPPING_REPEAT_REGIONS,
                    f"반복 영역이 겹칩니다: {first.describe()} / {second.describe()}",
                    first=first.describe(),
                    second=second.describe(),
                )


# =============================================================================
# Position Map
# =============================================================================

@dataclass(frozen=True)
class PositionMap:
    """
    시트 1개의 좌표 매핑 (렌더링 1회 전용, 불변).

    같은 입력이면 항상 같은 값이 나온다 (== 비교 가능).
    """
    bands: tuple[RowBand, ...]
    right_layouts: tuple[RegionLayout, ...]
    last_template_row: int
    collection_sizes: tuple[tuple[str, int], ...]

    # --- 전체 크기 ---------------------------------------------------------

    def get_total_rows(self) -> int:
        """최종 행 수 = 마지막 템플릿 행 + 1 + Σ band 확장량."""
        return self._total_rows

    @cached_property
    def _total_rows(self) -> int:
        return self.last_template_row + 1 + sum(band.expansion for band in self.bands)

    @property
    def layouts(self) -> tuple[RegionLayout, ...]:
        return tuple(layout for band in self.bands for layout in band.layouts) + self.right_layouts

    def layout_of(self, region: RepeatRegionSpec) -> RegionLayout | None:
        for layout in self.layouts:
            if layout.region == region:
                return layout
        return None

    def layout_at(self, template_row: int, template_col: int) -> RegionLayout | None:
        """템플릿 셀을 포함하는 영역."""
        for layout in self.layouts:
            if layout.region.contains(template_row, template_col):
                return layout
        return None

    def item_count(self, region: RepeatRegionSpec) -> int:
        layout = self.layout_of(region)
        return layout.item_count if layout else 0

    # --- 최종 행 분류 -------------------------------------------------------

    def _locate(self, final_row: int) -> tuple[RowBand | None, int]:
        """final_row가 속한 band와 그 앞 band들의 누적 확장량."""
        if not 0 <= final_row < self.get_total_rows():
            raise IndexError(f"final row out of range: {final_row}")
        shift = 0
        for band in self.bands:
            if final_row < band.final_start:
                break
            if final_row < band.final_start + band.final_height:
                return band, shift
            shift += band.expansion
        return None, shift

    @staticmethod
    def _classify(band: RowBand, layout: RegionLayout, local: int) -> "RowInfo.Static | RowInfo.Repeat | None":
        region = layout.region
        lead = region.start_row - band.start_row
        if local < lead:
            return RowInfo.Static(band.start_row + local)
        offset = local - lead
        if offset < layout.rendered_size:
            if layout.uses_empty:
                return RowInfo.Repeat(region, 0, offset, empty=True)
            return RowInfo.Repeat(region, offset // region.height, offset % region.height)
        trailing = offset - layout.rendered_size
        if trailing < band.end_row - region.end_row:
            return RowInfo.Static(region.end_row + 1 + trailing)
        return None

    def get_row_info(self, final_row: int) -> "RowInfo.Static | RowInfo.Repeat":
        """
        최종 행 분류 (전 구간에서 정의됨).

        나란한 영역 중 하나라도 반복 행이면 Repeat, 아니면 가장 긴 영역 기준 Static.
        """
        band, shift = self._locate(final_row)
        if band is None:
            return RowInfo.Static(final_row - shift)

        local = final_row - band.final_start
        for layout in band.layouts:
            match self._classify(band, layout, local):
                case RowInfo.Repeat() as info:
                    return info
                case _:
                    pass

        # band 높이를 결정한 영역은 band 전 구간을 분류한다
        tallest = max(
            band.layouts,
            key=lambda layout: _band_height(band.start_row, band.end_row, (layout,)),
        )
        return self._classify(band, tallest, local)

    def get_row_info_for_column(self, final_row: int, col: int) -> "RowInfo.Static | RowInfo.Repeat | None":
        """
        특정 열 기준 분류.

        None = 나란한 다른 영역이 더 길어서 생긴 빈 칸.
        """
        band, shift = self._locate(final_row)
        if band is None:
            return RowInfo.Static(final_row - shift)

        local = final_row - band.final_start
        layout = band.layout_for_column(col)
        if layout is not None:
            return self._classify(band, layout, local)
        if local < band.template_height:
            return RowInfo.Static(band.start_row + local)
        return None

    # --- 템플릿 좌표 → 최종 좌표 --------------------------------------------

    def _final_row(self, template_row: int, template_col: int) -> int:
        shift = 0
        for band in self.bands:
            if template_row > band.end_row:
                shift += band.expansion
                continue
            if template_row < band.start_row:
                break
            base = band.final_start
            layout = band.layout_for_column(template_col)
            if layout is None:
                return base + (template_row - band.start_row)
            region = layout.region
            lead = region.start_row - band.start_row
            if template_row < region.start_row:
                return base + (template_row - band.start_row)
            if template_row > region.end_row:
                return base + lead + layout.rendered_size + (template_row - region.end_row - 1)
            inner = template_row - region.start_row
            return base + lead + min(inner, max(layout.rendered_size - 1, 0))
        return template_row + shift

    def _final_col(self, template_row: int, template_col: int) -> int:
        shift = 0
        for layout in self.right_layouts:
            region = layout.region
            if not region.start_row <= template_row <= region.end_row:
                continue
            if template_col > region.end_col:
                shift += layout.expansion
            elif template_col >= region.start_col:
                inner = template_col - region.start_col
                clamped = min(inner, max(layout.rendered_size - 1, 0))
                return self.right_base(layout, template_row) + clamped
        return template_col + shift

    def right_base(self, layout: RegionLayout, template_row: int) -> int:
        region = layout.region
        shift = 0
        for other in self.right_layouts:
            if other is layout:
                continue
            if other.region.start_row <= template_row <= other.region.end_row and other.region.end_col < region.start_col:
                shift += other.expansion
        return region.start_col + shift

    def get_final_position(self, template_row: int, template_col: int) -> tuple[int, int]:
        """
        템플릿 셀의 최종 위치 (반복 영역 안이면 첫 번째 아이템 위치).

        제거된 블록 안의 셀은 블록 다음 위치를 가리킨다 (is_removed로 확인).
        """
        return self._final_row(template_row, template_col), self._final_col(template_row, template_col)

    def get_item_position(self, template_row: int, template_col: int, item_index: int) -> tuple[int, int]:
        """반복 영역 안 템플릿 셀의 item_index번째 복사본 위치."""
        row, col = self.get_final_position(template_row, template_col)
        layout = self.layout_at(template_row, template_col)
        if layout is None or item_index == 0:
            return row, col
        if layout.region.direction == RepeatDirection.DOWN:
            return row + item_index * layout.region.height, col
        return row, col + item_index * layout.region.width

    def is_removed(self, template_row: int, template_col: int) -> bool:
        """빈 컬렉션 때문에 템플릿 셀이 출력되지 않는지."""
        layout = self.layout_at(template_row, template_col)
        return layout is not None and layout.is_removed

    def get_final_range(
        self,
        start_row: int,
        start_col: int,
        end_row: int,
        end_col: int,
    ) -> tuple[int, int, int, int] | None:
        """
        범위의 최종 위치.

        시작은 첫 번째 복사본, 끝은 마지막 복사본 기준으로 확장한다.
        범위 전체가 제거되면 None (#REF!).
        """
        first_row, first_col = self.get_final_position(start_row, start_col)

        end_layout = self.layout_at(end_row, end_col)
        last_row, last_col = self.get_final_position(end_row, end_col)
        if end_layout is not None:
            if end_layout.is_removed:
                if end_layout.region.direction == RepeatDirection.DOWN:
                    last_row -= 1
                else:
                    last_col -= 1
            elif end_layout.item_count > 1:
                last_row, last_col = self.get_item_position(end_row, end_col, end_layout.item_count - 1)

        if last_row < first_row or last_col < first_col:
            return None
        return first_row, first_col, last_row, last_col

    def column_positions(self, template_row: int, template_col: int) -> list[tuple[int, int | None]]:
        """
        템플릿 셀이 출력되는 열 목록 [(final_col, item_index)].

        RIGHT 영역 밖이면 [(col, None)], 제거된 RIGHT 블록이면 [].
        """
        for layout in self.right_layouts:
            region = layout.region
            if not region.contains(template_row, template_col):
                continue
            if layout.uses_empty or layout.item_count == 0:
                return []
            base = self._final_col(template_row, template_col)
            return [(base + k * region.width, k) for k in range(layout.item_count)]
        return [(self._final_col(template_row, template_col), None)]


# =============================================================================
# Calculation
# =============================================================================

def calculate(
    repeat_regions: Iterable[RepeatRegionSpec],
    collection_sizes: Mapping[str, int],
    last_template_row: int | None = None,
) -> PositionMap:
    """
    시트 1개의 반복 영역과 컬렉션 크기로 PositionMap 계산.

    Args:
        repeat_regions: 시트의 반복 영역들
        collection_sizes: 컬렉션 이름 → 실제 아이템 수 (없으면 0)
        last_template_row: 템플릿의 마지막 행 (None이면 영역 끝 행)

    Returns:
        PositionMap

    Raises:
        TemplateProcessingError: OVERLAPPING_REPEAT_REGIONS
    """
    regions = sorted(repeat_regions, key=lambda r: (r.start_row, r.start_col, r.end_row, r.end_col))
    validate_regions(regions)

    layouts = [_make_layout(region, max(collection_sizes.get(region.collection, 0), 0)) for region in regions]
    down = [layout for layout in layouts if layout.region.direction == RepeatDirection.DOWN]
    right = tuple(layout for layout in layouts if layout.region.direction == RepeatDirection.RIGHT)

    bands: list[RowBand] = []
    cumulative = 0
    group: list[RegionLayout] = []
    group_end = -1

    def flush() -> None:
        nonlocal cumulative
        if not group:
            return
        start = min(layout.region.start_row for layout in group)
        height = _band_height(start, group_end, group)
        band = RowBand(start, group_end, start + cumulative, height, tuple(group))
        bands.append(band)
        cumulative += band.expansion

    for layout in down:
        if group and layout.region.start_row <= group_end:
            group.append(layout)
            group_end = max(group_end, layout.region.end_row)
            continue
        flush()
        group = [layout]
        group_end = layout.region.end_row
    flush()

    region_end = max((region.end_row for region in regions), default=-1)
    last_row = region_end if last_template_row is None else max(last_template_row, region_end)

    used = {region.collection for region in regions}
    sizes = tuple(sorted((name, int(collection_sizes.get(name, 0))) for name in used))
    return PositionMap(
        bands=tuple(bands),
        right_layouts=right,
        last_template_row=last_row,
        collection_sizes=sizes,
    )


class PositionCalculator:
    """
    시트별 PositionMap 계산기.

    Usage:
        pmap = PositionCalculator(sheet.regions, sizes, sheet.last_row).calculate()
    """

    def __init__(
        self,
        repeat_regions: Iterable[RepeatRegionSpec],
        collection_sizes: Mapping[str, int],
        last_template_row: int | None = None,
    ):
        self.repeat_regions = tuple(repeat_regions)
        self.collection_sizes = dict(collection_sizes)
        self.last_template_row = last_template_row

    def calculate(self) -> PositionMap:
        return calculate(self.repeat_regions, self.collection_sizes, self.last_template_row)
