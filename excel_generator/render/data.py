"""
Data source: 렌더링 엔진이 소비하는 데이터 인터페이스.

- get_value(name): 단일 값
- get_items(name): 컬렉션의 전진 iterator (렌더링 1회에 이름당 한 번만 호출)
- get_item_count(name): 선택적 크기 힌트
- get_image(name): 이미지 바이트
- get_metadata(): 문서 속성
"""

import re
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence, Sized
from typing import Any, Protocol, runtime_checkable

from excel_generator.domain.schemas import DocumentMetadata


@runtime_checkable
class DataSource(Protocol):
    """템플릿 데이터 제공자."""

    def get_value(self, name: str) -> Any | None: ...

    def get_items(self, name: str) -> Iterator[Any] | None: ...

    def get_item_count(self, name: str) -> int | None: ...

    def get_image(self, name: str) -> bytes | None: ...

    def get_metadata(self) -> DocumentMetadata | None: ...


ItemsSupplier = Callable[[], Iterable[Any]]


class SimpleDataSource:
    """
    dict 기반 DataSource.

    컬렉션 값은 list, iterable, 또는 iterator를 돌려주는 인자 없는 함수(지연 로딩).

    Usage:
        source = SimpleDataSource(
            values={"title": "월별 보고서"},
            collections={"employees": employees},
        )
        source = SimpleDataSource.of({"title": "...", "employees": [...], "logo": png_bytes})
    """

    def __init__(
        self,
        values: Mapping[str, Any] | None = None,
        collections: Mapping[str, Iterable[Any] | ItemsSupplier] | None = None,
        images: Mapping[str, bytes] | None = None,
        metadata: DocumentMetadata | None = None,
        item_counts: Mapping[str, int] | None = None,
    ):
        self._values = dict(values or {})
        self._collections = dict(collections or {})
        self._images = dict(images or {})
        self._metadata = metadata
        self._item_counts = dict(item_counts or {})

    @classmethod
    def of(cls, data: Mapping[str, Any]) -> "SimpleDataSource":
        """
        값 종류로 자동 분류: bytes → 이미지, list/tuple/iterator → 컬렉션, 나머지 → 값.

        dict와 str은 값으로 취급한다.
        """
        values: dict[str, Any] = {}
        collections: dict[str, Any] = {}
        images: dict[str, bytes] = {}
        for key, value in data.items():
            if isinstance(value, (bytes, bytearray)):
                images[key] = bytes(value)
            elif isinstance(value, (str, Mapping)):
                values[key] = value
            elif isinstance(value, (Sequence, Iterator, set, frozenset)) or _is_generator(value):
                collections[key] = value
            else:
                values[key] = value
        return cls(values=values, collections=collections, images=images)

    @classmethod
    def empty(cls) -> "SimpleDataSource":
        return cls()

    @classmethod
    def builder(cls) -> "SimpleDataSourceBuilder":
        return SimpleDataSourceBuilder()

    def get_value(self, name: str) -> Any | None:
        return self._values.get(name)

    def get_items(self, name: str) -> Iterator[Any] | None:
        source = self._collections.get(name)
        if source is None:
            return None
        if callable(source) and not isinstance(source, Iterable):
            source = source()
        return iter(source)

    def get_item_count(self, name: str) -> int | None:
        if name in self._item_counts:
            return self._item_counts[name]
        source = self._collections.get(name)
        if isinstance(source, Sized) and not isinstance(source, Iterator):
            return len(source)
        return None

    def get_image(self, name: str) -> bytes | None:
        return self._images.get(name)

    def get_metadata(self) -> DocumentMetadata | None:
        return self._metadata


def _is_generator(value: Any) -> bool:
    return hasattr(value, "__next__") and hasattr(value, "__iter__")


class SimpleDataSourceBuilder:
    """SimpleDataSource 빌더."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._collections: dict[str, Any] = {}
        self._images: dict[str, bytes] = {}
        self._item_counts: dict[str, int] = {}
        self._metadata: DocumentMetadata | None = None

    def value(self, name: str, value: Any) -> "SimpleDataSourceBuilder":
        self._values[name] = value
        return self

    def items(
        self,
        name: str,
        items: Iterable[Any] | ItemsSupplier,
        count: int | None = None,
    ) -> "SimpleDataSourceBuilder":
        """컬렉션 추가. count를 주면 스트리밍 시 전체 순회 없이 레이아웃을 확정한다."""
        self._collections[name] = items
        if count is not None:
            self._item_counts[name] = count
        return self

    def image(self, name: str, data: bytes) -> "SimpleDataSourceBuilder":
        self._images[name] = data
        return self

    def metadata(self, metadata: DocumentMetadata | None = None, **fields: Any) -> "SimpleDataSourceBuilder":
        self._metadata = metadata or DocumentMetadata(**fields)
        return self

    def build(self) -> SimpleDataSource:
        return SimpleDataSource(
            values=self._values,
            collections=self._collections,
            images=self._images,
            metadata=self._metadata,
            item_counts=self._item_counts,
        )


# =============================================================================
# Path Resolution
# =============================================================================

_SEGMENT_RE = re.compile(r"[^.\[\]]+|\[(\d+)\]")

_MISSING = object()


def split_path(path: str) -> list[str | int]:
    """"items[0].price" → ["items", 0, "price"]."""
    segments: list[str | int] = []
    for match in _SEGMENT_RE.finditer(path):
        if match.group(1) is not None:
            segments.append(int(match.group(1)))
        else:
            segments.append(match.group(0))
    return segments


def resolve_attribute(target: Any, segment: str | int) -> Any:
    """
    dict 키 → 시퀀스 인덱스 → 속성 순서로 탐색. 없으면 _MISSING.
    """
    if target is None:
        return _MISSING
    if isinstance(target, Mapping):
        if segment in target:
            return target[segment]
        return target.get(str(segment), _MISSING)
    if isinstance(segment, int) or (isinstance(segment, str) and segment.isdigit()):
        if isinstance(target, Sequence) and not isinstance(target, str):
            index = int(segment)
            return target[index] if -len(target) <= index < len(target) else _MISSING
    if isinstance(segment, str):
        return getattr(target, segment, _MISSING)
    return _MISSING


def resolve_path(root: Any, segments: Sequence[str | int]) -> tuple[bool, Any]:
    """
    root에서 segments를 따라간 값.

    Returns:
        (found, value)
    """
    current = root
    for segment in segments:
        current = resolve_attribute(current, segment)
        if current is _MISSING:
            return False, None
    return True, current
