"""
Collection buffering for streaming mode.

- CollectionBuffer: 크기 힌트가 없는 iterator를 임시 파일(pickle 프레임)에 한 번 spool하여
  개수를 확정하고, 이후 디스크에서 다시 읽는다 (메모리 사용 고정)
- CollectionFeed: 렌더링 중 아이템 접근. 인덱스는 증가 방향으로만 요청된다고 가정하고
  재순회가 가능한 소스(list, CollectionBuffer)만 뒤로 되돌아갈 수 있다
"""

import logging
import os
import pickle
import tempfile
from collections.abc import Callable, Iterable, Iterator, Sequence
from pathlib import Path
from typing import Any

from excel_generator.domain.errors import CollectionCountMismatchError, ErrorCodes
from excel_generator.domain.schemas import CountMismatchPolicy

logger = logging.getLogger(__name__)


class CollectionBuffer:
    """
    iterator → 임시 파일 spool.

    Usage:
        with CollectionBuffer.spool("employees", iterator) as buffer:
            len(buffer)
            for item in buffer: ...
    """

    def __init__(self, name: str, directory: Path | None = None):
        self.name = name
        fd, path = tempfile.mkstemp(prefix=f"excel_generator_{name}_", suffix=".spool", dir=directory)
        self.path = Path(path)
        self._file = os.fdopen(fd, "wb")
        self._count = 0
        self._closed = False

    @classmethod
    def spool(cls, name: str, items: Iterable[Any], directory: Path | None = None) -> "CollectionBuffer":
        buffer = cls(name, directory)
        try:
            for item in items:
                buffer.append(item)
            buffer.seal()
        except BaseException:
            buffer.close()
            raise
        logger.debug(f"Collection spooled: {name} ({buffer._count} items) -> {buffer.path}")
        return buffer

    def append(self, item: Any) -> None:
        pickle.dump(item, self._file, protocol=pickle.HIGHEST_PROTOCOL)
        self._count += 1

    def seal(self) -> None:
        """쓰기 종료."""
        if not self._file.closed:
            self._file.close()

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[Any]:
        if self._closed:
            raise ValueError(f"collection buffer closed: {self.name}")
        self.seal()
        with self.path.open("rb") as f:
            for _ in range(self._count):
                yield pickle.load(f)

    def close(self) -> None:
        """임시 파일 삭제 (여러 번 호출해도 안전)."""
        if self._closed:
            return
        self._closed = True
        self.seal()
        self.path.unlink(missing_ok=True)

    def __enter__(self) -> "CollectionBuffer":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


WarningSink = Callable[[str, str], None]


class CollectionFeed:
    """
    렌더링 중 컬렉션 아이템 공급기.

    size: 레이아웃에 사용된 아이템 수 (힌트 또는 실제 개수)
    reconcile=True: 힌트 기반 (실제 iterator 길이와 불일치 가능 → policy 적용)
    """

    def __init__(
        self,
        name: str,
        source: Iterable[Any],
        size: int,
        policy: CountMismatchPolicy = CountMismatchPolicy.PAD,
        reconcile: bool = False,
        warn: WarningSink | None = None,
    ):
        self.name = name
        self.size = size
        self.policy = policy
        self.reconcile = reconcile
        self._source = source
        self._warn = warn or (lambda code, message: None)
        self._random_access = isinstance(source, Sequence)
        self._iterator: Iterator[Any] | None = None
        self._index = -1
        self._current: Any = None
        self._exhausted = False
        self._consumed = 0
        self._short_warned = False

    @property
    def is_replayable(self) -> bool:
        return self._random_access or isinstance(self._source, CollectionBuffer)

    def get(self, index: int) -> tuple[bool, Any]:
        """
        index번째 아이템.

        Returns:
            (found, item). PAD 정책에서 iterator가 짧으면 (False, None)

        Raises:
            CollectionCountMismatchError: TRUNCATE/ERROR 정책에서 iterator가 짧은 경우
        """
        if index >= self.size or index < 0:
            return False, None
        if self._random_access:
            sequence = self._source
            return (True, sequence[index]) if index < len(sequence) else self._short(len(sequence))

        if index < self._index:
            if not self.is_replayable:
                raise RuntimeError(f"collection '{self.name}' cannot be replayed (index {index} < {self._index})")
            self._close_iterator()
            self._index = -1
            self._exhausted = False

        if self._iterator is None:
            self._iterator = iter(self._source)

        while self._index < index:
            if self._exhausted:
                return self._short(self._consumed)
            try:
                self._current = next(self._iterator)
            except StopIteration:
                self._exhausted = True
                return self._short(self._index + 1)
            self._index += 1
            self._consumed = max(self._consumed, self._index + 1)
        return True, self._current

    def _short(self, actual: int) -> tuple[bool, Any]:
        if self.policy == CountMismatchPolicy.PAD:
            if not self._short_warned:
                self._short_warned = True
                message = f"컬렉션 '{self.name}' 아이템 부족: 예상 {self.size}, 실제 {actual} (빈 칸으로 채움)"
                logger.warning(message)
                self._warn(ErrorCodes.COLLECTION_COUNT_MISMATCH, message)
            return False, None
        raise CollectionCountMismatchError(self.name, self.size, actual)

    def finish(self) -> None:
        """
        렌더링 종료 후 초과 아이템 확인 (힌트 기반 feed만).

        Raises:
            CollectionCountMismatchError: ERROR 정책에서 iterator가 더 긴 경우
        """
        if not self.reconcile or self._random_access or self._exhausted:
            return
        if self._iterator is None:
            self._iterator = iter(self._source)
        while self._index < self.size - 1:
            try:
                next(self._iterator)
            except StopIteration:
                self._exhausted = True
                self._short(self._index + 1)
                return
            self._index += 1
        try:
            next(self._iterator)
        except StopIteration:
            return
        if self.policy == CountMismatchPolicy.ERROR:
            raise CollectionCountMismatchError(self.name, self.size, self.size + 1)
        message = f"컬렉션 '{self.name}' 아이템 초과: 예상 {self.size}, 초과분은 잘라냄"
        logger.warning(message)
        self._warn(ErrorCodes.COLLECTION_COUNT_MISMATCH, message)

    def iter_all(self) -> Iterator[Any]:
        """아직 읽지 않은 소스 전체 순회 (레이아웃 전에 list로 확정할 때)."""
        if self._iterator is not None:
            raise RuntimeError(f"collection '{self.name}' already in use")
        return iter(self._source)

    def close(self) -> None:
        self._close_iterator()
        if isinstance(self._source, CollectionBuffer):
            self._source.close()

    def _close_iterator(self) -> None:
        close = getattr(self._iterator, "close", None)
        if callable(close):
            close()
        self._iterator = None
