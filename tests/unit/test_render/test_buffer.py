"""
test_buffer.py - 스트리밍용 컬렉션 버퍼 테스트

테스트 케이스:
- TC1: CollectionBuffer spool → 개수 확정 → 재순회 → 삭제
- TC2: CollectionFeed 순차 접근, 재순회 가능 여부
- TC3: 개수 불일치 정책 (PAD / TRUNCATE / ERROR)
"""

from pathlib import Path

import pytest

from excel_generator.domain.errors import CollectionCountMismatchError, ErrorCodes
from excel_generator.domain.schemas import CountMismatchPolicy
from excel_generator.render.buffer import CollectionBuffer, CollectionFeed


class TestCollectionBuffer:
    """임시 파일 spool."""

    def test_spool_counts_and_replays(self, tmp_path: Path):
        items = ({"index": i, "name": f"항목{i}"} for i in range(50))

        with CollectionBuffer.spool("rows", items, directory=tmp_path) as buffer:
            assert len(buffer) == 50
            assert list(buffer)[49] == {"index": 49, "name": "항목49"}
            assert next(iter(buffer)) == {"index": 0, "name": "항목0"}
            path = buffer.path
            assert path.exists()

        assert not path.exists()

    def test_closed_buffer_rejects_iteration(self, tmp_path: Path):
        buffer = CollectionBuffer.spool("rows", [1], directory=tmp_path)
        buffer.close()
        buffer.close()

        with pytest.raises(ValueError):
            list(buffer)

    def test_failed_spool_removes_file(self, tmp_path: Path):
        def broken():
            yield 1
            raise RuntimeError("source failed")

        with pytest.raises(RuntimeError):
            CollectionBuffer.spool("rows", broken(), directory=tmp_path)

        assert list(tmp_path.glob("*.spool")) == []


class TestCollectionFeed:
    """아이템 접근."""

    def test_sequence_random_access(self):
        feed = CollectionFeed("rows", ["a", "b", "c"], size=3)

        assert feed.get(2) == (True, "c")
        assert feed.get(0) == (True, "a")
        assert feed.get(3) == (False, None)
        assert feed.is_replayable is True

    def test_iterator_forward_access(self):
        feed = CollectionFeed("rows", iter(["a", "b", "c"]), size=3)

        assert feed.get(0) == (True, "a")
        assert feed.get(0) == (True, "a")
        assert feed.get(2) == (True, "c")
        assert feed.is_replayable is False

    def test_iterator_cannot_go_back(self):
        feed = CollectionFeed("rows", iter(["a", "b"]), size=2)
        feed.get(1)

        with pytest.raises(RuntimeError):
            feed.get(0)

    def test_buffer_can_go_back(self, tmp_path: Path):
        buffer = CollectionBuffer.spool("rows", iter(["a", "b"]), directory=tmp_path)
        feed = CollectionFeed("rows", buffer, size=len(buffer))

        assert feed.get(1) == (True, "b")
        assert feed.get(0) == (True, "a")
        feed.close()
        assert not buffer.path.exists()

    def test_iter_all_before_use(self):
        feed = CollectionFeed("rows", iter([1, 2]), size=2)

        assert list(feed.iter_all()) == [1, 2]

    def test_iter_all_after_use(self):
        feed = CollectionFeed("rows", iter([1, 2]), size=2)
        feed.get(0)

        with pytest.raises(RuntimeError):
            feed.iter_all()


class TestCountMismatch:
    """힌트와 실제 개수가 다른 경우."""

    def test_pad_short_iterator(self):
        warnings = []
        feed = CollectionFeed(
            "rows", iter([1, 2, 3]), size=5, reconcile=True,
            warn=lambda code, message: warnings.append(code),
        )

        assert feed.get(2) == (True, 3)
        assert feed.get(3) == (False, None)
        assert feed.get(4) == (False, None)
        feed.finish()

        assert warnings == [ErrorCodes.COLLECTION_COUNT_MISMATCH]

    def test_pad_long_iterator_truncates(self):
        warnings = []
        feed = CollectionFeed(
            "rows", iter(range(5)), size=3, reconcile=True,
            warn=lambda code, message: warnings.append(message),
        )

        assert feed.get(2) == (True, 2)
        assert feed.get(3) == (False, None)
        feed.finish()

        assert len(warnings) == 1
        assert "초과" in warnings[0]

    def test_truncate_short_iterator_raises(self):
        feed = CollectionFeed("rows", iter([1]), size=3, policy=CountMismatchPolicy.TRUNCATE, reconcile=True)

        with pytest.raises(CollectionCountMismatchError) as exc_info:
            feed.get(1)

        assert exc_info.value.expected == 3
        assert exc_info.value.actual == 1

    def test_error_long_iterator_raises_on_finish(self):
        feed = CollectionFeed("rows", iter(range(4)), size=3, policy=CountMismatchPolicy.ERROR, reconcile=True)
        for i in range(3):
            feed.get(i)

        with pytest.raises(CollectionCountMismatchError):
            feed.finish()

    def test_finish_consumes_unread_items(self):
        """렌더링이 일부만 읽었어도 finish에서 실제 길이를 확인."""
        feed = CollectionFeed("rows", iter(range(3)), size=3, policy=CountMismatchPolicy.ERROR, reconcile=True)
        feed.get(0)

        feed.finish()

    def test_exact_count_no_warning(self):
        warnings = []
        feed = CollectionFeed(
            "rows", iter(range(3)), size=3, reconcile=True,
            warn=lambda code, message: warnings.append(code),
        )
        for i in range(3):
            feed.get(i)
        feed.finish()

        assert warnings == []
