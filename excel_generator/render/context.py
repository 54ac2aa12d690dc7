"""
Render context: 렌더링 1회의 상태 (데이터 조회, 경고, 취소, 진행률).

렌더링마다 새로 만들어지며 다른 렌더링과 공유되지 않는다.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from datetime import date, datetime, time
from decimal import Decimal
from functools import lru_cache
from typing import Any

from excel_generator.domain.blueprint import CellStyle
from excel_generator.domain.constants import DEFAULT_DECIMAL_FORMAT, DEFAULT_INTEGER_FORMAT
from excel_generator.domain.errors import ErrorCodes, RenderCancelledError
from excel_generator.domain.schemas import GeneratorConfig, ProgressInfo, RenderLog, RenderWarning
from excel_generator.render.buffer import CollectionFeed
from excel_generator.render.data import DataSource, resolve_path, split_path
from excel_generator.templates.markers import MarkerCall, TOKEN_RE, parse_token

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressInfo], None]

# 변수 → 아이템 (found, item)
Scope = Mapping[str, tuple[bool, Any]]

EMPTY_SCOPE: Scope = {}


class CancelToken:
    """협조적 취소 플래그 (스레드 안전)."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@lru_cache(maxsize=4096)
def _parsed_tokens(text: str) -> tuple[tuple[str, MarkerCall | str], ...]:
    return tuple((m.group(0), parse_token(m.group(1), m.group(0))) for m in TOKEN_RE.finditer(text))


@lru_cache(maxsize=4096)
def _split(path: str) -> tuple[str | int, ...]:
    return tuple(split_path(path))


def numeric_format_for(value: Any, style: CellStyle | None) -> str | None:
    """
    "General" 셀에 데이터 소스 숫자가 들어가면 기본 숫자 서식.

    정수 → #,##0, 실수 → #,##0.00. bool은 숫자로 보지 않는다.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return None
    if style is not None and not style.is_general:
        return None
    if isinstance(value, int) or (isinstance(value, (float, Decimal)) and value == int(value)):
        return DEFAULT_INTEGER_FORMAT
    return DEFAULT_DECIMAL_FORMAT


def to_text(value: Any) -> str:
    """보간용 문자열 변환."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class RenderContext:
    """
    렌더링 1회 상태.

    Usage:
        context = RenderContext(data_source, config, render_log, feeds)
        found, value = context.resolve("user.name", scope)
    """

    def __init__(
        self,
        data_source: DataSource,
        config: GeneratorConfig,
        render_log: RenderLog,
        feeds: Mapping[str, CollectionFeed] | None = None,
        sizes: Mapping[str, int] | None = None,
        cancel_token: CancelToken | None = None,
        progress_callback: ProgressCallback | None = None,
        total_rows: int | None = None,
    ):
        self.data_source = data_source
        self.config = config
        self.render_log = render_log
        self.feeds = dict(feeds or {})
        self.sizes = dict(sizes or {})
        self.cancel_token = cancel_token
        self.progress_callback = progress_callback
        self.total_rows = total_rows
        self.rows_processed = 0
        self._values: dict[str, tuple[bool, Any]] = {}
        self._reported: set[tuple[str, str]] = set()

    # =========================================================================
    # Warnings / Cancellation / Progress
    # =========================================================================

    def warn(self, code: str, message: str, sheet: str | None = None, cell: str | None = None) -> None:
        self.render_log.warnings.append(RenderWarning(code=code, message=message, sheet=sheet, cell=cell))
        logger.warning(f"[{code}] {message}" + (f" ({sheet}!{cell})" if sheet and cell else ""))

    def warn_once(self, kind: str, name: str, message: str) -> None:
        if (kind, name) in self._reported:
            return
        self._reported.add((kind, name))
        self.warn(ErrorCodes.MISSING_DATA_WARNING, message)

    def check_cancelled(self) -> None:
        """
        Raises:
            RenderCancelledError: 취소 요청됨
        """
        if self.cancel_token is not None and self.cancel_token.is_cancelled:
            raise RenderCancelledError(rows_processed=self.rows_processed)

    def row_done(self) -> None:
        """행 1개 처리 완료. progress_report_interval마다 진행률 보고."""
        self.rows_processed += 1
        if self.progress_callback is not None and self.rows_processed % self.config.progress_report_interval == 0:
            self.progress_callback(ProgressInfo.of(self.rows_processed, self.total_rows))

    # =========================================================================
    # Data Lookup
    # =========================================================================

    def item(self, collection: str, index: int) -> tuple[bool, Any]:
        feed = self.feeds.get(collection)
        if feed is None:
            return False, None
        return feed.get(index)

    def size(self, collection: str) -> int:
        return self.sizes.get(collection, 0)

    def _root_value(self, name: str) -> tuple[bool, Any]:
        if name not in self._values:
            value = self.data_source.get_value(name)
            self._values[name] = (value is not None, value)
        return self._values[name]

    def resolve(self, path: str, scope: Scope = EMPTY_SCOPE) -> tuple[bool, Any]:
        """
        변수 경로 값 조회.

        루트가 반복 변수면 현재 아이템에서, 아니면 데이터 소스 값에서 찾는다.
        아이템 하위 필드가 없으면 빈 값 (데이터 소스 계약 소관).
        """
        segments = _split(path)
        root = segments[0]
        if root in scope:
            found, item = scope[root]
            if not found:
                return True, None
            ok, value = resolve_path(item, segments[1:])
            if not ok:
                logger.debug(f"item field not found: {path}")
            return True, value if ok else None

        found, value = self._root_value(root)
        if not found:
            if root in self.sizes or root in self.feeds:
                return True, None
            self.warn_once("variable", root, f"변수 '{root}' 데이터 없음 (빈 값으로 렌더링)")
            return False, None
        ok, resolved = resolve_path(value, segments[1:])
        if not ok:
            logger.debug(f"value field not found: {path}")
            return True, None
        return True, resolved

    def token_value(self, parsed: MarkerCall | str, scope: Scope) -> Any:
        match parsed:
            case str() as path:
                return self.resolve(path, scope)[1]
            case MarkerCall(name="size") as call:
                return self.size(call.param(0, "collection", required=True))
            case MarkerCall():
                return None

    def interpolate(self, text: str, scope: Scope = EMPTY_SCOPE) -> str:
        """텍스트의 모든 ${...} 토큰 치환."""
        tokens = _parsed_tokens(text)
        if not tokens:
            return text
        result = text
        for raw, parsed in tokens:
            result = result.replace(raw, to_text(self.token_value(parsed, scope)), 1)
        return result

    def whole_value(self, text: str, scope: Scope = EMPTY_SCOPE) -> Any:
        """토큰 하나뿐인 텍스트 → 값의 원래 타입."""
        tokens = _parsed_tokens(text.strip())
        return self.token_value(tokens[0][1], scope)
