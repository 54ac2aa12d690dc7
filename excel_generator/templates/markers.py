"""
Marker grammar parser.

텍스트 형태:  ${path}, ${repeat(...)}, ${size(...)}, ${image.name}, ${image(...)}
수식 형태:    =TBEG_REPEAT(...), =TBEG_SIZE(...), =TBEG_IMAGE(...)

파라미터는 위치 인자 또는 이름 인자(name=value), 값은 ", ', ` 로 감쌀 수 있다.
"""

import re
from dataclasses import dataclass, field

from excel_generator.domain.constants import (
    FORMULA_MARKER_PREFIX,
    IMAGE_NAMESPACE,
    MARKER_IMAGE,
    MARKER_REPEAT,
    MARKER_SIZE,
)
from excel_generator.domain.errors import TemplateProcessingError

# ${...} 토큰 (중첩 중괄호 없음)
TOKEN_RE = re.compile(r"\$\{([^{}]*)\}")

# 변수 경로: user.name, items[0].price, data.0.value
VARIABLE_PATH_RE = re.compile(r"^[A-Za-z_][\w]*(?:\.\w+|\[\d+\])*$", re.UNICODE)

# 함수 호출 형태: name(args)
CALL_RE = re.compile(r"^([A-Za-z_]\w*)\s*\((.*)\)$", re.DOTALL)

# 수식 마커: =TBEG_REPEAT(...) (Excel이 붙이는 _xludf./_xlfn. 접두사 허용)
FORMULA_MARKER_RE = re.compile(
    rf"^=\s*(?:_xludf\.|_xlfn\.)?{FORMULA_MARKER_PREFIX}([A-Za-z]+)\s*\((.*)\)\s*$",
    re.IGNORECASE | re.DOTALL,
)

KNOWN_MARKERS = (MARKER_REPEAT, MARKER_SIZE, MARKER_IMAGE)

_QUOTES = "\"'`"


@dataclass(frozen=True)
class MarkerCall:
    """
    파싱된 마커 호출.

    name: repeat / size / image (소문자)
    args: 위치 인자
    kwargs: 이름 인자 (키는 소문자)
    """
    name: str
    text: str
    args: tuple[str, ...] = ()
    kwargs: dict[str, str] = field(default_factory=dict)
    is_formula: bool = False

    def param(self, position: int, *names: str, required: bool = False, parameter: str | None = None) -> str | None:
        """
        이름 인자 우선, 없으면 position번째 위치 인자.

        Raises:
            TemplateProcessingError: required인데 없음 (MISSING_REQUIRED_PARAMETER)
        """
        for name in names:
            value = self.kwargs.get(name.lower())
            if value not in (None, ""):
                return value
        if position < len(self.args) and self.args[position] != "":
            return self.args[position]
        if required:
            raise TemplateProcessingError.missing_parameter(self.text, parameter or names[0])
        return None


def unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
        return value[1:-1]
    return value


def split_arguments(arg_text: str) -> list[str]:
    """
    쉼표로 인자 분리 (따옴표 안 쉼표는 무시).

    'Data Sheet'!A1 형태의 시트 접두사 따옴표도 하나의 인자로 유지한다.
    """
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    for char in arg_text:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in _QUOTES:
            quote = char
            current.append(char)
        elif char == ",":
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    if quote:
        raise TemplateProcessingError.invalid_marker(arg_text, "닫히지 않은 따옴표")
    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return parts


def parse_arguments(arg_text: str) -> tuple[tuple[str, ...], dict[str, str]]:
    """위치 인자와 이름 인자 분리."""
    args: list[str] = []
    kwargs: dict[str, str] = {}
    for part in split_arguments(arg_text):
        key, sep, value = part.partition("=")
        if sep and re.fullmatch(r"\s*[A-Za-z_]\w*\s*", key):
            kwargs[key.strip().lower()] = unquote(value)
        else:
            args.append(unquote(part))
    return tuple(args), kwargs


def parse_token(inner: str, text: str) -> MarkerCall | str:
    """
    ${...} 토큰 내부 해석.

    Returns:
        MarkerCall (repeat/size/image) 또는 변수 경로 문자열

    Raises:
        TemplateProcessingError: 알 수 없는 함수, 잘못된 토큰
    """
    body = inner.strip()
    call = CALL_RE.match(body)
    if call:
        name = call.group(1).lower()
        if name not in KNOWN_MARKERS:
            raise TemplateProcessingError.invalid_marker(text, f"알 수 없는 마커 함수 '{call.group(1)}'")
        args, kwargs = parse_arguments(call.group(2))
        return MarkerCall(name=name, text=text, args=args, kwargs=kwargs)

    if body.startswith(f"{IMAGE_NAMESPACE}."):
        image_name = body[len(IMAGE_NAMESPACE) + 1:]
        if not image_name:
            raise TemplateProcessingError.missing_parameter(text, "name")
        return MarkerCall(name=MARKER_IMAGE, text=text, args=(image_name,))

    if not VARIABLE_PATH_RE.match(body):
        raise TemplateProcessingError.invalid_marker(text, "잘못된 변수 토큰")
    return body


def parse_formula_marker(formula: str) -> MarkerCall | None:
    """
    =TBEG_XXX(...) 수식 마커 해석. 마커가 아니면 None.

    Raises:
        TemplateProcessingError: TBEG_ 접두사지만 알 수 없는 마커
    """
    match = FORMULA_MARKER_RE.match(formula)
    if match is None:
        return None
    name = match.group(1).lower()
    if name not in KNOWN_MARKERS:
        raise TemplateProcessingError.invalid_marker(formula, f"알 수 없는 수식 마커 '{match.group(1)}'")
    args, kwargs = parse_arguments(match.group(2))
    return MarkerCall(name=name, text=formula, args=args, kwargs=kwargs, is_formula=True)


def find_tokens(text: str) -> list[tuple[str, MarkerCall | str]]:
    """텍스트의 모든 ${...} 토큰 [(원문, 해석 결과)]."""
    return [(match.group(0), parse_token(match.group(1), match.group(0))) for match in TOKEN_RE.finditer(text)]


def variable_paths(text: str) -> list[str]:
    """텍스트에 포함된 변수 경로 (마커 제외)."""
    return [parsed for _, parsed in find_tokens(text) if isinstance(parsed, str)]


def path_root(path: str) -> str:
    """user.name → user, items[0].price → items."""
    return re.split(r"[.\[]", path, maxsplit=1)[0]


def is_whole_token(text: str) -> bool:
    """텍스트 전체가 ${...} 토큰 하나인지 (값의 원래 타입 유지)."""
    match = TOKEN_RE.fullmatch(text.strip())
    return match is not None
