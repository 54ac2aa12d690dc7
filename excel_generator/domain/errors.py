"""
Error definitions for the generator.

규칙:
- 조용한 실패 금지 → ExcelGeneratorError 계열로 명시적 실패
- 템플릿/위치/수식 에러는 출력 생성 전에 전체 렌더링 중단
- 누락 데이터는 THROW 정책일 때만 MissingTemplateDataError
"""

from typing import Any


class ExcelGeneratorError(Exception):
    """
    생성기 정책 위반 시 발생하는 에러의 기반 클래스.

    Usage:
        raise ExcelGeneratorError("RENDER_FAILED", template="report.xlsx", error=str(e))
    """

    def __init__(self, code: str, **context: Any) -> None:
        self.code = code
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"[{self.code}] {ctx_str}" if ctx_str else f"[{self.code}]"

    def to_dict(self) -> dict[str, Any]:
        """로그/JSON 직렬화용."""
        return {
            "code": self.code,
            **{k: v if isinstance(v, (str, int, float, bool, type(None), list, dict)) else str(v)
               for k, v in self.context.items()},
        }


# =============================================================================
# Template / Formula Errors
# =============================================================================

class TemplateProcessingError(ExcelGeneratorError):
    """
    템플릿 분석 실패 (마커 문법 오류, 겹치는 repeat 범위, 알 수 없는 시트 참조).

    출력이 생성되기 전에 발생하며 복구 불가.
    """

    def __init__(self, error_type: str, details: str, **context: Any) -> None:
        self.error_type = error_type
        self.details = details
        super().__init__(ErrorCodes.TEMPLATE_PROCESSING, error_type=error_type, details=details, **context)

    @classmethod
    def invalid_marker(cls, marker: str, reason: str) -> "TemplateProcessingError":
        return cls(TemplateErrorType.INVALID_MARKER_SYNTAX, f"{reason}: {marker}", marker=marker)

    @classmethod
    def missing_parameter(cls, marker: str, parameter: str) -> "TemplateProcessingError":
        return cls(
            TemplateErrorType.MISSING_REQUIRED_PARAMETER,
            f"필수 파라미터 '{parameter}' 누락: {marker}",
            marker=marker,
            parameter=parameter,
        )

    @classmethod
    def invalid_range(cls, value: str, reason: str = "잘못된 범위 형식") -> "TemplateProcessingError":
        return cls(TemplateErrorType.INVALID_RANGE_FORMAT, f"{reason}: {value}", range=value)

    @classmethod
    def sheet_not_found(cls, sheet_name: str) -> "TemplateProcessingError":
        return cls(TemplateErrorType.SHEET_NOT_FOUND, f"시트를 찾을 수 없습니다: {sheet_name}", sheet=sheet_name)

    @classmethod
    def invalid_value(cls, parameter: str, value: str, allowed: str) -> "TemplateProcessingError":
        return cls(
            TemplateErrorType.INVALID_PARAMETER_VALUE,
            f"'{parameter}' 값이 잘못되었습니다: {value} (허용: {allowed})",
            parameter=parameter,
            value=value,
        )


class FormulaExpansionError(ExcelGeneratorError):
    """
    수식 확장 결과가 Excel 제한(함수 인자 255개)을 넘는 경우.

    어느 시트/셀/수식인지 항상 포함.
    """

    def __init__(self, sheet_name: str, cell_ref: str, formula: str, reason: str = "") -> None:
        self.sheet_name = sheet_name
        self.cell_ref = cell_ref
        self.formula = formula
        super().__init__(
            ErrorCodes.FORMULA_EXPANSION_FAILED,
            sheet=sheet_name,
            cell=cell_ref,
            formula=formula,
            reason=reason,
        )


class MissingTemplateDataError(ExcelGeneratorError):
    """
    템플릿에 필요한 데이터가 없는 경우 (THROW 정책).

    누락된 변수/컬렉션/이미지를 모두 나열한다.
    """

    def __init__(
        self,
        missing_variables: set[str] | None = None,
        missing_collections: set[str] | None = None,
        missing_images: set[str] | None = None,
    ) -> None:
        self.missing_variables = set(missing_variables or ())
        self.missing_collections = set(missing_collections or ())
        self.missing_images = set(missing_images or ())
        super().__init__(
            ErrorCodes.MISSING_TEMPLATE_DATA,
            variables=sorted(self.missing_variables),
            collections=sorted(self.missing_collections),
            images=sorted(self.missing_images),
        )

    def _format_message(self) -> str:
        lines = ["템플릿에 필요한 데이터가 누락되었습니다."]
        if self.missing_variables:
            lines.append(f"  - 변수: {', '.join(sorted(self.missing_variables))}")
        if self.missing_collections:
            lines.append(f"  - 컬렉션: {', '.join(sorted(self.missing_collections))}")
        if self.missing_images:
            lines.append(f"  - 이미지: {', '.join(sorted(self.missing_images))}")
        return f"[{self.code}] " + "\n".join(lines)

    @property
    def all_missing(self) -> set[str]:
        return self.missing_variables | self.missing_collections | self.missing_images


class CollectionCountMismatchError(ExcelGeneratorError):
    """컬렉션 크기 힌트와 실제 순회 개수가 다를 때 (정책이 허용하지 않는 경우)."""

    def __init__(self, collection: str, expected: int, actual: int) -> None:
        self.collection = collection
        self.expected = expected
        self.actual = actual
        super().__init__(
            ErrorCodes.COLLECTION_COUNT_MISMATCH,
            collection=collection,
            expected=expected,
            actual=actual,
        )


# =============================================================================
# Output / Job Errors
# =============================================================================

class OutputFileExistsError(ExcelGeneratorError):
    """ERROR 충돌 정책에서 출력 파일이 이미 존재하는 경우."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(ErrorCodes.OUTPUT_FILE_EXISTS, path=path)


class RenderCancelledError(ExcelGeneratorError):
    """협조적 취소 요청으로 렌더링이 중단됨. 부분 출력은 폐기된다."""

    def __init__(self, rows_processed: int = 0) -> None:
        self.rows_processed = rows_processed
        super().__init__(ErrorCodes.RENDER_CANCELLED, rows_processed=rows_processed)


class JobStateError(ExcelGeneratorError):
    """잘못된 작업 상태 전이/조회."""


# =============================================================================
# Error Codes
# =============================================================================

class TemplateErrorType:
    """TemplateProcessingError 세부 유형."""

    INVALID_MARKER_SYNTAX = "INVALID_MARKER_SYNTAX"
    MISSING_REQUIRED_PARAMETER = "MISSING_REQUIRED_PARAMETER"
    INVALID_RANGE_FORMAT = "INVALID_RANGE_FORMAT"
    SHEET_NOT_FOUND = "SHEET_NOT_FOUND"
    INVALID_PARAMETER_VALUE = "INVALID_PARAMETER_VALUE"
    OVERLAPPING_REPEAT_REGIONS = "OVERLAPPING_REPEAT_REGIONS"


class ErrorCodes:
    """에러 코드 상수."""

    # === Template ===
    TEMPLATE_PROCESSING = "TEMPLATE_PROCESSING"
    TEMPLATE_INVALID = "TEMPLATE_INVALID"  # xlsx로 읽을 수 없음

    # === Formula ===
    FORMULA_EXPANSION_FAILED = "FORMULA_EXPANSION_FAILED"

    # === Data ===
    MISSING_TEMPLATE_DATA = "MISSING_TEMPLATE_DATA"
    MISSING_DATA_WARNING = "MISSING_DATA_WARNING"  # warning, not reject
    COLLECTION_COUNT_MISMATCH = "COLLECTION_COUNT_MISMATCH"
    DUPLICATE_MARKER = "DUPLICATE_MARKER"  # warning
    IMAGE_INSERT_FAILED = "IMAGE_INSERT_FAILED"  # warning

    # === Render / Output ===
    RENDER_FAILED = "RENDER_FAILED"
    RENDER_CANCELLED = "RENDER_CANCELLED"
    OUTPUT_FILE_EXISTS = "OUTPUT_FILE_EXISTS"
    OUTPUT_LOCK_TIMEOUT = "OUTPUT_LOCK_TIMEOUT"

    # === Jobs ===
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    JOB_NOT_COMPLETED = "JOB_NOT_COMPLETED"
    JOB_ALREADY_FINISHED = "JOB_ALREADY_FINISHED"
