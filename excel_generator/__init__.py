"""
excel_generator: 템플릿 기반 XLSX 보고서 생성기.

XLSX 템플릿의 마커(${...})를 데이터로 채워 보고서를 만든다.
- ${path}: 변수 치환
- ${repeat(collection, range, variable, direction, emptyRange)}: 반복 영역 확장
- ${size(collection)}: 아이템 수
- ${image(name, anchor, size)}: 이미지 삽입
"""

from .domain.errors import (
    CollectionCountMismatchError,
    ExcelGeneratorError,
    FormulaExpansionError,
    MissingTemplateDataError,
    OutputFileExistsError,
    RenderCancelledError,
    TemplateProcessingError,
)
from .domain.schemas import (
    DocumentMetadata,
    GenerationResult,
    GeneratorConfig,
    JobState,
    ProgressInfo,
    StreamingMode,
)
from .generator import ExcelGenerator
from .jobs import GenerationJob, GenerationListener, JobOrchestrator
from .render import CancelToken, SimpleDataSource, TemplateRenderingEngine

__all__ = [
    # facade
    "ExcelGenerator",
    # render
    "TemplateRenderingEngine",
    "SimpleDataSource",
    "CancelToken",
    # jobs
    "JobOrchestrator",
    "GenerationJob",
    "GenerationListener",
    # schemas
    "GeneratorConfig",
    "StreamingMode",
    "DocumentMetadata",
    "GenerationResult",
    "ProgressInfo",
    "JobState",
    # errors
    "ExcelGeneratorError",
    "TemplateProcessingError",
    "FormulaExpansionError",
    "MissingTemplateDataError",
    "CollectionCountMismatchError",
    "OutputFileExistsError",
    "RenderCancelledError",
]
