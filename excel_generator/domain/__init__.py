"""Domain layer: errors, schemas, blueprint model."""

from .blueprint import Blueprint, RepeatRegionSpec, SheetSpec
from .errors import ErrorCodes, ExcelGeneratorError, TemplateProcessingError
from .schemas import GeneratorConfig, RenderLog

__all__ = [
    "Blueprint",
    "SheetSpec",
    "RepeatRegionSpec",
    "ErrorCodes",
    "ExcelGeneratorError",
    "TemplateProcessingError",
    "GeneratorConfig",
    "RenderLog",
]
