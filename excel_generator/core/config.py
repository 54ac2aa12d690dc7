"""
Configuration: default.yaml의 `generator:` 섹션 → GeneratorConfig.

- 파일이 없으면 기본값
- 알 수 없는 키는 경고 후 무시
- enum 값은 대소문자 구분 없음
"""

import dataclasses
import logging
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from excel_generator.domain.schemas import GeneratorConfig

logger = logging.getLogger(__name__)

CONFIG_SECTION = "generator"

# 프로젝트 루트의 default.yaml
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "default.yaml"


def load_config_file(config_path: Path | None = None) -> dict[str, Any]:
    """설정 파일 전체 로드 (없으면 빈 dict)."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        return {}

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data or {}


def _coerce(field: dataclasses.Field, value: Any) -> Any:
    field_type = field.type
    if isinstance(field_type, type) and issubclass(field_type, Enum):
        if isinstance(value, field_type):
            return value
        text = str(value).strip().lower()
        for member in field_type:
            if member.value.lower() == text or member.name.lower() == text:
                return member
        choices = ", ".join(member.value for member in field_type)
        raise ValueError(f"invalid value for {field.name}: {value!r} (expected one of: {choices})")
    if field_type in (int, "int"):
        return int(value)
    if field_type in (float, "float"):
        return float(value)
    if field_type in (bool, "bool") and isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "on", "1")
    return value


def config_from_dict(section: dict[str, Any]) -> GeneratorConfig:
    """
    dict → GeneratorConfig.

    Raises:
        ValueError: enum/숫자 값이 올바르지 않은 경우
    """
    fields = {field.name: field for field in dataclasses.fields(GeneratorConfig)}
    values: dict[str, Any] = {}
    for key, value in section.items():
        field = fields.get(key)
        if field is None:
            logger.warning(f"Unknown config key ignored: {CONFIG_SECTION}.{key}")
            continue
        if value is None:
            continue
        values[key] = _coerce(field, value)
    return GeneratorConfig(**values)


def load_config(config_path: Path | None = None) -> GeneratorConfig:
    """
    생성기 설정 로드.

    Args:
        config_path: YAML 파일 경로 (None이면 프로젝트 루트의 default.yaml)
    """
    data = load_config_file(config_path)
    section = data.get(CONFIG_SECTION) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{CONFIG_SECTION}' section must be a mapping")
    return config_from_dict(section)
