"""
Core layer: 좌표 계산, 수식 조정, 출력 파일, 설정.

역할:
- PositionCalculator: 템플릿 좌표 → 최종 좌표
- FormulaAdjuster: 확장에 맞춘 수식 참조 재작성 (문자열 변환만, 평가 없음)
- 출력 파일 이름/락/원자적 쓰기, RenderLog 저장
"""

from .config import load_config
from .files import atomic_write_json, build_file_name, output_lock, publish_output
from .formula import FormulaAdjuster
from .ids import generate_job_id, generate_render_id
from .logging import complete_render_log, create_render_log, save_render_log
from .position import PositionCalculator, PositionMap, RowInfo, calculate

__all__ = [
    # position
    "PositionCalculator",
    "PositionMap",
    "RowInfo",
    "calculate",
    # formula
    "FormulaAdjuster",
    # files
    "build_file_name",
    "output_lock",
    "publish_output",
    "atomic_write_json",
    # ids
    "generate_job_id",
    "generate_render_id",
    # logging
    "create_render_log",
    "complete_render_log",
    "save_render_log",
    # config
    "load_config",
]
