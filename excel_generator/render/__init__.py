"""
Render layer: Blueprint + 데이터 → XLSX.

역할:
- engine.py: 렌더링 파이프라인 (모드 선택, 누락 데이터, 컬렉션 준비)
- memory.py / streaming.py: 메모리 모드, 스트리밍(write-only) 모드
- openpyxl
"""

from .context import CancelToken
from .data import DataSource, SimpleDataSource
from .engine import TemplateRenderingEngine

__all__ = [
    "TemplateRenderingEngine",
    "DataSource",
    "SimpleDataSource",
    "CancelToken",
]
