"""
Templates layer: 템플릿 분석.

- markers.py: ${...} / TBEG_*() 마커 문법
- analyzer.py: XLSX 템플릿 → Blueprint
"""

from .analyzer import TemplateAnalyzer, load_template

__all__ = [
    "TemplateAnalyzer",
    "load_template",
]
