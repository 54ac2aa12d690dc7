"""
App layer: 생성 작업 HTTP API (FastAPI).

렌더링 로직 없음 (ExcelGenerator에 위임).
"""
