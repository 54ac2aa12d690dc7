"""
FastAPI Application Entry Point.

생성 작업 API:
- POST /api/jobs: 템플릿 + 데이터 → 백그라운드 생성 작업
- GET /api/jobs/{job_id}: 상태/진행률/결과
- GET /api/jobs/{job_id}/download: 결과 파일
- DELETE /api/jobs/{job_id}: 취소 요청
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI

from excel_generator.app.routes import jobs
from excel_generator.core.config import CONFIG_SECTION, config_from_dict, load_config_file
from excel_generator.generator import ExcelGenerator

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent.parent


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    애플리케이션 생명주기 관리.

    Startup: 설정 로드, ExcelGenerator(워커 풀) 생성
    Shutdown: 대기 중인 작업 취소 후 워커 풀 종료
    """
    # Startup
    raw_config: dict[str, Any] = load_config_file()
    config = config_from_dict(raw_config.get(CONFIG_SECTION) or {})
    api_config = raw_config.get("api") or {}

    app.state.config = config
    app.state.generator = ExcelGenerator(config)
    app.state.output_dir = PROJECT_ROOT / api_config.get("output_dir", "output")
    logger.info(f"Generator ready: mode={config.streaming_mode.value} workers={config.max_workers}")

    yield

    # Shutdown
    app.state.generator.close(wait=True, cancel_pending=True)


# =============================================================================
# App Instance
# =============================================================================

app = FastAPI(
    title="Excel Generator",
    description="XLSX 템플릿 + 데이터 → 보고서 생성",
    version="0.1.0",
    lifespan=lifespan,
)


# =============================================================================
# Routes
# =============================================================================

app.include_router(jobs.api_router, prefix="/api/jobs", tags=["Jobs API"])


@app.get("/health")
async def health() -> dict[str, str]:
    """헬스 체크."""
    return {"status": "ok"}


# =============================================================================
# CLI Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "excel_generator.app.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
