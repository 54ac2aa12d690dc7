"""
Jobs Routes: 생성 작업 제출/조회/다운로드/취소.

- POST /api/jobs → 작업 제출 (202)
- GET /api/jobs → 작업 목록
- GET /api/jobs/<job_id> → 상태, 진행률, 결과 요약 또는 에러
- GET /api/jobs/<job_id>/download → 결과 파일 (완료 전 409)
- DELETE /api/jobs/<job_id> → 취소 요청

에러 응답 detail은 {"code", "message"}.
"""

import base64
import binascii
import json
from datetime import datetime
from pathlib import Path
from typing import Any

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse, Response

from excel_generator.domain.constants import XLSX_MIME_TYPE
from excel_generator.domain.errors import (
    ErrorCodes,
    ExcelGeneratorError,
    TemplateProcessingError,
)
from excel_generator.domain.schemas import DocumentMetadata, JobState
from excel_generator.generator import ExcelGenerator
from excel_generator.jobs.job import GenerationJob
from excel_generator.render.data import SimpleDataSource

api_router = APIRouter()

METADATA_FIELDS = {
    "title", "author", "subject", "keywords", "description", "category", "company", "manager", "created",
}


def get_generator(request: Request) -> ExcelGenerator:
    """Request에서 ExcelGenerator 가져오기."""
    return request.app.state.generator


def get_output_dir(request: Request) -> Path:
    return request.app.state.output_dir


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _get_job(request: Request, job_id: str) -> GenerationJob:
    job = get_generator(request).orchestrator.get(job_id)
    if job is None:
        raise _error(404, ErrorCodes.JOB_NOT_FOUND, f"Job not found: {job_id}")
    return job


# =============================================================================
# Request Parsing
# =============================================================================

def parse_data_source(data: str) -> SimpleDataSource:
    """
    data JSON → SimpleDataSource.

    {
        "values": {...},
        "collections": {"name": [...]},
        "images": {"name": "<base64>"},
        "metadata": {"title": ..., "created": "2024-01-01T00:00:00"}
    }

    Raises:
        HTTPException: 400 (JSON 형식 오류)
    """
    try:
        payload = json.loads(data) if data else {}
    except json.JSONDecodeError:
        raise _error(400, "INVALID_DATA", "data must be valid JSON") from None
    if not isinstance(payload, dict):
        raise _error(400, "INVALID_DATA", "data must be a JSON object")

    collections = payload.get("collections") or {}
    bad = [name for name, items in collections.items() if not isinstance(items, list)]
    if bad:
        raise _error(400, "INVALID_DATA", f"collections must be arrays: {', '.join(bad)}")

    images: dict[str, bytes] = {}
    for name, encoded in (payload.get("images") or {}).items():
        try:
            images[name] = base64.b64decode(encoded, validate=True)
        except (binascii.Error, TypeError):
            raise _error(400, "INVALID_DATA", f"image '{name}' must be base64") from None

    metadata = None
    raw_metadata = payload.get("metadata")
    if raw_metadata:
        fields = {key: value for key, value in raw_metadata.items() if key in METADATA_FIELDS}
        if isinstance(fields.get("created"), str):
            try:
                fields["created"] = datetime.fromisoformat(fields["created"])
            except ValueError:
                raise _error(400, "INVALID_DATA", "metadata.created must be ISO 8601") from None
        metadata = DocumentMetadata(**fields)

    return SimpleDataSource(
        values=payload.get("values") or {},
        collections=collections,
        images=images,
        metadata=metadata,
    )


# =============================================================================
# API Routes
# =============================================================================

@api_router.post("", status_code=202)
async def submit_job(
    request: Request,
    template: UploadFile = File(...),
    data: str = Form("{}"),
    file_name: str | None = Form(None),
) -> dict[str, Any]:
    """
    생성 작업 제출.

    file_name이 있으면 결과를 출력 디렉터리에 저장하고, 없으면 메모리에 보관한다.
    """
    content = await template.read()
    data_source = parse_data_source(data)
    generator = get_generator(request)

    try:
        if file_name:
            job = generator.submit_to_file(content, data_source, get_output_dir(request), Path(file_name).name)
        else:
            job = generator.submit(content, data_source)
    except TemplateProcessingError as e:
        raise _error(422, e.code, str(e)) from None
    except ExcelGeneratorError as e:
        raise _error(400, e.code, str(e)) from None

    return {"job_id": job.job_id, "state": job.state.value}


@api_router.get("")
async def list_jobs(request: Request) -> dict[str, Any]:
    """작업 목록."""
    jobs = get_generator(request).orchestrator.jobs()
    return {"jobs": [{"job_id": job.job_id, "state": job.state.value} for job in jobs]}


@api_router.get("/{job_id}")
async def get_job(request: Request, job_id: str) -> dict[str, Any]:
    """작업 상세."""
    return _get_job(request, job_id).to_dict()


@api_router.get("/{job_id}/download", response_model=None)
async def download_job(request: Request, job_id: str) -> FileResponse | Response:
    """결과 파일 다운로드."""
    job = _get_job(request, job_id)
    if job.state != JobState.COMPLETED or not job.future().done():
        raise _error(409, ErrorCodes.JOB_NOT_COMPLETED, f"Job is {job.state.value}")

    result = job.result()
    if result.file_path is not None:
        if not result.file_path.exists():
            raise _error(404, ErrorCodes.JOB_NOT_FOUND, f"Output file missing: {result.file_path.name}")
        return FileResponse(path=result.file_path, filename=result.file_path.name, media_type=XLSX_MIME_TYPE)

    return Response(
        content=result.content or b"",
        media_type=XLSX_MIME_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{job.job_id}.xlsx"'},
    )


@api_router.delete("/{job_id}", status_code=202)
async def cancel_job(request: Request, job_id: str) -> JSONResponse:
    """취소 요청. 이미 종료된 작업이면 409."""
    job = _get_job(request, job_id)
    if not job.cancel():
        raise _error(409, ErrorCodes.JOB_ALREADY_FINISHED, f"Job is {job.state.value}")
    return JSONResponse(status_code=202, content={"job_id": job.job_id, "state": job.state.value})
