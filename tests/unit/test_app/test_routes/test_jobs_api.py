"""
test_jobs_api.py - Jobs Routes 유닛 테스트

검증 포인트:
1. 제출 → 202 + job_id, 완료 후 다운로드
2. data JSON 형식 오류 → 400, 템플릿 마커 오류 → 422
3. 미완료 작업 다운로드 → 409, 종료된 작업 취소 → 409
4. 없는 작업 → 404
"""

import base64
import json
from io import BytesIO
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from openpyxl import Workbook, load_workbook
from PIL import Image as PILImage

from excel_generator.app.routes.jobs import api_router, parse_data_source
from excel_generator.domain.constants import XLSX_MIME_TYPE
from excel_generator.domain.errors import ErrorCodes
from excel_generator.domain.schemas import MissingDataBehavior
from excel_generator.generator import ExcelGenerator
from excel_generator.jobs.job import GenerationJob

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def generator(memory_config):
    generator = ExcelGenerator(memory_config)
    yield generator
    generator.close()


@pytest.fixture
def app(tmp_path: Path, generator) -> FastAPI:
    """테스트용 FastAPI 앱."""
    app = FastAPI()
    app.include_router(api_router, prefix="/api/jobs")
    app.state.generator = generator
    app.state.output_dir = tmp_path / "output"
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """테스트 클라이언트."""
    return TestClient(app)


@pytest.fixture
def payload(employees) -> dict:
    return {"values": {"title": "직원 목록"}, "collections": {"employees": employees}}


def _submit(client: TestClient, template: bytes, data, **form):
    body = data if isinstance(data, str) else json.dumps(data)
    return client.post(
        "/api/jobs",
        files={"template": ("template.xlsx", template, XLSX_MIME_TYPE)},
        data={"data": body, **form},
    )


def _wait(app: FastAPI, job_id: str):
    return app.state.generator.orchestrator.require(job_id).await_result(timeout=30)


# =============================================================================
# Submit / Download
# =============================================================================


class TestSubmitAndDownload:
    """제출 후 다운로드."""

    def test_submit_returns_job_id(self, client, employee_template, payload):
        response = _submit(client, employee_template, payload)

        assert response.status_code == 202
        body = response.json()
        assert body["job_id"].startswith("JOB-")
        assert body["state"] in {"pending", "running", "completed"}

    def test_download_bytes_result(self, app, client, employee_template, payload):
        job_id = _submit(client, employee_template, payload).json()["job_id"]
        _wait(app, job_id)

        response = client.get(f"/api/jobs/{job_id}/download")

        assert response.status_code == 200
        assert response.headers["content-type"] == XLSX_MIME_TYPE
        assert f"{job_id}.xlsx" in response.headers["content-disposition"]
        ws = load_workbook(BytesIO(response.content))["Report"]
        assert ws["A1"].value == "직원 목록"
        assert ws["A4"].value == "이영희"

    def test_download_file_result(self, app, client, employee_template, payload, tmp_path: Path):
        job_id = _submit(client, employee_template, payload, file_name="../escape").json()["job_id"]
        result = _wait(app, job_id)

        assert result.file_path == tmp_path / "output" / "escape.xlsx"
        response = client.get(f"/api/jobs/{job_id}/download")
        assert response.status_code == 200
        assert load_workbook(BytesIO(response.content))["Report"]["A3"].value == "김철수"

    def test_metadata_and_images(self, app, client, make_template):
        def build(wb: Workbook) -> None:
            wb["Report"]["A1"] = "${image.logo}"
            wb["Report"]["B1"] = "${title}"

        buffer = BytesIO()
        PILImage.new("RGB", (4, 4)).save(buffer, format="PNG")
        data = {
            "values": {"title": "로고"},
            "images": {"logo": base64.b64encode(buffer.getvalue()).decode()},
            "metadata": {"title": "월간 보고서", "author": "생성기"},
        }
        job_id = _submit(client, make_template(build), data).json()["job_id"]
        wb = load_workbook(BytesIO(_wait(app, job_id).content))

        assert wb.properties.title == "월간 보고서"
        assert wb.properties.creator == "생성기"
        assert len(wb["Report"]._images) == 1


# =============================================================================
# Request Errors
# =============================================================================


class TestRequestErrors:
    """요청 오류."""

    def test_invalid_json(self, client, employee_template):
        response = _submit(client, employee_template, "{not json")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_DATA"

    def test_collection_must_be_array(self, client, employee_template):
        response = _submit(client, employee_template, {"collections": {"employees": {"name": "x"}}})

        assert response.status_code == 400
        assert "employees" in response.json()["detail"]["message"]

    def test_invalid_marker(self, client, make_template):
        def build(wb: Workbook) -> None:
            wb["Report"]["A1"] = "${repeat(items)}"

        response = _submit(client, make_template(build), {})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == ErrorCodes.TEMPLATE_PROCESSING

    def test_not_a_workbook(self, client):
        response = _submit(client, b"plain text", {})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == ErrorCodes.TEMPLATE_INVALID


class TestParseDataSource:
    """data JSON → SimpleDataSource."""

    def test_full_payload(self):
        source = parse_data_source(json.dumps({
            "values": {"title": "t"},
            "collections": {"rows": [1, 2]},
            "images": {"logo": base64.b64encode(b"raw").decode()},
            "metadata": {"title": "문서", "created": "2024-01-01T09:00:00", "unknown": "ignored"},
        }))

        assert source.get_value("title") == "t"
        assert list(source.get_items("rows")) == [1, 2]
        assert source.get_image("logo") == b"raw"
        assert source.get_metadata().title == "문서"
        assert source.get_metadata().created.year == 2024

    def test_empty(self):
        source = parse_data_source("")

        assert source.get_value("anything") is None


# =============================================================================
# Job Lookup / Cancel
# =============================================================================


class TestJobLookup:
    """조회 / 취소."""

    def test_list_and_detail(self, app, client, employee_template, payload):
        job_id = _submit(client, employee_template, payload).json()["job_id"]
        _wait(app, job_id)

        listed = client.get("/api/jobs").json()["jobs"]
        assert {"job_id": job_id, "state": "completed"} in listed

        detail = client.get(f"/api/jobs/{job_id}").json()
        assert detail["state"] == "completed"
        assert detail["result"]["rows_processed"] > 0
        assert detail["error"] is None

    def test_unknown_job(self, client):
        for response in (
            client.get("/api/jobs/JOB-missing"),
            client.get("/api/jobs/JOB-missing/download"),
            client.delete("/api/jobs/JOB-missing"),
        ):
            assert response.status_code == 404
            assert response.json()["detail"]["code"] == ErrorCodes.JOB_NOT_FOUND

    def test_pending_job(self, app, client):
        job = GenerationJob()
        orchestrator = app.state.generator.orchestrator
        orchestrator._jobs[job.job_id] = job

        download = client.get(f"/api/jobs/{job.job_id}/download")
        assert download.status_code == 409
        assert download.json()["detail"]["code"] == ErrorCodes.JOB_NOT_COMPLETED

        cancelled = client.delete(f"/api/jobs/{job.job_id}")
        assert cancelled.status_code == 202
        assert cancelled.json() == {"job_id": job.job_id, "state": "cancelled"}

        again = client.delete(f"/api/jobs/{job.job_id}")
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == ErrorCodes.JOB_ALREADY_FINISHED

    def test_failed_job_detail(self, app, client, make_template):
        def build(wb: Workbook) -> None:
            wb["Report"]["A1"] = "${missing}"

        throwing = app.state.generator.config.with_(missing_data_behavior=MissingDataBehavior.THROW)
        app.state.generator = ExcelGenerator(throwing)
        try:
            job_id = _submit(client, make_template(build), {}).json()["job_id"]
            job = app.state.generator.orchestrator.require(job_id)
            job.future().exception(timeout=30)

            detail = client.get(f"/api/jobs/{job_id}").json()
            assert detail["state"] == "failed"
            assert detail["error"]["code"] == ErrorCodes.MISSING_TEMPLATE_DATA
            assert client.get(f"/api/jobs/{job_id}/download").status_code == 409
        finally:
            app.state.generator.close()


class TestHealth:
    """헬스 체크."""

    def test_health(self):
        from excel_generator.app.main import app

        assert TestClient(app).get("/health").json() == {"status": "ok"}
