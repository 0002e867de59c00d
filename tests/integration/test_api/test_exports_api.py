"""Integration tests for export API endpoints over a real runtime and SQLite database."""

import uuid
from collections.abc import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from bulk_export.api.v1.exports import exports_router
from bulk_export.core.config import Settings, get_settings
from bulk_export.core.dependencies import get_export_runtime
from bulk_export.core.security import create_access_token
from bulk_export.lib.export_lifecycle import ExportStatus
from bulk_export.services.export_repository import ExportJobRepository
from bulk_export.services.runtime import ExportRuntime


def _make_app(runtime: ExportRuntime, settings: Settings) -> FastAPI:
    app = FastAPI()
    app.include_router(exports_router, prefix="/api/v1")
    app.dependency_overrides[get_export_runtime] = lambda: runtime
    app.dependency_overrides[get_settings] = lambda: settings
    return app


def _auth(settings: Settings, requester_id: int = 42, organization_id: int | None = 7) -> dict[str, str]:
    token = create_access_token(requester_id, organization_id, settings.jwt_secret_key)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(runtime: ExportRuntime, settings: Settings) -> AsyncGenerator[AsyncClient]:
    transport = ASGITransport(app=_make_app(runtime, settings))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def headers(requester_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {requester_token}"}


async def _create(client: AsyncClient, headers: dict[str, str], **body) -> dict:
    payload = {"resource_type": "donations", "format": "csv", "filters": {"campaign_id": 5}}
    payload.update(body)
    response = await client.post("/api/v1/exports", json=payload, headers=headers)
    assert response.status_code == 202, response.text
    return response.json()


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/exports")
        assert response.status_code == 401
        assert response.json()["detail"] == "Could not validate credentials"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/exports", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestRequestExport:
    @pytest.mark.asyncio
    async def test_accepted(self, client: AsyncClient, headers: dict[str, str]) -> None:
        data = await _create(client, headers)
        assert data["deduplicated"] is False
        assert data["status_url"] == f"/api/v1/exports/{data['export_id']}"

        status_response = await client.get(data["status_url"], headers=headers)
        assert status_response.status_code == 200
        body = status_response.json()
        assert body["status"] == "pending"
        assert body["progress"]["percentage"] == 0
        assert body["download_url"] is None

    @pytest.mark.asyncio
    async def test_unknown_resource_type(self, client: AsyncClient, headers: dict[str, str]) -> None:
        response = await client.post("/api/v1/exports", json={"resource_type": "spaceships"}, headers=headers)
        assert response.status_code == 422
        assert response.json()["detail"] == "Invalid resource type: spaceships"

    @pytest.mark.asyncio
    async def test_unsupported_format(self, client: AsyncClient, headers: dict[str, str]) -> None:
        response = await client.post(
            "/api/v1/exports", json={"resource_type": "donations", "format": "pdf"}, headers=headers
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_too_many_active(self, client: AsyncClient, headers: dict[str, str]) -> None:
        for campaign in range(3):
            await _create(client, headers, filters={"campaign_id": campaign})

        response = await client.post(
            "/api/v1/exports", json={"resource_type": "donations", "filters": {"campaign_id": 9}}, headers=headers
        )
        assert response.status_code == 429
        assert response.json()["detail"]["reason"] == "too_many_active"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_complete_and_download(
        self, client: AsyncClient, headers: dict[str, str], runtime: ExportRuntime
    ) -> None:
        data = await _create(client, headers)
        await runtime.worker().run_once()

        body = (await client.get(data["status_url"], headers=headers)).json()
        assert body["status"] == "completed"
        assert body["progress"]["percentage"] == 100
        assert body["can_download"] is True
        assert body["expires_in_hours"] == 71

        download = await client.get(body["download_url"])
        assert download.status_code == 200
        assert download.headers["content-type"].startswith("text/csv")
        assert download.content.decode("utf-8-sig").splitlines()[0] == "id,donor,amount"

        again = await _create(client, headers)
        assert again["deduplicated"] is True
        assert again["export_id"] == data["export_id"]

    @pytest.mark.asyncio
    async def test_download_with_bad_token(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/exports/download/garbage")
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_processing_delete_conflict_then_cancel(
        self,
        client: AsyncClient,
        headers: dict[str, str],
        repository: ExportJobRepository,
    ) -> None:
        data = await _create(client, headers)
        await repository.mark_as_processing(data["export_id"], 10)

        response = await client.delete(f"/api/v1/exports/{data['export_id']}", headers=headers)
        assert response.status_code == 409

        response = await client.post(f"/api/v1/exports/{data['export_id']}/cancel", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        response = await client.delete(f"/api/v1/exports/{data['export_id']}", headers=headers)
        assert response.status_code == 204
        response = await client.get(f"/api/v1/exports/{data['export_id']}", headers=headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_retry_failed_export(
        self,
        client: AsyncClient,
        headers: dict[str, str],
        repository: ExportJobRepository,
    ) -> None:
        data = await _create(client, headers)
        await repository.mark_as_processing(data["export_id"])
        await repository.mark_as_failed(data["export_id"], "boom")

        response = await client.post(f"/api/v1/exports/{data['export_id']}/retry", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == ExportStatus.PENDING.value
        assert response.json()["retry_count"] == 1

        response = await client.post(f"/api/v1/exports/{data['export_id']}/retry", headers=headers)
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_other_requester_gets_not_found(
        self, client: AsyncClient, headers: dict[str, str], settings: Settings
    ) -> None:
        data = await _create(client, headers)
        other = _auth(settings, requester_id=99)

        assert (await client.get(data["status_url"], headers=other)).status_code == 404
        assert (await client.post(f"{data['status_url']}/cancel", headers=other)).status_code == 404
        assert (await client.get(f"/api/v1/exports/{uuid.uuid4()}", headers=headers)).status_code == 404


class TestListing:
    @pytest.mark.asyncio
    async def test_list_and_statistics(self, client: AsyncClient, headers: dict[str, str], settings: Settings) -> None:
        await _create(client, headers, filters={"campaign_id": 1})
        await _create(client, headers, filters={"campaign_id": 2})
        await _create(client, _auth(settings, requester_id=99), filters={"campaign_id": 3})

        mine = (await client.get("/api/v1/exports", headers=headers)).json()
        assert mine["pagination"]["total"] == 2
        assert {item["requester_id"] for item in mine["items"]} == {42}

        org = (await client.get("/api/v1/exports?scope=organization&page_size=2", headers=headers)).json()
        assert org["pagination"] == {"total": 3, "page": 1, "page_size": 2, "total_pages": 2}

        stats = (await client.get("/api/v1/exports/statistics", headers=headers)).json()
        assert stats["total"] == 3
        assert stats["pending"] == 3

    @pytest.mark.asyncio
    async def test_bad_sort_column(self, client: AsyncClient, headers: dict[str, str]) -> None:
        response = await client.get("/api/v1/exports?sort_by=requester_id", headers=headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_organization_scope_without_organization(self, client: AsyncClient, settings: Settings) -> None:
        response = await client.get(
            "/api/v1/exports?scope=organization", headers=_auth(settings, requester_id=5, organization_id=None)
        )
        assert response.status_code == 422
