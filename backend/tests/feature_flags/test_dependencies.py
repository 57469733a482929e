"""
Feature Flag Dependency Tests
"""

import pytest
from fastapi import Depends, FastAPI, Request
from httpx import ASGITransport, AsyncClient

from flagkeeper.modules.feature_flags.dependencies import flag_required, get_flag_service
from flagkeeper.modules.feature_flags.service import FeatureFlagService


@pytest.fixture
def guarded_app(service: FeatureFlagService) -> FastAPI:
    app = FastAPI()
    app.dependency_overrides[get_flag_service] = lambda: service

    @app.middleware("http")
    async def attach_user(request: Request, call_next):
        user_id = request.headers.get("X-User-Id")
        if user_id:
            request.state.user = {"id": user_id, "segments": request.headers.get("X-Segments", "").split(",")}
        return await call_next(request)

    @app.get("/beta", dependencies=[Depends(flag_required("beta", environment="production"))])
    async def beta():
        return {"ok": True}

    @app.get("/unknown", dependencies=[Depends(flag_required("not-a-flag", environment="production"))])
    async def unknown():
        return {"ok": True}

    return app


@pytest.fixture
async def client(guarded_app: FastAPI, service: FeatureFlagService, actor: str):
    await service.create_flag({
        "key": "beta",
        "name": "Beta",
        "environments": [{"environment": "production", "enabled": True}],
        "segmentTargets": [{"environment": "production", "segment": "beta_tester", "include": True}],
    }, actor)
    async with AsyncClient(transport=ASGITransport(app=guarded_app), base_url="http://test") as client:
        yield client


async def test_flag_on_lets_request_through(client: AsyncClient):
    response = await client.get("/beta", headers={"X-User-Id": "u1", "X-Segments": "beta_tester"})
    assert response.status_code == 200
    assert response.json() == {"ok": True}


async def test_flag_off_is_forbidden(client: AsyncClient):
    response = await client.get("/beta", headers={"X-User-Id": "u2"})
    assert response.status_code == 403
    assert response.json()["detail"] == "Feature 'beta' is not enabled for your account"


async def test_missing_user_is_forbidden(client: AsyncClient):
    response = await client.get("/beta")
    assert response.status_code == 403


async def test_unknown_flag_is_forbidden(client: AsyncClient):
    response = await client.get("/unknown", headers={"X-User-Id": "u1"})
    assert response.status_code == 403
