"""Tests for the rate limit HTTP endpoint.

The decision engine dependency is overridden per test so each test gets its
own in-memory store and policy.
"""

from typing import Iterator
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.adapters.rate_limit.base import AbstractWindowStore, Incremented
from app.adapters.rate_limit.in_memory import InMemoryWindowStore
from app.core.app_factory import create_app
from app.core.config import settings
from app.core.errors import StoreUnavailableAppError
from app.core.rate_limit import get_decision_engine
from app.schemas.rate_limit import RateLimitPolicy
from app.services.decision_engine import RateLimitDecisionEngine


@pytest.fixture
def app() -> Iterator[FastAPI]:
    application = create_app()
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def _use_engine(app: FastAPI, engine: RateLimitDecisionEngine) -> None:
    app.dependency_overrides[get_decision_engine] = lambda: engine


def _in_memory_engine(threshold: int) -> RateLimitDecisionEngine:
    policy = RateLimitPolicy(threshold=threshold, window_minutes=1, ttl_sweep_grace_seconds=60)
    return RateLimitDecisionEngine(InMemoryWindowStore(sweep_lag_seconds=60), policy)


def test_allowed_request_returns_200(app: FastAPI, client: TestClient) -> None:
    _use_engine(app, _in_memory_engine(threshold=2))

    response = client.put("/v1/rate-limit/user123")

    assert response.status_code == 200
    assert response.json() == {
        "allowed": True,
        "message": "Request allowed",
        "retry_after": None,
    }
    assert "Retry-After" not in response.headers


def test_exceeded_limit_returns_429_with_retry_after(app: FastAPI, client: TestClient) -> None:
    _use_engine(app, _in_memory_engine(threshold=2))

    assert client.put("/v1/rate-limit/user123").status_code == 200
    assert client.put("/v1/rate-limit/user123").status_code == 200
    response = client.put("/v1/rate-limit/user123")

    assert response.status_code == 429
    body = response.json()
    assert body["allowed"] is False
    assert body["message"] == "Too many requests, please try again later"
    assert body["retry_after"] is not None

    retry_after = int(response.headers["Retry-After"])
    assert 0 < retry_after <= 60
    assert response.headers["X-RateLimit-Limit"] == "2"
    assert int(response.headers["X-RateLimit-Reset"]) > 0


def test_limits_are_per_identity_key(app: FastAPI, client: TestClient) -> None:
    _use_engine(app, _in_memory_engine(threshold=1))

    assert client.put("/v1/rate-limit/alice").status_code == 200
    assert client.put("/v1/rate-limit/alice").status_code == 429
    assert client.put("/v1/rate-limit/bob").status_code == 200


def test_headers_can_be_disabled(app: FastAPI, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings.rate_limit, "include_headers", False)
    _use_engine(app, _in_memory_engine(threshold=1))

    client.put("/v1/rate-limit/user123")
    response = client.put("/v1/rate-limit/user123")

    assert response.status_code == 429
    assert "Retry-After" not in response.headers
    assert "X-RateLimit-Limit" not in response.headers


def test_retry_after_padding_is_applied(app: FastAPI, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings.rate_limit, "retry_after_padding_seconds", 60)
    _use_engine(app, _in_memory_engine(threshold=1))

    client.put("/v1/rate-limit/user123")
    response = client.put("/v1/rate-limit/user123")

    assert 60 < int(response.headers["Retry-After"]) <= 120


def test_store_outage_returns_503(app: FastAPI, client: TestClient) -> None:
    store = Mock(spec=AbstractWindowStore)
    store.conditional_increment_or_create = AsyncMock(
        side_effect=StoreUnavailableAppError(
            code="store_unavailable",
            message="Rate limit store is unavailable",
            details={"backend": "mongodb", "operation": "find_one_and_update"},
        )
    )
    _use_engine(app, RateLimitDecisionEngine(store, RateLimitPolicy(threshold=1, window_minutes=1)))

    response = client.put("/v1/rate-limit/user123")

    assert response.status_code == 503
    error = response.json()["error"]
    assert error["code"] == "store_unavailable"
    assert error["details"]["operation"] == "find_one_and_update"
    assert "request_id" in error


def test_store_invariant_violation_returns_500(app: FastAPI, client: TestClient) -> None:
    store = Mock(spec=AbstractWindowStore)
    store.conditional_increment_or_create = AsyncMock(return_value=Incremented(None))
    _use_engine(app, RateLimitDecisionEngine(store, RateLimitPolicy(threshold=1, window_minutes=1)))

    response = client.put("/v1/rate-limit/user123")

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "store_invariant_violation"


def test_default_engine_is_built_from_settings(client: TestClient) -> None:
    engine = get_decision_engine()

    assert engine.policy == RateLimitPolicy.from_settings(settings.rate_limit)
    assert get_decision_engine() is engine

    response = client.put("/v1/rate-limit/settings-driven-key")
    assert response.status_code == 200


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "store": "memory"}


def test_openapi_documents_retry_after_header(client: TestClient) -> None:
    schema = client.get("/openapi.json").json()

    throttled = schema["paths"]["/v1/rate-limit/{identity_key}"]["put"]["responses"]["429"]
    assert "Retry-After" in throttled["headers"]
    assert {t["name"] for t in schema["tags"]} >= {"Rate Limit", "Health"}
