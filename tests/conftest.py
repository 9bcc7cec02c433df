from __future__ import annotations

from typing import Any, Callable, Iterator

import httpx
import pytest
from fastapi import FastAPI

from app.main import create_app
from client.remote import RemoteStore
from datastore.telemetry_store import TelemetryStore
from services.ingestion import IngestionService
from services.procedures import AccountProcedures
from settings import Settings, get_settings


def _provider(value: Any) -> Callable[[], Any]:
    def provide() -> Any:
        return value

    provide.cache_clear = lambda: None  # type: ignore[attr-defined]
    return provide


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch) -> Iterator[None]:
    monkeypatch.setenv("TELEMETRY_STORE_PATH", str(tmp_path / "store.json"))
    monkeypatch.setenv("LOCAL_CACHE_PATH", str(tmp_path / "cache.json"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        store_path=None,
        cache_path=None,
        log_level="INFO",
        initial_load_timeout=5.0,
        feed_poll_interval=0.01,
        recovery_token_ttl_minutes=60,
        timezone=None,
        default_admin_password=None,
    )


@pytest.fixture
def store() -> TelemetryStore:
    return TelemetryStore()


@pytest.fixture
def procedures(store: TelemetryStore) -> AccountProcedures:
    return AccountProcedures(store=store, hash_iterations=1000)


@pytest.fixture
def admin_id(procedures: AccountProcedures) -> str:
    return procedures.create_user("admin", "admin-pass", is_admin=True)


@pytest.fixture
def service(store: TelemetryStore, procedures: AccountProcedures, monkeypatch) -> FastAPI:
    monkeypatch.setattr("app.api.build_default_store", _provider(store))
    monkeypatch.setattr("app.api.build_default_ingestion", _provider(IngestionService(store)))
    monkeypatch.setattr("app.api.build_default_procedures", _provider(procedures))
    monkeypatch.setattr("app.main.build_default_procedures", _provider(procedures))
    return create_app()


@pytest.fixture
def remote_factory(service: FastAPI) -> Callable[[], RemoteStore]:
    def factory() -> RemoteStore:
        transport = httpx.ASGITransport(app=service)
        return RemoteStore(httpx.AsyncClient(transport=transport, base_url="http://testserver"))

    return factory


@pytest.fixture
def remote(remote_factory: Callable[[], RemoteStore]) -> RemoteStore:
    return remote_factory()

