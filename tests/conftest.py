"""Shared fixtures: in-memory store, scripted backend and biometric hardware."""

from __future__ import annotations

import httpx
import pytest

from app.config import AppConfig
from app.logger import StructuredLogger
from app.services import ServiceContainer, create_services
from app.services.navigation import LoggingNavigator
from app.services.secure_store import MemorySecureStore
from tests.fakes import BASE_URL, FakeBackend, FakeClock, FakeHardware


@pytest.fixture(scope="session", autouse=True)
def _log_to_tmp(tmp_path_factory: pytest.TempPathFactory):
    """Keep the rotating log file out of the working tree."""
    log_dir = tmp_path_factory.mktemp("logs")
    with pytest.MonkeyPatch.context() as mp:
        mp.setenv("LOG_FILE", str(log_dir / "session_core.log"))
        yield


@pytest.fixture(scope="session")
def logger(_log_to_tmp: None) -> StructuredLogger:
    return StructuredLogger(name="session_core_test")


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(_env_file=None, API_BASE_URL=BASE_URL)


@pytest.fixture
def store() -> MemorySecureStore:
    return MemorySecureStore()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def http(backend: FakeBackend):
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(backend))
    yield client
    await client.aclose()


@pytest.fixture
def hardware() -> FakeHardware:
    return FakeHardware()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def navigator(logger: StructuredLogger) -> LoggingNavigator:
    return LoggingNavigator(logger=logger)


@pytest.fixture
def services(
    config: AppConfig,
    store: MemorySecureStore,
    hardware: FakeHardware,
    navigator: LoggingNavigator,
    http: httpx.AsyncClient,
    clock: FakeClock,
) -> ServiceContainer:
    return create_services(
        config=config,
        store=store,
        hardware=hardware,
        navigator=navigator,
        http=http,
        clock=clock,
    )
