from __future__ import annotations

import importlib
import os
import platform
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))


def _is_linux_headless() -> bool:
    if platform.system() != "Linux":
        return False
    return not (os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"))


if _is_linux_headless():
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")


_UI_BACKEND_ERROR: str | None = None


def _detect_ui_backend_issue() -> str | None:
    try:
        importlib.import_module("PySide6")
        importlib.import_module("PySide6.QtCore")
        importlib.import_module("PySide6.QtNetwork")
        return None
    except Exception as exc:  # pragma: no cover - depende del host de ejecución
        return f"PySide6/Qt no disponible para tests UI: {exc}"


def pytest_configure(config: pytest.Config) -> None:
    global _UI_BACKEND_ERROR
    config.addinivalue_line("markers", "ui: tests de interfaz PySide6")
    _UI_BACKEND_ERROR = _detect_ui_backend_issue()


def pytest_ignore_collect(collection_path: Path, config: pytest.Config) -> bool | None:
    # Los módulos de tests/ui importan PySide6 al cargarse.
    if _UI_BACKEND_ERROR is not None and "ui" in collection_path.parts and collection_path.suffix == ".py":
        return True
    return None


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    for item in items:
        if "tests/ui/" in item.nodeid:
            item.add_marker(pytest.mark.ui)


from fakes import FakeRemoteStore, InlineExecutor, ManualConnectivitySignal, ManualExecutor, MutableClock  # noqa: E402

from flexkids.application.cache_first import CacheFirstReader  # noqa: E402
from flexkids.application.connectivity import ConnectivityMonitor  # noqa: E402
from flexkids.application.sync_engine import SyncEngine  # noqa: E402
from flexkids.core.event_bus import AppEvents  # noqa: E402
from flexkids.core.metrics import MetricsRegistry  # noqa: E402
from flexkids.domain.sync_models import RetryPolicy  # noqa: E402
from flexkids.infrastructure.local_store_sqlite import LocalStoreSQLite  # noqa: E402


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(1_700_000_000_000)


@pytest.fixture
def local_store(tmp_path: Path, clock: MutableClock) -> LocalStoreSQLite:
    store = LocalStoreSQLite(tmp_path / "flexkids_test.db", clock_ms=clock)
    store.init()
    yield store
    store.close()


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def signal() -> ManualConnectivitySignal:
    return ManualConnectivitySignal(online=False)


@pytest.fixture
def monitor(signal: ManualConnectivitySignal) -> ConnectivityMonitor:
    monitor = ConnectivityMonitor(signal)
    monitor.start()
    yield monitor
    monitor.stop()


@pytest.fixture
def events() -> AppEvents:
    return AppEvents()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def drain_executor() -> ManualExecutor:
    return ManualExecutor()


@pytest.fixture
def engine(
    local_store: LocalStoreSQLite,
    remote: FakeRemoteStore,
    monitor: ConnectivityMonitor,
    drain_executor: ManualExecutor,
    events: AppEvents,
    clock: MutableClock,
    metrics: MetricsRegistry,
) -> SyncEngine:
    engine = SyncEngine(
        local_store,
        remote,
        monitor,
        executor=drain_executor,
        events=events,
        retry_policy=RetryPolicy(max_retries=3, base_backoff_seconds=5.0, max_backoff_seconds=60.0),
        clock_ms=clock,
        metrics=metrics,
    )
    yield engine
    engine.destroy()


@pytest.fixture
def reader(
    local_store: LocalStoreSQLite,
    engine: SyncEngine,
    monitor: ConnectivityMonitor,
    remote: FakeRemoteStore,
    events: AppEvents,
    metrics: MetricsRegistry,
) -> CacheFirstReader:
    reader = CacheFirstReader(
        local_store,
        engine,
        monitor,
        remote,
        executor=InlineExecutor(),
        remote_executor=InlineExecutor(),
        events=events,
        timeout_seconds=1.0,
        metrics=metrics,
    )
    yield reader
    reader.shutdown()
