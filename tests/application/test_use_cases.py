from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fakes import FakeRemoteStore, ManualConnectivitySignal, ManualExecutor

from flexkids.application.cache_first import CacheFirstReader
from flexkids.application.sync_engine import SyncEngine
from flexkids.application.use_cases import (
    CustomersAccessor,
    PackagesAccessor,
    PaymentsAccessor,
    SettingsAccessor,
    VisitsAccessor,
)
from flexkids.core.errors import ValidationError
from flexkids.domain.models import CUSTOMERS, PAYMENTS, is_local_id
from flexkids.infrastructure.local_store_sqlite import LocalStoreSQLite

NOW = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return NOW


def test_check_in_y_check_out(engine: SyncEngine, reader: CacheFirstReader) -> None:
    visits = VisitsAccessor(engine, reader, clock=_clock)

    visit_id = visits.check_in("k1", "u1", notes="primera visita")

    assert is_local_id(visit_id)
    [active] = visits.active_visits("u1")
    assert active["checkIn"] == NOW.isoformat()
    assert active["notes"] == "primera visita"
    assert active["paid"] is False

    closed = visits.check_out(visit_id)

    assert closed["checkOut"] == NOW.isoformat()
    assert visits.active_visits("u1") == []
    assert [visit["id"] for visit in visits.visits_by_child("k1")] == [visit_id]
    assert visits.get(visit_id)["checkOut"] == NOW.isoformat()


def test_check_in_y_out_validan_datos(engine: SyncEngine, reader: CacheFirstReader) -> None:
    visits = VisitsAccessor(engine, reader, clock=_clock)

    with pytest.raises(ValidationError):
        visits.check_in("", "u1")
    with pytest.raises(ValidationError):
        visits.check_out("no-existe")


def test_clientes_e_hijos(engine: SyncEngine, reader: CacheFirstReader) -> None:
    customers = CustomersAccessor(engine, reader, clock=_clock)

    customer_id = customers.create_customer({"name": "Ana", "phone": "111"})
    customers.update_customer(customer_id, {"phone": "222"})
    child_id = customers.add_child(customer_id, {"name": "Leo"})

    assert customers.get_customer(customer_id)["phone"] == "222"
    assert [customer["id"] for customer in customers.list_customers()] == [customer_id]
    assert [child["id"] for child in customers.children_of(customer_id)] == [child_id]
    assert customers.get_child(child_id)["customerId"] == customer_id
    with pytest.raises(ValidationError):
        customers.create_customer({"name": "  "})
    with pytest.raises(ValidationError):
        customers.add_child("", {"name": "Leo"})


def test_pagos_del_dia(engine: SyncEngine, reader: CacheFirstReader, local_store: LocalStoreSQLite) -> None:
    payments = PaymentsAccessor(engine, reader, clock=_clock)
    payment_id = payments.register_payment("c1", 12.5, "cash")
    local_store.add(
        PAYMENTS,
        {"id": "old", "customerId": "c1", "amount": 5.0, "createdAt": (NOW - timedelta(days=1)).isoformat()},
    )

    assert [payment["id"] for payment in payments.today_payments()] == [payment_id]
    assert [payment["id"] for payment in payments.payments_of("c1")] == [payment_id, "old"]
    stored = local_store.get(PAYMENTS, payment_id)
    assert stored["date"] == "2026-10-19"
    assert stored["amount"] == 12.5
    with pytest.raises(ValidationError):
        payments.register_payment("c1", -1, "cash")


def test_paquetes_no_caducados_y_consumo(engine: SyncEngine, reader: CacheFirstReader) -> None:
    packages = PackagesAccessor(engine, reader, clock=_clock)
    vigente = packages.create_package("c1", 10, expiresAt=(NOW + timedelta(days=30)).isoformat())
    packages.create_package("c1", 5, expiresAt=(NOW - timedelta(days=1)).isoformat())
    sin_caducidad = packages.create_package("c1", 2)

    assert {package["id"] for package in packages.not_expired("c1")} == {vigente, sin_caducidad}

    updated = packages.use_package(sin_caducidad, 2)

    assert updated["usedHours"] == 2.0
    assert updated["active"] is False
    with pytest.raises(ValidationError):
        packages.create_package("c1", 0)
    with pytest.raises(ValidationError):
        packages.use_package("no-existe", 1)


def test_ajustes_clave_valor(engine: SyncEngine, reader: CacheFirstReader, local_store: LocalStoreSQLite) -> None:
    settings = SettingsAccessor(engine, reader, clock=_clock)

    assert settings.get_setting("currency", "USD") == "USD"

    settings.set_setting("currency", "EUR")
    settings.set_setting("currency", "GBP")
    settings.set_setting("hourly_rate", 8.5)

    assert settings.get_setting("currency") == "GBP"
    assert settings.all_settings() == {"currency": "GBP", "hourly_rate": 8.5}
    assert [entry.operation for entry in local_store.get_pending_sync_items()] == ["update", "update", "update"]
    with pytest.raises(ValidationError):
        settings.set_setting("", 1)


def test_paquetes_no_caducados_acepta_now_sin_zona(engine: SyncEngine, reader: CacheFirstReader) -> None:
    packages = PackagesAccessor(engine, reader, clock=_clock)
    naive_now = datetime.now()
    vigente = packages.create_package("c1", 10, expiresAt=(naive_now + timedelta(days=3)).isoformat())
    packages.create_package("c1", 5, expiresAt=(naive_now - timedelta(days=3)).isoformat())

    assert [package["id"] for package in packages.not_expired("c1", now=naive_now)] == [vigente]


def test_actualizar_cliente_con_id_local_ya_migrado(
    engine: SyncEngine,
    reader: CacheFirstReader,
    local_store: LocalStoreSQLite,
    remote: FakeRemoteStore,
    signal: ManualConnectivitySignal,
    drain_executor: ManualExecutor,
) -> None:
    customers = CustomersAccessor(engine, reader, clock=_clock)
    local_id = customers.create_customer({"name": "Ana", "phone": "111"})
    signal.emit(True)
    drain_executor.run_pending()

    customers.update_customer(local_id, {"phone": "222"})
    drain_executor.run_pending()

    [stored] = local_store.get_all(CUSTOMERS)
    assert stored["id"] == "remote-1"
    assert stored["name"] == "Ana"
    assert stored["phone"] == "222"
    assert local_store.get(CUSTOMERS, local_id) is None
    assert [(collection, document_id) for collection, document_id, _ in remote.update_calls] == [
        (CUSTOMERS, "remote-1")
    ]
    assert local_store.get_dead_letters() == []
