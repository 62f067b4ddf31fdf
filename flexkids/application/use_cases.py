from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from flexkids.application.cache_first import CacheFirstReader
from flexkids.application.sync_engine import SyncEngine
from flexkids.core.errors import ValidationError
from flexkids.domain import filters
from flexkids.domain.models import CHILDREN, CUSTOMERS, PACKAGES, PAYMENTS, SETTINGS, VISITS, Record
from flexkids.domain.ports import Clock
from flexkids.domain.time_utils import now_local

logger = logging.getLogger(__name__)


class _Accessor:
    def __init__(self, engine: SyncEngine, reader: CacheFirstReader, clock: Clock = now_local) -> None:
        self._engine = engine
        self._reader = reader
        self._clock = clock

    def _stamp_new(self, data: Record) -> Record:
        now = self._clock().isoformat()
        return {**data, "createdAt": now, "updatedAt": now}

    def _stamp_change(self, data: Record) -> Record:
        return {**data, "updatedAt": self._clock().isoformat()}

    def _get(self, collection: str, record_id: str) -> Record | None:
        return self._reader.read_one(collection, record_id)


class VisitsAccessor(_Accessor):
    def check_in(self, child_id: str, unit_id: str, **extra: Any) -> str:
        if not child_id or not unit_id:
            raise ValidationError("El check-in necesita niño y unidad.")
        now = self._clock().isoformat()
        visit = self._stamp_new({**extra, "childId": child_id, "unitId": unit_id, "checkIn": now, "paid": False})
        return self._engine.save_locally(VISITS, "create", visit)

    def check_out(self, visit_id: str, **extra: Any) -> Record:
        visit = self._get(VISITS, visit_id)
        if visit is None:
            raise ValidationError(f"Visita no encontrada: {visit_id}")
        changes = self._stamp_change({**extra, "id": visit_id, "checkOut": self._clock().isoformat()})
        self._engine.save_locally(VISITS, "update", changes)
        return {**visit, **changes, "synced": False}

    def active_visits(self, unit_id: str | None = None) -> list[Record]:
        return self._reader.read(filters.active_visits(unit_id))

    def visits_by_child(self, child_id: str) -> list[Record]:
        return self._reader.read(filters.visits_by_child(child_id))

    def get(self, visit_id: str) -> Record | None:
        return self._get(VISITS, visit_id)


class CustomersAccessor(_Accessor):
    def create_customer(self, data: Record) -> str:
        if not str(data.get("name", "")).strip():
            raise ValidationError("El cliente necesita un nombre.")
        return self._engine.save_locally(CUSTOMERS, "create", self._stamp_new(data))

    def update_customer(self, customer_id: str, changes: Record) -> None:
        self._engine.save_locally(CUSTOMERS, "update", self._stamp_change({**changes, "id": customer_id}))

    def list_customers(self) -> list[Record]:
        return self._reader.read(filters.all_records(CUSTOMERS))

    def get_customer(self, customer_id: str) -> Record | None:
        return self._get(CUSTOMERS, customer_id)

    def add_child(self, customer_id: str, data: Record) -> str:
        if not customer_id:
            raise ValidationError("El niño debe pertenecer a un cliente.")
        return self._engine.save_locally(CHILDREN, "create", self._stamp_new({**data, "customerId": customer_id}))

    def children_of(self, customer_id: str) -> list[Record]:
        return self._reader.read(filters.children_by_customer(customer_id))

    def get_child(self, child_id: str) -> Record | None:
        return self._get(CHILDREN, child_id)


class PaymentsAccessor(_Accessor):
    def register_payment(self, customer_id: str | None, amount: float, method: str, **extra: Any) -> str:
        if amount is None or float(amount) < 0:
            raise ValidationError("Importe de pago inválido.")
        now = self._clock()
        payment = self._stamp_new(
            {
                **extra,
                "customerId": customer_id,
                "amount": float(amount),
                "method": method,
                "date": now.date().isoformat(),
            }
        )
        return self._engine.save_locally(PAYMENTS, "create", payment)

    def today_payments(self, now: datetime | None = None) -> list[Record]:
        return self._reader.read(filters.today_payments(now or self._clock()))

    def payments_of(self, customer_id: str) -> list[Record]:
        return self._reader.read(filters.payments_by_customer(customer_id))


class PackagesAccessor(_Accessor):
    def create_package(self, customer_id: str, hours: float, **extra: Any) -> str:
        if hours is None or float(hours) <= 0:
            raise ValidationError("Un paquete necesita horas positivas.")
        package = self._stamp_new(
            {**extra, "customerId": customer_id, "hours": float(hours), "usedHours": 0.0, "active": True}
        )
        return self._engine.save_locally(PACKAGES, "create", package)

    def use_package(self, package_id: str, hours_used: float) -> Record:
        package = self._get(PACKAGES, package_id)
        if package is None:
            raise ValidationError(f"Paquete no encontrado: {package_id}")
        used = float(package.get("usedHours") or 0) + float(hours_used)
        changes = self._stamp_change(
            {"id": package_id, "usedHours": used, "active": used < float(package.get("hours") or 0)}
        )
        self._engine.save_locally(PACKAGES, "update", changes)
        return {**package, **changes, "synced": False}

    def not_expired(self, customer_id: str | None = None, now: datetime | None = None) -> list[Record]:
        return self._reader.read(filters.not_expired_packages(now or self._clock(), customer_id))


class SettingsAccessor(_Accessor):
    """Ajustes clave/valor; el id del registro es la propia clave."""

    def get_setting(self, key: str, default: Any = None) -> Any:
        matches = self._reader.read(filters.setting_by_key(key))
        if not matches:
            return default
        return matches[0].get("value", default)

    def set_setting(self, key: str, value: Any) -> None:
        if not key:
            raise ValidationError("La clave del ajuste no puede estar vacía.")
        self._engine.save_locally(SETTINGS, "update", self._stamp_change({"id": key, "key": key, "value": value}))

    def all_settings(self) -> dict[str, Any]:
        records = self._reader.read(filters.all_records(SETTINGS))
        return {str(record.get("key") or record["id"]): record.get("value") for record in records}
