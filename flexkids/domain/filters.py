from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from flexkids.domain.models import CHILDREN, PACKAGES, PAYMENTS, SETTINGS, VISITS, Record
from flexkids.domain.remote_query import RemoteQuery
from flexkids.domain.time_utils import day_bounds, parse_timestamp, same_local_day

LocalPredicate = Callable[[Record], bool]


@dataclass(frozen=True)
class SharedFilter:
    """Filtro con nombre que se evalúa igual en caché y en el remoto.

    `local_predicate` se aplica sobre el Local Store y `remote_query` es la
    misma condición expresada para el almacén remoto. Si una de las dos
    cambia, se sube `version` para que los logs distingan ambas lecturas.
    """

    name: str
    version: int
    collection: str
    local_predicate: LocalPredicate
    remote_query: RemoteQuery
    index: tuple[str, Any] | None = None

    def matches(self, record: Record) -> bool:
        return self.local_predicate(record)

    @property
    def key(self) -> str:
        return f"{self.name}@v{self.version}"


def _is_blank(value: object) -> bool:
    return value is None or value == ""


def all_records(collection: str) -> SharedFilter:
    return SharedFilter("all", 1, collection, lambda _record: True, RemoteQuery())


def active_visits(unit_id: str | None = None) -> SharedFilter:
    def _predicate(record: Record) -> bool:
        if unit_id and record.get("unitId") != unit_id:
            return False
        return _is_blank(record.get("checkOut"))

    query = RemoteQuery().where("checkOut", "is_null")
    if unit_id:
        query = query.where("unitId", "==", unit_id)
    return SharedFilter(
        "active_visits",
        1,
        VISITS,
        _predicate,
        query.ordered_by("checkIn", descending=True),
        index=("by-unit", unit_id) if unit_id else None,
    )


def visits_by_child(child_id: str) -> SharedFilter:
    return SharedFilter(
        "visits_by_child",
        1,
        VISITS,
        lambda record: record.get("childId") == child_id,
        RemoteQuery().where("childId", "==", child_id).ordered_by("checkIn", descending=True),
        index=("by-child", child_id),
    )


def today_payments(now: datetime) -> SharedFilter:
    start, end = day_bounds(now)
    return SharedFilter(
        "today_payments",
        1,
        PAYMENTS,
        lambda record: same_local_day(record.get("createdAt"), now),
        RemoteQuery()
        .where("createdAt", ">=", start)
        .where("createdAt", "<", end)
        .ordered_by("createdAt", descending=True),
    )


def payments_by_customer(customer_id: str) -> SharedFilter:
    return SharedFilter(
        "payments_by_customer",
        1,
        PAYMENTS,
        lambda record: record.get("customerId") == customer_id,
        RemoteQuery().where("customerId", "==", customer_id).ordered_by("createdAt", descending=True),
        index=("by-customer", customer_id),
    )


def children_by_customer(customer_id: str) -> SharedFilter:
    return SharedFilter(
        "children_by_customer",
        1,
        CHILDREN,
        lambda record: record.get("customerId") == customer_id,
        RemoteQuery().where("customerId", "==", customer_id),
        index=("by-customer", customer_id),
    )


def not_expired_packages(now: datetime, customer_id: str | None = None) -> SharedFilter:
    # El remoto no expresa "ausente o futuro" en una sola consulta: trae todos
    # los paquetes del cliente y la caducidad se resuelve en local.
    reference = now if now.tzinfo else now.astimezone()

    def _predicate(record: Record) -> bool:
        if customer_id and record.get("customerId") != customer_id:
            return False
        expires_at = parse_timestamp(record.get("expiresAt"))
        return expires_at is None or expires_at > reference

    query = RemoteQuery()
    if customer_id:
        query = query.where("customerId", "==", customer_id)
    return SharedFilter(
        "not_expired_packages",
        1,
        PACKAGES,
        _predicate,
        query.ordered_by("createdAt", descending=True),
        index=("by-customer", customer_id) if customer_id else None,
    )


def setting_by_key(key: str) -> SharedFilter:
    return SharedFilter(
        "setting_by_key",
        1,
        SETTINGS,
        lambda record: record.get("key") == key or record.get("id") == key,
        RemoteQuery().where("key", "==", key),
    )
