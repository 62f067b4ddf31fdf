from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Iterable, Literal

from flexkids.domain.models import Record
from flexkids.domain.time_utils import parse_timestamp

FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "is_null"]


def _comparable(record_value: Any, filter_value: Any) -> tuple[Any, Any] | None:
    if isinstance(filter_value, (datetime, date)):
        left = parse_timestamp(record_value)
        right = parse_timestamp(filter_value)
        if left is None or right is None:
            return None
        return left, right
    if record_value is None or filter_value is None:
        return None
    if isinstance(filter_value, (int, float)) and not isinstance(filter_value, bool):
        try:
            return float(record_value), float(filter_value)
        except (TypeError, ValueError):
            return None
    return str(record_value), str(filter_value)


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: FilterOp
    value: Any = None

    def matches(self, record: Record) -> bool:
        current = record.get(self.field)
        if self.op == "is_null":
            return current is None or current == ""
        if self.op in ("==", "!="):
            if self.value is None:
                equal = current is None or current == ""
            else:
                pair = _comparable(current, self.value)
                equal = pair is not None and pair[0] == pair[1]
            return equal if self.op == "==" else not equal
        pair = _comparable(current, self.value)
        if pair is None:
            return False
        left, right = pair
        if self.op == "<":
            return left < right
        if self.op == "<=":
            return left <= right
        if self.op == ">":
            return left > right
        return left >= right


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class RemoteQuery:
    """Consulta mínima que debe soportar cualquier almacén remoto.

    Igualdad/rango sobre campos sueltos y orden por un único campo; nada más.
    """

    filters: tuple[FieldFilter, ...] = ()
    order_by: OrderBy | None = None

    def where(self, field: str, op: FilterOp, value: Any = None) -> "RemoteQuery":
        return replace(self, filters=self.filters + (FieldFilter(field, op, value),))

    def ordered_by(self, field: str, *, descending: bool = False) -> "RemoteQuery":
        return replace(self, order_by=OrderBy(field, descending))

    def matches(self, record: Record) -> bool:
        return all(item.matches(record) for item in self.filters)


def _sort_key(field: str):
    def _key(record: Record) -> tuple[int, float, str]:
        value = record.get(field)
        parsed = parse_timestamp(value) if isinstance(value, (str, datetime)) else None
        if parsed is not None:
            return (0, parsed.timestamp(), "")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return (0, float(value), "")
        return (1, 0.0, str(value))

    return _key


def apply_remote_query(records: Iterable[Record], query: RemoteQuery) -> list[Record]:
    selected = [record for record in records if query.matches(record)]
    if query.order_by is None:
        return selected
    present = [record for record in selected if record.get(query.order_by.field) not in (None, "")]
    missing = [record for record in selected if record.get(query.order_by.field) in (None, "")]
    present.sort(key=_sort_key(query.order_by.field), reverse=query.order_by.descending)
    return present + missing
