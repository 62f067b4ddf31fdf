from __future__ import annotations

from datetime import datetime, timezone

import pytest

from flexkids.domain.remote_query import FieldFilter, OrderBy, RemoteQuery, apply_remote_query


@pytest.mark.parametrize(
    "op,value,expected",
    [
        ("==", 10, True),
        ("!=", 10, False),
        ("<", 11, True),
        ("<=", 10, True),
        (">", 10, False),
        (">=", 10.0, True),
    ],
)
def test_field_filter_numerico(op: str, value: float, expected: bool) -> None:
    assert FieldFilter("amount", op, value).matches({"amount": 10}) is expected


def test_field_filter_fechas_mezcla_iso_y_datetime() -> None:
    boundary = datetime(2026, 10, 19, tzinfo=timezone.utc)

    assert FieldFilter("createdAt", ">=", boundary).matches({"createdAt": "2026-10-19T08:00:00Z"})
    assert not FieldFilter("createdAt", ">=", boundary).matches({"createdAt": "2026-10-18T08:00:00Z"})
    assert not FieldFilter("createdAt", ">=", boundary).matches({})


def test_is_null_y_igualdad_con_none() -> None:
    assert FieldFilter("checkOut", "is_null").matches({"checkOut": ""})
    assert FieldFilter("checkOut", "==", None).matches({})
    assert not FieldFilter("checkOut", "is_null").matches({"checkOut": "x"})


def test_query_inmutable_y_encadenable() -> None:
    base = RemoteQuery()
    query = base.where("unitId", "==", "u1").where("amount", ">", 5).ordered_by("amount")

    assert base.filters == ()
    assert len(query.filters) == 2
    assert query.order_by == OrderBy("amount", False)


def test_apply_remote_query_ordena_y_deja_vacios_al_final() -> None:
    records = [
        {"id": "a", "checkIn": "2026-10-19T10:00:00Z"},
        {"id": "b"},
        {"id": "c", "checkIn": "2026-10-19T12:00:00Z"},
    ]

    ordered = apply_remote_query(records, RemoteQuery().ordered_by("checkIn", descending=True))

    assert [record["id"] for record in ordered] == ["c", "a", "b"]
