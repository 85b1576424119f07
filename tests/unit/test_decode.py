"""Tests for row decoding."""

import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from uuid import UUID

import pytest

from relkit.core.decode import (
    NIL_UUID,
    decode,
    decode_array,
    decode_decimal,
    decode_json,
    decode_optional,
    decode_scalar,
    decode_uuid,
)
from relkit.drivers.base import Row
from relkit.exceptions import ColumnNotFoundError, DecodeError
from relkit.sql.dialect import Dialect

REF = UUID("12345678-1234-5678-1234-567812345678")


def row(**values):
    return Row(list(values), list(values.values()))


class TestDecode:
    """Tests for required fields."""

    def test_passthrough(self):
        assert decode(row(name="a"), "name") == "a"

    def test_null_rejected(self):
        with pytest.raises(DecodeError, match="unexpected NULL"):
            decode(row(name=None), "name", str)

    def test_missing_column(self):
        with pytest.raises(ColumnNotFoundError) as exc_info:
            decode(row(name="a"), "email")
        assert exc_info.value.available == ["name"]

    def test_goes_through_row_decoder(self):
        """Rows from a driver are decoded by that driver."""
        calls = []

        def upper(r, column):
            calls.append(column)
            return r[column].upper()

        driver_row = Row(["name"], ["a"], upper)
        assert decode(driver_row, "name") == "A"
        assert decode_optional(driver_row, "name") == "A"
        assert calls == ["name", "name"]

    def test_missing_column_with_decoder(self):
        with pytest.raises(ColumnNotFoundError):
            decode(Row(["name"], ["a"], lambda r, column: r[column]), "email")

    @pytest.mark.parametrize(
        ("raw", "type_", "expected"),
        [
            (1, bool, True),
            ("off", bool, False),
            ("42", int, 42),
            (3.0, int, 3),
            ("1.50", Decimal, Decimal("1.50")),
            (b"abc", str, "abc"),
            (str(REF), UUID, REF),
            (REF.bytes, UUID, REF),
            ("2024-05-01 10:30:00", datetime, datetime(2024, 5, 1, 10, 30)),
            ("2024-05-01 10:30:00", date, date(2024, 5, 1)),
            (timedelta(hours=9, minutes=5), time, time(9, 5)),
            ('["a","b"]', list, ["a", "b"]),
            ('{"k":1}', dict, {"k": 1}),
        ],
    )
    def test_conversions(self, raw, type_, expected):
        assert decode(row(v=raw), "v", type_) == expected

    @pytest.mark.parametrize(("raw", "type_"), [(2.5, int), ("maybe", bool), ("x", UUID)])
    def test_bad_values(self, raw, type_):
        with pytest.raises(DecodeError):
            decode(row(v=raw), "v", type_)


class TestNullRecovery:
    """Tests for the lenient decoders."""

    def test_optional(self):
        assert decode_optional(row(name=None), "name", str) is None
        assert decode_optional(row(name="a"), "email") is None
        assert decode_optional(row(age="7"), "age", int) == 7

    def test_decimal_zero(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert decode_decimal(row(price=None), "price") == Decimal(0)
        assert "decimal zero" in caplog.text

    def test_nil_uuid(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert decode_uuid(row(ref=None), "ref") == NIL_UUID
        assert "nil uuid" in caplog.text

    def test_json(self):
        assert decode_json(row(meta='{"a":[1]}'), "meta") == {"a": [1]}
        assert decode_json(row(meta={"a": 1}), "meta") == {"a": 1}
        assert decode_json(row(meta=None), "meta") is None

    def test_invalid_json(self):
        with pytest.raises(DecodeError, match="invalid JSON"):
            decode_json(row(meta="{oops"), "meta")


class TestDecodeArray:
    """Tests for per-dialect array decoding."""

    def test_postgres_native(self):
        assert decode_array(row(tags=["a"]), "tags", Dialect.POSTGRES) == ["a"]

    def test_postgres_rejects_text(self):
        with pytest.raises(DecodeError):
            decode_array(row(tags='["a"]'), "tags", Dialect.POSTGRES)

    def test_mariadb_json_text(self):
        assert decode_array(row(tags=b'["a","b"]'), "tags", Dialect.MARIADB) == ["a", "b"]

    def test_mariadb_rejects_native(self):
        with pytest.raises(DecodeError):
            decode_array(row(tags=["a"]), "tags", Dialect.MARIADB)

    @pytest.mark.parametrize("dialect", [Dialect.MYSQL, Dialect.TIDB, Dialect.SQLITE])
    def test_generic_accepts_both(self, dialect):
        assert decode_array(row(tags='["a"]'), "tags", dialect) == ["a"]
        assert decode_array(row(tags=["a"]), "tags", dialect) == ["a"]

    def test_element_type(self):
        assert decode_array(row(ids="[1, null, 3]"), "ids", Dialect.SQLITE, int) == [1, None, 3]

    def test_null_is_empty(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert decode_array(row(tags=None), "tags", Dialect.SQLITE) == []
        assert "empty array" in caplog.text


class TestDecodeScalar:
    """Tests for single-value results."""

    def test_first_column(self):
        assert decode_scalar(row(count=3, other="x"), int) == 3

    def test_null(self):
        assert decode_scalar(row(total=None), Decimal) is None

    def test_empty_row(self):
        with pytest.raises(DecodeError):
            decode_scalar(row())

    def test_repeated_column_names(self):
        """A join projecting two `id` columns decodes the first one."""
        assert decode_scalar(Row(["id", "id"], [1, 2]), int) == 1

    def test_positional_driver_decode(self):
        calls = []

        def record(r, column):
            calls.append(column)
            return r[column]

        assert decode_scalar(Row(["id", "id"], ["7", "8"], record), int) == 7
        assert calls == [0]
