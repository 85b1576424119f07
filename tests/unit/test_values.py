"""Tests for the value model and parameter encoding."""

from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

import pytest

from relkit.core.values import ValueKind, json_dumps, kind_of, to_json_compatible
from relkit.exceptions import EncodeError
from relkit.schema.models import ColumnSpec, ColumnType
from relkit.sql.dialect import Dialect
from relkit.sql.params import Inline, ParamBuffer, encode_value

SAMPLE_UUID = UUID("12345678-1234-5678-1234-567812345678")


class TestKindOf:
    """Tests for value classification."""

    @pytest.mark.parametrize(
        ("value", "kind"),
        [
            (None, ValueKind.NULL),
            (True, ValueKind.BOOL),
            (-3, ValueKind.INT),
            (3, ValueKind.UINT),
            (1.5, ValueKind.FLOAT),
            (Decimal("1.10"), ValueKind.DECIMAL),
            ("a", ValueKind.STRING),
            (b"\x00", ValueKind.BYTES),
            (SAMPLE_UUID, ValueKind.UUID),
            (datetime(2024, 1, 2, 3, 4, 5), ValueKind.DATETIME),
            (date(2024, 1, 2), ValueKind.DATE),
            (time(3, 4), ValueKind.TIME),
            ([1, 2], ValueKind.ARRAY),
            ({"a": 1}, ValueKind.OBJECT),
        ],
    )
    def test_classification(self, value, kind):
        """Every supported Python value maps to one kind."""
        assert kind_of(value) == kind

    def test_bool_is_not_int(self):
        """Booleans are classified before integers."""
        assert kind_of(False) == ValueKind.BOOL

    def test_unsupported_value(self):
        """Arbitrary objects are rejected."""
        with pytest.raises(EncodeError):
            kind_of(object())

    def test_numeric_kinds(self):
        assert ValueKind.DECIMAL.is_numeric
        assert not ValueKind.STRING.is_numeric


class TestJson:
    """Tests for JSON conversion."""

    def test_nested_values(self):
        """Decimals, uuids and dates become strings inside JSON."""
        value = {"price": Decimal("9.90"), "ref": SAMPLE_UUID, "day": date(2024, 5, 1)}
        assert to_json_compatible(value) == {
            "price": "9.90",
            "ref": str(SAMPLE_UUID),
            "day": "2024-05-01",
        }

    def test_compact_output(self):
        assert json_dumps(["a", 1, None]) == '["a",1,null]'

    def test_unicode_kept(self):
        assert json_dumps("é") == '"é"'


class TestEncodeValue:
    """Tests for per-dialect parameter encoding."""

    def test_array_native_on_postgres(self):
        """PostgreSQL binds arrays natively."""
        assert encode_value(["a", "b"], Dialect.POSTGRES) == ["a", "b"]

    @pytest.mark.parametrize("dialect", [Dialect.MYSQL, Dialect.MARIADB, Dialect.SQLITE])
    def test_array_as_json_elsewhere(self, dialect):
        """Other dialects bind arrays as JSON text."""
        assert encode_value(["a", "b"], dialect) == '["a","b"]'

    def test_json_column_string_passthrough(self):
        """A string bound to a JSON column is assumed to be JSON already."""
        col = ColumnSpec(name="meta", type=ColumnType.JSON)
        assert encode_value('{"a":1}', Dialect.MYSQL, col) == '{"a":1}'

    def test_json_column_object(self):
        col = ColumnSpec(name="meta", type=ColumnType.JSON)
        assert encode_value({"a": 1}, Dialect.POSTGRES, col) == '{"a":1}'

    def test_uuid_text_outside_postgres(self):
        assert encode_value(SAMPLE_UUID, Dialect.MYSQL) == str(SAMPLE_UUID)
        assert encode_value(SAMPLE_UUID, Dialect.POSTGRES) == SAMPLE_UUID

    def test_uuid_column_parses_text_on_postgres(self):
        col = ColumnSpec(name="ref", type=ColumnType.UUID)
        assert encode_value(str(SAMPLE_UUID), Dialect.POSTGRES, col) == SAMPLE_UUID

    def test_uuid_column_rejects_garbage_on_postgres(self):
        col = ColumnSpec(name="ref", type=ColumnType.UUID)
        with pytest.raises(EncodeError):
            encode_value("not-a-uuid", Dialect.POSTGRES, col)

    def test_sqlite_temporal_values_as_text(self):
        """SQLite stores dates and times as ISO text."""
        assert encode_value(datetime(2024, 1, 2, 3, 4, 5), Dialect.SQLITE) == "2024-01-02 03:04:05"
        assert encode_value(date(2024, 1, 2), Dialect.SQLITE) == "2024-01-02"
        assert encode_value(Decimal("1.5"), Dialect.SQLITE) == "1.5"

    def test_null(self):
        assert encode_value(None, Dialect.POSTGRES) is None


class TestParamBuffer:
    """Tests for placeholder allocation."""

    def test_postgres_numbering(self):
        """PostgreSQL placeholders are numbered in binding order."""
        params = ParamBuffer(Dialect.POSTGRES)
        assert params.bind("a") == "$1"
        assert params.bind("b") == "$2"
        assert params.values == ["a", "b"]

    def test_question_marks(self):
        params = ParamBuffer(Dialect.MYSQL)
        assert params.bind_many([1, 2, 3]) == "?,?,?"
        assert len(params) == 3

    def test_inline_literals(self):
        """Inline numbers and booleans are rendered, not bound."""
        params = ParamBuffer(Dialect.SQLITE)
        assert params.bind(Inline(5)) == "5"
        assert params.bind(Inline(True)) == "1"
        assert params.bind(Inline(None)) == "NULL"
        assert params.values == []

    def test_inline_boolean_on_postgres(self):
        assert Inline(False).render(Dialect.POSTGRES) == "FALSE"

    def test_inline_rejects_strings(self):
        """Strings are never inlined."""
        with pytest.raises(EncodeError):
            ParamBuffer(Dialect.POSTGRES).bind(Inline("x'; DROP TABLE user; --"))
