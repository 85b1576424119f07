"""Driver capability set consumed by the engine core.

A driver only has to acquire connections, ping, execute, stream rows and hand
back raw column values. The core never imports a concrete driver.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterator, Mapping, Sequence
from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol

from relkit.sql.dialect import Dialect


class Row(Mapping[str, Any]):
    """An immutable result row addressable by column name or position.

    Rows produced by a driver carry its `decode` method; `raw()` goes through
    it, plain indexing does not.
    """

    __slots__ = ("_keys", "_values", "_index", "_decoder")

    def __init__(
        self,
        keys: Sequence[str],
        values: Sequence[Any],
        decoder: Callable[[Row, str | int], Any] | None = None,
    ) -> None:
        self._keys = tuple(keys)
        self._values = tuple(values)
        self._index = {key: i for i, key in enumerate(self._keys)}
        self._decoder = decoder

    def __getitem__(self, key: str | int) -> Any:
        if isinstance(key, int):
            return self._values[key]
        return self._values[self._index[key]]

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return f"Row({dict(zip(self._keys, self._values))!r})"

    @property
    def columns(self) -> tuple[str, ...]:
        return self._keys

    def values_tuple(self) -> tuple[Any, ...]:
        return self._values

    def raw(self, key: str | int) -> Any:
        """Column value as decoded by the driver that produced the row."""
        if self._decoder is None:
            return self[key]
        return self._decoder(self, key)


class DriverConnection(Protocol):
    """One acquired connection. Statements on it run in order."""

    async def execute(self, sql: str, params: Sequence[Any]) -> int:
        """Run a statement and return the number of affected rows."""
        ...

    def stream(self, sql: str, params: Sequence[Any]) -> AsyncIterator[Row]:
        """Run a query and yield rows one by one."""
        ...

    async def ping(self) -> None: ...


class Driver(Protocol):
    """Connection factory for one database."""

    dialect: Dialect

    def acquire(self) -> AbstractAsyncContextManager[DriverConnection]:
        """Acquire a connection, released when the context exits.

        Raises:
            PoolTimeoutError: If no connection became free within the acquire timeout
            DriverError: If connecting failed
        """
        ...

    async def ping(self) -> None:
        """Check connectivity, raising DriverError on failure."""
        ...

    async def close(self) -> None: ...

    def decode(self, row: Row, column: str | int) -> Any:
        """Value of a column by name or position, as the driver types it.

        Raises:
            KeyError: If the row has no such column
        """
        ...
