"""A connection borrowed from a pool."""

from __future__ import annotations

import contextlib
import copy
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any

from edbpool.errors import InterfaceError, UnexpectedMessageError
from edbpool.options import RetryOptions, TxOptions
from edbpool.reconnect import ReconnectingConnection
from edbpool.transaction import Transaction

if TYPE_CHECKING:
    from edbpool.pool import Pool

_TEMPORARY_NETWORK_ERRORS = (TimeoutError, BlockingIOError, InterruptedError)


def _is_permanent_network_error(error: BaseException | None) -> bool:
    seen: set[int] = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        if isinstance(error, OSError) and not isinstance(
            error, _TEMPORARY_NETWORK_ERRORS
        ):
            return True
        error = error.__cause__
    return False


class PoolConnection:
    """A pooled connection; release it to the pool when no longer needed."""

    def __init__(
        self,
        pool: Pool,
        connection: ReconnectingConnection,
        tx_options: TxOptions | None = None,
        retry_options: RetryOptions | None = None,
    ) -> None:
        self._pool: Pool | None = pool
        self._connection: ReconnectingConnection | None = connection
        self.tx_options = tx_options if tx_options is not None else TxOptions()
        self.retry_options = (
            retry_options if retry_options is not None else RetryOptions()
        )
        self._error: BaseException | None = None

    @property
    def connection(self) -> ReconnectingConnection:
        """The underlying connection; unavailable once released."""
        if self._connection is None:
            raise InterfaceError("connection is released")
        return self._connection

    def release(self) -> None:
        """Return the connection to its pool.

        Raises InterfaceError if called more than once.
        """
        if self._pool is None:
            raise InterfaceError("connection released more than once")

        pool, connection, error = self._pool, self._connection, self._error
        self._pool = None
        self._connection = None
        self._error = None
        pool.release(connection, error)

    def __enter__(self) -> PoolConnection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._pool is not None:
            self.release()

    def _check_error(self, error: BaseException) -> None:
        """Remember errors after which the connection must not be reused."""
        if _is_permanent_network_error(error) or isinstance(
            error, UnexpectedMessageError
        ):
            self._error = error

    @contextlib.contextmanager
    def _checked(self) -> Iterator[None]:
        try:
            yield
        except Exception as err:
            self._check_error(err)
            raise

    def execute(self, command: str) -> None:
        """Execute an EdgeQL command (or commands)."""
        with self._checked():
            self.connection.execute(command)

    def query(self, command: str, *args: Any) -> Any:
        """Run a query and return its results."""
        with self._checked():
            return self.connection.query(command, *args)

    def query_one(self, command: str, *args: Any) -> Any:
        """Run a singleton-returning query and return its element."""
        with self._checked():
            return self.connection.query_one(command, *args)

    def query_json(self, command: str, *args: Any) -> Any:
        """Run a query and return its results as JSON."""
        with self._checked():
            return self.connection.query_json(command, *args)

    def query_one_json(self, command: str, *args: Any) -> Any:
        """Run a singleton-returning query and return its result as JSON."""
        with self._checked():
            return self.connection.query_one_json(command, *args)

    def raw_transaction(self, action: Callable[[Transaction], Any]) -> Any:
        """Run ``action`` in a transaction, rolling back if it raises."""
        with self._checked():
            return self.connection.raw_transaction(action, self.tx_options)

    def retrying_transaction(self, action: Callable[[Transaction], Any]) -> Any:
        """Like ``raw_transaction`` but retries actions that may succeed later."""
        with self._checked():
            return self.connection.retrying_transaction(
                action, self.tx_options, self.retry_options
            )

    def with_tx_options(self, options: TxOptions) -> PoolConnection:
        """Return a shallow copy using ``options`` for transactions."""
        if not isinstance(options, TxOptions):
            raise TypeError(f"expected TxOptions, got {type(options).__name__}")
        clone = copy.copy(self)
        clone.tx_options = options
        return clone

    def with_retry_options(self, options: RetryOptions) -> PoolConnection:
        """Return a shallow copy using ``options`` for retrying transactions."""
        if not isinstance(options, RetryOptions):
            raise TypeError(
                f"expected RetryOptions, got {type(options).__name__}"
            )
        clone = copy.copy(self)
        clone.retry_options = options
        return clone