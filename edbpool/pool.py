"""A thread-safe pool of server connections."""

from __future__ import annotations

import copy
import os
import sys
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from edbpool.errors import ConfigurationError, InterfaceError
from edbpool.options import Options, RetryOptions, TxOptions
from edbpool.poolconn import PoolConnection
from edbpool.reconnect import ReconnectingConnection
from edbpool.transaction import Transaction

DEFAULT_MIN_CONNS = 1
DEFAULT_MAX_CONNS = max(4, os.cpu_count() or 1)

ConnectionFactory = Callable[[], ReconnectingConnection]

_TEMPORARY_ERRORS = (TimeoutError, BlockingIOError, InterruptedError)


def default_hosts() -> list[str]:
    """Hosts tried when none are configured."""
    if sys.platform.startswith("win"):
        return ["localhost"]
    return ["/run/edgedb", "/var/run/edgedb"]


def _unrecoverable(error: BaseException | None) -> bool:
    return error is not None and not isinstance(error, _TEMPORARY_ERRORS)


def _time_left(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return max(deadline - time.monotonic(), 0.0)


class _PoolState:
    """State shared between a pool and its copies."""

    def __init__(
        self, factory: ConnectionFactory, min_conns: int, max_conns: int
    ) -> None:
        self.factory = factory
        self.min_conns = min_conns
        self.max_conns = max_conns
        self.cond = threading.Condition()
        self.free: deque[ReconnectingConnection] = deque()
        self.potential = max_conns
        self.closed = False


class Pool:
    """A pool of connections, safe for concurrent use.

    ``connection_factory`` returns a new, not yet connected
    ReconnectingConnection; the pool connects it when needed.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        min_conns: int = DEFAULT_MIN_CONNS,
        max_conns: int = DEFAULT_MAX_CONNS,
    ) -> None:
        if min_conns < 0:
            raise ConfigurationError(f"MinConns ({min_conns}) may not be negative")
        if max_conns < min_conns:
            raise ConfigurationError(
                f"MaxConns ({max_conns}) may not be less than MinConns ({min_conns})"
            )
        self._state = _PoolState(connection_factory, min_conns, max_conns)
        self.tx_options = TxOptions()
        self.retry_options = RetryOptions()

    @property
    def min_conns(self) -> int:
        return self._state.min_conns

    @property
    def max_conns(self) -> int:
        return self._state.max_conns

    @property
    def is_closed(self) -> bool:
        return self._state.closed

    def _open(self, timeout: float | None) -> ReconnectingConnection:
        """Connect a new connection in capacity already reserved."""
        state = self._state
        try:
            connection = state.factory()
            connection.reconnect(timeout)
        except BaseException:
            with state.cond:
                state.potential += 1
                state.cond.notify_all()
            raise
        return connection

    def _fill(self, timeout: float | None) -> None:
        state = self._state
        with state.cond:
            state.potential -= 1
        self.release(self._open(timeout), None)

    def _acquire(self, timeout: float | None) -> ReconnectingConnection:
        state = self._state
        deadline = None if timeout is None else time.monotonic() + timeout
        with state.cond:
            if state.closed:
                raise InterfaceError("pool closed")
            if timeout is not None and timeout <= 0:
                raise TimeoutError("edgedb: deadline exceeded")
            while True:
                if state.closed:
                    raise InterfaceError("pool closed")
                if state.free:
                    return state.free.popleft()
                if state.potential > 0:
                    state.potential -= 1
                    break
                if deadline is None:
                    state.cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError("edgedb: deadline exceeded")
                state.cond.wait(remaining)
        return self._open(_time_left(deadline))

    def acquire(self, timeout: float | None = None) -> PoolConnection:
        """Return a connection, waiting up to ``timeout`` seconds for one.

        Acquired connections must be released when no longer needed.
        """
        connection = self._acquire(timeout)
        return PoolConnection(self, connection, self.tx_options, self.retry_options)

    def release(
        self, connection: ReconnectingConnection, error: BaseException | None = None
    ) -> None:
        """Give a connection back; it is closed if ``error`` is unrecoverable."""
        state = self._state
        discard = False
        with state.cond:
            if _unrecoverable(error) or len(state.free) >= state.min_conns:
                state.potential += 1
                discard = True
            else:
                state.free.append(connection)
            state.cond.notify_all()
        if discard:
            connection.close()

    def close(self) -> None:
        """Close every connection, waiting for acquired ones to be released.

        Raises InterfaceError if the pool is already closed.
        """
        state = self._state
        to_close: list[ReconnectingConnection] = []
        with state.cond:
            if state.closed:
                raise InterfaceError("pool closed")
            state.closed = True
            state.cond.notify_all()

            accounted = 0
            while True:
                while state.free:
                    to_close.append(state.free.popleft())
                    accounted += 1
                accounted += state.potential
                state.potential = 0
                if accounted >= state.max_conns:
                    break
                state.cond.wait()

        errors: list[BaseException] = []
        for connection in to_close:
            try:
                connection.close()
            except Exception as err:
                errors.append(err)
        if errors:
            raise errors[0]

    def __enter__(self) -> Pool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if not self.is_closed:
            self.close()

    def _run(
        self,
        operation: Callable[[ReconnectingConnection], Any],
        report_error: bool = True,
    ) -> Any:
        connection = self._acquire(None)
        try:
            result = operation(connection)
        except Exception as err:
            try:
                self.release(connection, err if report_error else None)
            except Exception:
                pass
            raise
        self.release(connection, None)
        return result

    def execute(self, command: str) -> None:
        """Execute an EdgeQL command (or commands)."""
        self._run(lambda conn: conn.execute(command))

    def query(self, command: str, *args: Any) -> Any:
        """Run a query and return its results."""
        return self._run(lambda conn: conn.query(command, *args))

    def query_one(self, command: str, *args: Any) -> Any:
        """Run a singleton-returning query and return its element."""
        return self._run(lambda conn: conn.query_one(command, *args))

    def query_json(self, command: str, *args: Any) -> Any:
        """Run a query and return its results as JSON."""
        return self._run(lambda conn: conn.query_json(command, *args))

    def query_one_json(self, command: str, *args: Any) -> Any:
        """Run a singleton-returning query and return its result as JSON."""
        return self._run(lambda conn: conn.query_one_json(command, *args))

    def raw_transaction(self, action: Callable[[Transaction], Any]) -> Any:
        """Run ``action`` in a transaction, rolling back if it raises."""
        return self._run(
            lambda conn: conn.raw_transaction(action, self.tx_options),
            report_error=False,
        )

    def retrying_transaction(self, action: Callable[[Transaction], Any]) -> Any:
        """Like ``raw_transaction`` but retries actions that may succeed later."""
        return self._run(
            lambda conn: conn.retrying_transaction(
                action, self.tx_options, self.retry_options
            ),
            report_error=False,
        )

    def with_tx_options(self, options: TxOptions) -> Pool:
        """Return a shallow copy, sharing connections, with ``options`` set."""
        if not isinstance(options, TxOptions):
            raise TypeError(f"expected TxOptions, got {type(options).__name__}")
        clone = copy.copy(self)
        clone.tx_options = options
        return clone

    def with_retry_options(self, options: RetryOptions) -> Pool:
        """Return a shallow copy, sharing connections, with ``options`` set."""
        if not isinstance(options, RetryOptions):
            raise TypeError(
                f"expected RetryOptions, got {type(options).__name__}"
            )
        clone = copy.copy(self)
        clone.retry_options = options
        return clone


def connect(connection_factory: ConnectionFactory, options: Options) -> Pool:
    """Create a pool and open its minimum number of connections."""
    min_conns = options.min_conns or DEFAULT_MIN_CONNS
    max_conns = options.max_conns or DEFAULT_MAX_CONNS
    if max_conns < min_conns:
        raise ConfigurationError(
            f"MaxConns ({max_conns}) may not be less than MinConns ({min_conns})"
        )

    pool = Pool(connection_factory, min_conns, max_conns)
    timeout = options.connect_timeout or None

    def fill(_: int) -> BaseException | None:
        try:
            pool._fill(timeout)
        except Exception as err:
            return err
        return None

    with ThreadPoolExecutor(max_workers=min_conns) as executor:
        errors = [err for err in executor.map(fill, range(min_conns)) if err]

    if errors:
        try:
            pool.close()
        except Exception:
            pass
        raise errors[0]
    return pool