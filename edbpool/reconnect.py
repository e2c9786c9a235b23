"""A connection that reconnects to the server when it can."""

from __future__ import annotations

import contextlib
import itertools
import random
import struct
import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any, Protocol

from edbpool.errors import (
    SHOULD_RECONNECT,
    SHOULD_RETRY,
    ClientConnectionError,
    ConfigurationError,
    EdgeDBError,
    InterfaceError,
)
from edbpool.options import RetryOptions, TxOptions
from edbpool.query import Cardinality, Format, GranularQuery, ScriptQuery
from edbpool.transaction import Transaction

ALLOW_CAPABILITIES = 0xFF04
CAPABILITY_TRANSACTION = 1 << 2
_ALL_CAPABILITIES = (1 << 64) - 1
NO_TX_CAPABILITIES = struct.pack(">Q", _ALL_CAPABILITIES & ~CAPABILITY_TRANSACTION)

_TRANSACTION = "transaction"


class _BaseConnection(Protocol):
    def connect(self, address: Any, timeout: float | None) -> None: ...

    def script_flow(self, query: ScriptQuery) -> Any: ...

    def granular_flow(self, query: GranularQuery) -> Any: ...

    def close(self) -> None: ...


def _no_tx_headers() -> dict[int, bytes]:
    return {ALLOW_CAPABILITIES: NO_TX_CAPABILITIES}


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    left = deadline - time.monotonic()
    if left <= 0:
        raise TimeoutError("deadline exceeded")
    return left


class ReconnectingConnection:
    """Wraps a server connection, reconnecting when the failure allows it."""

    def __init__(
        self,
        connection: _BaseConnection,
        addresses: Iterable[Any] = (),
        wait_until_available: float = 0.0,
    ) -> None:
        self.connection = connection
        self.addresses = tuple(addresses)
        self.wait_until_available = wait_until_available
        self.borrow_reason = ""
        self.is_closed = False
        self._connected = False

    def assert_unborrowed(self) -> None:
        """Raise InterfaceError if the connection is lent to a transaction."""
        if self.borrow_reason == _TRANSACTION:
            raise InterfaceError(
                "Connection is borrowed for a transaction. "
                "Use the methods on transaction object instead."
            )
        if self.borrow_reason:
            raise RuntimeError(f"unexpected reason: {self.borrow_reason!r}")

    def borrow(self, reason: str) -> None:
        """Mark the connection as lent out for ``reason``."""
        if self.borrow_reason:
            raise InterfaceError(
                f"connection is already borrowed for {self.borrow_reason}"
            )
        if reason != _TRANSACTION:
            raise ValueError(f"unexpected reason: {reason!r}")
        self.borrow_reason = reason

    def unborrow(self) -> None:
        """Return the connection from being lent out."""
        if not self.borrow_reason:
            raise RuntimeError("not currently borrowed, can not unborrow")
        self.borrow_reason = ""

    @contextlib.contextmanager
    def _borrowed(self, reason: str) -> Iterator[None]:
        self.borrow(reason)
        try:
            yield
        finally:
            self.unborrow()

    def reconnect(self, timeout: float | None = None) -> None:
        """Connect to the server, retrying while the failure allows it.

        ``timeout`` is in seconds; None means no limit beyond
        ``wait_until_available``.
        """
        if self.is_closed:
            raise InterfaceError("Connection is closed")
        if not self.addresses:
            raise ConfigurationError("no addresses to connect to")

        now = time.monotonic()
        max_time = now + self.wait_until_available
        deadline = None if timeout is None else now + timeout
        if deadline is not None and deadline < max_time:
            max_time = deadline

        for attempt in itertools.count(1):
            for address in self.addresses:
                try:
                    self.connection.connect(address, _remaining(deadline))
                except EdgeDBError as err:
                    retryable = isinstance(
                        err, ClientConnectionError
                    ) and err.has_tag(SHOULD_RECONNECT)
                    if not retryable or (
                        attempt > 1 and time.monotonic() > max_time
                    ):
                        raise
                else:
                    self._connected = True
                    return
            time.sleep(random.randint(10, 209) / 1000.0)

    def ensure_connection(self, timeout: float | None = None) -> None:
        """Connect to the server unless already connected."""
        if self._connected and not self.is_closed:
            return
        self.reconnect(timeout)

    def _script_flow(self, query: ScriptQuery) -> Any:
        self.assert_unborrowed()
        self.ensure_connection()
        return self.connection.script_flow(query)

    def _granular_flow(
        self, command: str, output: Format, cardinality: Cardinality, args: tuple
    ) -> Any:
        query = GranularQuery(command, output, cardinality, args, _no_tx_headers())
        self.assert_unborrowed()
        self.ensure_connection()
        return self.connection.granular_flow(query)

    def execute(self, command: str) -> None:
        """Execute an EdgeQL command (or commands)."""
        self._script_flow(ScriptQuery(command, _no_tx_headers()))

    def query(self, command: str, *args: Any) -> Any:
        """Run a query and return its results."""
        return self._granular_flow(command, Format.BINARY, Cardinality.MANY, args)

    def query_one(self, command: str, *args: Any) -> Any:
        """Run a singleton-returning query and return its element."""
        return self._granular_flow(command, Format.BINARY, Cardinality.ONE, args)

    def query_json(self, command: str, *args: Any) -> Any:
        """Run a query and return its results as JSON."""
        return self._granular_flow(command, Format.JSON, Cardinality.MANY, args)

    def query_one_json(self, command: str, *args: Any) -> Any:
        """Run a singleton-returning query and return its result as JSON."""
        return self._granular_flow(command, Format.JSON, Cardinality.ONE, args)

    def raw_transaction(
        self,
        action: Callable[[Transaction], Any],
        options: TxOptions | None = None,
    ) -> Any:
        """Run ``action`` in a transaction and return its result.

        If the action raises, the transaction is rolled back and the
        exception propagates; otherwise the transaction is committed.
        """
        with self._borrowed(_TRANSACTION):
            self.ensure_connection()
            tx = Transaction(self.connection, options)
            tx.start()
            try:
                result = action(tx)
            except Exception:
                with contextlib.suppress(Exception):
                    tx.rollback()
                raise
            tx.commit()
            return result

    def retrying_transaction(
        self,
        action: Callable[[Transaction], Any],
        tx_options: TxOptions | None = None,
        retry_options: RetryOptions | None = None,
    ) -> Any:
        """Like ``raw_transaction`` but retries actions that may succeed later."""
        retry_options = retry_options if retry_options is not None else RetryOptions()
        with self._borrowed(_TRANSACTION):
            for attempt in itertools.count(1):
                self.ensure_connection()
                tx = Transaction(self.connection, tx_options)
                tx.start()
                try:
                    result = action(tx)
                except Exception as err:
                    try:
                        tx.rollback()
                    except EdgeDBError:
                        pass
                    if not (
                        isinstance(err, EdgeDBError) and err.has_tag(SHOULD_RETRY)
                    ):
                        raise
                    rule = retry_options.rule_for_exception(err)
                    if attempt >= rule.attempts:
                        raise
                    time.sleep(rule.backoff(attempt))
                    continue
                tx.commit()
                return result
        raise AssertionError("unreachable")

    def close(self) -> None:
        """Close the connection; it can not be used afterwards."""
        self.is_closed = True
        self.connection.close()