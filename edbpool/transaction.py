"""Transactions run on a single server connection."""

from __future__ import annotations

import enum
from typing import Any, Protocol

from edbpool.errors import InterfaceError
from edbpool.options import TxOptions
from edbpool.query import Cardinality, Format, GranularQuery, ScriptQuery


class _QueryRunner(Protocol):
    def script_flow(self, query: ScriptQuery) -> Any: ...

    def granular_flow(self, query: GranularQuery) -> Any: ...


class TransactionState(enum.Enum):
    """Life cycle of a transaction."""

    NEW = "new"
    STARTED = "started"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


_DONE_REASONS = {
    TransactionState.COMMITTED: "the transaction is already committed",
    TransactionState.ROLLED_BACK: "the transaction is already rolled back",
    TransactionState.FAILED: "the transaction is in error state",
}


class Transaction:
    """A transaction on a connection.

    Obtain one through ``raw_transaction`` or ``retrying_transaction``.
    """

    def __init__(
        self, connection: _QueryRunner, options: TxOptions | None = None
    ) -> None:
        self._connection = connection
        self.options = options if options is not None else TxOptions()
        self.state = TransactionState.NEW

    def _assert_not_done(self, operation: str) -> None:
        reason = _DONE_REASONS.get(self.state)
        if reason is not None:
            raise InterfaceError(f"cannot {operation}; {reason}")

    def _assert_started(self, operation: str) -> None:
        if self.state is TransactionState.STARTED:
            return
        if self.state is TransactionState.NEW:
            raise InterfaceError(
                f"cannot {operation}; the transaction is not yet started"
            )
        self._assert_not_done(operation)

    def _run(self, command: str, success_state: TransactionState) -> None:
        try:
            self._connection.script_flow(ScriptQuery(command))
        except BaseException:
            self.state = TransactionState.FAILED
            raise
        self.state = success_state

    def start(self) -> None:
        """Start the transaction."""
        self._assert_not_done("start")
        if self.state is TransactionState.STARTED:
            raise InterfaceError(
                "cannot start; the transaction is already started"
            )
        self._run(self.options.start_tx_query(), TransactionState.STARTED)

    def commit(self) -> None:
        """Commit the transaction."""
        self._assert_started("commit")
        self._run("COMMIT;", TransactionState.COMMITTED)

    def rollback(self) -> None:
        """Roll the transaction back."""
        self._assert_started("rollback")
        self._run("ROLLBACK;", TransactionState.ROLLED_BACK)

    def execute(self, command: str) -> None:
        """Execute an EdgeQL command (or commands)."""
        self._assert_started("execute")
        self._connection.script_flow(ScriptQuery(command))

    def _granular(
        self,
        operation: str,
        command: str,
        output: Format,
        cardinality: Cardinality,
        args: tuple[Any, ...],
    ) -> Any:
        self._assert_started(operation)
        query = GranularQuery(command, output, cardinality, args)
        return self._connection.granular_flow(query)

    def query(self, command: str, *args: Any) -> Any:
        """Run a query and return its results."""
        return self._granular(
            "query", command, Format.BINARY, Cardinality.MANY, args
        )

    def query_one(self, command: str, *args: Any) -> Any:
        """Run a singleton-returning query and return its element."""
        return self._granular(
            "query_one", command, Format.BINARY, Cardinality.ONE, args
        )

    def query_json(self, command: str, *args: Any) -> Any:
        """Run a query and return its results as JSON."""
        return self._granular(
            "query_json", command, Format.JSON, Cardinality.MANY, args
        )

    def query_one_json(self, command: str, *args: Any) -> Any:
        """Run a singleton-returning query and return its result as JSON."""
        return self._granular(
            "query_one_json", command, Format.JSON, Cardinality.ONE, args
        )