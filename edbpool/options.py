"""Connection, transaction and retry options."""

from __future__ import annotations

import enum
import random
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from edbpool.errors import ClientError, EdgeDBError, TransactionConflictError

RetryBackoff = Callable[[int], float]


def default_backoff(attempt: int) -> float:
    """Seconds to wait after the given attempt: exponential with jitter."""
    backoff = (2.0**attempt) * 100.0
    jitter = random.random() * 100.0
    return (backoff + jitter) / 1000.0


class RetryCondition(enum.Enum):
    """Failure kinds that may cause a transaction to be retried."""

    TX_CONFLICT = 0
    NETWORK_ERROR = 1


class IsolationLevel(str, enum.Enum):
    """Transaction isolation levels."""

    SERIALIZABLE = "serializable"
    REPEATABLE_READ = "repeatable_read"


@dataclass(frozen=True)
class RetryRule:
    """How many times to attempt a transaction and how long to wait between."""

    attempts: int = 3
    backoff: RetryBackoff = default_backoff

    def __post_init__(self) -> None:
        _check_attempts(self.attempts)
        _check_backoff(self.backoff)

    def with_attempts(self, attempts: int) -> RetryRule:
        """Return a copy with ``attempts`` set; it must be at least 1."""
        _check_attempts(attempts)
        return replace(self, attempts=attempts)

    def with_backoff(self, backoff: RetryBackoff) -> RetryRule:
        """Return a copy with the backoff function set."""
        _check_backoff(backoff)
        return replace(self, backoff=backoff)


def _check_attempts(attempts: int) -> None:
    if attempts < 1:
        raise ValueError(
            f"RetryRule attempts must be greater than 0, got {attempts}"
        )


def _check_backoff(backoff: RetryBackoff | None) -> None:
    if backoff is None:
        raise ValueError("the backoff function must not be None")
    if not callable(backoff):
        raise TypeError("the backoff function must be callable")


def _check_rule(rule: object) -> None:
    if not isinstance(rule, RetryRule):
        raise TypeError(f"expected a RetryRule, got {type(rule).__name__}")


@dataclass(frozen=True)
class RetryOptions:
    """Retry rules for each retry condition."""

    tx_conflict: RetryRule = field(default_factory=RetryRule)
    network: RetryRule = field(default_factory=RetryRule)

    def with_default(self, rule: RetryRule) -> RetryOptions:
        """Return a copy using ``rule`` for every condition."""
        _check_rule(rule)
        return replace(self, tx_conflict=rule, network=rule)

    def with_condition(
        self, condition: RetryCondition, rule: RetryRule
    ) -> RetryOptions:
        """Return a copy using ``rule`` for ``condition``."""
        _check_rule(rule)
        try:
            condition = RetryCondition(condition)
        except ValueError:
            raise ValueError(f"unexpected condition: {condition!r}") from None

        if condition is RetryCondition.TX_CONFLICT:
            return replace(self, tx_conflict=rule)
        return replace(self, network=rule)

    def rule_for_exception(self, error: BaseException) -> RetryRule:
        """Return the rule that governs retrying after ``error``."""
        if isinstance(error, TransactionConflictError):
            return self.tx_conflict
        if isinstance(error, ClientError):
            return self.network
        kind = "edgedb" if isinstance(error, EdgeDBError) else "foreign"
        raise TypeError(
            f"unexpected error type: {type(error).__name__} ({kind})"
        )


_ISOLATION_CLAUSES = {
    IsolationLevel.REPEATABLE_READ: "ISOLATION REPEATABLE READ",
    IsolationLevel.SERIALIZABLE: "ISOLATION SERIALIZABLE",
}


@dataclass(frozen=True)
class TxOptions:
    """How transactions behave."""

    isolation: IsolationLevel = IsolationLevel.REPEATABLE_READ
    read_only: bool = False
    deferrable: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "isolation", _isolation(self.isolation))

    def with_isolation(self, isolation: IsolationLevel) -> TxOptions:
        """Return a copy with the isolation level set."""
        return replace(self, isolation=_isolation(isolation))

    def with_read_only(self, read_only: bool) -> TxOptions:
        """Return a copy with the read only access mode set."""
        return replace(self, read_only=bool(read_only))

    def with_deferrable(self, deferrable: bool) -> TxOptions:
        """Return a copy with the deferrable mode set."""
        return replace(self, deferrable=bool(deferrable))

    def start_tx_query(self) -> str:
        """Return the command that starts a transaction with these options."""
        access = "READ ONLY" if self.read_only else "READ WRITE"
        deferral = "DEFERRABLE" if self.deferrable else "NOT DEFERRABLE"
        isolation = _ISOLATION_CLAUSES[self.isolation]
        return f"START TRANSACTION {isolation}, {access}, {deferral};"


def _isolation(value: object) -> IsolationLevel:
    try:
        return IsolationLevel(value)
    except ValueError:
        raise ValueError(f"unknown isolation level: {value!r}") from None


@dataclass
class Options:
    """Options for connecting to a server.

    Durations are in seconds. A zero ``min_conns`` means 1 and a zero
    ``max_conns`` means max(4, number of CPUs).
    """

    hosts: list[str] = field(default_factory=list)
    ports: list[int] = field(default_factory=list)
    user: str = ""
    database: str = ""
    password: str = ""
    connect_timeout: float = 0.0
    wait_until_available: float = 0.0
    min_conns: int = 0
    max_conns: int = 0
    server_settings: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.min_conns < 0:
            raise ValueError(f"min_conns may not be negative, got {self.min_conns}")
        if self.max_conns < 0:
            raise ValueError(f"max_conns may not be negative, got {self.max_conns}")