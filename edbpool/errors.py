"""Error types reported by the client and the server."""

from __future__ import annotations

from collections.abc import Iterable

SHOULD_RETRY = "SHOULD_RETRY"
SHOULD_RECONNECT = "SHOULD_RECONNECT"


class EdgeDBError(Exception):
    """Base class of every error the client raises."""

    default_tags: frozenset[str] = frozenset()

    def __init__(self, message: str = "", *, tags: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.tags: frozenset[str] = self.default_tags | frozenset(tags)

    def has_tag(self, tag: str) -> bool:
        """Return True if the error carries ``tag``."""
        return tag in self.tags

    def __str__(self) -> str:
        return f"edgedb.{type(self).__name__}: {self.message}"


class ClientError(EdgeDBError):
    """An error detected on the client side."""


class InterfaceError(ClientError):
    """The client API was used incorrectly."""


class ConfigurationError(EdgeDBError):
    """The connection configuration is invalid."""


class ClientConnectionError(ClientError):
    """Communication with the server failed."""


class UnexpectedMessageError(EdgeDBError):
    """The server sent a message the client did not expect."""


class TransactionConflictError(EdgeDBError):
    """A transaction hit a serialization failure or a deadlock."""

    default_tags = frozenset({SHOULD_RETRY})


class DisabledCapabilityError(EdgeDBError):
    """The command needs a capability that is not allowed here."""