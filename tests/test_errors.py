import pytest

from edbpool.errors import (
    SHOULD_RECONNECT,
    SHOULD_RETRY,
    ClientConnectionError,
    ClientError,
    ConfigurationError,
    DisabledCapabilityError,
    EdgeDBError,
    InterfaceError,
    TransactionConflictError,
    UnexpectedMessageError,
)


def test_interface_error_text():
    assert str(InterfaceError("pool closed")) == "edgedb.InterfaceError: pool closed"


def test_configuration_error_text():
    err = ConfigurationError("MaxConns (1) may not be less than MinConns (5)")
    assert str(err) == (
        "edgedb.ConfigurationError: MaxConns (1) may not be less than MinConns (5)"
    )


def test_released_twice_text():
    err = InterfaceError("connection released more than once")
    assert str(err) == "edgedb.InterfaceError: connection released more than once"


def test_disabled_capability_text():
    err = DisabledCapabilityError("cannot execute transaction control commands")
    assert str(err) == (
        "edgedb.DisabledCapabilityError: cannot execute transaction control commands"
    )


def test_message_attribute_kept():
    assert InterfaceError("pool closed").message == "pool closed"


def test_transaction_conflict_should_retry():
    err = TransactionConflictError("conflict")
    assert err.has_tag(SHOULD_RETRY)
    assert not err.has_tag(SHOULD_RECONNECT)


def test_explicit_tags_are_added():
    err = ClientConnectionError("refused", tags=[SHOULD_RECONNECT])
    assert err.has_tag(SHOULD_RECONNECT)
    assert not err.has_tag(SHOULD_RETRY)


def test_default_tags_are_merged_with_explicit():
    err = TransactionConflictError("conflict", tags=[SHOULD_RECONNECT])
    assert err.tags == frozenset({SHOULD_RETRY, SHOULD_RECONNECT})


def test_no_tags_by_default():
    assert InterfaceError("x").tags == frozenset()


@pytest.mark.parametrize(
    "cls, parent, text",
    [
        (InterfaceError, ClientError, "edgedb.InterfaceError: boom"),
        (ClientConnectionError, ClientError, "edgedb.ClientConnectionError: boom"),
        (ConfigurationError, EdgeDBError, "edgedb.ConfigurationError: boom"),
        (UnexpectedMessageError, EdgeDBError, "edgedb.UnexpectedMessageError: boom"),
        (
            TransactionConflictError,
            EdgeDBError,
            "edgedb.TransactionConflictError: boom",
        ),
        (
            DisabledCapabilityError,
            EdgeDBError,
            "edgedb.DisabledCapabilityError: boom",
        ),
    ],
)
def test_hierarchy(cls, parent, text):
    err = cls("boom")
    assert isinstance(err, parent)
    assert err.message == "boom"
    assert str(err) == text


def test_errors_are_catchable_by_category():
    err = InterfaceError("pool closed")
    assert isinstance(err, ClientError)
    assert err.message == "pool closed"


def test_transaction_conflict_is_not_client_error():
    err = TransactionConflictError("x")
    assert not isinstance(err, ClientError)
    assert err.has_tag(SHOULD_RETRY)