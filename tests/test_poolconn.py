import pytest

from edbpool.errors import (
    DisabledCapabilityError,
    InterfaceError,
    TransactionConflictError,
    UnexpectedMessageError,
)
from edbpool.options import RetryOptions, RetryRule, TxOptions
from edbpool.pool import Pool
from edbpool.poolconn import PoolConnection
from edbpool.reconnect import ALLOW_CAPABILITIES, NO_TX_CAPABILITIES, ReconnectingConnection

TX_COMMANDS = ("START TRANSACTION", "COMMIT", "ROLLBACK")


class FakeServer:
    def __init__(self):
        self.closed = False
        self.connects = 0
        self.scripts = []
        self.failures = {}

    def connect(self, address, timeout):
        self.connects += 1

    def _check(self, command, headers):
        if command in self.failures:
            raise self.failures[command]
        if (
            command.upper().startswith(TX_COMMANDS)
            and headers.get(ALLOW_CAPABILITIES) == NO_TX_CAPABILITIES
        ):
            raise DisabledCapabilityError(
                "cannot execute transaction control commands"
            )

    def script_flow(self, query):
        self._check(query.command, query.headers)
        self.scripts.append(query.command)

    def granular_flow(self, query):
        self._check(query.command, query.headers)
        return {"SELECT 42": 42}.get(query.command)

    def close(self):
        self.closed = True


@pytest.fixture
def servers():
    return []


@pytest.fixture
def pool(servers):
    def factory():
        server = FakeServer()
        servers.append(server)
        return ReconnectingConnection(server, ["127.0.0.1:5656"])

    return Pool(factory, 1, 2)


def test_release_pool_connection(pool):
    pool_conn = pool.acquire()
    connection = pool_conn.connection
    pool_conn.release()

    again = pool.acquire()
    assert again.connection is connection

    with pytest.raises(InterfaceError) as info:
        pool_conn.release()
    assert str(info.value) == (
        "edgedb.InterfaceError: connection released more than once"
    )


def test_pool_connection_rejects_transaction(pool):
    expected = (
        "edgedb.DisabledCapabilityError: "
        "cannot execute transaction control commands"
    )
    conn = pool.acquire()
    calls = [
        conn.execute,
        conn.query,
        conn.query_json,
        conn.query_one,
        conn.query_one_json,
    ]
    for call in calls:
        with pytest.raises(DisabledCapabilityError) as info:
            call("START TRANSACTION")
        assert str(info.value) == expected
    conn.release()


def test_query_returns_result(pool):
    conn = pool.acquire()
    assert conn.query_one("SELECT 42") == 42
    conn.release()


def test_permanent_network_error_closes_connection(pool, servers):
    conn = pool.acquire()
    servers[0].failures["SELECT 1"] = ConnectionResetError("reset")
    with pytest.raises(ConnectionResetError):
        conn.query("SELECT 1")
    conn.release()
    assert servers[0].closed is True


def test_unexpected_message_closes_connection(pool, servers):
    conn = pool.acquire()
    servers[0].failures["SELECT 1"] = UnexpectedMessageError("odd")
    with pytest.raises(UnexpectedMessageError):
        conn.execute("SELECT 1")
    conn.release()
    assert servers[0].closed is True


def test_query_error_keeps_connection(pool, servers):
    conn = pool.acquire()
    with pytest.raises(DisabledCapabilityError):
        conn.execute("START TRANSACTION")
    conn.release()
    assert servers[0].closed is False
    assert pool.acquire().connection.connection is servers[0]


def test_context_manager_releases(pool, servers):
    with pool.acquire() as conn:
        first = conn.connection
    assert pool.acquire().connection is first
    assert servers[0].closed is False


def test_raw_transaction_uses_tx_options(pool, servers):
    conn = pool.acquire().with_tx_options(TxOptions(read_only=True))
    result = conn.raw_transaction(lambda tx: tx.query_one("SELECT 42"))
    assert result == 42
    assert servers[0].scripts == [
        "START TRANSACTION ISOLATION REPEATABLE READ, READ ONLY, NOT DEFERRABLE;",
        "COMMIT;",
    ]


def test_with_tx_options_rejects_other_types(pool):
    conn = pool.acquire()
    with pytest.raises(TypeError):
        conn.with_tx_options("serializable")


def test_retrying_transaction_uses_retry_options(pool):
    attempts = []

    def action(tx):
        attempts.append(tx)
        raise TransactionConflictError("conflict")

    rule = RetryRule().with_attempts(2).with_backoff(lambda n: 0.0)
    conn = pool.acquire().with_retry_options(RetryOptions().with_default(rule))
    with pytest.raises(TransactionConflictError):
        conn.retrying_transaction(action)
    assert len(attempts) == 2


def test_with_retry_options_rejects_other_types(pool):
    conn = pool.acquire()
    with pytest.raises(TypeError):
        conn.with_retry_options(RetryRule())


def test_released_connection_is_unusable(pool):
    conn = pool.acquire()
    conn.release()
    with pytest.raises(InterfaceError):
        conn.execute("SELECT 1")


def test_direct_construction_uses_given_connection(pool, servers):
    server = FakeServer()
    connection = ReconnectingConnection(server, ["127.0.0.1:5656"])
    pool_conn = PoolConnection(pool, connection)
    assert pool_conn.query_one("SELECT 42") == 42
    assert server.connects == 1