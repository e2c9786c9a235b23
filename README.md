# edbpool

`edbpool` is the client-side layer between an application and its EdgeDB
server connections. It provides:

- a thread-safe connection **pool** with a minimum and a maximum number of
  connections (`edbpool.pool`),
- **reconnecting connections** that keep trying to connect while the failure
  says reconnecting is worthwhile (`edbpool.reconnect`),
- **transactions** with configurable isolation, read-only and deferrable
  modes (`edbpool.transaction`, `edbpool.options`),
- **retrying transactions** that re-run an action, with backoff, when its
  failure carries the `SHOULD_RETRY` tag.

## What this package does not do

It does not speak the server's wire protocol. There is no socket handling,
authentication, argument encoding or result decoding in it, and no DSN or
environment-variable parsing. You supply a *base connection* object that does
that work; this package schedules, pools, reconnects and wraps it in
transactions. The base connection must have these methods:

| method | purpose |
| --- | --- |
| `connect(address, timeout)` | open a session to one address; `timeout` is seconds or `None` |
| `script_flow(query)` | run a `ScriptQuery` |
| `granular_flow(query)` | run a `GranularQuery` and return its result |
| `close()` | close the session |

`edbpool.query` describes queries (`ScriptQuery`, `GranularQuery`, `Format`,
`Cardinality`) and encodes and decodes message headers
(`encode_headers`, `read_headers`) for use by such an implementation.

## Installation

```
pip install edbpool
```

Python 3.10 or newer is required. The package has no runtime dependencies.

## Connecting a pool

A pool is built from a *connection factory*: a callable with no arguments that
returns a new, not yet connected `ReconnectingConnection`. The pool connects it
when it needs it.

```python
from edbpool.options import Options
from edbpool.pool import connect
from edbpool.reconnect import ReconnectingConnection

def factory():
    return ReconnectingConnection(
        MyProtocolConnection(),          # your base connection
        addresses=[("127.0.0.1", 5656)],
        wait_until_available=30.0,
    )

pool = connect(factory, Options(min_conns=1, max_conns=4, connect_timeout=10.0))
print(pool.query_one("SELECT 'hello';"))
pool.close()
```

`connect` uses only `min_conns`, `max_conns` and `connect_timeout` from
`Options`; the other fields (`hosts`, `ports`, `user`, `database`,
`password`, `wait_until_available`, `server_settings`) are carried for your
factory to use. A zero `min_conns` means 1 and a zero `max_conns` means
`max(4, cpu_count)`; negative values raise `ValueError`. A maximum lower than
the minimum raises `ConfigurationError`. `connect` opens the minimum number of
connections in parallel; if any fails, the pool is closed and the first error
is raised.

`Pool(factory, min_conns, max_conns)` creates a pool without opening any
connection. `Pool` is also a context manager that closes itself on exit.

`default_hosts()` returns the usual server socket directories
(`/run/edgedb`, `/var/run/edgedb`) on Unix and `["localhost"]` on Windows,
for a factory that has no host configured.

## Reconnecting

`ReconnectingConnection.reconnect(timeout)` tries each address in turn. A
`ClientConnectionError` tagged `SHOULD_RECONNECT` leads to another round after
a random pause of 10–209 ms, until `wait_until_available` seconds (or the
shorter `timeout`) have passed; any other error is raised at once. Reconnecting
a closed connection raises `InterfaceError`, and a connection with no addresses
raises `ConfigurationError`.

## Queries

Pools, pooled connections, reconnecting connections and transactions offer the
same query methods; each returns what the base connection's `granular_flow`
returns:

| method | query sent |
| --- | --- |
| `execute(command)` | script, no result |
| `query(command, *args)` | binary format, many results |
| `query_one(command, *args)` | binary format, one result |
| `query_json(command, *args)` | JSON format, many results |
| `query_one_json(command, *args)` | JSON format, one result |

Outside a transaction, queries carry an allow-capabilities header that leaves
out the transaction capability, so the server refuses transaction control
statements such as `START TRANSACTION` (typically with
`DisabledCapabilityError`).

## Holding a connection

```python
conn = pool.acquire(timeout=5.0)
try:
    conn.execute("INSERT TxTest { name := 'example' };")
finally:
    conn.release()
```

`acquire` prefers an idle connection, then opens a new one if the maximum
allows, and otherwise waits. A timeout of zero or less, or running out of
time, raises `TimeoutError`; acquiring from a closed pool raises
`InterfaceError`. A `PoolConnection` is also a context manager that releases
itself on exit. Releasing it a second time raises `InterfaceError`.

On release, a connection is closed rather than kept when it hit a permanent
network error (an `OSError` other than a timeout or interruption) or an
`UnexpectedMessageError`, or when the pool already holds `min_conns` idle
connections. When a pool's own query method fails, the connection it used is
closed as well unless the error was a timeout or interruption.

`Pool.close()` waits until every acquired connection has been released, closes
the idle ones, and raises `InterfaceError` if the pool was already closed.

## Transactions

`raw_transaction(action)` starts a transaction, calls `action(tx)` and commits
when it returns, returning the action's result. If the action raises, the
transaction is rolled back and the exception propagates.

```python
def add_user(tx):
    tx.execute("INSERT User { name := 'Ana' };")

pool.raw_transaction(add_user)
```

While a transaction runs, its connection is borrowed: query methods called on
the connection itself instead of on the transaction raise `InterfaceError`.
A `Transaction` moves through the `TransactionState` values `NEW`, `STARTED`,
`COMMITTED`, `ROLLED_BACK` and `FAILED`; using it when not started, or after
it is done, raises `InterfaceError`.

`retrying_transaction(action)` behaves the same but, when the action raises an
`EdgeDBError` tagged `SHOULD_RETRY`, rolls back, waits and runs the action
again, until the rule's attempts are used up.

### Transaction options

```python
from edbpool.options import IsolationLevel, TxOptions

read_only = TxOptions().with_read_only(True).with_deferrable(True)
reporting_pool = pool.with_tx_options(read_only)
print(read_only.start_tx_query())
# START TRANSACTION ISOLATION REPEATABLE READ, READ ONLY, DEFERRABLE;
```

The default is `IsolationLevel.REPEATABLE_READ`, read-write, not deferrable;
`IsolationLevel.SERIALIZABLE` is the other level, and an unknown level raises
`ValueError`. `with_tx_options` and `with_retry_options` on a pool or pooled
connection return a copy; the original is unchanged, and pool copies share
their connections and closed state.

### Retry options

```python
from edbpool.options import RetryCondition, RetryOptions, RetryRule

patient = RetryRule().with_attempts(5)
retry = RetryOptions().with_default(patient)
retry = retry.with_condition(RetryCondition.NETWORK_ERROR, RetryRule().with_attempts(2))
pool = pool.with_retry_options(retry)
```

A rule defaults to 3 attempts and `default_backoff`, which waits
`(2**attempt * 100 + jitter)` milliseconds, the jitter being random below 100;
backoff functions return seconds. Attempts below 1 raise `ValueError`.
`rule_for_exception` picks the `TX_CONFLICT` rule for
`TransactionConflictError`, the `NETWORK_ERROR` rule for `ClientError`, and
raises `TypeError` for anything else.

## Errors

All errors derive from `EdgeDBError`, which has `has_tag(tag)` and prints as
`edgedb.<ClassName>: <message>`. The classes are `ClientError`,
`InterfaceError`, `ConfigurationError`, `ClientConnectionError`,
`UnexpectedMessageError`, `TransactionConflictError` (tagged `SHOULD_RETRY`)
and `DisabledCapabilityError`. The tag names are `SHOULD_RETRY` and
`SHOULD_RECONNECT` in `edbpool.errors`.

## Running the tests

```
pip install -e ".[test]"
pytest
```