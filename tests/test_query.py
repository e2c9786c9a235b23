import pytest

from edbpool.query import (
    Cardinality,
    Format,
    GranularQuery,
    ScriptQuery,
    encode_headers,
    read_headers,
)


def test_encode_empty_headers():
    assert encode_headers({}) == b"\x00\x00"


def test_encode_single_header():
    encoded = encode_headers({0xFF04: b"\x01\x02"})
    assert encoded == b"\x00\x01\xff\x04\x00\x00\x00\x02\x01\x02"


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {1: b""},
        {0xFF04: b"abc", 7: b"\x00" * 300},
        {0: b"x", 1: b"y", 0xFFFF: b"z"},
    ],
)
def test_headers_round_trip(headers):
    decoded, rest = read_headers(encode_headers(headers))
    assert decoded == headers
    assert rest == b""


def test_read_headers_returns_trailing_bytes():
    data = encode_headers({3: b"value"}) + b"tail"
    headers, rest = read_headers(data)
    assert headers == {3: b"value"}
    assert rest == b"tail"


def test_read_headers_truncated():
    encoded = encode_headers({2: b"abcdef", 5: b"gh"})
    for end in range(len(encoded)):
        with pytest.raises(ValueError, match="truncated"):
            read_headers(encoded[:end])


@pytest.mark.parametrize("key", [-1, 0x10000])
def test_encode_rejects_bad_key(key):
    with pytest.raises(ValueError, match="out of range"):
        encode_headers({key: b""})


@pytest.mark.parametrize(
    "fmt, card, flat",
    [
        (Format.BINARY, Cardinality.ONE, True),
        (Format.BINARY, Cardinality.MANY, False),
        (Format.JSON, Cardinality.ONE, True),
        (Format.JSON, Cardinality.MANY, True),
    ],
)
def test_flat(fmt, card, flat):
    query = GranularQuery("SELECT 1", fmt, card)
    assert query.flat() is flat


def test_granular_query_defaults():
    query = GranularQuery("SELECT 1")
    assert query.format is Format.BINARY
    assert query.expected_cardinality is Cardinality.MANY
    assert query.args == ()
    assert query.headers == {}


def test_granular_query_coerces_values():
    query = GranularQuery("SELECT 1", "json", "one", [1, 2])
    assert query.format is Format.JSON
    assert query.expected_cardinality is Cardinality.ONE
    assert query.args == (1, 2)


def test_granular_query_rejects_unknown_cardinality():
    with pytest.raises(ValueError):
        GranularQuery("SELECT 1", Format.BINARY, "several")


def test_granular_query_copies_headers():
    headers = {1: b"a"}
    query = GranularQuery("SELECT 1", headers=headers)
    headers[2] = b"b"
    assert query.headers == {1: b"a"}


def test_script_query_copies_headers():
    headers = {1: b"a"}
    query = ScriptQuery("START TRANSACTION", headers)
    headers.clear()
    assert query.headers == {1: b"a"}
    assert query.command == "START TRANSACTION"


def test_script_query_default_headers_empty():
    assert ScriptQuery("COMMIT;").headers == {}