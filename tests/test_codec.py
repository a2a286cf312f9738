"""Tests for the message codec and prefix dispatch."""

import pytest

from src.chatdb.codec import (
    MessagePrefixes,
    RecordKind,
    SNAPSHOT_ID,
    SYSTEM_TABLE,
    build_snapshot,
    build_tombstone,
    decode,
    encode,
    parse_snapshot,
)
from src.chatdb.errors import PayloadTooLarge


def test_round_trip_keeps_nested_fields():
    doc = {
        'id': '1700000000000-abc',
        'table': 'users',
        'name': 'Zoë',
        'address': {'city': 'London', 'geo': {'lat': 51.5, 'lng': -0.12}},
        'tags': ['a', 'b'],
        'active': True,
        'score': None,
    }

    assert decode(encode(doc, 'TDB:'), 'TDB:') == doc


def test_encoding_is_canonical():
    assert encode({'b': 1, 'a': {'d': 2, 'c': 3}}) == 'TDB:{"a":{"c":3,"d":2},"b":1}'


def test_decode_rejects_other_prefixes():
    assert decode('hello world', 'TDB:') is None
    assert decode('XYZ:{"id":"1"}', 'TDB:') is None


def test_decode_never_raises_on_garbage():
    assert decode('TDB:{not json', 'TDB:') is None
    assert decode('TDB:', 'TDB:') is None
    assert decode('TDB:[1,2,3]', 'TDB:') is None
    assert decode('TDB:"text"', 'TDB:') is None


def test_payload_too_large_is_raised():
    doc = {'id': 'x', 'blob': 'y' * 100}

    with pytest.raises(PayloadTooLarge) as excinfo:
        encode(doc, 'TDB:', max_size=50)

    assert excinfo.value.limit == 50
    assert excinfo.value.size > 50


def test_payload_at_limit_is_accepted():
    payload = encode({'a': 1})
    assert encode({'a': 1}, max_size=len(payload)) == payload


def test_snapshot_is_never_classified_as_document():
    prefixes = MessagePrefixes('TDB:')
    snapshot = encode(build_snapshot([('d1', 5)], [{'id': 'd1', 'table': 't'}]), prefixes.snapshot)

    kind, record = prefixes.classify(snapshot)

    assert kind == RecordKind.SNAPSHOT
    assert record['id'] == SNAPSHOT_ID
    assert record['table'] == SYSTEM_TABLE


def test_document_is_never_classified_as_snapshot():
    prefixes = MessagePrefixes('TDB:')
    kind, record = prefixes.classify(encode({'id': 'd1', 'table': 't'}, prefixes.document))

    assert kind == RecordKind.DOCUMENT
    assert record == {'id': 'd1', 'table': 't'}


def test_tombstone_classification():
    prefixes = MessagePrefixes('TDB:')
    payload = encode(build_tombstone('d1', 'users', deleted_at=1), prefixes.tombstone)

    assert prefixes.classify(payload) == (
        RecordKind.TOMBSTONE,
        {'id': 'd1', 'table': 'users', 'deletedAt': 1},
    )


def test_foreign_and_broken_messages_classify_to_none():
    prefixes = MessagePrefixes('TDB:')

    assert prefixes.classify('good morning') is None
    assert prefixes.classify('TDB:INDEX:{broken') is None
    assert prefixes.classify('TDB:oops') is None


def test_custom_prefix_namespaces():
    prefixes = MessagePrefixes('APP1:')

    assert prefixes.snapshot == 'APP1:INDEX:'
    assert prefixes.tombstone == 'APP1:TOMB:'
    assert prefixes.classify(encode({'id': 'a'}, 'TDB:')) is None


def test_parse_snapshot_pairs_documents_with_message_ids():
    record = build_snapshot(
        [('a', 1), ('b', 2)],
        [{'id': 'a', 'table': 't'}, {'id': 'b', 'table': 't'}, {'id': 'orphan'}],
        updated_at=10,
    )

    entries = parse_snapshot(record)

    assert entries == [({'id': 'a', 'table': 't'}, 1), ({'id': 'b', 'table': 't'}, 2)]
    assert record['updatedAt'] == 10


def test_parse_snapshot_rejects_other_records():
    assert parse_snapshot({'id': 'doc'}) is None
    assert parse_snapshot({'id': SNAPSHOT_ID, 'documents': 'nope', 'messageIndex': []}) is None
