"""Tests for the WebSocket API request dispatcher."""

import json
from http import HTTPStatus

import pytest

from database_api.server import DocumentAPIServer, build_channel
from src.chatdb import ChatDB, ChatDBConfig, InMemoryChannel


@pytest.fixture
def server(db):
    return DocumentAPIServer(db, host='127.0.0.1', port=0)


async def call(server, action, request_id=1, **data):
    return await server.handle_request({'action': action, 'data': data, 'request_id': request_id})


@pytest.mark.asyncio
async def test_ping(server):
    response = await call(server, 'ping', request_id='abc')

    assert response['request_id'] == 'abc'
    assert response['success'] is True
    assert response['pong'] is True


@pytest.mark.asyncio
async def test_document_lifecycle(server):
    inserted = await call(server, 'insert', table='users', document={'name': 'Alice', 'age': 30})
    assert inserted['success'] is True
    doc_id = inserted['data']['id']

    batch = await call(server, 'insert_many', table='users', documents=[{'name': 'Bob'}, {'name': 'Cara'}], delay=0)
    assert batch['inserted'] == 2

    found = await call(server, 'find', table='users', filter={'name': {'$in': ['Alice', 'Bob']}})
    assert found['count'] == 2

    one = await call(server, 'find_by_id', table='users', id=doc_id)
    assert one['document']['name'] == 'Alice'

    updated = await call(server, 'update_by_id', table='users', id=doc_id, update={'age': 31})
    assert updated['success'] is True
    assert (await call(server, 'find_one', table='users', filter={'id': doc_id}))['document']['age'] == 31

    counted = await call(server, 'count', table='users')
    assert counted['count'] == 3

    deleted = await call(server, 'delete_by_id', table='users', id=doc_id)
    assert deleted['data'] == {'deleted_count': 1, 'removed_count': 1}


@pytest.mark.asyncio
async def test_tables_and_clear(server):
    await call(server, 'insert', table='users', document={'n': 1})
    await call(server, 'insert', table='orders', document={'n': 1})

    assert (await call(server, 'list_tables'))['tables'] == ['orders', 'users']
    assert (await call(server, 'drop_table', table='orders'))['success'] is True

    cleared = await call(server, 'clear')
    assert cleared['success'] is True
    assert len(cleared['results']) == 1
    assert (await call(server, 'list_tables'))['tables'] == []


@pytest.mark.asyncio
async def test_stats_include_process_info(server):
    await call(server, 'insert', table='users', document={'n': 1})

    response = await call(server, 'stats')

    assert response['success'] is True
    assert response['stats']['total_documents'] == 1
    assert 'memory_mb' in response['process']


@pytest.mark.asyncio
async def test_failed_operation_reports_failure(server):
    response = await call(server, 'update', table='users', filter={'name': 'nobody'}, update={'x': 1})

    assert response['success'] is False
    assert response['message'] == 'No documents found to update'


@pytest.mark.asyncio
async def test_bad_filter_becomes_error_response(server):
    response = await call(server, 'find', table='users', filter={'age': {'$between': [1, 2]}})

    assert response['success'] is False
    assert 'error' in response


@pytest.mark.asyncio
async def test_unknown_action(server):
    response = await call(server, 'explode')

    assert response == {'request_id': 1, 'success': False, 'error': 'Unknown action: explode'}


def test_memory_backend_is_selectable(monkeypatch):
    monkeypatch.setenv('CHATDB_BACKEND', 'memory')

    channel = build_channel(ChatDBConfig(history_limit=10))

    assert isinstance(channel, InMemoryChannel)
    assert channel.history_limit == 10


class FakeConnection:
    def respond(self, status, text):
        return status, text


class FakeRequest:
    def __init__(self, path, headers=None):
        self.path = path
        self.headers = headers or {}


class FakeWebSocket:
    def __init__(self, frames):
        self.frames = frames
        self.sent = []

    async def __aiter__(self):
        for frame in self.frames:
            yield frame

    async def send(self, text):
        self.sent.append(json.loads(text))


@pytest.mark.asyncio
async def test_health_check_reports_ready_store(server):
    status, body = server.process_request(FakeConnection(), FakeRequest('/health'))

    assert status == HTTPStatus.OK
    assert body == "OK\n"


@pytest.mark.asyncio
async def test_health_check_before_initialize(channel, config):
    server = DocumentAPIServer(ChatDB(channel, config))

    status, body = server.process_request(FakeConnection(), FakeRequest('/'))

    assert status == HTTPStatus.SERVICE_UNAVAILABLE
    assert body == "Starting\n"


@pytest.mark.asyncio
async def test_plain_http_on_other_paths_is_rejected(server):
    status, _ = server.process_request(FakeConnection(), FakeRequest('/documents'))

    assert status == HTTPStatus.BAD_REQUEST


@pytest.mark.asyncio
async def test_websocket_upgrade_passes_through(server):
    request = FakeRequest('/', headers={'Upgrade': 'websocket'})

    assert server.process_request(FakeConnection(), request) is None


@pytest.mark.asyncio
async def test_handler_answers_each_frame(server):
    websocket = FakeWebSocket([
        'not json',
        '[1, 2]',
        json.dumps({'action': 'ping', 'request_id': 7}).encode('utf-8'),
    ])

    await server.handler(websocket)

    assert websocket.sent[0] == {'success': False, 'error': 'Invalid JSON'}
    assert websocket.sent[1] == {'success': False, 'error': 'Invalid JSON'}
    assert websocket.sent[2]['request_id'] == 7
    assert websocket.sent[2]['pong'] is True
    assert server.clients == set()
