"""
WebSocket Document API Server
Exposes the chat-backed document store over a WebSocket protocol

Requests:  {"action": ..., "data": {...}, "request_id": ...}
Responses: {"request_id": ..., "success": bool, ...}
"""

import asyncio
import json
import logging
import os
import sys
import time
from datetime import datetime
from typing import Dict, Any, Optional, Set
import psutil
import websockets
from dotenv import load_dotenv
from websockets.asyncio.server import ServerConnection
from websockets.http11 import Request, Response
from http import HTTPStatus

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.chatdb import ChatDB, ChatDBConfig, InMemoryChannel, MessageChannel, BatchOptions, UpdateOptions


logger = logging.getLogger('database_api')


class DocumentAPIServer:
    def __init__(
        self,
        db: ChatDB,
        host: str = "0.0.0.0",
        port: int = 8080
    ):
        self.db = db
        self.host = host
        self.port = port
        self.clients: Set[ServerConnection] = set()
        self.start_time = time.time()
        self._initialized = False

    async def initialize(self):
        if self._initialized:
            return

        await self.db.initialize()
        self._initialized = True
        logger.info("Document store initialized successfully")

    async def handle_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        action = request.get('action')
        data = request.get('data') or {}
        request_id = request.get('request_id')
        db = self.db

        try:
            table = data.get('table')
            filter = data.get('filter') or {}

            if action == 'ping':
                result = {'pong': True, 'timestamp': datetime.now().isoformat()}

            elif action == 'insert':
                result = (await db.insert(data.get('document') or {}, table)).to_dict()

            elif action == 'insert_many':
                options = BatchOptions(
                    delay=data.get('delay'),
                    stop_on_error=bool(data.get('stop_on_error', False))
                )
                results = await db.insert_many(data.get('documents') or [], table, options)
                result = {
                    'results': [r.to_dict() for r in results],
                    'inserted': sum(1 for r in results if r.success)
                }

            elif action == 'find':
                documents = await db.find(filter, table)
                result = {'documents': documents, 'count': len(documents)}

            elif action == 'find_one':
                result = {'document': await db.find_one(filter, table)}

            elif action == 'find_by_id':
                result = {'document': await db.find_by_id(data.get('id'), table)}

            elif action in ('update', 'update_by_id'):
                options = UpdateOptions(
                    upsert=bool(data.get('upsert', False)),
                    replace=bool(data.get('replace', False))
                )
                patch = data.get('update') or {}
                if action == 'update':
                    outcome = await db.update(filter, patch, table, options)
                else:
                    outcome = await db.update_by_id(data.get('id'), patch, table, options)
                result = outcome.to_dict()

            elif action == 'delete':
                result = (await db.delete(filter, table)).to_dict()

            elif action == 'delete_by_id':
                result = (await db.delete_by_id(data.get('id'), table)).to_dict()

            elif action == 'delete_all':
                result = (await db.delete_all(table)).to_dict()

            elif action == 'count':
                result = {'count': await db.count(filter, table)}

            elif action == 'list_tables':
                result = {'tables': await db.get_tables()}

            elif action == 'drop_table':
                result = (await db.drop_table(table)).to_dict()

            elif action == 'stats':
                stats = await db.get_stats(table)
                result = {'stats': stats.to_dict(), 'process': self._process_stats()}

            elif action == 'clear':
                outcome = await db.clear()
                result = {
                    'success': outcome.success,
                    'message': outcome.message,
                    'results': [r.to_dict() for r in outcome.data]
                }

            else:
                result = {'success': False, 'error': f'Unknown action: {action}'}

            return {
                'request_id': request_id,
                'success': result.pop('success', 'error' not in result),
                **result
            }

        except Exception as e:
            logger.error(f"Error handling request: {e}", exc_info=True)
            return {
                'request_id': request_id,
                'success': False,
                'error': str(e)
            }

    def _process_stats(self) -> Dict[str, Any]:
        process = psutil.Process()
        return {
            'memory_mb': round(process.memory_info().rss / 1024 / 1024, 2),
            'cpu_percent': process.cpu_percent(),
            'uptime_seconds': int(time.time() - self.start_time),
            'clients': len(self.clients)
        }

    async def handler(self, websocket: ServerConnection) -> None:
        self.clients.add(websocket)
        client_id = id(websocket)
        logger.info(f"Client connected: {client_id}")

        try:
            async for message in websocket:
                try:
                    if isinstance(message, bytes):
                        message = message.decode('utf-8')
                    request = json.loads(message)
                    if not isinstance(request, dict):
                        raise ValueError("Request must be a JSON object")
                    response = await self.handle_request(request)
                    await websocket.send(json.dumps(response, default=str))
                except (json.JSONDecodeError, ValueError):
                    await websocket.send(json.dumps({
                        'success': False,
                        'error': 'Invalid JSON'
                    }))
        except websockets.exceptions.ConnectionClosed:
            logger.info(f"Client disconnected: {client_id}")
        finally:
            self.clients.discard(websocket)

    def process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        """Answer plain HTTP requests such as health checks."""
        upgrade = request.headers.get("Upgrade", "").lower()

        if upgrade != "websocket":
            if request.path == "/health" or request.path == "/":
                status = HTTPStatus.OK if self.db.initialized else HTTPStatus.SERVICE_UNAVAILABLE
                return connection.respond(status, "OK\n" if self.db.initialized else "Starting\n")
            return connection.respond(HTTPStatus.BAD_REQUEST, "WebSocket endpoint only\n")
        return None

    async def start(self) -> None:
        await self.initialize()

        logger.info(f"Starting WebSocket Document API on {self.host}:{self.port}")

        async with websockets.serve(
            self.handler,
            self.host,
            self.port,
            ping_interval=30,
            ping_timeout=10,
            max_size=10 * 1024 * 1024,
            process_request=self.process_request
        ):
            logger.info(f"Document API Server running on ws://{self.host}:{self.port}")
            await asyncio.Future()

    async def close(self):
        logger.info("Shutting down Document API Server...")

        for client in list(self.clients):
            await client.close()

        await self.db.close()


def build_channel(config: ChatDBConfig) -> MessageChannel:
    backend = os.getenv('CHATDB_BACKEND', 'discord').lower()

    if backend == 'memory':
        logger.warning("Using in-memory channel; data is lost on exit")
        return InMemoryChannel(history_limit=config.history_limit)

    from src.chatdb.discord_channel import DiscordChannel

    token = os.getenv('DISCORD_TOKEN')
    channel_id = os.getenv('CHATDB_CHANNEL_ID')
    if not token or not channel_id:
        logger.error("DISCORD_TOKEN and CHATDB_CHANNEL_ID must be set for the discord backend")
        sys.exit(1)

    return DiscordChannel(token=token, channel_id=int(channel_id), history_limit=config.history_limit)


async def main():
    load_dotenv()

    os.makedirs('data/logs', exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('data/logs/chatdb.log', mode='a', encoding='utf-8')
        ]
    )

    host = os.getenv('DB_API_HOST', '0.0.0.0')
    port = int(os.getenv('DB_API_PORT', '8080'))

    config = ChatDBConfig.from_env()
    db = ChatDB(build_channel(config), config)
    server = DocumentAPIServer(db, host=host, port=port)

    try:
        await server.start()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    finally:
        await server.close()


if __name__ == '__main__':
    asyncio.run(main())
