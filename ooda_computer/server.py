"""
ooda-computer MCP transports.

- stdio: newline-delimited JSON-RPC for VS Code / Claude Desktop style clients
- http: aiohttp server for web clients

Logging goes to stderr; stdout belongs to the stdio transport.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import IO, Any, Dict, Optional

from aiohttp import web

from . import __version__
from .exceptions import ErrorCode, InvalidParametersError, OodaError
from .mcp import MCPHandler

logger = logging.getLogger(__name__)


class StdioTransport:
    """stdio transport: one JSON-RPC message per line."""

    def __init__(self, handler: MCPHandler, stdin: Optional[IO[str]] = None, stdout: Optional[IO[str]] = None):
        self.handler = handler
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.running = False

    def write_message(self, message: Dict[str, Any]):
        line = json.dumps(message, ensure_ascii=False, default=str)
        self.stdout.write(line + "\n")
        self.stdout.flush()
        logger.debug(f"Sent: {line[:200]}...")

    async def handle_line(self, line: str) -> Optional[Dict[str, Any]]:
        """Process one input line; returns the response written, if any."""
        line = line.strip()
        if not line:
            return None
        logger.debug(f"Received: {line[:200]}...")
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error(f"JSON decode error: {e}")
            response = {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": f"Parse error: {e}"}}
            self.write_message(response)
            return response

        # Notifications (no id) get no response
        if isinstance(message, dict) and "id" not in message:
            method = message.get("method")
            if method == "notifications/initialized":
                logger.info("Client initialized notification received")
            elif method == "notifications/cancelled":
                logger.info("Received cancellation notification")
            else:
                logger.warning(f"Unknown notification: {method}")
            return None

        response = await self.handler.process_request(message)
        self.write_message(response)
        return response

    async def run(self):
        logger.info("Starting MCP stdio server...")
        loop = asyncio.get_running_loop()
        self.running = True
        while self.running:
            line = await loop.run_in_executor(None, self.stdin.readline)
            if not line:
                logger.info("End of input, shutting down")
                break
            await self.handle_line(line)
        logger.info("MCP stdio server stopped")


class HTTPTransport:
    """HTTP transport for web clients."""

    def __init__(self, handler: MCPHandler, host: str = "127.0.0.1", port: int = 8090):
        self.handler = handler
        self.host = host
        self.port = port

    def build_app(self) -> web.Application:
        app = web.Application()
        app.add_routes([
            web.get('/health', self.handle_health),
            web.get('/tools', self.handle_tools_list),
            web.post('/call', self.handle_call),
            web.post('/mcp', self.handle_mcp),
            web.post('/', self.handle_mcp),
        ])
        return app

    async def run(self):
        logger.info(f"Starting MCP HTTP server on {self.host}:{self.port}...")
        runner = web.AppRunner(self.build_app())
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        await site.start()

        logger.info(f"MCP HTTP server running at http://{self.host}:{self.port}")
        logger.info("Endpoints:")
        logger.info("  GET  /health - Health check")
        logger.info("  GET  /tools  - List enabled tools")
        logger.info("  POST /call   - Call a tool ({name, arguments})")
        logger.info("  POST /mcp    - JSON-RPC endpoint")

        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            logger.info("Shutting down HTTP server...")
        finally:
            await runner.cleanup()

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "healthy",
            "version": __version__,
            "tools": len(self.handler.tools),
            "enabled_tools": len(self.handler.visible_tools()),
            "timestamp": datetime.now().isoformat(),
        })

    async def handle_tools_list(self, request: web.Request) -> web.Response:
        tools = [t.to_schema() for t in self.handler.visible_tools()]
        return web.json_response({"tools": tools, "count": len(tools)})

    async def handle_call(self, request: web.Request) -> web.Response:
        try:
            data = await request.json()
        except json.JSONDecodeError as e:
            return web.json_response({"error": f"Invalid JSON body: {e}"}, status=400)
        if not isinstance(data, dict) or not isinstance(data.get("name"), str):
            return web.json_response({"error": "body must be {name, arguments}"}, status=400)

        try:
            response = await self.handler.call_tool(data["name"], data.get("arguments"))
        except OodaError as e:
            return web.json_response(e.to_dict(), status=_http_status(e))
        return web.json_response(response.to_dict(), dumps=_dumps)

    async def handle_mcp(self, request: web.Request) -> web.Response:
        try:
            data = await request.json()
        except json.JSONDecodeError as e:
            return web.json_response({"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": f"Parse error: {e}"}})

        if isinstance(data, dict) and "id" not in data:
            return web.json_response({})
        # JSON-RPC errors still return 200
        return web.json_response(await self.handler.process_request(data), dumps=_dumps)


def _dumps(obj: Any) -> str:
    return json.dumps(obj, default=str, ensure_ascii=False)


def _http_status(error: OodaError) -> int:
    if error.code == ErrorCode.PERMISSION_DENIED:
        return 403
    if error.code == ErrorCode.TOOL_NOT_FOUND:
        return 404
    if isinstance(error, InvalidParametersError):
        return 400
    return 500
