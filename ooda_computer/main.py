#!/usr/bin/env python3
"""
Entry point for the ooda-computer MCP server.

Usage:
    ooda-computer                         # stdio (VS Code / Claude Desktop)
    ooda-computer --http --port 8090      # HTTP
    ooda-computer --http --ui             # HTTP plus Gradio control panel
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, List, Optional

from .config import load_config
from .context import DEFAULT_STATE_DIR, OodaContext
from .mcp import MCPHandler
from .server import HTTPTransport, StdioTransport

logger = logging.getLogger("ooda_computer")


class ColoredFormatter(logging.Formatter):
    """Colored log formatter"""
    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname)
        if color:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(debug: bool = False):
    """Colored logging on stderr; stdout is reserved for the stdio transport."""
    level = logging.DEBUG if debug else logging.INFO
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ColoredFormatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S'
    ))
    logging.root.handlers = [handler]
    logging.root.setLevel(level)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ooda-computer",
        description="MCP tool server for file search, fuzzy matching and exact edits",
    )
    parser.add_argument('--http', action='store_true', help='Use HTTP transport instead of stdio')
    parser.add_argument('--host', default='127.0.0.1', help='Bind address for HTTP (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=8090, help='Port for HTTP server (default: 8090)')
    parser.add_argument('--state-dir', type=Path, default=DEFAULT_STATE_DIR,
                        help='Directory for audit log and permissions (default: ~/.ooda)')
    parser.add_argument('--config', type=Path, default=None,
                        help='Config file (default: $OODA_CONFIG or ~/.ooda/config.json)')
    parser.add_argument('--ui', action='store_true', help='Start the Gradio control panel')
    parser.add_argument('--ui-port', type=int, default=7861, help='Port for the Gradio UI (default: 7861)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    return parser.parse_args(argv)


def start_ui(handler: MCPHandler, context: OodaContext, port: int) -> None:
    from .ui.app import create_ui

    demo = create_ui(handler, context)

    def run_gradio():
        demo.launch(server_name="127.0.0.1", server_port=port, quiet=True)

    threading.Thread(target=run_gradio, daemon=True, name="gradio-ui").start()
    logger.info(f"  Gradio UI: http://localhost:{port}")


async def main_async(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    context = OodaContext.create(config, args.state_dir)
    handler = MCPHandler(context)
    logger.info(f"Registered {len(handler.tools)} tools")

    if args.ui:
        start_ui(handler, context, args.ui_port)

    if args.http:
        transport = HTTPTransport(handler, args.host, args.port)
    else:
        transport = StdioTransport(handler)

    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(transport.run())

    def _handle_signal(signum: int, _frame: Any | None) -> None:
        logger.info(f"Received signal {signum}, shutting down")
        task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_signal, sig, None)
        except NotImplementedError:
            pass

    try:
        await task
    except asyncio.CancelledError:
        pass
    finally:
        context.close()


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(args.debug)
    try:
        asyncio.run(main_async(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
