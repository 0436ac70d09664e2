"""
ooda-computer Test Suite - Shared Fixtures
==========================================
"""

import asyncio
import json
from pathlib import Path

import pytest

from ooda_computer.config import ServerConfig, StorageConfig
from ooda_computer.context import OodaContext
from ooda_computer.mcp import MCPHandler


@pytest.fixture
def temp_dir(tmp_path):
    """A fresh directory for files under test"""
    return tmp_path


@pytest.fixture
def make_file(temp_dir):
    """Write a text file (newlines untouched) and return its path as str"""
    def _make(name: str, content: str) -> str:
        path = temp_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)
        return str(path)
    return _make


@pytest.fixture
def server_config(temp_dir):
    """Config whose record store lives in the temp dir"""
    return ServerConfig(storage=StorageConfig(path=str(temp_dir / "workspace.db")))


@pytest.fixture
def context(temp_dir, server_config):
    """Fully wired context: audit bus, record store, permissions"""
    ctx = OodaContext.create(server_config, temp_dir / "state")
    yield ctx
    ctx.close()


@pytest.fixture
def handler(context):
    return MCPHandler(context)


@pytest.fixture
def call(handler):
    """Send a tools/call request and return (result, parsed payload)"""
    def _call(name, arguments=None, msg_id=1):
        response = asyncio.run(handler.process_request({
            "jsonrpc": "2.0",
            "id": msg_id,
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments or {}},
        }))
        if "error" in response:
            return response, None
        result = response["result"]
        return result, json.loads(result["content"][0]["text"])
    return _call


def read_raw(path) -> str:
    with open(path, "r", encoding="utf-8", newline="") as fh:
        return fh.read()
