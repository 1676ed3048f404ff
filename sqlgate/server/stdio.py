"""
Line-delimited JSON-RPC over stdin/stdout.

Each request runs on its own task so a slow query never blocks ``ping``
or other calls. ``notifications/cancelled`` cancels the task handling the
named request; cancellation propagates into the driver call. Logs go to
stderr only; stdout carries protocol messages exclusively.
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, TextIO

from sqlgate.server.protocol import McpServer, is_valid_id
from sqlgate.utils.logger import get_logger

logger = get_logger(__name__)

CANCELLED_NOTIFICATION = "notifications/cancelled"


class StdioTransport:
    """Serve an McpServer over a pair of text streams."""

    def __init__(
        self,
        server: McpServer,
        reader: TextIO | None = None,
        writer: TextIO | None = None,
    ):
        self.server = server
        self.reader = reader or sys.stdin
        self.writer = writer or sys.stdout
        self._write_lock = asyncio.Lock()
        self._in_flight: dict[Any, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    async def run(self) -> None:
        """Read until EOF, then wait for in-flight requests and close engines."""
        logger.info("SqlGate MCP server listening on stdio")
        try:
            while True:
                line = await asyncio.to_thread(self.reader.readline)
                if not line:
                    break
                line = line.strip()
                if line:
                    self._dispatch(line)
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
        finally:
            for task in list(self._tasks):
                task.cancel()
            await self.server.close()
            logger.info("SqlGate MCP server stopped")

    def _dispatch(self, line: str) -> None:
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            payload = None

        if isinstance(payload, dict) and payload.get("method") == CANCELLED_NOTIFICATION:
            params = payload.get("params")
            request_id = params.get("requestId") if isinstance(params, dict) else None
            if is_valid_id(request_id):
                self._cancel(request_id)
            else:
                logger.debug(f"Ignored cancel with invalid requestId: {request_id!r}")
            return

        task = asyncio.create_task(self._handle(line))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if (
            isinstance(payload, dict)
            and "id" in payload
            and "method" in payload
            and is_valid_id(payload["id"])
        ):
            request_id = payload["id"]
            self._in_flight[request_id] = task
            task.add_done_callback(lambda _t, rid=request_id: self._in_flight.pop(rid, None))

    def _cancel(self, request_id: Any) -> None:
        task = self._in_flight.get(request_id)
        if task is None or task.done():
            logger.debug(f"Cancel for unknown or finished request {request_id}")
            return
        logger.info(f"Cancelling request {request_id}")
        task.cancel()

    async def _handle(self, line: str) -> None:
        try:
            response = await self.server.handle_message(line)
        except asyncio.CancelledError:
            logger.debug("Request cancelled before completion; no response sent")
            raise
        if response is not None:
            await self._write(response)

    async def _write(self, message: dict[str, Any]) -> None:
        data = json.dumps(message, default=str)
        async with self._write_lock:
            self.writer.write(data + "\n")
            self.writer.flush()


async def serve_stdio(server: McpServer) -> None:
    await StdioTransport(server).run()
