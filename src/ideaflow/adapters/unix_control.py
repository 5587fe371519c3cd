import asyncio
import json
import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path

from ideaflow.ports.control import ControlCommand

logger = logging.getLogger(__name__)

RESPONSE_TIMEOUT_SECONDS = 5.0


class UnixSocketControlServer:
    def __init__(self, socket_path: str = "/tmp/ideaflow.sock") -> None:
        self._socket_path = socket_path
        self._server: asyncio.Server | None = None
        self._command_queue: asyncio.Queue[ControlCommand] = asyncio.Queue()

    async def start(self) -> None:
        socket_file = Path(self._socket_path)
        if socket_file.exists():
            socket_file.unlink()

        self._server = await asyncio.start_unix_server(
            self._handle_client,
            path=self._socket_path,
        )
        os.chmod(self._socket_path, 0o600)
        logger.info("Control socket listening at %s", self._socket_path)

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        socket_file = Path(self._socket_path)
        if socket_file.exists():
            socket_file.unlink()

    async def commands(self) -> AsyncIterator[ControlCommand]:
        while True:
            cmd = await self._command_queue.get()
            yield cmd

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        try:
            raw = await asyncio.wait_for(reader.readline(), timeout=5.0)
            if not raw:
                return

            request = json.loads(raw.decode().strip())
            action = request.get("action", "")
            payload = request.get("payload")

            reply = asyncio.get_running_loop().create_future()
            command = ControlCommand(action=action, payload=payload, reply=reply)
            await self._command_queue.put(command)

            try:
                response = await asyncio.wait_for(reply, timeout=RESPONSE_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                response = {"status": "error", "action": action, "detail": "no response"}
            writer.write((json.dumps(response) + "\n").encode())
            await writer.drain()
        except asyncio.TimeoutError:
            logger.warning("Client connection timed out")
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from client")
        except Exception:
            logger.exception("Error handling control client")
        finally:
            writer.close()
            await writer.wait_closed()


class UnixSocketControlClient:
    def __init__(self, socket_path: str = "/tmp/ideaflow.sock") -> None:
        self._socket_path = socket_path

    async def send_command(self, action: str, payload: dict | None = None) -> dict:
        reader, writer = await asyncio.open_unix_connection(self._socket_path)
        try:
            request = {"action": action}
            if payload:
                request["payload"] = payload
            writer.write((json.dumps(request) + "\n").encode())
            await writer.drain()

            raw = await asyncio.wait_for(reader.readline(), timeout=10.0)
            return json.loads(raw.decode().strip())
        finally:
            writer.close()
            await writer.wait_closed()
