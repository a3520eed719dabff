from __future__ import annotations
import asyncio
import logging
from typing import Optional

from .game import Cell, mark_for
from .protocol import PeerDisconnected, pack_cmd, pack_int, read_cmd, read_int


class Connection:
    """One stream to a player, plus the identity it was given at pairing."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 player_id: Optional[int] = None):
        self.reader = reader
        self.writer = writer
        self.player_id = player_id
        self.peer = writer.get_extra_info("peername")
        self._closed = False

    def __repr__(self) -> str:
        return f"<Connection player={self.player_id} peer={self.peer}>"

    @property
    def mark(self) -> Cell:
        return mark_for(self.player_id)

    @property
    def closed(self) -> bool:
        return self._closed

    async def _write(self, data: bytes) -> None:
        try:
            self.writer.write(data)
            await self.writer.drain()
        except ConnectionError as e:
            raise PeerDisconnected(f"write to {self.peer} failed: {e}") from e

    async def send_cmd(self, cmd: str, *values: int) -> None:
        """Write a command followed by its int payload, if any, in one go."""
        await self._write(pack_cmd(cmd) + b"".join(pack_int(v) for v in values))

    async def send_int(self, value: int) -> None:
        await self._write(pack_int(value))

    async def recv_cmd(self) -> str:
        return await read_cmd(self.reader)

    async def recv_int(self) -> int:
        return await read_int(self.reader)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            logging.debug(f"Closing {self.peer}: {e!r}")
