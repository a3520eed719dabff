"""
Wire format shared by the server and the terminal client.

Commands are 3-byte ASCII tokens with no terminator. Integers are signed
32-bit values in network byte order. Receivers always read exactly one frame
and treat a short read as the peer going away; there is no resync.
"""
from __future__ import annotations
import asyncio
import struct

ENC = "ascii"
CMD_SIZE = 3
INT_FORMAT = "!i"
INT_SIZE = struct.calcsize(INT_FORMAT)

# ---- commands (server -> client) ----
HOLD = "HLD"      # waiting for a second player
START = "SRT"     # game starts
TURN = "TRN"      # your move
INVALID = "INV"   # move rejected, send another
COUNT = "CNT"     # + int: active players
UPDATE = "UPD"    # + int player_id, int move
WAIT = "WAT"      # other player is moving
WIN = "WIN"
LOSE = "LSE"
DRAW = "DRW"

COMMANDS = frozenset({HOLD, START, TURN, INVALID, COUNT, UPDATE, WAIT, WIN, LOSE, DRAW})

# move value that asks for the player count instead of marking a cell
QUERY_COUNT = 9


class ProtocolError(Exception):
    """The peer sent something the protocol does not allow."""


class PeerDisconnected(ConnectionError):
    """The stream ended or failed in the middle of the exchange."""


# ---- encoding ----
def pack_cmd(cmd: str) -> bytes:
    if cmd not in COMMANDS:
        raise ProtocolError(f"unknown command {cmd!r}")
    return cmd.encode(ENC)

def pack_int(value: int) -> bytes:
    try:
        return struct.pack(INT_FORMAT, value)
    except struct.error as e:
        raise ProtocolError(f"int out of range: {value}") from e

def unpack_cmd(data: bytes) -> str:
    try:
        cmd = data.decode(ENC)
    except UnicodeDecodeError:
        cmd = None
    if cmd not in COMMANDS:
        raise ProtocolError(f"unknown command {data!r}")
    return cmd

def unpack_int(data: bytes) -> int:
    (value,) = struct.unpack(INT_FORMAT, data)
    return value


# ---- stream helpers ----
async def read_frame(reader: asyncio.StreamReader, size: int) -> bytes:
    """Read exactly `size` bytes or raise PeerDisconnected."""
    try:
        return await reader.readexactly(size)
    except asyncio.IncompleteReadError as e:
        raise PeerDisconnected(f"expected {size} bytes, got {len(e.partial)}") from e
    except ConnectionError as e:
        raise PeerDisconnected(str(e) or type(e).__name__) from e

async def read_cmd(reader: asyncio.StreamReader) -> str:
    return unpack_cmd(await read_frame(reader, CMD_SIZE))

async def read_int(reader: asyncio.StreamReader) -> int:
    return unpack_int(await read_frame(reader, INT_SIZE))
