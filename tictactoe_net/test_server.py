import asyncio
import contextlib
import socket

import pytest

from .client_net import GONE, play, run_client
from .connection import Connection
from .protocol import DRAW, HOLD, LOSE, START, WIN, PeerDisconnected, pack_int
from .server_net import ServerConfig, TicTacToeServer, amain, parse_args
from .test_session import _pipe

TIMEOUT = 10


@contextlib.asynccontextmanager
async def _serving(max_players=6):
    lobby = TicTacToeServer(max_players)
    srv = await asyncio.start_server(lobby.handle, "127.0.0.1", 0)
    try:
        yield lobby, srv.sockets[0].getsockname()[1]
    finally:
        srv.close()
        await lobby.close()

async def _connect(port) -> Connection:
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    return Connection(reader, writer)

async def _until(pred, timeout=TIMEOUT):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not pred():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)

def _script(moves, gate=None):
    it = iter(moves)
    async def read_move():
        if gate is not None:
            await gate.wait()
        return str(next(it))
    return read_move

async def _client(port, moves, gate=None):
    conn = await _connect(port)
    lines = []
    try:
        outcome = await play(conn, _script(moves, gate), lines.append)
    finally:
        await conn.close()
    return conn.player_id, outcome, lines


def test_pairing_sends_identity_and_hold():
    async def go():
        async with _serving() as (lobby, port):
            a = await _connect(port)
            assert await a.recv_int() == 0
            assert await a.recv_cmd() == HOLD
            assert lobby.counter.value == 1
            b = await _connect(port)
            assert await b.recv_int() == 1
            # the second player is not told to hold
            assert await b.recv_cmd() == START
            assert await a.recv_cmd() == START
            assert lobby.counter.value == 2
            assert len(lobby.sessions) == 1
            await a.close(); await b.close()
            await asyncio.wait_for(lobby.wait_sessions(), TIMEOUT)
            assert lobby.counter.value == 0
    asyncio.run(go())

def test_full_game_through_clients():
    async def go():
        async with _serving() as (lobby, port):
            first = asyncio.create_task(_client(port, [0, 1, 2]))
            await _until(lambda: lobby.waiting is not None)
            second = asyncio.create_task(_client(port, ["x", 4, 3]))
            results = await asyncio.wait_for(asyncio.gather(first, second), TIMEOUT)
            await asyncio.wait_for(lobby.wait_sessions(), TIMEOUT)
            return results, lobby.counter.value
    (r0, r1), count = asyncio.run(go())
    assert r0[:2] == (0, WIN)
    assert r1[:2] == (1, LOSE)
    assert "Waiting for a second player..." in r0[2]
    assert "You are O's" in r0[2] and "You are X's" in r1[2]
    assert "Invalid input. Try again." in r1[2]
    assert r0[2][-1] == "You win!" and r1[2][-1] == "You lost."
    assert count == 0

def test_concurrent_games_are_isolated():
    async def go():
        async with _serving() as (lobby, port):
            gate = asyncio.Event()
            a0 = asyncio.create_task(_client(port, [0, 1, 2], gate))
            await _until(lambda: lobby.waiting is not None)
            a1 = asyncio.create_task(_client(port, [4, 3]))
            await _until(lambda: len(lobby.sessions) == 1)
            # overlapping cells: a board shared between games would reject moves
            b0 = asyncio.create_task(_client(port, [4, 9, 0, 2, 3, 7], gate))
            await _until(lambda: lobby.waiting is not None)
            b1 = asyncio.create_task(_client(port, [1, 5, 6, 8]))
            await _until(lambda: len(lobby.sessions) == 2)
            assert lobby.counter.value == 4
            gate.set()
            results = await asyncio.wait_for(asyncio.gather(a0, a1, b0, b1), TIMEOUT)
            await asyncio.wait_for(lobby.wait_sessions(), TIMEOUT)
            return results, lobby.counter.value
    results, count = asyncio.run(go())
    assert [r[1] for r in results] == [WIN, LOSE, DRAW, DRAW]
    assert any(line.startswith("There are currently") for line in results[2][2])
    assert count == 0

def test_ceiling_pauses_new_pairings():
    async def go():
        async with _serving(max_players=2) as (lobby, port):
            a = await _connect(port)
            b = await _connect(port)
            assert await a.recv_int() == 0
            assert await b.recv_int() == 1
            c = await _connect(port)
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(c.recv_int(), 0.3)
            assert lobby.counter.value == 2
            # end the running game; the parked connection is admitted
            await a.close(); await b.close()
            assert await asyncio.wait_for(c.recv_int(), TIMEOUT) == 0
            assert await c.recv_cmd() == HOLD
            assert lobby.counter.value == 1
            await c.close()
            await _until(lambda: lobby.counter.value == 0)
    asyncio.run(go())

def test_holding_player_leaving_frees_slot():
    async def go():
        async with _serving() as (lobby, port):
            a = await _connect(port)
            assert await a.recv_int() == 0
            assert await a.recv_cmd() == HOLD
            await a.close()
            await _until(lambda: lobby.waiting is None and lobby.counter.value == 0)
            b = await _connect(port)
            assert await b.recv_int() == 0
            assert await b.recv_cmd() == HOLD
            await b.close()
            await _until(lambda: lobby.counter.value == 0)
    asyncio.run(go())

def test_session_end_closes_both_streams():
    async def go():
        async with _serving() as (lobby, port):
            a = await _connect(port)
            await _until(lambda: lobby.waiting is not None)
            b = await _connect(port)
            assert await b.recv_int() == 1
            await b.close()
            lines = []
            with pytest.raises(PeerDisconnected):
                await asyncio.wait_for(play(a, _script([4] * 9), lines.append), TIMEOUT)
            assert "You win!" not in lines and "You lost." not in lines
            await a.close()
            await _until(lambda: lobby.counter.value == 0)
    asyncio.run(go())

def test_cli_requires_port():
    with pytest.raises(SystemExit) as e:
        parse_args([])
    assert e.value.code != 0
    with pytest.raises(SystemExit):
        parse_args(["70000"])
    args = parse_args(["5000", "--max-players", "4"])
    assert (args.port, args.max_players, args.verbose) == (5000, 4, False)

def test_dead_holding_player_is_not_paired():
    async def go():
        lobby = TicTacToeServer()
        a, a_client = await _pipe(None)
        b, b_client = await _pipe(None)
        async with lobby._pairing:
            await lobby._admit_first(a)
        assert await a_client.recv_int() == 0
        assert await a_client.recv_cmd() == HOLD
        # b's admission holds the lock while a hangs up
        async with lobby._pairing:
            await a_client.close()
            await _until(a.reader.at_eof)
            await lobby._admit_second(b)
        assert await b_client.recv_int() == 0
        assert await b_client.recv_cmd() == HOLD
        assert lobby.waiting is b and not lobby.sessions
        assert a.closed
        assert await lobby.counter.get() == 1
        await lobby.close()
        await b_client.close()
        assert await lobby.counter.get() == 0
    asyncio.run(go())


async def _stub_server(payload: bytes):
    async def handle(reader, writer):
        writer.write(payload)
        await writer.drain()
        writer.close()
    return await asyncio.start_server(handle, "127.0.0.1", 0)

def _run_client_against(payload: bytes):
    async def go():
        srv = await _stub_server(payload)
        try:
            return await asyncio.wait_for(
                run_client("127.0.0.1", srv.sockets[0].getsockname()[1]), TIMEOUT)
        finally:
            srv.close()
    return asyncio.run(go())

def test_client_cannot_connect(capsys):
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    assert asyncio.run(run_client("127.0.0.1", port)) == 1
    assert "ERROR connecting to server" in capsys.readouterr().out

def test_client_unknown_command(capsys):
    assert _run_client_against(pack_int(0) + b"FOO") == 1
    assert "ERROR reading message from server" in capsys.readouterr().out

def test_client_server_goes_away(capsys):
    assert _run_client_against(pack_int(1)) == 1
    out = capsys.readouterr().out
    assert GONE in out and "Game over." in out

def test_server_port_in_use():
    async def go():
        blocker = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        try:
            port = blocker.sockets[0].getsockname()[1]
            return await amain(ServerConfig(port=port, host="127.0.0.1"))
        finally:
            blocker.close()
    assert asyncio.run(go()) == 1
