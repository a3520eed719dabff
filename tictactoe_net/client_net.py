import asyncio, argparse, sys
from typing import Awaitable, Callable

from .connection import Connection
from .game import Board, CELLS, mark_for
from .protocol import (
    COUNT, DRAW, HOLD, INVALID, LOSE, QUERY_COUNT, START, TURN, UPDATE, WAIT, WIN,
    PeerDisconnected, ProtocolError,
)

SERVER_HOST = "127.0.0.1"
GONE = "Either the server shut down or the other player disconnected."
PROMPT = "Enter 0-8 to make a move, or 9 for number of active players: "

ReadMove = Callable[[], Awaitable[str]]
Output = Callable[[str], None]

RESULTS = {WIN: "You win!", LOSE: "You lost.", DRAW: "Draw."}


async def read_stdin() -> str:
    print(PROMPT, end="", flush=True)
    loop = asyncio.get_running_loop()
    line = await loop.run_in_executor(None, sys.stdin.readline)
    if not line:
        raise EOFError("stdin closed")
    return line

def parse_move(text: str):
    text = text.strip()
    if len(text) == 1 and text.isdigit():
        return int(text)
    return None

async def take_turn(conn: Connection, read_move: ReadMove, out: Output):
    """Ask until we get a digit 0-9, then send it."""
    while True:
        move = parse_move(await read_move())
        if move is not None and 0 <= move <= QUERY_COUNT:
            await conn.send_int(move)
            return move
        out("Invalid input. Try again.")

async def get_update(conn: Connection, board: Board):
    player_id = await conn.recv_int()
    move = await conn.recv_int()
    if player_id not in (0, 1) or not (0 <= move < CELLS) or not board.is_legal(move):
        raise ProtocolError(f"bad update: player {player_id} at {move}")
    board.apply(move, player_id)

async def play(conn: Connection, read_move: ReadMove = read_stdin, out: Output = print) -> str:
    """Run one game over `conn` and return the outcome command (WIN, LSE or DRW)."""
    # The client ID is the first thing we receive.
    conn.player_id = await conn.recv_int()
    if conn.player_id not in (0, 1):
        raise ProtocolError(f"bad player id {conn.player_id}")
    board = Board.new()
    out("Tic-Tac-Toe\n------------")

    while True:
        cmd = await conn.recv_cmd()
        if cmd == START:
            break
        if cmd != HOLD:
            raise ProtocolError(f"unexpected {cmd} before the game started")
        out("Waiting for a second player...")

    out("Game on!")
    out(f"You are {mark_for(conn.player_id).value}'s")
    out(board.pretty())

    while True:
        cmd = await conn.recv_cmd()
        if cmd == TURN:
            out("Your move...")
            await take_turn(conn, read_move, out)
        elif cmd == INVALID:
            # no new TRN follows, this is the re-prompt
            out("That position has already been played. Try again.")
            await take_turn(conn, read_move, out)
        elif cmd == COUNT:
            out(f"There are currently {await conn.recv_int()} active players.")
        elif cmd == UPDATE:
            await get_update(conn, board)
            out(board.pretty())
        elif cmd == WAIT:
            out("Waiting for other player's move...")
        elif cmd in RESULTS:
            out(RESULTS[cmd])
            return cmd
        else:
            raise ProtocolError(f"unexpected {cmd} during the game")

async def run_client(host: str, port: int) -> int:
    try:
        reader, writer = await asyncio.open_connection(host, port)
    except OSError as e:
        print(f"ERROR connecting to server: {e}")
        return 1
    conn = Connection(reader, writer)
    try:
        await play(conn)
    except PeerDisconnected:
        print(GONE)
        print("Game over.")
        return 1
    except ProtocolError as e:
        print(f"ERROR reading message from server: {e}")
        return 1
    except EOFError:
        print("Input closed, leaving the game.")
        return 1
    finally:
        await conn.close()
    print("Game over.")
    return 0

def main(argv=None):
    ap = argparse.ArgumentParser(description="Terminal client for the tic-tac-toe server")
    ap.add_argument("port", type=int, help="server port on this machine")
    args = ap.parse_args(argv)
    try:
        code = asyncio.run(run_client(SERVER_HOST, args.port))
    except KeyboardInterrupt:
        code = 1
    sys.exit(code)

if __name__ == "__main__":
    main()
