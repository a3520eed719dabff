import asyncio, argparse, itertools, logging, sys
from dataclasses import dataclass
from typing import Optional, Set

from .connection import Connection
from .players import PlayerCounter
from .protocol import HOLD, PeerDisconnected
from .session import Session

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"
DEFAULT_HOST = "0.0.0.0"
# a new pairing only starts while fewer than this many players are counted
DEFAULT_MAX_PLAYERS = 6


@dataclass
class ServerConfig:
    port: int
    host: str = DEFAULT_HOST
    max_players: int = DEFAULT_MAX_PLAYERS


# ---- Lobby: pairs connections two at a time and launches a Session per pair ----
class TicTacToeServer:
    def __init__(self, max_players: int = DEFAULT_MAX_PLAYERS,
                 counter: Optional[PlayerCounter] = None):
        self.max_players = max_players
        self.counter = counter or PlayerCounter()
        self.waiting: Optional[Connection] = None
        self.sessions: Set[Session] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._watch: Optional[asyncio.Task] = None
        self._pairing = asyncio.Lock()
        self._ids = itertools.count(1)

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        conn = Connection(reader, writer)
        logging.info(f"Conn from {conn.peer}")
        # one admission at a time, so pairs form in arrival order
        async with self._pairing:
            if self.waiting is None:
                await self._admit_first(conn)
            else:
                await self._admit_second(conn)

    async def _admit_first(self, conn: Connection):
        count = await self.counter.get()
        if count >= self.max_players:
            logging.info(f"{count} players active, holding new connections")
        await self.counter.wait_below(self.max_players)
        conn.player_id = 0
        count = await self.counter.increment()
        logging.info(f"Number of players is now {count}.")
        try:
            await conn.send_int(conn.player_id)
            await conn.send_cmd(HOLD)
        except PeerDisconnected as e:
            logging.info(f"{conn.peer} left during admission: {e}")
            await self._drop(conn)
            return
        self._hold(conn)

    async def _admit_second(self, conn: Connection):
        first = self.waiting
        self.waiting = None
        await self._unwatch()
        if first.reader.at_eof():
            # hung up while this admission held the pairing lock
            logging.info(f"{first.peer} left while waiting for opponent")
            await self._drop(first)
            await self._admit_first(conn)
            return
        conn.player_id = 1
        count = await self.counter.increment()
        logging.info(f"Number of players is now {count}.")
        try:
            await conn.send_int(conn.player_id)
        except PeerDisconnected as e:
            logging.info(f"{conn.peer} left during admission: {e}")
            await self._drop(conn)
            self._hold(first)
            return
        self._launch(first, conn)

    def _launch(self, first: Connection, second: Connection):
        session = Session(first, second, self.counter, next(self._ids))
        task = asyncio.create_task(session.run(), name=f"game-{session.id}")
        self.sessions.add(session)
        self._tasks.add(task)

        def finished(t: asyncio.Task):
            self.sessions.discard(session)
            self._tasks.discard(t)

        task.add_done_callback(finished)

    def _hold(self, conn: Connection):
        self.waiting = conn
        self._watch = asyncio.create_task(self._watch_holding(conn))
        logging.info(f"{conn.peer} waiting for opponent")

    async def _unwatch(self):
        watch, self._watch = self._watch, None
        if watch is not None:
            watch.cancel()
            await asyncio.wait([watch])

    async def _watch_holding(self, conn: Connection):
        """Drop a holding player that hangs up before an opponent arrives."""
        try:
            data = await conn.reader.read(1)
        except ConnectionError:
            data = b""
        async with self._pairing:
            if self.waiting is not conn:
                return
            self.waiting = None
            self._watch = None
        if data:
            logging.warning(f"{conn.peer} sent data before the game started, dropping it")
        else:
            logging.info(f"{conn.peer} left while waiting for opponent")
        await self._drop(conn)

    async def _drop(self, conn: Connection):
        await conn.close()
        count = await self.counter.decrement()
        logging.info(f"Number of players is now {count}.")

    async def wait_sessions(self):
        """Wait for every game started so far to finish."""
        if self._tasks:
            await asyncio.wait(list(self._tasks))

    async def close(self):
        """Release a holding player. Running games are left to finish."""
        # no pairing lock here: an admission may be parked on the player ceiling
        conn, self.waiting = self.waiting, None
        await self._unwatch()
        if conn is not None:
            await self._drop(conn)


# ---- Entrypoint ----
async def amain(config: ServerConfig) -> int:
    server = TicTacToeServer(config.max_players)
    try:
        srv = await asyncio.start_server(server.handle, config.host, config.port)
    except OSError:
        logging.exception("Failed to start TCP server")
        return 1
    addrs = ", ".join(str(s.getsockname()) for s in srv.sockets)
    logging.info(f"Listening on {addrs} (max {config.max_players} players)")

    try:
        async with srv:
            await srv.serve_forever()
    finally:
        await server.close()
    return 0

def port_number(value: str) -> int:
    port = int(value)
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {value}")
    return port

def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Tic-tac-toe game server")
    ap.add_argument("port", type=port_number, help="TCP port to listen on")
    ap.add_argument("--max-players", type=int, default=DEFAULT_MAX_PLAYERS,
                    help="stop pairing new players while this many are active")
    ap.add_argument("-v", "--verbose", action="store_true",
                    help="log boards and session state changes")
    return ap.parse_args(argv)

def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)
    config = ServerConfig(port=args.port, max_players=args.max_players)
    try:
        code = asyncio.run(amain(config))
    except KeyboardInterrupt:
        logging.info("Server stopped")
        code = 0
    sys.exit(code)

if __name__ == "__main__":
    main()
