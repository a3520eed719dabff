from __future__ import annotations
import logging
from enum import Enum
from typing import Optional, Tuple

from .connection import Connection
from .game import Board
from .players import PlayerCounter
from .protocol import (
    COUNT, DRAW, INVALID, LOSE, QUERY_COUNT, START, TURN, UPDATE, WAIT, WIN,
    PeerDisconnected, ProtocolError,
)


class SessionState(Enum):
    AWAITING_START = "awaiting_start"
    PLAYER_TURN = "player_turn"
    AWAITING_MOVE = "awaiting_move"
    MOVE_INVALID = "move_invalid"
    MOVE_VALID = "move_valid"
    BOARD_UPDATED = "board_updated"
    CHECK_OUTCOME = "check_outcome"
    NEXT_TURN = "next_turn"
    WINNER = "winner"
    DRAW = "draw"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.WINNER, SessionState.DRAW, SessionState.ABORTED)


class Session:
    """
    One game between two paired connections. `run()` drives the turn loop
    to a win, a draw or a disconnect, then closes both connections and
    gives their slots back to the player counter.
    """

    def __init__(self, first: Connection, second: Connection, counter: PlayerCounter,
                 session_id: int = 0):
        self.players: Tuple[Connection, Connection] = (first, second)
        self.counter = counter
        self.id = session_id
        self.board = Board.new()
        self.turn = 0
        self.state = SessionState.AWAITING_START
        self.winner: Optional[int] = None

    def __repr__(self) -> str:
        return f"<Session {self.id} {self.state.value} moves={self.moves}>"

    @property
    def moves(self) -> int:
        return self.board.moves

    def _enter(self, state: SessionState) -> None:
        logging.debug(f"Game {self.id}: {self.state.value} -> {state.value} (player {self.turn})")
        self.state = state

    async def _broadcast(self, cmd: str, *values: int) -> None:
        # both writes are drained before anything is read again
        for conn in self.players:
            await conn.send_cmd(cmd, *values)

    async def run(self) -> None:
        logging.info(f"Game {self.id} on!")
        try:
            await self._broadcast(START)
            await self._play()
        except (PeerDisconnected, ProtocolError) as e:
            self._enter(SessionState.ABORTED)
            logging.info(f"Game {self.id}: player disconnected ({e})")
        except Exception:
            self._enter(SessionState.ABORTED)
            logging.exception(f"Game {self.id} crashed")
        finally:
            for conn in self.players:
                await conn.close()
            count = await self.counter.decrement(len(self.players))
            logging.info(f"Game {self.id} over ({self.state.value}). Number of players is now {count}.")

    async def _play(self) -> None:
        prev_turn = 1
        while True:
            self._enter(SessionState.PLAYER_TURN)
            me = self.players[self.turn]
            if prev_turn != self.turn:
                await self.players[1 - self.turn].send_cmd(WAIT)
            await me.send_cmd(TURN)

            move = await self._read_move(me)
            if move == QUERY_COUNT:
                # turn and board stay put; the same player is prompted again
                await me.send_cmd(COUNT, await self.counter.get())
                prev_turn = self.turn
                continue

            self._enter(SessionState.MOVE_VALID)
            self.board.apply(move, self.turn)
            await self._broadcast(UPDATE, self.turn, move)
            self._enter(SessionState.BOARD_UPDATED)
            logging.debug(f"Game {self.id} board:\n{self.board.pretty()}")

            self._enter(SessionState.CHECK_OUTCOME)
            won = self.board.check_win(move)
            if won:
                self.winner = self.turn
                self._enter(SessionState.WINNER)
                await me.send_cmd(WIN)
                await self.players[1 - self.turn].send_cmd(LOSE)
                logging.info(f"Game {self.id}: player {self.turn} won.")
                return
            if self.board.is_draw(won):
                self._enter(SessionState.DRAW)
                await self._broadcast(DRAW)
                logging.info(f"Game {self.id}: draw.")
                return

            self._enter(SessionState.NEXT_TURN)
            prev_turn, self.turn = self.turn, 1 - self.turn

    async def _read_move(self, conn: Connection) -> int:
        """Read moves from `conn` until one is legal, answering INV otherwise."""
        while True:
            self._enter(SessionState.AWAITING_MOVE)
            move = await conn.recv_int()
            logging.info(f"Game {self.id}: player {conn.player_id} played position {move}")
            if self.board.is_legal(move):
                return move
            self._enter(SessionState.MOVE_INVALID)
            logging.info(f"Game {self.id}: move was invalid, asking again")
            await conn.send_cmd(INVALID)
