from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from .protocol import QUERY_COUNT

SIZE = 3
CELLS = SIZE * SIZE


class Cell(Enum):
    EMPTY = " "
    O = "O"
    X = "X"


def mark_for(player_id: int) -> Cell:
    """Player 0 plays O, player 1 plays X."""
    return Cell.X if player_id else Cell.O


@dataclass
class Board:
    cells: List[Cell] = field(default_factory=lambda: [Cell.EMPTY] * CELLS)
    moves: int = 0  # valid moves applied so far

    @classmethod
    def new(cls) -> "Board":
        return cls()

    def at(self, row: int, col: int) -> Cell:
        return self.cells[row * SIZE + col]

    def is_legal(self, move: int) -> bool:
        """The count query is always legal; a cell move needs an empty cell."""
        if move == QUERY_COUNT:
            return True
        return 0 <= move < CELLS and self.cells[move] is Cell.EMPTY

    def apply(self, move: int, player_id: int) -> None:
        if move == QUERY_COUNT or not self.is_legal(move):
            raise ValueError(f"cannot play {move} on this board")
        self.cells[move] = mark_for(player_id)
        self.moves += 1

    def _uniform(self, *idx: int) -> bool:
        first = self.cells[idx[0]]
        return first is not Cell.EMPTY and all(self.cells[i] is first for i in idx)

    def check_win(self, last_move: int) -> bool:
        """
        Only lines through `last_move` can have just been completed. Diagonals
        all pass through the centre, so odd cells never need a diagonal check.
        """
        row, col = divmod(last_move, SIZE)
        if self._uniform(row * SIZE, row * SIZE + 1, row * SIZE + 2):
            return True
        if self._uniform(col, col + SIZE, col + 2 * SIZE):
            return True
        if last_move % 2 == 0:
            if last_move in (0, 4, 8) and self._uniform(0, 4, 8):
                return True
            if last_move in (2, 4, 6) and self._uniform(2, 4, 6):
                return True
        return False

    def is_full(self) -> bool:
        return self.moves == CELLS

    def is_draw(self, won: bool) -> bool:
        return not won and self.is_full()

    def pretty(self) -> str:
        rows = [" " + " | ".join(c.value for c in self.cells[i:i + SIZE]) + " "
                for i in range(0, CELLS, SIZE)]
        return "\n-----------\n".join(rows)
