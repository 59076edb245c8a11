# core.py
# This file holds the board engine for a 2048 game: tilting, merging,
# tile placement and game-over detection.

from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence, Tuple
import logging

if TYPE_CHECKING:
    from collaborators import PresentationSink, TileSource

logger = logging.getLogger(__name__)

DEFAULT_SIZE = 4
DEFAULT_WIN_VALUE = 2048
DEFAULT_MAX_PLACEMENT_ATTEMPTS = 10_000


class GameProgressState(Enum):
    """Represents the current progress state of the game."""
    NEW = 0
    PLAYING = 1
    WON = 2
    BLOCKED = 3  # Lost: full board, no moves left

    @property
    def is_terminal(self) -> bool:
        return self in (GameProgressState.WON, GameProgressState.BLOCKED)


class Side(Enum):
    """The side of the board tiles slide toward."""
    NORTH = 1
    EAST = 2
    SOUTH = 3
    WEST = 4


class PlacementError(RuntimeError):
    """Raised when the tile source cannot produce an empty cell."""


@dataclass
class ScoreBoard:
    """Best score reached across every game of a session.

    Owned by whoever drives the games and handed to each engine, so the
    maximum survives new games and engine instances alike.
    """
    max_score: int = 0

    def record(self, score: int) -> int:
        if score > self.max_score:
            self.max_score = score
        return self.max_score


# --- Board Helper Functions ---

def get_board_size(board: Sequence[Sequence[int]]) -> int:
    """
    Gets the size (N) of an N x N board.
    Args:
        board (Sequence[Sequence[int]]): The game board.
    Returns:
        int: The dimension of the board.
    Raises:
        ValueError: If the board is not square or empty.
    """
    if not board or not all(len(row) == len(board) for row in board):
        raise ValueError("Board must be a non-empty square matrix.")
    return len(board)


def get_empty_cells(board: Sequence[Sequence[int]]) -> List[Tuple[int, int]]:
    """
    Get coordinates of empty (0-value) cells in the given board.
    Args:
        board (Sequence[Sequence[int]]): The board to check.
    Returns:
        List[Tuple[int, int]]: List of (row, col) tuples for empty cells.
    """
    n = get_board_size(board)
    return [(row, col) for row in range(n) for col in range(n) if board[row][col] == 0]


def check_for_win(board: Sequence[Sequence[int]], win_tile: int = DEFAULT_WIN_VALUE) -> bool:
    """
    Check if the game is won (a tile with win_tile value exists).
    Args:
        board (Sequence[Sequence[int]]): The game board.
        win_tile (int): The tile value that signifies a win. Default is 2048.
    Returns:
        bool: True if the game is won, False otherwise.
    """
    return any(value == win_tile for row in board for value in row)


def is_power_of_two(value: int) -> bool:
    return value > 0 and value & (value - 1) == 0


# --- Tilt Geometry ---

def tilt_row(side: Side, r: int, c: int, size: int) -> int:
    """
    Return the real row for row R, column C of a board turned so that
    row 0 faces SIDE.
    Raises:
        ValueError: If side is not a Side.
    """
    if side is Side.NORTH:
        return r
    if side is Side.EAST:
        return c
    if side is Side.SOUTH:
        return size - 1 - r
    if side is Side.WEST:
        return size - 1 - c
    raise ValueError(f"Unknown side: {side!r}")


def tilt_col(side: Side, r: int, c: int, size: int) -> int:
    """
    Return the real column for row R, column C of a board turned so that
    row 0 faces SIDE.
    Raises:
        ValueError: If side is not a Side.
    """
    if side is Side.NORTH:
        return c
    if side is Side.EAST:
        return size - 1 - r
    if side is Side.SOUTH:
        return c
    if side is Side.WEST:
        return r
    raise ValueError(f"Unknown side: {side!r}")


# --- Board Engine ---

class BoardEngine:
    """
    Owns an N x N grid and the score of the game being played on it.

    The engine is driven from outside: a session driver asks it to place
    tiles and tilt the board, tiles come from a tile source, and every
    visible change is reported to a presentation sink. None of the sink's
    return values are used.
    """

    def __init__(
        self,
        tile_source: "TileSource",
        sink: "PresentationSink",
        size: int = DEFAULT_SIZE,
        win_value: int = DEFAULT_WIN_VALUE,
        scores: Optional[ScoreBoard] = None,
        max_placement_attempts: int = DEFAULT_MAX_PLACEMENT_ATTEMPTS,
    ):
        if not isinstance(size, int) or size <= 0:
            raise ValueError("Board size must be a positive integer.")
        self._size = size
        self._win_value = win_value
        self._tile_source = tile_source
        self._sink = sink
        self._scores = scores if scores is not None else ScoreBoard()
        self._max_placement_attempts = max_placement_attempts
        self._board: List[List[int]] = [[0] * size for _ in range(size)]
        self._count = 0
        self._score = 0
        self._progress = GameProgressState.NEW

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[int]], tile_source: "TileSource", sink: "PresentationSink",
                  score: int = 0,
                  **kwargs) -> "BoardEngine":
        """
        Builds an engine around an existing board.
        Args:
            rows (Sequence[Sequence[int]]): The board to load.
            score (int): Score already earned in the loaded game.
        Returns:
            BoardEngine: An engine whose progress is derived from the board.
        Raises:
            ValueError: If the board is not square or holds a value that
                        is not 0 or a power of two >= 2.
        """
        size = get_board_size(rows)
        engine = cls(tile_source, sink, size=size, **kwargs)
        for r, row in enumerate(rows):
            for c, value in enumerate(row):
                if value != 0 and (value < 2 or not is_power_of_two(value)):
                    raise ValueError(f"Invalid tile value {value} at ({r}, {c}).")
                engine._board[r][c] = value
        engine._count = size * size - len(get_empty_cells(rows))
        engine._score = score
        if engine.is_game_over():
            engine._progress = (GameProgressState.WON if check_for_win(engine._board, engine._win_value)
                                else GameProgressState.BLOCKED)
        elif engine._count:
            engine._progress = GameProgressState.PLAYING
        return engine

    # --- Read-only state ---

    @property
    def size(self) -> int:
        return self._size

    @property
    def win_value(self) -> int:
        return self._win_value

    @property
    def score(self) -> int:
        return self._score

    @property
    def max_score(self) -> int:
        return self._scores.max_score

    @property
    def tile_count(self) -> int:
        return self._count

    @property
    def progress(self) -> GameProgressState:
        return self._progress

    def rows(self) -> List[List[int]]:
        """Returns a copy of the grid, row by row."""
        return [list(row) for row in self._board]

    # --- Operations ---

    def start_game(self) -> None:
        """Places the two initial tiles of a fresh game."""
        self.place_random_tile()
        self.place_random_tile()

    def apply_tilt(self, side: Side) -> bool:
        """
        Slides every tile toward SIDE, merging equal tiles that meet.
        A tile takes part in at most one merge per tilt.
        Args:
            side (Side): The side to tilt toward.
        Returns:
            bool: True if any tile moved or merged.
        Raises:
            ValueError: If side is not a Side.
        """
        n = self._size
        row_of = partial(tilt_row, side, size=n)
        col_of = partial(tilt_col, side, size=n)
        view = [[self._board[row_of(r, c)][col_of(r, c)] for c in range(n)] for r in range(n)]
        merged = [[False] * n for _ in range(n)]
        pending: List[Callable[[], None]] = []
        changed = False

        for c in range(n):
            for r in range(1, n):
                value = view[r][c]
                if value == 0:
                    continue
                x = r
                while x > 0 and view[x - 1][c] == 0:
                    view[x - 1][c] = value
                    view[x][c] = 0
                    x -= 1
                    changed = True
                if x > 0 and view[x - 1][c] == value and not merged[x - 1][c]:
                    doubled = 2 * value
                    view[x - 1][c] = doubled
                    view[x][c] = 0
                    merged[x - 1][c] = True
                    self._score += doubled
                    self._count -= 1
                    changed = True
                    pending.append(partial(self._sink.on_tile_merged, value, doubled,
                                           row_of(r, c), col_of(r, c),
                                           row_of(x - 1, c), col_of(x - 1, c)))
                    if doubled == self._win_value and not self._progress.is_terminal:
                        logger.info("Win tile %d produced", doubled)
                        self._finish(GameProgressState.WON)
                elif x != r:
                    pending.append(partial(self._sink.on_tile_moved, value,
                                           row_of(r, c), col_of(r, c),
                                           row_of(x, c), col_of(x, c)))

        if not changed:
            logger.debug("Tilt %s changed nothing", side.name)
            return False

        for r in range(n):
            for c in range(n):
                self._board[row_of(r, c)][col_of(r, c)] = view[r][c]
        if self._progress.is_terminal:
            self._scores.record(self._score)
        for notify in pending:
            notify()
        self._sink.on_score_changed(self._score, self.max_score)
        logger.debug("Tilt %s: score=%d tiles=%d", side.name, self._score, self._count)
        return True

    def place_random_tile(self) -> None:
        """
        Puts the next tile from the tile source on an empty cell, asking
        again for as long as the source names an occupied one.
        Does nothing when the board is full.
        Raises:
            ValueError: If the source yields a bad value or coordinates.
            PlacementError: If no empty cell comes up within the retry bound.
        """
        n = self._size
        if self._count == n * n:
            return
        for attempt in range(1, self._max_placement_attempts + 1):
            value, row, col = self._tile_source.next_tile()
            if value not in (2, 4):
                raise ValueError(f"Tile value must be 2 or 4, got {value}.")
            if not (0 <= row < n and 0 <= col < n):
                raise ValueError(f"Tile position ({row}, {col}) is off the board.")
            if self._board[row][col] == 0:
                break
            logger.debug("Cell (%d, %d) occupied, retrying (attempt %d)", row, col, attempt)
        else:
            raise PlacementError(
                f"No empty cell after {self._max_placement_attempts} attempts.")

        self._board[row][col] = value
        self._count += 1
        if self._progress is GameProgressState.NEW:
            self._progress = GameProgressState.PLAYING
        self._sink.on_tile_added(value, row, col)
        if not self._progress.is_terminal and self.is_game_over():
            self._finish(GameProgressState.WON if check_for_win(self._board, self._win_value)
                         else GameProgressState.BLOCKED)

    def is_game_over(self) -> bool:
        """True if the board is full and deadlocked, or holds the win value."""
        if self._count == self._size * self._size and self.is_full_deadlock():
            return True
        return check_for_win(self._board, self._win_value)

    def is_full_deadlock(self) -> bool:
        """
        Checks a full board for remaining moves. Each horizontally or
        vertically adjacent pair is compared once.
        Returns:
            bool: True if no two neighbours are equal or a win tile is
                  present, False as soon as a merge is possible.
        """
        n = self._size
        board = self._board
        for r in range(n):
            for c in range(n):
                value = board[r][c]
                if value == self._win_value:
                    return True
                if c + 1 < n and board[r][c + 1] == value:
                    return False
                if r + 1 < n and board[r + 1][c] == value:
                    return False
        return True

    def clear(self) -> None:
        """Empties the board and zeroes the score. The max score is kept."""
        for row in self._board:
            for c in range(self._size):
                row[c] = 0
        self._count = 0
        self._score = 0
        self._progress = GameProgressState.NEW
        self._sink.on_clear()
        self._sink.on_score_changed(self._score, self.max_score)

    def _finish(self, outcome: GameProgressState) -> None:
        self._progress = outcome
        self._scores.record(self._score)
        logger.info("Game over (%s): score=%d max=%d", outcome.name, self._score, self.max_score)
        self._sink.on_score_changed(self._score, self.max_score)
        self._sink.on_game_over()
