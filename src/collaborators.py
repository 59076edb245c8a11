# collaborators.py
# Tile sources, input sources and presentation sinks the board engine is
# wired to. The engine only knows the three small contracts below.

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Protocol, TextIO, Tuple
import logging
import random

from core import Side, PlacementError

logger = logging.getLogger(__name__)

Tile = Tuple[int, int, int]  # (value, row, col)


class Command(Enum):
    """Commands a player (or a script) can give the session driver."""
    NORTH = "Up"
    EAST = "Right"
    SOUTH = "Down"
    WEST = "Left"
    NEW_GAME = "New Game"
    QUIT = "Quit"

    @property
    def side(self) -> Optional[Side]:
        """The tilt direction of this command, or None for NEW_GAME/QUIT."""
        return _COMMAND_SIDES.get(self)


_COMMAND_SIDES = {
    Command.NORTH: Side.NORTH,
    Command.EAST: Side.EAST,
    Command.SOUTH: Side.SOUTH,
    Command.WEST: Side.WEST,
}

_KEY_NAMES: Dict[str, Command] = {
    "up": Command.NORTH, "↑": Command.NORTH,
    "right": Command.EAST, "→": Command.EAST,
    "down": Command.SOUTH, "↓": Command.SOUTH,
    "left": Command.WEST, "←": Command.WEST,
    "new game": Command.NEW_GAME,
    "quit": Command.QUIT,
}

_WASD_KEYS: Dict[str, Command] = {
    "w": Command.NORTH, "d": Command.EAST, "s": Command.SOUTH, "a": Command.WEST,
    "n": Command.NEW_GAME, "q": Command.QUIT,
}


def parse_command(text: str) -> Command:
    """
    Parses a key name such as "Up", "New Game" or an arrow glyph.
    Raises:
        ValueError: If the name is not a known key.
    """
    key = " ".join(text.split()).lower()
    try:
        return _KEY_NAMES[key]
    except KeyError:
        raise ValueError(f"Unknown key designation: {text!r}") from None


# --- Contracts ---

class TileSource(Protocol):
    def next_tile(self) -> Tile: ...


class InputSource(Protocol):
    def next_command(self) -> Command: ...


class PresentationSink(Protocol):
    def on_score_changed(self, score: int, max_score: int) -> None: ...

    def on_tile_added(self, value: int, row: int, col: int) -> None: ...

    def on_tile_moved(self, value: int, from_row: int, from_col: int,
                      to_row: int, to_col: int) -> None: ...

    def on_tile_merged(self, old_value: int, new_value: int, from_row: int, from_col: int,
                       to_row: int, to_col: int) -> None: ...

    def on_game_over(self) -> None: ...

    def on_clear(self) -> None: ...


# --- Tile sources ---

class RandomTileSource:
    """
    Picks a uniformly random cell and a value of 2 (90%) or 4 (10%).
    Cells may be occupied; the engine asks again until one is free.
    """

    def __init__(self, size: int, seed: Optional[int] = None):
        self._size = size
        self._random = random.Random(seed)

    def next_tile(self) -> Tile:
        value = 4 if self._random.random() < 0.1 else 2
        return value, self._random.randrange(self._size), self._random.randrange(self._size)


# --- Replay scripts ---

def format_tile(tile: Tile) -> str:
    value, row, col = tile
    return f"T {value} {row} {col}"


def format_command(command: Command) -> str:
    return f"K {command.value}"


class ReplayScript:
    """
    Reads a replay script: "T <value> <row> <col>" lines for tiles and
    "K <key>" lines for commands, in the order the game consumes them.
    Blank lines and lines starting with '#' are skipped.
    """

    def __init__(self, lines: Iterable[str]):
        self._lines: Iterator[str] = iter(lines)

    def _next_entry(self) -> Optional[Tuple[str, str]]:
        for raw in self._lines:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            kind, _, rest = line.partition(" ")
            return kind.upper(), rest.strip()
        return None

    def next_tile(self) -> Tile:
        entry = self._next_entry()
        if entry is None:
            raise PlacementError("Replay script ran out of tiles.")
        kind, rest = entry
        if kind != "T":
            raise ValueError(f"Expected a tile line, got {kind} {rest!r}.")
        parts = rest.split()
        if len(parts) != 3:
            raise ValueError(f"Malformed tile line: T {rest!r}.")
        value, row, col = (int(p) for p in parts)
        return value, row, col

    def next_command(self) -> Command:
        entry = self._next_entry()
        if entry is None:
            logger.info("Replay script exhausted, quitting")
            return Command.QUIT
        kind, rest = entry
        if kind != "K":
            raise ValueError(f"Expected a key line, got {kind} {rest!r}.")
        return parse_command(rest)


class ScriptedTileSource:
    def __init__(self, script: ReplayScript):
        self._script = script

    def next_tile(self) -> Tile:
        return self._script.next_tile()


class ScriptedInputSource:
    def __init__(self, script: ReplayScript):
        self._script = script

    def next_command(self) -> Command:
        return self._script.next_command()


class KeyboardInputSource:
    """Reads W/A/S/D (or key names) from the terminal."""

    PROMPT = "Enter move (W/A/S/D for Up/Left/Down/Right, N for new game, Q to quit): "

    def __init__(self, read: Callable[[str], str] = input, write: Callable[[str], None] = print):
        self._read = read
        self._write = write

    def next_command(self) -> Command:
        while True:
            try:
                text = self._read(self.PROMPT).strip()
            except EOFError:
                return Command.QUIT
            command = _WASD_KEYS.get(text.lower())
            if command is not None:
                return command
            try:
                return parse_command(text)
            except ValueError:
                logger.debug("Rejected key %r", text)
                self._write("Invalid input. Use W, A, S, D, N or Q.")


class ReplayRecorder:
    """
    Wraps a tile source and an input source and writes everything they
    produce to OUT in replay-script form.
    """

    def __init__(self, tiles: TileSource, commands: InputSource, out: TextIO):
        self._tiles = tiles
        self._commands = commands
        self._out = out

    def next_tile(self) -> Tile:
        tile = self._tiles.next_tile()
        self._out.write(format_tile(tile) + "\n")
        return tile

    def next_command(self) -> Command:
        command = self._commands.next_command()
        self._out.write(format_command(command) + "\n")
        self._out.flush()
        return command


# --- Presentation sinks ---

class NullSink:
    """Ignores every notification."""

    def on_score_changed(self, score, max_score):
        pass

    def on_tile_added(self, value, row, col):
        pass

    def on_tile_moved(self, value, from_row, from_col, to_row, to_col):
        pass

    def on_tile_merged(self, old_value, new_value, from_row, from_col, to_row, to_col):
        pass

    def on_game_over(self):
        pass

    def on_clear(self):
        pass


@dataclass(frozen=True)
class SinkEvent:
    kind: str
    payload: Dict[str, int] = field(default_factory=dict)


class RecordingSink:
    """Keeps every notification, in order, as a SinkEvent."""

    def __init__(self):
        self.events: List[SinkEvent] = []

    def on_score_changed(self, score, max_score):
        self.events.append(SinkEvent("score", {"score": score, "max_score": max_score}))

    def on_tile_added(self, value, row, col):
        self.events.append(SinkEvent("add", {"value": value, "row": row, "col": col}))

    def on_tile_moved(self, value, from_row, from_col, to_row, to_col):
        self.events.append(SinkEvent("move", {
            "value": value, "from_row": from_row, "from_col": from_col,
            "to_row": to_row, "to_col": to_col,
        }))

    def on_tile_merged(self, old_value, new_value, from_row, from_col, to_row, to_col):
        self.events.append(SinkEvent("merge", {
            "old_value": old_value, "new_value": new_value,
            "from_row": from_row, "from_col": from_col,
            "to_row": to_row, "to_col": to_col,
        }))

    def on_game_over(self):
        self.events.append(SinkEvent("game_over"))

    def on_clear(self):
        self.events.append(SinkEvent("clear"))

    def kinds(self) -> List[str]:
        return [event.kind for event in self.events]


class ConsoleSink:
    """
    Rebuilds the board from notifications alone and prints it on demand,
    the way a display front-end would.
    """

    def __init__(self, size: int, write: Callable[[str], None] = print):
        self.grid: List[List[int]] = [[0] * size for _ in range(size)]
        self.score = 0
        self.max_score = 0
        self.game_over = False
        self._write = write

    def on_score_changed(self, score, max_score):
        self.score, self.max_score = score, max_score

    def on_tile_added(self, value, row, col):
        self.grid[row][col] = value

    def on_tile_moved(self, value, from_row, from_col, to_row, to_col):
        self.grid[from_row][from_col] = 0
        self.grid[to_row][to_col] = value

    def on_tile_merged(self, old_value, new_value, from_row, from_col, to_row, to_col):
        self.grid[from_row][from_col] = 0
        self.grid[to_row][to_col] = new_value

    def on_game_over(self):
        self.game_over = True

    def on_clear(self):
        for row in self.grid:
            row[:] = [0] * len(row)
        self.game_over = False

    def render(self) -> None:
        """Prints the score, the game status and the board."""
        self._write(f"\nScore: {self.score}  Best: {self.max_score}")
        if self.game_over:
            self._write("GAME OVER!")
        for row in self.grid:
            self._write("\t".join(map(str, row)))
        self._write("-" * (len(self.grid) * 6))
