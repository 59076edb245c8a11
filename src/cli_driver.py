# cli_driver.py
# This file is intended to be run to play or test the 2048 game on the CLI

from typing import List, Optional, TextIO
import argparse
import logging
import sys

from pydantic import ValidationError

from collaborators import (
    Command,
    ConsoleSink,
    InputSource,
    KeyboardInputSource,
    NullSink,
    PresentationSink,
    RandomTileSource,
    ReplayRecorder,
    ReplayScript,
    ScriptedInputSource,
    ScriptedTileSource,
    TileSource,
)
from core import BoardEngine, ScoreBoard
from settings import GameConfig, configure_logging

logger = logging.getLogger(__name__)


class GameSession:
    """
    The game loop: places tiles, reads commands and hands tilts to the
    engine until the player asks for a new game or quits.
    """

    def __init__(
        self,
        config: GameConfig,
        tile_source: TileSource,
        input_source: InputSource,
        sink: PresentationSink,
        scores: Optional[ScoreBoard] = None,
        display: Optional[ConsoleSink] = None,
    ):
        self.config = config
        self.scores = scores if scores is not None else ScoreBoard()
        self._input = input_source
        self._display = display
        self.engine = BoardEngine(
            tile_source,
            sink,
            size=config.size,
            win_value=config.win_value,
            scores=self.scores,
            max_placement_attempts=config.max_placement_attempts,
        )

    def play(self) -> bool:
        """
        Plays one game.
        Returns:
            bool: True to go on with another game, False to exit.
        """
        engine = self.engine
        engine.start_game()
        self._show()

        while True:
            command = self._input.next_command()
            if command is Command.QUIT:
                logger.info("Quit with score %d (best %d)", engine.score, engine.max_score)
                return False
            if command is Command.NEW_GAME:
                engine.clear()
                return True
            if engine.progress.is_terminal:
                logger.debug("Ignoring %s, game is over", command.name)
                continue
            if engine.apply_tilt(command.side):
                engine.place_random_tile()
                self._show()
            else:
                logger.debug("%s did not change the board", command.name)

    def run(self) -> None:
        while self.play():
            pass

    def _show(self) -> None:
        if self._display is not None:
            self._display.render()


def build_session(config: GameConfig, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None,
                  scores: Optional[ScoreBoard] = None) -> GameSession:
    """Wires tile source, input source and display according to CONFIG."""
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout
    tiles: TileSource
    commands: InputSource
    if config.testing:
        script = ReplayScript(stdin)
        tiles, commands = ScriptedTileSource(script), ScriptedInputSource(script)
    else:
        tiles = RandomTileSource(config.size, config.seed)
        commands = KeyboardInputSource(write=lambda text: print(text, file=stdout))

    if config.log:
        recorder = ReplayRecorder(tiles, commands, stdout)
        tiles, commands = recorder, recorder

    display: Optional[ConsoleSink] = None
    sink: PresentationSink = NullSink()
    if config.display:
        display = ConsoleSink(config.size, write=lambda text: print(text, file=stdout))
        sink = display
    return GameSession(config, tiles, commands, sink, scores=scores, display=display)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Play 2048 in the terminal.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for the tile sequence")
    parser.add_argument("--log", action="store_true", help="Print every tile and key in replay form")
    parser.add_argument("--testing", action="store_true",
                        help="Read tiles and keys from standard input instead of the RNG and keyboard")
    parser.add_argument("--no-display", dest="display", action="store_false", help="Do not print the board")
    parser.add_argument("--size", type=int, default=4, help="Board size (N x N)")
    parser.add_argument("--win", type=int, default=2048, help="Tile value that wins the game")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, ...)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    try:
        config = GameConfig(
            size=args.size,
            win_value=args.win,
            seed=args.seed,
            testing=args.testing,
            log=args.log,
            display=args.display,
        )
    except ValidationError as e:
        parser.error(str(e))

    session = build_session(config)
    session.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
