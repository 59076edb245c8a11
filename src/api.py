from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Optional
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import logging

import core
from collaborators import RandomTileSource, RecordingSink
from settings import check_win_value

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize the rate limiter
limiter = Limiter(key_func=get_remote_address)
app = FastAPI(
    title="2048 Game API",
    description="A stateless API for playing the 2048 game. "\
                "Manage your game state (board, score, max score, win_tile) on the client side.",
    version="1.0.0"
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Pydantic Models for API requests and responses ---

class NewGameSettings(BaseModel):
    """Settings for creating a new game."""
    size: int = Field(
        default=core.DEFAULT_SIZE,
        gt=1, # Board size must be at least 2x2
        le=16,
        description="Size of the N x N game board (e.g., 4 for a 4x4 board)."
    )
    win_tile: int = Field(
        default=core.DEFAULT_WIN_VALUE,
        gt=2,
        description="The tile value to achieve for winning the game (e.g., 2048)."
    )
    seed: Optional[int] = Field(
        default=None,
        description="Optional seed for the initial tiles, for reproducible games."
    )
    max_score: int = Field(
        default=0,
        ge=0,
        description="Best score from earlier games, carried over by the client."
    )

    @field_validator("win_tile")
    @classmethod
    def _win_tile_is_power_of_two(cls, value: int) -> int:
        return check_win_value(value)

class EventData(BaseModel):
    """A single presentation event (tile added, moved, merged, score, game over)."""
    kind: str = Field(..., description="One of: add, move, merge, score, game_over, clear.")
    payload: Dict[str, int] = Field(default_factory=dict, description="Event details, e.g. coordinates.")

class GameStateData(BaseModel):
    """Represents the complete state of a game instance."""
    board: List[List[int]] = Field(..., description="The N x N game board, represented as a list of lists.")
    score: int = Field(..., ge=0, description="Current score of the game.")
    max_score: int = Field(..., ge=0, description="Best score reached across the client's games.")
    progress: core.GameProgressState = Field(
        ...,
        description="Current progress state of the game (NEW, PLAYING, WON, BLOCKED)."
    )
    win_tile: int = Field(..., gt=0, description="The tile value required to win this game instance.")
    board_size: int = Field(..., gt=0, description="The dimension N of the N x N board.")
    events: List[EventData] = Field(
        default_factory=list,
        description="Presentation events produced while reaching this state, in order."
    )


class MoveRequestData(BaseModel):
    """Data required to make a move."""
    board: List[List[int]] = Field(..., description="Current N x N game board state before the move.")
    score: int = Field(..., ge=0, description="Current score before the move.")
    max_score: int = Field(default=0, ge=0, description="Best score so far, carried by the client.")
    direction: core.Side = Field(
        ...,
        description="Side to tilt the board toward (NORTH, EAST, SOUTH, WEST)."
    )
    win_tile: int = Field(..., gt=2, description="The win condition tile for this game instance.")
    # board_size is implicitly derived from the board structure.

    @field_validator("win_tile")
    @classmethod
    def _win_tile_is_power_of_two(cls, value: int) -> int:
        return check_win_value(value)

class MoveResponseData(GameStateData):
    """Response after a move, including the new game state and move effectiveness."""
    move_was_effective: bool = Field(
        ...,
        description="True if the move resulted in a change to the board state, False otherwise."
    )
    message: Optional[str] = Field(
        default=None,
        description="An optional message, e.g., if a move was invalid, game ended, or other info."
    )


def _state_fields(engine: core.BoardEngine, sink: RecordingSink) -> dict:
    return dict(
        board=engine.rows(),
        score=engine.score,
        max_score=engine.max_score,
        progress=engine.progress,
        win_tile=engine.win_value,
        board_size=engine.size,
        events=[EventData(kind=e.kind, payload=e.payload) for e in sink.events],
    )

# --- API Endpoints ---

@app.post("/game/new", response_model=GameStateData, summary="Start a New 2048 Game")
@limiter.limit("100/minute")
async def start_new_game(request: Request, settings: NewGameSettings):
    """
    Initializes a new 2048 game based on the provided settings.

    - **size**: Dimension of the N x N board (e.g., 4 for 4x4). Default is 4.
    - **win_tile**: Tile value to reach to win (e.g., 2048). Default is 2048.
    - **seed**: Optional seed for the two initial tiles.
    - **max_score**: Best score the client has seen so far.

    Returns the initial game state, including the board with two random tiles,
    score (0), progress status (PLAYING), and the events that placed the tiles.
    """
    try:
        sink = RecordingSink()
        engine = core.BoardEngine(
            RandomTileSource(settings.size, settings.seed),
            sink,
            size=settings.size,
            win_value=settings.win_tile,
            scores=core.ScoreBoard(settings.max_score),
        )
        engine.start_game()
        return GameStateData(**_state_fields(engine, sink))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error in /game/new: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"An unexpected error occurred during game creation: {str(e)}")


@app.post("/game/move", response_model=MoveResponseData, summary="Make a Move in the Game")
@limiter.limit("100/minute")
async def make_move(request: Request, request_data: MoveRequestData):
    """
    Processes a player's move in the game.

    Requires the current `board` state, `score`, `max_score`, the `direction`
    of the move, and the `win_tile` for this game instance.

    The API will:
    1. Tilt the board toward the given side (slide tiles, merge).
    2. If the tilt changed the board, add a new random tile (2 or 4).
    3. Report the new game status (PLAYING, WON, BLOCKED).

    Moves on a finished game are rejected as not effective.
    """
    try:
        sink = RecordingSink()
        engine = core.BoardEngine.from_rows(
            request_data.board,
            RandomTileSource(len(request_data.board)),
            sink,
            score=request_data.score,
            win_value=request_data.win_tile,
            scores=core.ScoreBoard(request_data.max_score),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid board structure in request: {str(e)}")

    message_for_client: Optional[str] = None
    move_was_effective = False

    try:
        if engine.progress.is_terminal:
            message_for_client = "Game is already over."
        elif engine.apply_tilt(request_data.direction):
            move_was_effective = True
            engine.place_random_tile()
        else:
            message_for_client = "Move was not effective; board state unchanged by slide."

        if engine.progress == core.GameProgressState.WON:
            message_for_client = "Congratulations! You won!"
        elif engine.progress == core.GameProgressState.BLOCKED:
            message_for_client = "Game Over. No more valid moves."

        return MoveResponseData(
            **_state_fields(engine, sink),
            move_was_effective=move_was_effective,
            message=message_for_client
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Error processing move: {str(e)}")
    except Exception as e:
        logger.error(f"Unexpected error in /game/move: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"An unexpected server error occurred while processing the move: {str(e)}")
