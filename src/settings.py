# settings.py
# Construction-time configuration for a game session.

from typing import Optional
import logging

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core import DEFAULT_MAX_PLACEMENT_ATTEMPTS, DEFAULT_SIZE, DEFAULT_WIN_VALUE, is_power_of_two


class GameConfig(BaseModel):
    """Settings fixed for the lifetime of a session."""
    model_config = ConfigDict(frozen=True)

    size: int = Field(
        default=DEFAULT_SIZE,
        ge=2,
        description="Size of the N x N game board."
    )
    win_value: int = Field(
        default=DEFAULT_WIN_VALUE,
        ge=4,
        description="The tile value that wins the game."
    )
    seed: Optional[int] = Field(
        default=None,
        description="Seed for the random tile source; None draws a fresh sequence."
    )
    testing: bool = Field(
        default=False,
        description="Take tiles and commands from a replay script instead of the RNG and keyboard."
    )
    log: bool = Field(
        default=False,
        description="Echo every tile and command in replay-script form."
    )
    display: bool = Field(default=True, description="Print the board after each turn.")
    max_placement_attempts: int = Field(
        default=DEFAULT_MAX_PLACEMENT_ATTEMPTS,
        ge=1,
        description="How many occupied cells a placement may draw before giving up."
    )

    @field_validator("win_value")
    @classmethod
    def _win_value_is_power_of_two(cls, value: int) -> int:
        return check_win_value(value)


def check_win_value(value: int) -> int:
    """Rejects win values that no sequence of merges can produce."""
    if not is_power_of_two(value):
        raise ValueError("win value must be a power of two.")
    return value


def configure_logging(level: str = "WARNING") -> None:
    """Sets up root logging for the command-line driver."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
