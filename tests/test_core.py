from typing import List

import pytest
from hypothesis import given, settings
import hypothesis.strategies as st

from collaborators import ConsoleSink, NullSink, RecordingSink, ReplayScript, ScriptedTileSource
from core import (
    BoardEngine,
    GameProgressState,
    PlacementError,
    ScoreBoard,
    Side,
    get_board_size,
    get_empty_cells,
    tilt_col,
    tilt_row,
)


def tiles(*lines: str) -> ScriptedTileSource:
    return ScriptedTileSource(ReplayScript(lines))


class FixedTileSource:
    """Yields the given tiles in order and counts how often it was asked."""

    def __init__(self, *tiles_):
        self._tiles = list(tiles_)
        self.calls = 0

    def next_tile(self):
        self.calls += 1
        return self._tiles.pop(0)


def load(rows, sink=None, source=None, **kwargs) -> BoardEngine:
    return BoardEngine.from_rows(rows, source or tiles(), sink or NullSink(), **kwargs)


def slide_left(line: List[int]) -> List[int]:
    """Reference slide: compress, merge neighbours once, compress again."""
    packed = [v for v in line if v]
    out = []
    i = 0
    while i < len(packed):
        if i + 1 < len(packed) and packed[i] == packed[i + 1]:
            out.append(packed[i] * 2)
            i += 2
        else:
            out.append(packed[i])
            i += 1
    return out + [0] * (len(line) - len(out))


boards = st.integers(min_value=2, max_value=5).flatmap(
    lambda n: st.lists(
        st.lists(st.sampled_from([0, 0, 2, 4, 8, 16]), min_size=n, max_size=n),
        min_size=n, max_size=n,
    )
)
full_boards = st.integers(min_value=2, max_value=5).flatmap(
    lambda n: st.lists(
        st.lists(st.sampled_from([2, 4, 8, 16]), min_size=n, max_size=n),
        min_size=n, max_size=n,
    )
)


# --- Geometry ---

@pytest.mark.parametrize("side, edge", [
    (Side.NORTH, lambda r, c, n: r == 0),
    (Side.SOUTH, lambda r, c, n: r == n - 1),
    (Side.EAST, lambda r, c, n: c == n - 1),
    (Side.WEST, lambda r, c, n: c == 0),
])
def test_tilt_mapping_is_a_bijection_with_row_zero_on_the_leading_edge(side, edge):
    n = 4
    real = {(tilt_row(side, r, c, n), tilt_col(side, r, c, n)) for r in range(n) for c in range(n)}
    assert real == {(r, c) for r in range(n) for c in range(n)}
    for c in range(n):
        assert edge(tilt_row(side, 0, c, n), tilt_col(side, 0, c, n), n)


def test_unknown_side_fails_fast():
    with pytest.raises(ValueError):
        tilt_row("UP", 0, 0, 4)
    with pytest.raises(ValueError):
        tilt_col(None, 0, 0, 4)
    with pytest.raises(ValueError):
        load([[2, 0], [0, 0]]).apply_tilt("LEFT")


# --- Tilting ---

def test_two_tiles_merge_west_then_nothing_moves():
    engine = BoardEngine(tiles("T 2 0 0", "T 2 0 1"), NullSink())
    engine.place_random_tile()
    engine.place_random_tile()

    assert engine.apply_tilt(Side.WEST) is True
    assert engine.rows()[0] == [4, 0, 0, 0]
    assert engine.score == 4
    assert engine.tile_count == 1

    before = engine.rows()
    assert engine.apply_tilt(Side.WEST) is False
    assert engine.rows() == before
    assert engine.score == 4


def test_row_of_four_equal_tiles_makes_two_merges():
    engine = load([[2, 2, 2, 2], [0] * 4, [0] * 4, [0] * 4])
    assert engine.apply_tilt(Side.WEST)
    assert engine.rows()[0] == [4, 4, 0, 0]
    assert engine.score == 8

    engine = load([[2, 2, 2, 2], [0] * 4, [0] * 4, [0] * 4])
    assert engine.apply_tilt(Side.EAST)
    assert engine.rows()[0] == [0, 0, 4, 4]
    assert engine.score == 8


def test_merged_tile_does_not_merge_again_in_same_tilt():
    engine = load([[2, 2, 2, 0], [0] * 4, [0] * 4, [0] * 4])
    assert engine.apply_tilt(Side.EAST)
    assert engine.rows()[0] == [0, 0, 2, 4]
    assert engine.score == 4
    assert engine.tile_count == 2

    engine = load([[4, 2, 2, 0], [0] * 4, [0] * 4, [0] * 4])
    assert engine.apply_tilt(Side.WEST)
    assert engine.rows()[0] == [4, 4, 0, 0]


def test_vertical_tilts():
    rows = [
        [2, 0, 4, 0],
        [0, 0, 4, 0],
        [2, 0, 0, 8],
        [0, 2, 4, 0],
    ]
    north = load(rows)
    assert north.apply_tilt(Side.NORTH)
    assert north.rows() == [
        [4, 2, 8, 8],
        [0, 0, 4, 0],
        [0, 0, 0, 0],
        [0, 0, 0, 0],
    ]
    south = load(rows)
    assert south.apply_tilt(Side.SOUTH)
    assert south.rows() == [
        [0, 0, 0, 0],
        [0, 0, 0, 0],
        [0, 0, 4, 0],
        [4, 2, 8, 8],
    ]


def test_blocked_tilt_is_a_no_op():
    rows = [[4, 2, 0, 0], [8, 0, 0, 0], [0] * 4, [0] * 4]
    engine = load(rows)
    assert engine.apply_tilt(Side.WEST) is False
    assert engine.apply_tilt(Side.NORTH) is False
    assert engine.rows() == rows
    assert engine.score == 0


def test_tilt_notifications_use_real_coordinates():
    sink = RecordingSink()
    engine = load([[0, 2, 0, 2], [0, 0, 0, 0], [0, 0, 8, 0], [0] * 4], sink=sink)
    engine.apply_tilt(Side.WEST)
    merges = [e.payload for e in sink.events if e.kind == "merge"]
    moves = [e.payload for e in sink.events if e.kind == "move"]
    assert merges == [{"old_value": 2, "new_value": 4, "from_row": 0, "from_col": 3,
                       "to_row": 0, "to_col": 0}]
    assert {"value": 8, "from_row": 2, "from_col": 2, "to_row": 2, "to_col": 0} in moves
    assert sink.kinds()[-1] == "score"


@settings(max_examples=200)
@given(boards, st.sampled_from(list(Side)))
def test_tilt_matches_reference_line_slide(rows, side):
    engine = load(rows)
    engine.apply_tilt(side)
    n = len(rows)
    # Read every line in the slide direction, slide it, and compare.
    for c in range(n):
        line = [rows[tilt_row(side, r, c, n)][tilt_col(side, r, c, n)] for r in range(n)]
        after = [engine.rows()[tilt_row(side, r, c, n)][tilt_col(side, r, c, n)] for r in range(n)]
        assert after == slide_left(line)


@settings(max_examples=200)
@given(boards, st.sampled_from(list(Side)))
def test_tilt_conserves_mass_and_accounts_for_merges(rows, side):
    sink = RecordingSink()
    engine = load(rows, sink=sink)
    count_before = engine.tile_count
    changed = engine.apply_tilt(side)

    merges = [e.payload for e in sink.events if e.kind == "merge"]
    assert sum(map(sum, engine.rows())) == sum(map(sum, rows))
    assert engine.tile_count == count_before - len(merges)
    assert engine.score == sum(m["new_value"] for m in merges)
    if not changed:
        assert engine.rows() == rows
        assert sink.events == []


@settings(max_examples=100)
@given(boards, st.lists(st.sampled_from(list(Side)), min_size=1, max_size=6))
def test_notifications_rebuild_the_board(rows, sides):
    mirror = ConsoleSink(len(rows), write=lambda text: None)
    mirror.grid = [list(row) for row in rows]
    engine = load(rows, sink=mirror, win_value=4096)
    for side in sides:
        engine.apply_tilt(side)
        assert mirror.grid == engine.rows()
        assert mirror.score == engine.score


# --- Placement ---

def test_placement_retries_until_an_empty_cell():
    source = FixedTileSource((2, 0, 0), (4, 0, 0), (4, 1, 1))
    sink = RecordingSink()
    engine = load([[2, 0], [0, 0]], sink=sink, source=source)

    engine.place_random_tile()

    assert source.calls == 3
    assert engine.rows() == [[2, 0], [0, 4]]
    assert engine.tile_count == 2
    assert sink.events[0].kind == "add"
    assert sink.events[0].payload == {"value": 4, "row": 1, "col": 1}


def test_placement_on_full_board_is_a_no_op():
    source = FixedTileSource()
    engine = load([[2, 4], [4, 2]], source=source)
    engine.place_random_tile()
    assert source.calls == 0
    assert engine.tile_count == 4


def test_placement_gives_up_after_retry_bound():
    source = FixedTileSource(*([(2, 0, 0)] * 5))
    engine = load([[2, 0], [0, 0]], source=source, max_placement_attempts=5)
    with pytest.raises(PlacementError):
        engine.place_random_tile()
    assert engine.tile_count == 1


@pytest.mark.parametrize("tile", [(2, 4, 0), (2, 0, -1), (8, 0, 0), (3, 1, 1)])
def test_malformed_tiles_are_fatal(tile):
    engine = BoardEngine(FixedTileSource(tile), NullSink())
    with pytest.raises(ValueError):
        engine.place_random_tile()


@settings(max_examples=100)
@given(boards, st.data())
def test_placement_lands_on_an_empty_cell(rows, data):
    empty = get_empty_cells(rows)
    n = get_board_size(rows)
    cells = data.draw(st.lists(
        st.tuples(st.sampled_from([2, 4]), st.integers(0, n - 1), st.integers(0, n - 1)),
        min_size=1, max_size=30,
    ))
    if empty:
        cells.append((2,) + empty[0])
    engine = load(rows, source=FixedTileSource(*cells))
    before = engine.tile_count
    engine.place_random_tile()
    if empty:
        assert engine.tile_count == before + 1
        placed = [(r, c) for r, c in empty if engine.rows()[r][c]]
        assert len(placed) == 1
    else:
        assert engine.rows() == rows


def test_start_game_places_two_tiles():
    engine = BoardEngine(tiles("T 2 1 1", "T 4 3 2"), NullSink())
    assert engine.progress is GameProgressState.NEW
    engine.start_game()
    assert engine.tile_count == 2
    assert engine.progress is GameProgressState.PLAYING


# --- Termination ---

def test_full_deadlock_detection():
    assert load([[2, 4], [4, 2]]).is_full_deadlock()
    assert not load([[2, 2], [4, 8]]).is_full_deadlock()
    assert not load([[2, 4], [2, 8]]).is_full_deadlock()
    # last row and last column pairs
    assert not load([[2, 4, 8], [4, 8, 16], [8, 32, 32]]).is_full_deadlock()
    assert not load([[2, 4, 8], [4, 8, 16], [8, 2, 16]]).is_full_deadlock()


@settings(max_examples=200)
@given(full_boards)
def test_full_deadlock_iff_no_equal_neighbours(rows):
    n = len(rows)
    has_pair = any(
        (c + 1 < n and rows[r][c] == rows[r][c + 1]) or (r + 1 < n and rows[r][c] == rows[r + 1][c])
        for r in range(n) for c in range(n)
    )
    engine = load(rows)
    assert engine.is_full_deadlock() is (not has_pair)
    assert engine.is_game_over() is (not has_pair)


def test_win_value_ends_the_game_regardless_of_space():
    engine = load([[2048, 0, 0, 0], [0] * 4, [0] * 4, [0] * 4])
    assert engine.is_game_over()
    assert engine.progress is GameProgressState.WON
    assert engine.is_full_deadlock()


def test_producing_the_win_value_finishes_the_game():
    sink = RecordingSink()
    scores = ScoreBoard()
    engine = load([[4, 4, 2, 2], [0] * 4, [0] * 4, [0] * 4], sink=sink, win_value=8, scores=scores)

    assert engine.apply_tilt(Side.WEST)

    assert engine.rows()[0] == [8, 4, 0, 0]
    assert engine.progress is GameProgressState.WON
    assert engine.is_game_over()
    assert engine.score == 12
    assert scores.max_score == 12
    kinds = sink.kinds()
    assert kinds.count("game_over") == 1
    assert kinds.index("game_over") < kinds.index("merge")
    assert kinds.count("merge") == 2


def test_filling_the_last_cell_without_moves_blocks_the_game():
    sink = RecordingSink()
    engine = load([[2, 4], [4, 0]], sink=sink, source=tiles("T 2 1 1"))
    engine.place_random_tile()
    assert engine.progress is GameProgressState.BLOCKED
    assert engine.is_game_over()
    assert sink.kinds()[-1] == "game_over"


def test_filling_the_last_cell_with_moves_left_keeps_playing():
    engine = load([[2, 4], [4, 0]], source=tiles("T 4 1 1"))
    engine.place_random_tile()
    assert engine.progress is GameProgressState.PLAYING
    assert not engine.is_game_over()


# --- Scores and clearing ---

def test_max_score_survives_clear():
    scores = ScoreBoard()
    source = tiles("T 2 0 1", "T 2 0 0", "T 2 0 1")
    engine = load([[2, 2], [8, 16]], source=source, score=116, scores=scores)

    assert engine.apply_tilt(Side.WEST)
    assert engine.score == 120
    engine.place_random_tile()
    assert engine.progress is GameProgressState.BLOCKED
    assert engine.max_score == 120

    engine.clear()
    assert engine.rows() == [[0, 0], [0, 0]]
    assert engine.score == 0
    assert engine.tile_count == 0
    assert engine.progress is GameProgressState.NEW
    assert engine.max_score == 120

    engine.start_game()
    assert engine.apply_tilt(Side.WEST)
    assert engine.score == 4
    assert engine.max_score == 120


def test_score_board_is_monotonic():
    scores = ScoreBoard()
    assert scores.record(40) == 40
    assert scores.record(12) == 40
    assert scores.max_score == 40


def test_clear_notifies_sink():
    sink = RecordingSink()
    engine = load([[2, 0], [0, 0]], sink=sink, scores=ScoreBoard(50))
    engine.clear()
    assert sink.kinds() == ["clear", "score"]
    assert sink.events[-1].payload == {"score": 0, "max_score": 50}


# --- Loading ---

@pytest.mark.parametrize("rows", [[], [[2, 0]], [[3, 0], [0, 0]], [[1, 0], [0, 0]], [[-2, 0], [0, 0]]])
def test_from_rows_rejects_bad_boards(rows):
    with pytest.raises(ValueError):
        load(rows)


def test_two_win_merges_in_one_tilt_end_the_game_once():
    sink = RecordingSink()
    scores = ScoreBoard()
    engine = load([[4, 4, 4, 4], [0] * 4, [0] * 4, [0] * 4], sink=sink, win_value=8, scores=scores)

    assert engine.apply_tilt(Side.WEST)

    assert engine.rows()[0] == [8, 8, 0, 0]
    assert engine.progress is GameProgressState.WON
    assert sink.kinds().count("game_over") == 1
    assert scores.max_score == 16


def test_loaded_board_counts_its_tiles():
    engine = load([[2, 0, 4], [0, 0, 0], [8, 0, 2]])
    assert engine.tile_count == 4
    assert engine.progress is GameProgressState.PLAYING
