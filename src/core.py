# core.py
# Board engine for the sliding-tile game: grid, moves, merges and spawns.

from enum import Enum
from typing import List, NamedTuple, Optional, Tuple
import logging
import random

logger = logging.getLogger(__name__)

DEFAULT_BOARD_SIZE = 4
MIN_BOARD_SIZE = 2
TARGET_TILE = 2048


class GameError(Exception):
    """Base class for every error raised by the game engine and its store."""


class InvalidSizeError(GameError, ValueError):
    """Raised when a board is built with a size below the minimum."""


class InvalidBoardError(GameError, ValueError):
    """Raised when stored board contents break the grid invariants."""


class OutOfBoundsError(GameError, IndexError):
    """Raised when a cell is addressed outside the grid."""


class DIRECTION(Enum):
    """Represents the possible move directions."""
    UP = 1
    DOWN = 2
    LEFT = 3
    RIGHT = 4


class MoveOutcome(NamedTuple):
    """Result of a single move on a Board."""
    changed: bool
    score_gained: int
    spawned_at: Optional[Tuple[int, int]]


# --- Board Helper Functions ---

def is_tile_value(value: int) -> bool:
    """True for 0 (empty) or a power of two from 2 upwards."""
    if not isinstance(value, int) or isinstance(value, bool):
        return False
    return value == 0 or (value >= 2 and (value & (value - 1)) == 0)


def get_board_size(board: List[List[int]]) -> int:
    """
    Gets the size (N) of an N x N board.
    Args:
        board (List[List[int]]): The game board.
    Returns:
        int: The dimension of the board.
    Raises:
        InvalidSizeError: If the board is not square or is smaller than 2 x 2.
    """
    if not board or not all(len(row) == len(board) for row in board):
        raise InvalidSizeError("Board must be a non-empty square matrix.")
    if len(board) < MIN_BOARD_SIZE:
        raise InvalidSizeError(f"Board size must be at least {MIN_BOARD_SIZE}.")
    return len(board)


def get_empty_cells(board: List[List[int]]) -> List[Tuple[int, int]]:
    """
    Get coordinates of empty (0-value) cells in the given board.
    Args:
        board (List[List[int]]): The board to check.
    Returns:
        List[Tuple[int, int]]: List of (row, col) tuples for empty cells, row-major.
    """
    n = len(board)
    empty_cells = []
    for row in range(n):
        for col in range(n):
            if board[row][col] == 0:
                empty_cells.append((row, col))
    return empty_cells


def add_random_tile(board: List[List[int]],
                    rng: Optional[random.Random] = None) -> Optional[Tuple[int, int]]:
    """
    Places a new tile on a uniformly chosen empty cell, in place.

    The value is 2 or 4 with equal odds, except that the last empty cell on the
    board always receives a 2.
    Args:
        board (List[List[int]]): The board to modify.
        rng (random.Random): Source of randomness; the module generator if None.
    Returns:
        Optional[Tuple[int, int]]: The (row, col) that was filled, or None when
                                   the board has no empty cell.
    """
    rng = rng or random
    empty_cells = get_empty_cells(board)
    if not empty_cells:
        return None

    row, col = rng.choice(empty_cells)
    if len(empty_cells) == 1:
        value = 2
    else:
        value = rng.choice((2, 4))
    board[row][col] = value
    logger.debug("Spawned %d at (%d, %d)", value, row, col)
    return row, col


# --- Line Manipulation (Core Move Logic Helpers) ---

def _compress_line(line: List[int]) -> List[int]:
    """Moves all non-zero tiles to the start of the line, keeping their order."""
    n = len(line)
    compressed = [i for i in line if i != 0]
    return compressed + [0] * (n - len(compressed))


def _merge_line(line: List[int]) -> Tuple[List[int], List[int]]:
    """
    Merges adjacent identical numbers in a compressed line, moving left.
    A tile produced by a merge is never merged again in the same pass.
    Args:
        line (List[int]): A compressed line.
    Returns:
        Tuple[List[int], List[int]]: The merged line and the values produced by merges.
    """
    n = len(line)
    merged_line = [0] * n
    merged_values = []
    write_idx = 0
    read_idx = 0

    while read_idx < n:
        current_val = line[read_idx]
        if current_val == 0:
            read_idx += 1
            continue

        if read_idx + 1 < n and current_val == line[read_idx + 1]:
            merged_value = current_val * 2
            merged_line[write_idx] = merged_value
            merged_values.append(merged_value)
            read_idx += 2
        else:
            merged_line[write_idx] = current_val
            read_idx += 1
        write_idx += 1

    return merged_line, merged_values


def _process_single_line_leftwise(line: List[int]) -> Tuple[List[int], List[int]]:
    """Applies compress, merge, then compress again to a single line."""
    merged_line, merged_values = _merge_line(_compress_line(line))
    return _compress_line(merged_line), merged_values


# --- Board Transformations ---

def transpose_board(board: List[List[int]]) -> List[List[int]]:
    """Returns a new board with rows and columns swapped."""
    return [list(col) for col in zip(*board)]


def reverse_rows(board: List[List[int]]) -> List[List[int]]:
    """Returns a new board with every row reversed."""
    return [row[::-1] for row in board]


# --- Core Game Move Processing ---

def _apply_left_processing_to_all_lines(
        board: List[List[int]]) -> Tuple[List[List[int]], List[int]]:
    processed_board = []
    merged_values = []
    for line in board:
        final_line, line_merges = _process_single_line_leftwise(line)
        processed_board.append(final_line)
        merged_values.extend(line_merges)
    return processed_board, merged_values


def process_move(board: List[List[int]],
                 direction: DIRECTION) -> Tuple[List[List[int]], List[int], bool]:
    """
    Processes a move in the specified direction on a copy of the board.
    No tile is spawned here.
    Args:
        board (List[List[int]]): The current game board.
        direction (DIRECTION): The direction to move.
    Returns:
        Tuple[List[List[int]], List[int], bool]:
            - The new board state after the move.
            - The values produced by merges, one entry per merge.
            - Whether the board changed as a result of the move.
    Raises:
        ValueError: If an invalid direction is specified.
    """
    if direction == DIRECTION.LEFT:
        new_board, merged_values = _apply_left_processing_to_all_lines(board)

    elif direction == DIRECTION.RIGHT:
        processed, merged_values = _apply_left_processing_to_all_lines(reverse_rows(board))
        new_board = reverse_rows(processed)

    elif direction == DIRECTION.UP:
        processed, merged_values = _apply_left_processing_to_all_lines(transpose_board(board))
        new_board = transpose_board(processed)

    elif direction == DIRECTION.DOWN:
        processed, merged_values = _apply_left_processing_to_all_lines(
            reverse_rows(transpose_board(board)))
        new_board = transpose_board(reverse_rows(processed))
    else:
        raise ValueError("Invalid direction specified for process_move.")

    changed = new_board != [list(row) for row in board]
    return new_board, merged_values, changed


# --- Game State Checks ---

def is_any_move_possible(board: List[List[int]]) -> bool:
    """
    Checks whether any move can change the board: an empty cell exists, or two
    orthogonally adjacent cells hold the same non-zero value.
    """
    n = len(board)
    for r in range(n):
        for c in range(n):
            value = board[r][c]
            if value == 0:
                return True
            if c + 1 < n and board[r][c + 1] == value:
                return True
            if r + 1 < n and board[r + 1][c] == value:
                return True
    return False


class Board:
    """
    A square grid of tiles together with its score and target flag.

    The grid size is fixed for the lifetime of the instance. Moves are computed
    on a copy and committed in one step, so a failing call leaves the board as
    it was.
    """

    def __init__(self, size: int = DEFAULT_BOARD_SIZE, target_tile: int = TARGET_TILE,
                 rng: Optional[random.Random] = None):
        if not isinstance(size, int) or isinstance(size, bool) or size < MIN_BOARD_SIZE:
            raise InvalidSizeError(f"Board size must be an integer >= {MIN_BOARD_SIZE}, got {size!r}.")
        self._size = size
        self._target_tile = target_tile
        self._rng = rng or random.Random()
        self._tiles: List[List[int]] = []
        self._score = 0
        self._target_reached = False
        self.reset()

    @classmethod
    def from_grid(cls, grid: List[List[int]], score: int = 0,
                  target_tile: int = TARGET_TILE,
                  rng: Optional[random.Random] = None) -> "Board":
        """
        Rebuilds a board from stored contents without spawning any tile.
        Raises:
            InvalidSizeError: If the grid is not square or is too small.
            InvalidBoardError: If a cell is not 0 or a power of two, or the score is negative.
        """
        size = get_board_size(grid)
        for row in grid:
            for value in row:
                if not is_tile_value(value):
                    raise InvalidBoardError(f"Invalid tile value: {value!r}")
        if not isinstance(score, int) or score < 0:
            raise InvalidBoardError(f"Score must be a non-negative integer, got {score!r}.")

        board = cls.__new__(cls)
        board._size = size
        board._target_tile = target_tile
        board._rng = rng or random.Random()
        board._tiles = [list(row) for row in grid]
        board._score = score
        board._target_reached = False
        return board

    @property
    def size(self) -> int:
        return self._size

    @property
    def score(self) -> int:
        return self._score

    @property
    def target_tile(self) -> int:
        return self._target_tile

    @property
    def target_reached(self) -> bool:
        return self._target_reached

    def clear_target_reached(self) -> None:
        self._target_reached = False

    def tile_at(self, row: int, col: int) -> int:
        if not (0 <= row < self._size and 0 <= col < self._size):
            raise OutOfBoundsError(
                f"Cell ({row}, {col}) is outside a {self._size}x{self._size} board.")
        return self._tiles[row][col]

    def tiles(self) -> List[List[int]]:
        """Returns a copy of the grid, row-major."""
        return [list(row) for row in self._tiles]

    def can_move(self) -> bool:
        return is_any_move_possible(self._tiles)

    def reset(self) -> None:
        """Empties the grid, zeroes the score and spawns the two starting tiles."""
        self._tiles = [[0] * self._size for _ in range(self._size)]
        self._score = 0
        self._target_reached = False
        add_random_tile(self._tiles, self._rng)
        add_random_tile(self._tiles, self._rng)

    def move(self, direction: DIRECTION) -> MoveOutcome:
        """
        Slides and merges every line toward the edge named by direction.

        The score grows by the sum of the merged values and the target flag is
        raised when a merge produces the target tile. A tile is spawned only
        when the grid changed.
        """
        new_tiles, merged_values, changed = process_move(self._tiles, direction)
        if not changed:
            logger.debug("Move %s left the board unchanged", direction.name)
            return MoveOutcome(False, 0, None)

        score_gained = sum(merged_values)
        spawned_at = add_random_tile(new_tiles, self._rng)

        self._tiles = new_tiles
        self._score += score_gained
        if self._target_tile in merged_values:
            self._target_reached = True
        logger.debug("Move %s gained %d (score %d)", direction.name, score_gained, self._score)
        return MoveOutcome(True, score_gained, spawned_at)

    def __repr__(self) -> str:
        return f"Board(size={self._size}, score={self._score}, tiles={self._tiles!r})"
