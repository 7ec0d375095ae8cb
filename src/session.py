# session.py
# One game in progress: a board, its score, its progress state and its persistence.

from enum import Enum
from typing import List, Optional
import logging
import random

from core import DEFAULT_BOARD_SIZE, DIRECTION, Board, MoveOutcome
from storage import GameStore, Snapshot

logger = logging.getLogger(__name__)


class GameProgressState(Enum):
    """
    Where a session stands.

    PLAYING -> AWAITING_CONTINUE_DECISION when a merge reaches the target tile.
    PLAYING -> OVER when a move leaves no move possible.
    Evaluating is_over() leaves AWAITING_CONTINUE_DECISION for PLAYING or OVER.
    """
    PLAYING = 1
    AWAITING_CONTINUE_DECISION = 2
    OVER = 3


class Session:
    """
    Owns exactly one Board and mirrors its score after every move.

    The store is the process-wide persistence handle; the session reads and
    writes through it but keeps nothing from it in memory.
    """

    def __init__(self, board: Board, store: GameStore):
        self._board = board
        self._store = store
        self._score = board.score
        self._state = GameProgressState.PLAYING
        self._score_recorded = False

    @classmethod
    def new_session(cls, size: int = DEFAULT_BOARD_SIZE, store: Optional[GameStore] = None,
                    rng: Optional[random.Random] = None) -> "Session":
        session = cls(Board(size, rng=rng), store or GameStore())
        logger.info("Started a new %dx%d game", size, size)
        return session

    @classmethod
    def load(cls, name: str, store: Optional[GameStore] = None,
             rng: Optional[random.Random] = None) -> "Session":
        """
        Rebuilds a session from the snapshot saved under name.
        Raises:
            LoadError: If the snapshot is missing or malformed.
            PersistenceIOError: If the store cannot be read.
        """
        store = store or GameStore()
        snapshot = store.load_snapshot(name)
        board = Board.from_grid(snapshot.grid, snapshot.score, rng=rng)
        return cls(board, store)

    # --- Accessors ---

    @property
    def store(self) -> GameStore:
        return self._store

    @property
    def score(self) -> int:
        return self._score

    @property
    def size(self) -> int:
        return self._board.size

    @property
    def state(self) -> GameProgressState:
        return self._state

    def tile_at(self, row: int, col: int) -> int:
        return self._board.tile_at(row, col)

    def tiles(self) -> List[List[int]]:
        return self._board.tiles()

    def can_move(self) -> bool:
        return self._board.can_move()

    @property
    def target_tile(self) -> int:
        return self._board.target_tile

    def has_reached_target(self) -> bool:
        return self._board.target_reached

    # --- Game flow ---

    def apply_move(self, direction: DIRECTION) -> MoveOutcome:
        outcome = self._board.move(direction)
        self._score = self._board.score
        if self._board.target_reached:
            self._state = GameProgressState.AWAITING_CONTINUE_DECISION
        elif not self._board.can_move():
            self._state = GameProgressState.OVER
        return outcome

    def is_over(self, user_wants_to_continue: bool) -> bool:
        """
        Evaluates the terminal condition and consumes the target flag.

        A player who declines to continue ends the game outright. A player who
        continues plays on until no move is left.
        """
        self._board.clear_target_reached()
        over = not user_wants_to_continue or not self._board.can_move()
        self._state = GameProgressState.OVER if over else GameProgressState.PLAYING
        return over

    def reset(self) -> None:
        """Restarts this session at the same size with two fresh tiles."""
        self._board.reset()
        self._score = self._board.score
        self._state = GameProgressState.PLAYING
        self._score_recorded = False
        logger.info("Reset the %dx%d game", self.size, self.size)

    # --- Persistence ---

    def snapshot(self) -> Snapshot:
        return Snapshot(size=self.size, grid=self._board.tiles(), score=self._score)

    def save(self, name: str) -> None:
        self._store.save_snapshot(name, self.snapshot())

    def finish(self) -> int:
        """
        Records the final score in the ledger, once per game, and returns the
        high score including it.
        """
        if not self._score_recorded:
            self._store.record_final_score(self._score)
            self._score_recorded = True
        self._state = GameProgressState.OVER
        return self._store.current_high_score()

    def best_score(self) -> int:
        """The larger of the current score and the recorded high score."""
        return max(self._score, self._store.current_high_score())
