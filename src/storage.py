# storage.py
# Durable game state: saved board snapshots, the save-name index and the score ledger.

from pathlib import Path
from typing import List, Optional
import logging
import os
import tempfile

from pydantic import BaseModel, Field, model_validator

from core import GameError, MIN_BOARD_SIZE, is_tile_value

logger = logging.getLogger(__name__)

DATA_DIR_ENV_VAR = "SLIDE2048_DATA_DIR"

_FORBIDDEN_NAME_CHARS = ("/", "\\", "\n", "\r", "\0")


class LoadError(GameError):
    """Raised when a saved game is missing or cannot be parsed."""


class PersistenceIOError(GameError):
    """Raised when the underlying storage cannot be read or written."""


class InvalidSaveNameError(GameError, ValueError):
    """Raised when a save name cannot be used as a file name."""


class StorageConfig(BaseModel):
    """Where the store keeps its files."""
    data_dir: Path = Field(default=Path("."), description="Directory holding every game file.")
    saves_dir: str = Field(default="savedGames", description="Sub-directory for snapshot files.")
    index_file: str = Field(default="savedGames.txt", description="Save-name index, one name per line.")
    ledger_file: str = Field(default="Score.txt", description="Final-score ledger, one score per line.")

    @classmethod
    def from_env(cls) -> "StorageConfig":
        data_dir = os.environ.get(DATA_DIR_ENV_VAR)
        return cls(data_dir=Path(data_dir)) if data_dir else cls()


class Snapshot(BaseModel):
    """A saved board: its size, full grid (row-major) and score."""
    size: int = Field(..., ge=MIN_BOARD_SIZE)
    grid: List[List[int]]
    score: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _check_grid(self) -> "Snapshot":
        if len(self.grid) != self.size or any(len(row) != self.size for row in self.grid):
            raise ValueError(f"grid must hold {self.size} rows of {self.size} cells")
        for row in self.grid:
            for value in row:
                if not is_tile_value(value):
                    raise ValueError(f"invalid tile value {value}")
        return self

    def to_text(self) -> str:
        lines = [str(self.size)]
        lines.extend(" ".join(str(value) for value in row) for row in self.grid)
        lines.append(str(self.score))
        return "\n".join(lines) + "\n"

    @classmethod
    def from_text(cls, text: str) -> "Snapshot":
        """
        Parses the snapshot text format.
        Raises:
            ValueError: If the text is truncated, has extra lines, a wrong cell
                        count or a non-integer token.
        """
        lines = text.splitlines()
        while lines and not lines[-1].strip():
            lines.pop()
        if not lines:
            raise ValueError("snapshot is empty")

        size = int(lines[0])
        if size < MIN_BOARD_SIZE:
            raise ValueError(f"board size {size} is below {MIN_BOARD_SIZE}")
        expected_lines = size + 2
        if len(lines) != expected_lines:
            raise ValueError(f"expected {expected_lines} lines, found {len(lines)}")

        grid = [[int(token) for token in line.split()] for line in lines[1:size + 1]]
        score = int(lines[size + 1])
        return cls(size=size, grid=grid, score=score)


def validate_save_name(name: str) -> str:
    if (not isinstance(name, str) or not name.strip() or name in (".", "..")
            or any(char in name for char in _FORBIDDEN_NAME_CHARS)):
        raise InvalidSaveNameError(f"Invalid save name: {name!r}")
    return name


def _write_atomic(path: Path, text: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class GameStore:
    """
    Handle on the persisted game state of one data directory.

    Open one per process and hand it to every session. Nothing is cached:
    the index and the ledger are re-read on every query.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or StorageConfig.from_env()

    @property
    def saves_path(self) -> Path:
        return self.config.data_dir / self.config.saves_dir

    @property
    def index_path(self) -> Path:
        return self.config.data_dir / self.config.index_file

    @property
    def ledger_path(self) -> Path:
        return self.config.data_dir / self.config.ledger_file

    def snapshot_path(self, name: str) -> Path:
        return self.saves_path / f"{validate_save_name(name)}.txt"

    # --- Snapshots ---

    def save_snapshot(self, name: str, snapshot: Snapshot) -> None:
        """
        Writes the snapshot under name, replacing any earlier content, and adds
        name to the index unless it is already listed.

        The index is updated first. If the snapshot write then fails, the
        earlier content under name is left intact; a name that had no content
        yet stays listed and loading it raises LoadError.
        Raises:
            InvalidSaveNameError: If name cannot be used as a file name.
            PersistenceIOError: If the files cannot be written.
        """
        path = self.snapshot_path(name)
        try:
            self.saves_path.mkdir(parents=True, exist_ok=True)
            if name not in self.list_saved_names():
                with self.index_path.open("a", encoding="utf-8") as handle:
                    handle.write(name + "\n")
            _write_atomic(path, snapshot.to_text())
        except OSError as exc:
            raise PersistenceIOError(f"Could not save game {name!r}: {exc}") from exc
        logger.info("Saved game %r (size %d, score %d)", name, snapshot.size, snapshot.score)

    def load_snapshot(self, name: str) -> Snapshot:
        """
        Reads the snapshot saved under name.
        Raises:
            LoadError: If there is no such snapshot or it is malformed.
            PersistenceIOError: If the file exists but cannot be read.
        """
        try:
            path = self.snapshot_path(name)
        except InvalidSaveNameError as exc:
            raise LoadError(str(exc)) from exc

        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise LoadError(f"No saved game named {name!r}.") from exc
        except UnicodeDecodeError as exc:
            raise LoadError(f"Saved game {name!r} is not a text file.") from exc
        except OSError as exc:
            raise PersistenceIOError(f"Could not read saved game {name!r}: {exc}") from exc

        try:
            snapshot = Snapshot.from_text(text)
        except ValueError as exc:
            raise LoadError(f"Saved game {name!r} is malformed: {exc}") from exc
        logger.info("Loaded game %r (size %d, score %d)", name, snapshot.size, snapshot.score)
        return snapshot

    def list_saved_names(self) -> List[str]:
        """Returns the save-name index in the order names were first saved."""
        try:
            with self.index_path.open("r", encoding="utf-8") as handle:
                return [line.rstrip("\r\n") for line in handle if line.strip()]
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise PersistenceIOError(f"Could not read the save index: {exc}") from exc

    # --- Score ledger ---

    def record_final_score(self, score: int) -> None:
        if not isinstance(score, int) or score < 0:
            raise ValueError(f"Score must be a non-negative integer, got {score!r}.")
        try:
            self.config.data_dir.mkdir(parents=True, exist_ok=True)
            with self.ledger_path.open("a", encoding="utf-8") as handle:
                handle.write(f"{score}\n")
        except OSError as exc:
            raise PersistenceIOError(f"Could not record score {score}: {exc}") from exc
        logger.info("Recorded final score %d", score)

    def scores(self) -> List[int]:
        """Reads every score in the ledger, oldest first."""
        try:
            with self.ledger_path.open("r", encoding="utf-8") as handle:
                lines = handle.readlines()
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise PersistenceIOError(f"Could not read the score ledger: {exc}") from exc

        scores = []
        for line_no, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                scores.append(int(line))
            except ValueError:
                logger.warning("Skipping unreadable ledger line %d: %r", line_no, line.rstrip())
        return scores

    def current_high_score(self) -> int:
        return max(self.scores(), default=0)
