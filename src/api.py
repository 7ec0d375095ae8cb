from collections import OrderedDict
from functools import lru_cache
from typing import List, Optional
import logging
import uuid

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

import core
from session import GameProgressState, Session
from storage import (
    GameStore,
    InvalidSaveNameError,
    LoadError,
    PersistenceIOError,
    StorageConfig,
)

logger = logging.getLogger(__name__)

RATE_LIMIT = "100/minute"
MAX_BOARD_SIZE = 8
MAX_SESSIONS = 1000

# Initialize the rate limiter
limiter = Limiter(key_func=get_remote_address)
app = FastAPI(
    title="2048 Game API",
    description="An API for playing the 2048 game. "\
                "Sessions live on the server; saved games and scores persist on disk.",
    version="1.0.0"
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(LoadError)
async def _load_error_handler(request: Request, exc: LoadError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PersistenceIOError)
async def _persistence_error_handler(request: Request, exc: PersistenceIOError):
    logger.error("Storage failure on %s: %s", request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(InvalidSaveNameError)
async def _invalid_name_handler(request: Request, exc: InvalidSaveNameError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# --- Dependencies ---

@lru_cache(maxsize=None)
def get_store() -> GameStore:
    """The process-wide store, opened on first use."""
    return GameStore(StorageConfig.from_env())


class SessionRegistry:
    """
    Live sessions keyed by id, capped at max_sessions.

    Looking a session up marks it as recently used; registering past the cap
    drops the least recently used one.
    """

    def __init__(self, max_sessions: int = MAX_SESSIONS):
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, Session]" = OrderedDict()

    def register(self, session: Session, session_id: Optional[str] = None) -> str:
        session_id = session_id or uuid.uuid4().hex
        self._sessions[session_id] = session
        self._sessions.move_to_end(session_id)
        while len(self._sessions) > self.max_sessions:
            evicted_id, _ = self._sessions.popitem(last=False)
            logger.info("Evicted idle session %s", evicted_id)
        return session_id

    def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
        return session

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


_sessions = SessionRegistry()


def get_sessions() -> SessionRegistry:
    return _sessions


def _get_session(session_id: str, sessions: SessionRegistry) -> Session:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return session


# --- Pydantic Models for API requests and responses ---

class NewGameSettings(BaseModel):
    """Settings for creating a new game."""
    size: Optional[int] = Field(
        default=core.DEFAULT_BOARD_SIZE,
        gt=1, # Board size must be at least 2x2
        le=MAX_BOARD_SIZE,
        description="Size of the N x N game board (e.g., 4 for a 4x4 board)."
    )


class LoadGameRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Name the game was saved under.")


class SaveGameRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Name to save the game under.")


class MoveRequestData(BaseModel):
    """Data required to make a move."""
    direction: core.DIRECTION = Field(
        ...,
        description="Direction of the move (UP, DOWN, LEFT, RIGHT)."
    )

    @field_validator("direction", mode="before")
    @classmethod
    def _direction_by_name(cls, value):
        if isinstance(value, str):
            try:
                return core.DIRECTION[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown direction: {value}")
        return value


class ContinueRequestData(BaseModel):
    continue_playing: bool = Field(
        ...,
        description="Whether the player keeps playing after reaching the target tile."
    )


class GameStateData(BaseModel):
    """Represents the complete state of a game instance."""
    session_id: str = Field(..., description="Identifier of the server-side session.")
    board: List[List[int]] = Field(..., description="The N x N game board, represented as a list of lists.")
    score: int = Field(..., ge=0, description="Current score of the game.")
    progress: GameProgressState = Field(
        ...,
        description="Current progress state (PLAYING, AWAITING_CONTINUE_DECISION, OVER)."
    )
    board_size: int = Field(..., gt=1, description="The dimension N of the N x N board.")
    target_reached: bool = Field(..., description="True once a merge has produced the target tile.")
    can_move: bool = Field(..., description="True while at least one move can change the board.")
    high_score: int = Field(..., ge=0, description="Best of the current score and the recorded scores.")


class MoveResponseData(GameStateData):
    """Response after a move, including the new game state and move effectiveness."""
    move_was_effective: bool = Field(
        ...,
        description="True if the move resulted in a change to the board state, False otherwise."
    )
    score_gained: int = Field(..., ge=0, description="Points earned by merges in this move.")
    message: Optional[str] = Field(
        default=None,
        description="An optional message, e.g., if a move was not effective or the target was reached."
    )


class ContinueResponseData(GameStateData):
    is_over: bool = Field(..., description="True if the game has ended.")


class FinishResponseData(BaseModel):
    session_id: str
    final_score: int = Field(..., ge=0)
    high_score: int = Field(..., ge=0)


class SavedGamesData(BaseModel):
    names: List[str]


class HighScoreData(BaseModel):
    high_score: int = Field(..., ge=0)


def _state_fields(session_id: str, session: Session) -> dict:
    return dict(
        session_id=session_id,
        board=session.tiles(),
        score=session.score,
        progress=session.state,
        board_size=session.size,
        target_reached=session.has_reached_target(),
        can_move=session.can_move(),
        high_score=session.best_score(),
    )


# --- API Endpoints ---

@app.post("/game/new", response_model=GameStateData, summary="Start a New 2048 Game")
@limiter.limit(RATE_LIMIT)
async def start_new_game(request: Request, settings: NewGameSettings,
                         store: GameStore = Depends(get_store),
                         sessions: SessionRegistry = Depends(get_sessions)):
    """
    Starts a new game of the requested size with two random tiles and a score of 0.
    """
    size = settings.size if settings.size is not None else core.DEFAULT_BOARD_SIZE
    session = Session.new_session(size, store)
    session_id = sessions.register(session)
    return GameStateData(**_state_fields(session_id, session))


@app.post("/game/load", response_model=GameStateData, summary="Load a Saved Game")
@limiter.limit(RATE_LIMIT)
async def load_game(request: Request, request_data: LoadGameRequest,
                    store: GameStore = Depends(get_store),
                    sessions: SessionRegistry = Depends(get_sessions)):
    """
    Starts a new session from the game saved under `name`.
    Answers 404 when the save is missing or malformed.
    """
    session = Session.load(request_data.name, store)
    session_id = sessions.register(session)
    return GameStateData(**_state_fields(session_id, session))


@app.get("/game/{session_id}", response_model=GameStateData, summary="Get the Game State")
@limiter.limit(RATE_LIMIT)
async def get_game(request: Request, session_id: str,
                   sessions: SessionRegistry = Depends(get_sessions)):
    session = _get_session(session_id, sessions)
    return GameStateData(**_state_fields(session_id, session))


@app.post("/game/{session_id}/move", response_model=MoveResponseData, summary="Make a Move in the Game")
@limiter.limit(RATE_LIMIT)
async def make_move(request: Request, session_id: str, request_data: MoveRequestData,
                    sessions: SessionRegistry = Depends(get_sessions)):
    """
    Processes a player's move in the game.

    The API will:
    1. Slide and merge the tiles in the requested direction.
    2. If the move changed the board, add a new random tile (2 or 4).
    3. Report whether the target tile was reached so the client can ask the
       player whether to continue.
    """
    session = _get_session(session_id, sessions)
    try:
        outcome = session.apply_move(request_data.direction)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Error processing move: {str(e)}")

    message_for_client: Optional[str] = None
    if not outcome.changed:
        message_for_client = "Move was not effective; board state unchanged by slide."
    if session.state == GameProgressState.AWAITING_CONTINUE_DECISION:
        message_for_client = "Congratulations! You reached the target tile. Continue playing?"
    elif not session.can_move():
        message_for_client = "Game Over. No more valid moves."

    return MoveResponseData(
        **_state_fields(session_id, session),
        move_was_effective=outcome.changed,
        score_gained=outcome.score_gained,
        message=message_for_client
    )


@app.post("/game/{session_id}/continue", response_model=ContinueResponseData,
          summary="Decide Whether to Keep Playing")
@limiter.limit(RATE_LIMIT)
async def continue_game(request: Request, session_id: str, request_data: ContinueRequestData,
                        sessions: SessionRegistry = Depends(get_sessions)):
    """
    Evaluates the end of the game. Declining to continue always ends it;
    continuing ends it only when no move is left.
    """
    session = _get_session(session_id, sessions)
    is_over = session.is_over(request_data.continue_playing)
    return ContinueResponseData(**_state_fields(session_id, session), is_over=is_over)


@app.post("/game/{session_id}/reset", response_model=GameStateData, summary="Restart the Game")
@limiter.limit(RATE_LIMIT)
async def reset_game(request: Request, session_id: str,
                     sessions: SessionRegistry = Depends(get_sessions)):
    session = _get_session(session_id, sessions)
    session.reset()
    return GameStateData(**_state_fields(session_id, session))


@app.post("/game/{session_id}/save", response_model=SavedGamesData, summary="Save the Game")
@limiter.limit(RATE_LIMIT)
async def save_game(request: Request, session_id: str, request_data: SaveGameRequest,
                    store: GameStore = Depends(get_store),
                    sessions: SessionRegistry = Depends(get_sessions)):
    """Saves the game under `name` and returns the known save names."""
    session = _get_session(session_id, sessions)
    session.save(request_data.name)
    return SavedGamesData(names=store.list_saved_names())


@app.post("/game/{session_id}/finish", response_model=FinishResponseData, summary="End the Game")
@limiter.limit(RATE_LIMIT)
async def finish_game(request: Request, session_id: str,
                      sessions: SessionRegistry = Depends(get_sessions)):
    """Records the final score, closes the session and returns the high score."""
    session = _get_session(session_id, sessions)
    high_score = session.finish()
    sessions.discard(session_id)
    return FinishResponseData(session_id=session_id, final_score=session.score, high_score=high_score)


@app.get("/saves", response_model=SavedGamesData, summary="List Saved Games")
@limiter.limit(RATE_LIMIT)
async def list_saves(request: Request, store: GameStore = Depends(get_store)):
    return SavedGamesData(names=store.list_saved_names())


@app.get("/scores/high", response_model=HighScoreData, summary="Get the High Score")
@limiter.limit(RATE_LIMIT)
async def high_score(request: Request, store: GameStore = Depends(get_store)):
    return HighScoreData(high_score=store.current_high_score())
