"""FastAPI interaction layer: the calls a chat bot makes to run eXOtended games."""

from __future__ import annotations

import logging
import random
import time
from typing import Dict, List, Literal, Optional, Tuple

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    FastAPI,
    HTTPException,
    Query,
    Request,
)
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .ai import DEFAULT_DEPTH
from .game import PLAYER_ONE, PLAYER_TWO, MalformedTokenError
from .sessions import (
    AI_PLAYER_ID,
    GameSession,
    IllegalMoveError,
    InvalidBoardError,
    NotAParticipantError,
    NotYourTurnError,
    SelfChallengeError,
    SessionError,
    SessionNotFoundError,
    SessionStore,
)

logger = logging.getLogger(__name__)

ALLOWED_DEPTHS: Tuple[int, ...] = (1, 2, 3, 4)
AI_THINK_DELAY: Tuple[float, float] = (0.5, 1.0)

ERROR_STATUS: Dict[type, int] = {
    SessionNotFoundError: 404,
    NotYourTurnError: 403,
    NotAParticipantError: 403,
    SelfChallengeError: 400,
    InvalidBoardError: 400,
    IllegalMoveError: 400,
    MalformedTokenError: 400,
}


def _check_depth(value: int) -> int:
    if value not in ALLOWED_DEPTHS:
        raise ValueError(
            f"Unsupported search depth {value}. "
            f"Choose one of {', '.join(map(str, ALLOWED_DEPTHS))}."
        )
    return value


class NewGameRequest(BaseModel):
    """Request payload for starting a game in a channel."""

    player1: str = Field(min_length=1)
    player2: Optional[str] = Field(default=None, min_length=1)
    opponent: Literal["human", "ai"] = "human"
    depth: int = Field(default=DEFAULT_DEPTH, description="Minimax depth of the AI")

    @field_validator("depth")
    @classmethod
    def ensure_supported_depth(cls, value: int) -> int:
        return _check_depth(value)

    @model_validator(mode="after")
    def resolve_opponent(self) -> "NewGameRequest":
        if self.opponent == "ai":
            self.player2 = AI_PLAYER_ID
        elif self.player2 is None:
            raise ValueError("player2 is required against a human opponent")
        return self


class MoveRequest(BaseModel):
    """Request payload for a move by one of the channel's players."""

    model_config = ConfigDict(populate_by_name=True)

    user: str
    board_index: int = Field(alias="boardIndex", ge=0, le=8)
    row: int = Field(ge=0, le=2)
    col: int = Field(ge=0, le=2)


class ImportRequest(BaseModel):
    """Request payload for restoring an exported game."""

    data: str = Field(min_length=1)
    user: str = Field(min_length=1)
    depth: int = DEFAULT_DEPTH

    @field_validator("depth")
    @classmethod
    def ensure_supported_depth(cls, value: int) -> int:
        return _check_depth(value)


def get_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def _run_ai_turn(store: SessionStore, channel_id: str) -> None:
    time.sleep(max(0.0, random.uniform(*AI_THINK_DELAY)))
    move = store.play_ai_turn(channel_id)
    if move is not None:
        logger.info("AI played %s in %s", tuple(move), channel_id)


def _serialize_session(
    session: GameSession, highlight_board: Optional[int] = None
) -> Dict[str, object]:
    with session.lock:
        game = session.game
        if highlight_board is None:
            rendered = session.board_text()
        else:
            rendered = game.render(highlight_board=highlight_board)
        boards: List[Dict[str, object]] = [
            {"index": index, "cells": list(board.cells), "full": board.is_full()}
            for index, board in enumerate(game.boards)
        ]
        state: Dict[str, object] = {
            "channel": session.channel_id,
            "player1": session.player1,
            "player2": session.player2,
            "currentPlayer": game.current_player,
            "currentPlayerId": session.current_player_id,
            "nextBoardIndex": game.next_board_index,
            "validBoards": game.valid_boards(),
            "ended": game.ended,
            "outcome": game.outcome().value,
            "score": {
                "player1": game.score[PLAYER_ONE],
                "player2": game.score[PLAYER_TWO],
            },
            "claimedLines": len(game.claimed_lines),
            "movesPlayed": game.moves_played,
            "boards": boards,
            "render": rendered,
            "status": session.status_text(),
            "moveLog": list(session.move_log),
            "aiPending": session.ai_pending,
        }
        if session.move_log:
            state["lastMove"] = session.move_log[-1]
        return state


def _schedule_ai(
    session: GameSession, store: SessionStore, background_tasks: BackgroundTasks
) -> None:
    if session.ai_pending:
        background_tasks.add_task(_run_ai_turn, store, session.channel_id)


def _http_error(exc: Exception) -> HTTPException:
    status = next(
        (code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 400
    )
    logger.info("Rejected request: %s", exc)
    return HTTPException(status_code=status, detail=str(exc))


def _get_session(store: SessionStore, channel_id: str) -> GameSession:
    try:
        return store.get(channel_id)
    except SessionNotFoundError as exc:
        raise _http_error(exc) from exc


router = APIRouter(prefix="/api/channel/{channel_id}")


@router.put("/game")
def create_game(
    channel_id: str,
    request: NewGameRequest,
    background_tasks: BackgroundTasks,
    store: SessionStore = Depends(get_store),
) -> Dict[str, object]:
    try:
        session = store.new_game(
            channel_id, request.player1, request.player2, depth=request.depth
        )
    except SessionError as exc:
        raise _http_error(exc) from exc
    _schedule_ai(session, store, background_tasks)
    return _serialize_session(session)


@router.get("/game")
def get_game(
    channel_id: str,
    board: Optional[int] = Query(default=None, ge=0, le=8),
    user: Optional[str] = None,
    store: SessionStore = Depends(get_store),
) -> Dict[str, object]:
    session = _get_session(store, channel_id)
    if board is None:
        return _serialize_session(session)
    if user is None:
        raise HTTPException(status_code=400, detail="Selecting a board requires a user")
    try:
        store.select_board(channel_id, user, board)
    except SessionError as exc:
        raise _http_error(exc) from exc
    return _serialize_session(session, highlight_board=board)


@router.delete("/game")
def delete_game(
    channel_id: str, store: SessionStore = Depends(get_store)
) -> Dict[str, object]:
    if store.discard(channel_id) is None:
        raise HTTPException(status_code=404, detail="No game in this channel")
    return {"channel": channel_id, "deleted": True}


@router.post("/move")
def make_move(
    channel_id: str,
    request: MoveRequest,
    background_tasks: BackgroundTasks,
    store: SessionStore = Depends(get_store),
) -> Dict[str, object]:
    try:
        session = store.play(
            channel_id, request.user, request.board_index, request.row, request.col
        )
    except SessionError as exc:
        raise _http_error(exc) from exc
    _schedule_ai(session, store, background_tasks)
    return _serialize_session(session)


@router.post("/import")
def import_game(
    channel_id: str,
    request: ImportRequest,
    background_tasks: BackgroundTasks,
    store: SessionStore = Depends(get_store),
) -> Dict[str, object]:
    try:
        session = store.import_game(
            channel_id, request.data, request.user, depth=request.depth
        )
    except (SessionError, MalformedTokenError) as exc:
        raise _http_error(exc) from exc
    _schedule_ai(session, store, background_tasks)
    return _serialize_session(session)


@router.get("/export")
def export_game(
    channel_id: str, store: SessionStore = Depends(get_store)
) -> Dict[str, str]:
    try:
        token = store.export_game(channel_id)
    except SessionNotFoundError as exc:
        raise _http_error(exc) from exc
    return {"channel": channel_id, "token": token}


def create_app(store: Optional[SessionStore] = None) -> FastAPI:
    """Build the HTTP app around its own session store."""

    app = FastAPI(
        title="eXOtended", description="Line-scored Ultimate Tic-Tac-Toe sessions"
    )
    app.state.sessions = store if store is not None else SessionStore()
    app.include_router(router)
    return app


app = create_app()
