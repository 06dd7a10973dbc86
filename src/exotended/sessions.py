"""Per-channel game sessions: who plays, whose turn it is, and when a game goes away."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .ai import DEFAULT_DEPTH, MinimaxAI
from .game import (
    GLYPHS,
    PLAYER_ONE,
    PLAYER_TWO,
    ExotendedGame,
    Move,
    Outcome,
    Player,
)

logger = logging.getLogger(__name__)

AI_PLAYER_ID = "exotended-ai"
AI_DISPLAY_NAME = "eXOtended AI"


class SessionError(Exception):
    """Base class for rule violations reported back to the interacting user."""


class SessionNotFoundError(SessionError, LookupError):
    pass


class SelfChallengeError(SessionError, ValueError):
    pass


class NotAParticipantError(SessionError):
    pass


class NotYourTurnError(SessionError):
    pass


class InvalidBoardError(SessionError):
    pass


class IllegalMoveError(SessionError):
    pass


def mention(user_id: str) -> str:
    if user_id == AI_PLAYER_ID:
        return AI_DISPLAY_NAME
    return f"<@{user_id}>"


@dataclass
class GameSession:
    """A live game bound to one channel and its two participants."""

    channel_id: str
    game: ExotendedGame
    player1: str
    player2: str
    ai: Optional[MinimaxAI] = None
    move_log: List[Dict[str, object]] = field(default_factory=list)
    ai_pending: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def player_id(self, player: Player) -> str:
        return self.player1 if player == PLAYER_ONE else self.player2

    @property
    def current_player_id(self) -> str:
        return self.player_id(self.game.current_player)

    @property
    def ai_turn_due(self) -> bool:
        return (
            self.ai is not None
            and not self.game.ended
            and self.current_player_id == AI_PLAYER_ID
        )

    def _require_turn(self, user_id: str) -> None:
        if user_id != self.current_player_id:
            raise NotYourTurnError("Not your turn")

    def select_board(self, user_id: str, board: int) -> str:
        """Render the game with one sub-board opened for cell selection."""
        self._require_turn(user_id)
        if board not in self.game.valid_boards():
            raise InvalidBoardError("Invalid big board")
        return self.game.render(highlight_board=board)

    def play(self, user_id: str, board: int, row: int, col: int) -> None:
        self._require_turn(user_id)
        self._apply(Move(board, row, col))

    def play_ai_turn(self) -> Optional[Move]:
        """Let the automated opponent move if it is its turn."""
        if not self.ai_turn_due:
            return None
        move = self.ai.choose(self.game)
        if move is None:
            return None
        self._apply(move)
        return move

    def _apply(self, move: Move) -> None:
        player = self.game.current_player
        if not self.game.play_move(*move):
            raise IllegalMoveError("Invalid move")
        self.move_log.append(
            {
                "player": player,
                "boardIndex": move.board,
                "row": move.row,
                "col": move.col,
            }
        )

    # ---- text views ----

    def board_text(self) -> str:
        if self.game.ended:
            return self.game.render()
        return self.game.render(highlight_boards=self.game.valid_boards())

    def status_text(self) -> str:
        score = self.game.score
        header = (
            f"{GLYPHS[PLAYER_ONE]} {mention(self.player1)} ({score[PLAYER_ONE]}) vs "
            f"{GLYPHS[PLAYER_TWO]} {mention(self.player2)} ({score[PLAYER_TWO]})"
        )
        outcome = self.game.outcome()
        if outcome is Outcome.UNDECIDED:
            player = self.game.current_player
            return f"{header}\n\nCurrent Turn: {GLYPHS[player]} {mention(self.player_id(player))}"
        if outcome is Outcome.TIE:
            return f"{header}\n\nGame Over! It's a tie!"
        winner = PLAYER_ONE if outcome is Outcome.PLAYER_ONE_WINS else PLAYER_TWO
        return f"{header}\n\nGame Over! {GLYPHS[winner]} {mention(self.player_id(winner))} won!"


class SessionStore:
    """Owns every live game, keyed by channel.

    A session is created by ``new_game``, replaced by ``import_game`` and
    dropped once its game ends or ``discard`` is called.
    """

    def __init__(self, default_depth: int = DEFAULT_DEPTH) -> None:
        self.default_depth = default_depth
        self._sessions: Dict[str, GameSession] = {}
        self._lock = threading.Lock()

    def __contains__(self, channel_id: str) -> bool:
        with self._lock:
            return channel_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get(self, channel_id: str) -> GameSession:
        with self._lock:
            try:
                return self._sessions[channel_id]
            except KeyError as exc:
                raise SessionNotFoundError("No game in this channel") from exc

    def new_game(
        self,
        channel_id: str,
        player1: str,
        player2: str,
        depth: Optional[int] = None,
    ) -> GameSession:
        if player1 == player2:
            raise SelfChallengeError("You cannot challenge yourself.")
        session = self._build(channel_id, ExotendedGame(), player1, player2, depth)
        logger.info("New game in %s: %s vs %s", channel_id, player1, player2)
        return self._put(session)

    def import_game(
        self,
        channel_id: str,
        token: str,
        user_id: str,
        depth: Optional[int] = None,
    ) -> GameSession:
        """Restore an exported game on behalf of one of its players.

        Raises MalformedTokenError for bad tokens and NotAParticipantError when
        ``user_id`` is neither player.
        """
        game, player1, player2 = ExotendedGame.deserialize(token)
        if user_id not in (player1, player2):
            raise NotAParticipantError("You were not part of this game")
        session = self._build(channel_id, game, player1, player2, depth)
        logger.info(
            "Imported game in %s after %d moves", channel_id, game.moves_played
        )
        return self._put(session)

    def export_game(self, channel_id: str) -> str:
        session = self.get(channel_id)
        with session.lock:
            return session.game.serialize(session.player1, session.player2)

    def select_board(self, channel_id: str, user_id: str, board: int) -> str:
        session = self.get(channel_id)
        with session.lock:
            return session.select_board(user_id, board)

    def play(
        self, channel_id: str, user_id: str, board: int, row: int, col: int
    ) -> GameSession:
        session = self.get(channel_id)
        with session.lock:
            if session.ai_pending:
                raise NotYourTurnError("AI is completing its move")
            session.play(user_id, board, row, col)
            if session.ai_turn_due:
                session.ai_pending = True
        self._finish_if_ended(session)
        return session

    def play_ai_turn(self, channel_id: str) -> Optional[Move]:
        try:
            session = self.get(channel_id)
        except SessionNotFoundError:
            return None
        with session.lock:
            try:
                move = session.play_ai_turn()
            finally:
                session.ai_pending = False
        self._finish_if_ended(session)
        return move

    def discard(self, channel_id: str) -> Optional[GameSession]:
        with self._lock:
            session = self._sessions.pop(channel_id, None)
        if session is not None:
            logger.info("Discarded game in %s", channel_id)
        return session

    # ---- helpers ----

    def _build(
        self,
        channel_id: str,
        game: ExotendedGame,
        player1: str,
        player2: str,
        depth: Optional[int],
    ) -> GameSession:
        ai = None
        if AI_PLAYER_ID in (player1, player2):
            ai = MinimaxAI(depth=depth or self.default_depth)
        session = GameSession(
            channel_id=channel_id, game=game, player1=player1, player2=player2, ai=ai
        )
        # An imported game may hand the first move to the AI.
        session.ai_pending = session.ai_turn_due
        return session

    def _put(self, session: GameSession) -> GameSession:
        with self._lock:
            self._sessions[session.channel_id] = session
        return session

    def _finish_if_ended(self, session: GameSession) -> None:
        if not session.game.ended:
            return
        with self._lock:
            if self._sessions.get(session.channel_id) is session:
                del self._sessions[session.channel_id]
                logger.info(
                    "Game in %s finished: %s", session.channel_id, session.game.outcome().value
                )
