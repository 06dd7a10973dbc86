"""eXOtended package exposing the game engine, the minimax AI, and the session API."""

from .ai import MinimaxAI, find_best_move
from .game import ExotendedGame, MalformedTokenError, Move, Outcome
from .sessions import SessionStore

__all__ = [
    "ExotendedGame",
    "MalformedTokenError",
    "MinimaxAI",
    "Move",
    "Outcome",
    "SessionStore",
    "find_best_move",
]
