"""Depth-limited Minimax AI with alpha-beta pruning for eXOtended."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from .game import ExotendedGame, Move, Player, opponent

logger = logging.getLogger(__name__)

DEFAULT_DEPTH = 4


@dataclass
class MinimaxAI:
    """AI player that searches a fixed number of plies with alpha-beta.

    Every node works on a clone, so the game handed to ``choose`` is never
    mutated. Moves are searched in ``available_moves`` order and the first
    best-scoring move wins ties, which keeps the choice deterministic.
    """

    depth: int = DEFAULT_DEPTH

    def __post_init__(self) -> None:
        if self.depth < 1:
            raise ValueError(f"Search depth must be at least 1, got {self.depth}")

    # ---- public API ----

    def choose(self, game: ExotendedGame) -> Optional[Move]:
        maximizing = game.current_player
        best_score = -math.inf
        best_move: Optional[Move] = None

        for move in game.available_moves():
            child = game.clone()
            child.play_move(*move)
            score = self._minimax(child, self.depth - 1, -math.inf, math.inf, maximizing)
            if score > best_score:
                best_score, best_move = score, move

        if best_move is None:
            logger.debug("No legal moves for player %s", maximizing)
        else:
            logger.debug(
                "Player %s picks %s (score %s, depth %d)",
                maximizing,
                best_move,
                best_score,
                self.depth,
            )
        return best_move

    # ---- core search ----

    def _minimax(
        self,
        game: ExotendedGame,
        depth: int,
        alpha: float,
        beta: float,
        maximizing: Player,
    ) -> float:
        if depth == 0 or game.ended:
            return self._evaluate(game, maximizing)

        moves = game.available_moves()
        if not moves:
            return self._evaluate(game, maximizing)

        if game.current_player == maximizing:
            value = -math.inf
            for move in moves:
                child = game.clone()
                child.play_move(*move)
                score = self._minimax(child, depth - 1, alpha, beta, maximizing)
                value = max(value, score)
                alpha = max(alpha, score)
                if beta <= alpha:
                    break
        else:
            value = math.inf
            for move in moves:
                child = game.clone()
                child.play_move(*move)
                score = self._minimax(child, depth - 1, alpha, beta, maximizing)
                value = min(value, score)
                beta = min(beta, score)
                if beta <= alpha:
                    break
        return value

    # ---- eval ----

    def _evaluate(self, game: ExotendedGame, maximizing: Player) -> float:
        # Line differential only.
        return game.score[maximizing] - game.score[opponent(maximizing)]


def find_best_move(game: ExotendedGame, depth: int = DEFAULT_DEPTH) -> Optional[Move]:
    """Best move for the player to move, or None when there is nothing to play.

    ``depth`` counts plies and must be at least 1; smaller values raise
    ValueError.
    """
    return MinimaxAI(depth=depth).choose(game)
