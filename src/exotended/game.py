"""Core rules, scoring and token encoding for eXOtended (line-scored Ultimate Tic-Tac-Toe)."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

Player = int  # PLAYER_ONE or PLAYER_TWO
Cell = int  # EMPTY or a Player

EMPTY: Cell = 0
PLAYER_ONE: Player = 1
PLAYER_TWO: Player = 2

BOARD_COUNT = 9
SIDE = 3
TOTAL_CELLS = BOARD_COUNT * SIDE * SIDE

# Rows, columns, then the two diagonals; position in this tuple is the line index.
WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)

LineId = Tuple[int, int]  # (sub-board index, line index)

GLYPHS = {PLAYER_ONE: "🟦", PLAYER_TWO: "🟥"}
SELECTABLE_GLYPH = "🟨"
EMPTY_GLYPH = "⬜"
SEPARATOR_GLYPH = "⬛"

TOKEN_PREFIX = "exo1."


def opponent(player: Player) -> Player:
    return PLAYER_TWO if player == PLAYER_ONE else PLAYER_ONE


class MalformedTokenError(ValueError):
    """Raised when a session token cannot be decoded into a consistent game."""


class Move(NamedTuple):
    board: int
    row: int
    col: int


class Outcome(Enum):
    UNDECIDED = "undecided"
    PLAYER_ONE_WINS = "player_one"
    PLAYER_TWO_WINS = "player_two"
    TIE = "tie"


# ---------- Constraint ----------


@dataclass(frozen=True)
class Unconstrained:
    """Any non-full sub-board may be played (only the opening move)."""


@dataclass(frozen=True)
class ConstrainedTo:
    index: int


Constraint = Union[Unconstrained, ConstrainedTo]


# ---------- Small board ----------


@dataclass
class SubBoard:
    # EMPTY, PLAYER_ONE or PLAYER_TWO, row-major
    cells: List[Cell] = field(default_factory=lambda: [EMPTY] * 9)

    def get(self, row: int, col: int) -> Cell:
        return self.cells[row * SIDE + col]

    def is_full(self) -> bool:
        return all(c != EMPTY for c in self.cells)

    def owns_line(self, player: Player, line: int) -> bool:
        return all(self.cells[i] == player for i in WINNING_LINES[line])

    def empty_cells(self) -> Iterable[Tuple[int, int]]:
        for idx, c in enumerate(self.cells):
            if c == EMPTY:
                yield divmod(idx, SIDE)


# ---------- Game ----------


@dataclass
class ExotendedGame:
    boards: List[SubBoard] = field(
        default_factory=lambda: [SubBoard() for _ in range(BOARD_COUNT)]
    )
    current_player: Player = PLAYER_ONE
    constraint: Constraint = field(default_factory=Unconstrained)
    ended: bool = False
    score: Dict[Player, int] = field(
        default_factory=lambda: {PLAYER_ONE: 0, PLAYER_TWO: 0}
    )
    claimed_lines: Dict[LineId, Player] = field(default_factory=dict)
    moves_played: int = 0

    # ---- queries ----

    @property
    def next_board_index(self) -> Optional[int]:
        """Nullable view of ``constraint``; None only before the first move."""
        if isinstance(self.constraint, ConstrainedTo):
            return self.constraint.index
        return None

    def is_board_full(self, index: int) -> bool:
        # Unknown sub-boards count as full so they are never offered.
        if not _is_index(index, BOARD_COUNT):
            return True
        return self.boards[index].is_full()

    def valid_boards(self) -> List[int]:
        """Sub-boards the current player may play in, ascending."""
        if self.ended:
            return []
        forced = self.next_board_index
        if forced is not None and not self.is_board_full(forced):
            return [forced]
        return [i for i in range(BOARD_COUNT) if not self.is_board_full(i)]

    def available_moves(self) -> List[Move]:
        """All legal moves, ordered by sub-board, row, then column."""
        return [
            Move(i, row, col)
            for i in self.valid_boards()
            for row, col in self.boards[i].empty_cells()
        ]

    def outcome(self) -> Outcome:
        if not self.ended:
            return Outcome.UNDECIDED
        one, two = self.score[PLAYER_ONE], self.score[PLAYER_TWO]
        if one > two:
            return Outcome.PLAYER_ONE_WINS
        if two > one:
            return Outcome.PLAYER_TWO_WINS
        return Outcome.TIE

    # ---- mutation ----

    def play_move(self, board: int, row: int, col: int) -> bool:
        """Apply a move for the current player.

        Returns False and leaves the game untouched when the move is illegal:
        the game is over, the move ignores the forced sub-board, an index is
        out of range, or the cell is taken.
        """
        if self.ended:
            return False
        forced = self.next_board_index
        if forced is not None and board != forced and not self.is_board_full(forced):
            return False
        if not (
            _is_index(board, BOARD_COUNT)
            and _is_index(row, SIDE)
            and _is_index(col, SIDE)
        ):
            return False
        small = self.boards[board]
        if small.get(row, col) != EMPTY:
            return False

        small.cells[row * SIDE + col] = self.current_player
        self._claim_new_lines(board)

        self.moves_played += 1
        if self.moves_played == TOTAL_CELLS:
            self.ended = True

        self.current_player = opponent(self.current_player)
        self.constraint = ConstrainedTo(row * SIDE + col)
        return True

    def clone(self) -> "ExotendedGame":
        return ExotendedGame(
            boards=[SubBoard(cells=b.cells.copy()) for b in self.boards],
            current_player=self.current_player,
            constraint=self.constraint,
            ended=self.ended,
            score=dict(self.score),
            claimed_lines=dict(self.claimed_lines),
            moves_played=self.moves_played,
        )

    # ---- presentation ----

    def render(
        self,
        highlight_board: Optional[int] = None,
        highlight_boards: Optional[Iterable[int]] = None,
    ) -> str:
        """Text grid of the whole game.

        ``highlight_board`` marks the empty cells of one sub-board as
        selectable; otherwise ``highlight_boards`` marks those of every listed
        sub-board. Without either, empty cells render plain.
        """
        selectable = None
        if highlight_board is not None:
            selectable = {highlight_board}
        elif highlight_boards is not None:
            selectable = set(highlight_boards)

        lines: List[str] = []
        for meta_row in range(SIDE):
            for row in range(SIDE):
                chunks = []
                for meta_col in range(SIDE):
                    index = meta_row * SIDE + meta_col
                    small = self.boards[index]
                    chunks.append(
                        "".join(
                            _glyph(small.get(row, col), selectable, index)
                            for col in range(SIDE)
                        )
                    )
                lines.append(SEPARATOR_GLYPH.join(chunks))
            if meta_row != SIDE - 1:
                lines.append(SEPARATOR_GLYPH * 11)
        return "\n".join(lines) + "\n"

    # ---- token encoding ----

    def serialize(self, player1_id: str, player2_id: str) -> str:
        """Encode the game and both player identities as a single-line token."""
        payload = {
            "p1": player1_id,
            "p2": player2_id,
            "board": "".join(str(c) for b in self.boards for c in b.cells),
            "turn": self.current_player,
            "next": self.next_board_index,
            "score": [self.score[PLAYER_ONE], self.score[PLAYER_TWO]],
            "claimed": [
                [big, line, owner]
                for (big, line), owner in sorted(self.claimed_lines.items())
            ],
        }
        raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        encoded = base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")
        return TOKEN_PREFIX + encoded.rstrip("=")

    @classmethod
    def deserialize(cls, token: str) -> Tuple["ExotendedGame", str, str]:
        """Decode a token produced by :meth:`serialize`.

        Raises MalformedTokenError for anything that does not describe a
        reachable, self-consistent game.
        """
        payload = _decode_payload(token)
        boards = [
            SubBoard(cells=[int(ch) for ch in payload.board[i * 9 : (i + 1) * 9]])
            for i in range(BOARD_COUNT)
        ]
        moves_played = sum(1 for ch in payload.board if ch != "0")

        ones = payload.board.count("1")
        twos = payload.board.count("2")
        if ones - twos not in (0, 1):
            raise MalformedTokenError("Mark counts are not reachable by alternating play")
        expected_turn = PLAYER_ONE if ones == twos else PLAYER_TWO
        if payload.turn != expected_turn:
            raise MalformedTokenError(
                f"Turn {payload.turn} does not match the {moves_played} marks on the board"
            )

        if moves_played == 0:
            if payload.next is not None:
                raise MalformedTokenError("A fresh game cannot have a forced sub-board")
            constraint: Constraint = Unconstrained()
        else:
            if payload.next is None:
                raise MalformedTokenError("Missing forced sub-board after the opening move")
            last_mover = opponent(payload.turn)
            if not any(b.cells[payload.next] == last_mover for b in boards):
                raise MalformedTokenError(
                    f"Forced sub-board {payload.next} does not match any cell held by player {last_mover}"
                )
            constraint = ConstrainedTo(payload.next)

        claimed: Dict[LineId, Player] = {}
        for big, line, owner in payload.claimed:
            key = (big, line)
            if key in claimed:
                raise MalformedTokenError(f"Line {key} is claimed twice")
            if not boards[big].owns_line(owner, line):
                raise MalformedTokenError(
                    f"Line {key} is claimed by player {owner} but not filled by them"
                )
            claimed[key] = owner
        for big, small in enumerate(boards):
            for line in range(len(WINNING_LINES)):
                for player in (PLAYER_ONE, PLAYER_TWO):
                    if small.owns_line(player, line) and (big, line) not in claimed:
                        raise MalformedTokenError(
                            f"Completed line {(big, line)} is missing from the claims"
                        )

        score = {PLAYER_ONE: payload.score[0], PLAYER_TWO: payload.score[1]}
        for player in (PLAYER_ONE, PLAYER_TWO):
            owned = sum(1 for owner in claimed.values() if owner == player)
            if score[player] != owned:
                raise MalformedTokenError(
                    f"Score {score[player]} for player {player} does not match {owned} claimed lines"
                )

        game = cls(
            boards=boards,
            current_player=payload.turn,
            constraint=constraint,
            ended=moves_played == TOTAL_CELLS,
            score=score,
            claimed_lines=claimed,
            moves_played=moves_played,
        )
        return game, payload.p1, payload.p2

    # ---- helpers ----

    def _claim_new_lines(self, board: int) -> None:
        player = self.current_player
        small = self.boards[board]
        for line in range(len(WINNING_LINES)):
            key = (board, line)
            if key in self.claimed_lines:
                continue
            if small.owns_line(player, line):
                self.claimed_lines[key] = player
                self.score[player] += 1


def _is_index(value: object, bound: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < bound


def _glyph(cell: Cell, selectable: Optional[set], index: int) -> str:
    if cell != EMPTY:
        return GLYPHS[cell]
    if selectable is not None and index in selectable:
        return SELECTABLE_GLYPH
    return EMPTY_GLYPH


# ---------- Token payload ----------


class _TokenPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    p1: str
    p2: str
    board: str = Field(min_length=TOTAL_CELLS, max_length=TOTAL_CELLS)
    turn: int = Field(ge=PLAYER_ONE, le=PLAYER_TWO)
    next: Optional[int] = Field(default=None, ge=0, lt=BOARD_COUNT)
    score: Tuple[int, int]
    claimed: List[Tuple[int, int, int]]

    @field_validator("board")
    @classmethod
    def ensure_cell_digits(cls, value: str) -> str:
        if any(ch not in "012" for ch in value):
            raise ValueError("board may only contain the digits 0, 1 and 2")
        return value

    @field_validator("score")
    @classmethod
    def ensure_non_negative(cls, value: Tuple[int, int]) -> Tuple[int, int]:
        if min(value) < 0:
            raise ValueError("scores cannot be negative")
        return value

    @field_validator("claimed")
    @classmethod
    def ensure_line_ids(
        cls, value: List[Tuple[int, int, int]]
    ) -> List[Tuple[int, int, int]]:
        for big, line, owner in value:
            if not (
                0 <= big < BOARD_COUNT
                and 0 <= line < len(WINNING_LINES)
                and owner in (PLAYER_ONE, PLAYER_TWO)
            ):
                raise ValueError(f"invalid claimed line {[big, line, owner]}")
        return value


def _decode_payload(token: str) -> _TokenPayload:
    if not isinstance(token, str):
        raise MalformedTokenError("Token must be a string")
    token = token.strip()
    if not token.startswith(TOKEN_PREFIX):
        raise MalformedTokenError(f"Token must start with {TOKEN_PREFIX!r}")
    body = token[len(TOKEN_PREFIX) :]
    try:
        raw = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4)).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise MalformedTokenError(f"Token body could not be decoded: {exc}") from exc
    try:
        return _TokenPayload.model_validate_json(raw)
    except ValidationError as exc:
        raise MalformedTokenError(f"Token fields are invalid: {exc}") from exc
