"""Unit tests for eXOtended game logic."""

import base64
import json

import pytest

from exotended.game import (
    PLAYER_ONE,
    PLAYER_TWO,
    ConstrainedTo,
    ExotendedGame,
    MalformedTokenError,
    Move,
    Outcome,
    Unconstrained,
)


# Ends with player one completing row 0 of sub-board 0.
ROW_CLAIM_SEQUENCE = [
    (4, 1, 1),
    (4, 0, 0),
    (0, 0, 0),
    (0, 1, 0),
    (3, 0, 2),
    (2, 0, 0),
    (0, 0, 1),
    (1, 0, 0),
    (0, 0, 2),
]


def play_all(game, moves):
    for move in moves:
        assert game.play_move(*move), move
    return game


def play_to_end(game):
    while not game.ended:
        assert_invariants(game)
        assert game.play_move(*game.available_moves()[0])
    return game


def assert_invariants(game):
    filled = sum(1 for b in game.boards for c in b.cells if c != 0)
    assert game.moves_played == filled
    assert game.score[PLAYER_ONE] + game.score[PLAYER_TWO] == len(game.claimed_lines)
    for player in (PLAYER_ONE, PLAYER_TWO):
        owned = [k for k, v in game.claimed_lines.items() if v == player]
        assert game.score[player] == len(owned)


def retoken(token, **changes):
    body = token[len("exo1.") :]
    data = json.loads(base64.urlsafe_b64decode(body + "=" * (-len(body) % 4)))
    data.update(changes)
    raw = json.dumps(data).encode("utf-8")
    return "exo1." + base64.urlsafe_b64encode(raw).decode("ascii")


def test_initial_state_allows_any_board():
    game = ExotendedGame()
    assert game.current_player == PLAYER_ONE
    assert game.constraint == Unconstrained()
    assert game.next_board_index is None
    assert game.valid_boards() == list(range(9))
    assert len(game.available_moves()) == 9 * 9
    assert game.outcome() is Outcome.UNDECIDED


def test_centre_opening_sends_opponent_to_centre():
    game = ExotendedGame()
    assert game.play_move(4, 1, 1)

    assert game.current_player == PLAYER_TWO
    assert game.constraint == ConstrainedTo(4)
    assert game.next_board_index == 4
    assert game.score == {PLAYER_ONE: 0, PLAYER_TWO: 0}
    assert game.valid_boards() == [4]
    assert all(move.board == 4 for move in game.available_moves())


def test_completed_row_is_claimed_once():
    game = play_all(ExotendedGame(), ROW_CLAIM_SEQUENCE)

    assert game.score == {PLAYER_ONE: 1, PLAYER_TWO: 0}
    assert game.claimed_lines == {(0, 0): PLAYER_ONE}
    assert_invariants(game)


def test_claimed_line_is_not_scored_again():
    game = play_all(ExotendedGame(), ROW_CLAIM_SEQUENCE)
    assert game.play_move(2, 0, 0) is False  # occupied
    assert game.play_move(2, 1, 1)
    assert game.play_move(4, 2, 2)
    assert game.play_move(8, 0, 0)
    # Player one is back in board 0 with row 0 already scored.
    assert game.play_move(0, 2, 2)
    assert game.score == {PLAYER_ONE: 1, PLAYER_TWO: 0}
    assert game.claimed_lines == {(0, 0): PLAYER_ONE}


def test_move_into_wrong_board_is_rejected_without_change():
    game = ExotendedGame()
    game.play_move(4, 1, 1)
    before = game.clone()

    assert game.play_move(0, 0, 0) is False
    assert game == before


def test_occupied_cell_is_rejected_without_change():
    game = ExotendedGame()
    game.play_move(4, 1, 1)
    before = game.clone()

    assert game.play_move(4, 1, 1) is False
    assert game == before


@pytest.mark.parametrize(
    "move", [(9, 0, 0), (-1, 0, 0), (0, 3, 0), (0, 0, -1), (0, 0, 3), (0, "1", 0)]
)
def test_out_of_range_indices_are_rejected(move):
    game = ExotendedGame()
    assert game.play_move(*move) is False
    assert game == ExotendedGame()


def test_full_forced_board_opens_every_other_board():
    game = ExotendedGame()
    game.boards[4].cells = [1, 2, 1, 2, 1, 2, 2, 1, 2]
    game.constraint = ConstrainedTo(4)

    assert game.valid_boards() == [0, 1, 2, 3, 5, 6, 7, 8]
    assert game.play_move(0, 0, 0)
    assert game.next_board_index == 0


def test_out_of_range_board_counts_as_full():
    game = ExotendedGame()
    assert game.is_board_full(-1)
    assert game.is_board_full(9)
    assert not game.is_board_full(0)


def test_game_ends_exactly_at_81_moves():
    game = ExotendedGame()
    while not game.ended:
        assert game.moves_played < 81
        assert_invariants(game)
        assert game.play_move(*game.available_moves()[0])

    assert game.moves_played == 81
    assert_invariants(game)
    assert game.valid_boards() == []
    assert game.available_moves() == []
    assert game.outcome() is not Outcome.UNDECIDED


def test_no_moves_after_game_end():
    game = play_to_end(ExotendedGame())
    before = game.clone()

    for big in range(9):
        assert game.play_move(big, 0, 0) is False
    assert game == before


@pytest.mark.parametrize(
    "one, two, expected",
    [
        (3, 1, Outcome.PLAYER_ONE_WINS),
        (2, 5, Outcome.PLAYER_TWO_WINS),
        (4, 4, Outcome.TIE),
    ],
)
def test_outcome_compares_scores(one, two, expected):
    game = ExotendedGame()
    game.score = {PLAYER_ONE: one, PLAYER_TWO: two}
    assert game.outcome() is Outcome.UNDECIDED
    game.ended = True
    assert game.outcome() is expected


def test_clone_is_independent():
    game = play_all(ExotendedGame(), ROW_CLAIM_SEQUENCE[:4])
    copy = game.clone()
    copy.play_move(*copy.available_moves()[0])

    assert copy != game
    assert game.moves_played == 4
    assert copy.moves_played == 5


def test_render_plain_board():
    text = ExotendedGame().render()
    rows = text.splitlines()

    assert len(rows) == 11
    assert rows[3] == "⬛" * 11
    assert rows[0] == "⬜⬜⬜⬛⬜⬜⬜⬛⬜⬜⬜"
    assert "🟨" not in text


def test_render_highlight_modes():
    game = ExotendedGame()
    game.play_move(4, 1, 1)

    single = game.render(highlight_board=4)
    assert single.count("🟨") == 8
    assert single.splitlines()[5] == "⬜⬜⬜⬛🟨🟦🟨⬛⬜⬜⬜"

    several = game.render(highlight_boards=[0, 1])
    assert several.count("🟨") == 18
    assert several.count("🟦") == 1

    assert game.render().count("🟨") == 0


def test_serialize_round_trip_mid_game():
    game = play_all(ExotendedGame(), ROW_CLAIM_SEQUENCE)
    token = game.serialize("alice", "bob")

    assert token.startswith("exo1.")
    assert not any(ch.isspace() for ch in token)

    restored, p1, p2 = ExotendedGame.deserialize(token)
    assert (p1, p2) == ("alice", "bob")
    assert restored == game


def test_serialize_round_trip_fresh_and_finished():
    fresh = ExotendedGame()
    restored, _, _ = ExotendedGame.deserialize(fresh.serialize("1", "2"))
    assert restored == fresh
    assert restored.constraint == Unconstrained()

    finished = play_to_end(ExotendedGame())
    restored, _, _ = ExotendedGame.deserialize(finished.serialize("1", "2"))
    assert restored == finished
    assert restored.ended


@pytest.mark.parametrize(
    "token",
    ["", "garbage", "exo1.", "exo1.!!!!", "exo1.bm90IGpzb24"],
)
def test_deserialize_rejects_garbage(token):
    with pytest.raises(MalformedTokenError):
        ExotendedGame.deserialize(token)


@pytest.mark.parametrize(
    "changes",
    [
        {"score": [2, 0]},
        {"turn": 1},
        {"next": None},
        {"next": 9},
        {"next": 5},
        {"claimed": []},
        {"claimed": [[0, 0, 1], [0, 0, 1]]},
        {"claimed": [[0, 0, 2]]},
        {"board": "x" * 81},
        {"board": "0" * 80},
        {"p1": 5},
        {"extra": True},
    ],
)
def test_deserialize_rejects_inconsistent_tokens(changes):
    game = play_all(ExotendedGame(), ROW_CLAIM_SEQUENCE)
    token = retoken(game.serialize("alice", "bob"), **changes)

    with pytest.raises(MalformedTokenError):
        ExotendedGame.deserialize(token)


def test_available_moves_order():
    game = ExotendedGame()
    game.play_move(0, 0, 0)
    moves = game.available_moves()

    assert moves[0] == Move(0, 0, 1)
    assert moves == sorted(moves)
