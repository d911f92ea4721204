import random

import pytest

from bingo.errors import AlreadyClaimedError, ConflictError, InvalidStateError, NotFoundError, ValidationError
from bingo.game.board import BINGO_75, BINGO_90
from bingo.game.session import PrizeKind, Session, SessionState


# ---- Helpers --------------------------------------------------

def _session(config=BINGO_90, seed=1):
    return Session("ABCD1234", config, rng=random.Random(seed))


def _row_numbers(player, row=0):
    return [n for n in player.card[row] if n]


def _draw_until_called(session, numbers):
    """Draw until every number in `numbers` has been called."""
    while not all(session.is_called(n) for n in numbers):
        assert session.draw_next() is not None


def _complete_row(session, player_id, row=0):
    player = session.get_player(player_id)
    numbers = _row_numbers(player, row)
    _draw_until_called(session, numbers)
    for number in numbers:
        assert session.mark(player_id, number)


def _complete_card(session, player_id):
    player = session.get_player(player_id)
    numbers = [n for row in player.card for n in row if n]
    _draw_until_called(session, numbers)
    for number in numbers:
        session.mark(player_id, number)


# ---- State machine --------------------------------------------

def test_new_session_is_waiting_with_full_pool():
    session = _session()
    assert session.state == SessionState.WAITING
    assert sorted(session.number_pool) == list(range(1, 91))
    assert session.called_numbers == []


def test_start_only_from_waiting():
    session = _session()
    session.start()
    assert session.state == SessionState.PLAYING
    assert session.started_at is not None
    with pytest.raises(InvalidStateError):
        session.start()


def test_draw_before_start_is_invalid():
    with pytest.raises(InvalidStateError):
        _session().draw_next()


def test_draws_are_unique_and_pool_exhaustion_finishes():
    """Every number is drawn once; the draw after the last number finishes the session."""
    session = _session(BINGO_75)
    session.start()
    drawn = [session.draw_next() for _ in range(75)]

    assert sorted(drawn) == list(range(1, 76))
    assert session.called_numbers == drawn
    assert session.current_number == drawn[-1]
    assert session.number_pool == []
    assert session.state == SessionState.PLAYING

    assert session.draw_next() is None
    assert session.state == SessionState.FINISHED
    assert session.finish_reason == "numbers_exhausted"
    # Subsequent draws keep returning nothing
    assert session.draw_next() is None
    assert len(session.called_numbers) == 75


def test_pool_and_called_numbers_never_overlap():
    session = _session()
    session.start()
    for _ in range(40):
        session.draw_next()
        assert not set(session.number_pool) & set(session.called_numbers)
        assert len(session.called_numbers) + len(session.number_pool) == 90


def test_finish_is_forward_only():
    session = _session()
    assert session.finish("ended_by_caller")
    assert not session.finish("again")
    assert session.finish_reason == "ended_by_caller"
    with pytest.raises(InvalidStateError):
        session.start()


# ---- Players and marks ----------------------------------------

def test_add_player_issues_card_and_token():
    session = _session()
    ana = session.add_player("sock-1", "  Ana  ")
    assert ana.name == "Ana"
    assert ana.reconnect_token
    assert len(ana.card) == 3
    assert session.connected_count == 1


def test_blank_name_gets_default():
    session = _session()
    session.add_player("sock-1", "Ana")
    assert session.add_player("sock-2", "   ").name == "Player 2"


def test_add_player_rejects_bad_input():
    session = _session()
    session.add_player("sock-1", "Ana")
    with pytest.raises(ConflictError):
        session.add_player("sock-1", "Ana again")
    with pytest.raises(ValidationError):
        session.add_player("sock-2", "x" * 41)
    session.finish("ended_by_caller")
    with pytest.raises(InvalidStateError):
        session.add_player("sock-3", "Late")


def test_mark_requires_called_number_and_is_idempotent():
    session = _session()
    player = session.add_player("sock-1", "Ana")
    session.start()
    number = session.draw_next()
    uncalled = session.number_pool[0]

    assert not session.mark("sock-1", uncalled)
    assert session.mark("sock-1", number)
    assert session.mark("sock-1", number)
    assert player.marked_numbers == {number}


def test_mark_unknown_player():
    session = _session()
    session.start()
    with pytest.raises(NotFoundError):
        session.mark("ghost", 1)


def test_unmark_toggles_until_player_wins():
    session = _session()
    session.add_player("sock-1", "Ana")
    session.start()
    number = session.draw_next()
    session.mark("sock-1", number)
    assert session.unmark("sock-1", number)
    assert not session.unmark("sock-1", number)

    _complete_row(session, "sock-1")
    assert session.claim_line("sock-1") is not None
    marked = next(iter(session.get_player("sock-1").marked_numbers))
    with pytest.raises(InvalidStateError):
        session.unmark("sock-1", marked)


# ---- Claims ---------------------------------------------------

def test_claim_requires_playing_state():
    session = _session()
    session.add_player("sock-1", "Ana")
    with pytest.raises(InvalidStateError):
        session.claim_line("sock-1")


def test_invalid_line_claim_returns_none():
    session = _session()
    session.add_player("sock-1", "Ana")
    session.start()
    assert session.claim_line("sock-1") is None
    assert session.winners[PrizeKind.LINE] is None


def test_marks_of_uncalled_numbers_do_not_count():
    """A mark set that sneaks in an uncalled number cannot win."""
    session = _session()
    player = session.add_player("sock-1", "Ana")
    session.start()
    player.marked_numbers.update(_row_numbers(player))
    assert not session.check_line("sock-1")


def test_line_claim_awards_slot_once():
    session = _session()
    session.add_player("sock-1", "Ana")
    session.add_player("sock-2", "Bob")
    session.start()
    _complete_row(session, "sock-1")

    winner = session.claim_line("sock-1")
    assert winner.player_name == "Ana"
    assert winner.prize == PrizeKind.LINE
    assert session.winners[PrizeKind.LINE] == winner

    # Occupied slot fails regardless of validity
    with pytest.raises(AlreadyClaimedError):
        session.claim_line("sock-1")
    with pytest.raises(AlreadyClaimedError):
        session.claim_line("sock-2")
    assert session.winners[PrizeKind.LINE] == winner


def test_bingo_claim_finishes_session():
    session = _session()
    session.add_player("sock-1", "Ana")
    session.start()
    _complete_card(session, "sock-1")

    winner = session.claim_bingo("sock-1")
    assert winner.prize == PrizeKind.FULL_CARD
    assert session.state == SessionState.FINISHED
    assert session.finish_reason == "bingo"
    assert session.draw_next() is None


# ---- Views ----------------------------------------------------

def test_summary_and_caller_state():
    session = _session()
    session.add_player("sock-1", "Ana")
    session.start()
    number = session.draw_next()

    summary = session.summary()
    assert summary["id"] == "ABCD1234"
    assert summary["state"] == "playing"
    assert summary["config"] == {"variant": "bingo90", "maxNumbers": 90}
    assert summary["calledNumbers"] == [number]
    assert summary["remainingNumbers"] == 89
    assert summary["winners"] == {"line": None, "bingo": None}

    state = session.caller_state()
    assert state["players"] == [{"id": "sock-1", "name": "Ana"}]
    assert state["autoMode"] == {"enabled": False, "interval": None}


def test_snapshot_round_trip_keeps_numbers_and_rosters():
    session = _session()
    ana = session.add_player("sock-1", "Ana")
    bob = session.add_player("sock-2", "Bob")
    session.start()
    for _ in range(10):
        session.draw_next()
    session.disconnect_player("sock-2")

    restored = Session.from_snapshot(session.snapshot(), BINGO_90, players=[ana, bob], winners=[])

    assert restored.state == SessionState.PLAYING
    assert restored.called_numbers == session.called_numbers
    assert restored.number_pool == session.number_pool
    assert list(restored.players) == ["sock-1"]
    assert list(restored.disconnected_players) == ["sock-2"]
    # Drawing continues where it left off
    assert restored.draw_next() == session.number_pool[-1]
