"""Roster unit tests: join validation, duplicate identities, reconnection."""
import sys
import os
import random

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from errors import DuplicateIdentityError, ValidationError
from models import AnswerSubmission, PlayerStatus
from roster import Roster


def snapshot(roster):
    return (
        {r: p.model_dump() for r, p in roster.players.items()},
        dict(roster.connections),
    )


class TestJoinValidation:
    def test_valid_join(self):
        roster = Roster()
        player, rebound = roster.join("c1", "  Asha  ", "cs101")
        assert not rebound
        assert player.name == "Asha"
        assert player.roll_number == "CS101"
        assert player.status == PlayerStatus.ACTIVE
        assert roster.connections == {"c1": "CS101"}

    @pytest.mark.parametrize("name,roll", [
        ("", "CS101"),
        ("   ", "CS101"),
        (None, "CS101"),
        ("Asha", ""),
        ("Asha", "CS-101"),
        ("Asha", "CS 101"),
        ("Asha", None),
        ("A" * 200, "CS101"),
    ])
    def test_malformed_join_rejected_without_mutation(self, name, roll):
        roster = Roster()
        roster.join("c0", "Existing", "X1")
        before = snapshot(roster)
        with pytest.raises(ValidationError):
            roster.join("c1", name, roll)
        assert snapshot(roster) == before

    def test_error_message_is_readable(self):
        with pytest.raises(ValidationError) as exc:
            Roster().join("c1", "", "CS101")
        assert exc.value.message == "Full Name is required"

    def test_html_stripped_from_name(self):
        player, _ = Roster().join("c1", "<b>Asha</b>", "CS101")
        assert player.name == "Asha"


class TestDuplicateIdentity:
    def test_live_duplicate_rejected(self):
        roster = Roster()
        roster.join("c1", "Asha", "CS101")
        before = snapshot(roster)
        with pytest.raises(DuplicateIdentityError):
            roster.join("c2", "Impostor", "cs101")
        assert snapshot(roster) == before

    def test_duplicate_is_a_validation_error(self):
        assert issubclass(DuplicateIdentityError, ValidationError)

    def test_connection_cannot_take_second_identity(self):
        roster = Roster()
        roster.join("c1", "Asha", "CS101")
        with pytest.raises(ValidationError):
            roster.join("c1", "Asha", "CS102")
        assert list(roster.players) == ["CS101"]

    def test_same_connection_rejoin_is_harmless(self):
        roster = Roster()
        first, _ = roster.join("c1", "Asha", "CS101")
        again, rebound = roster.join("c1", "Asha", "CS101")
        assert again is first
        assert rebound
        assert roster.connections == {"c1": "CS101"}

    def test_live_roll_numbers_unique_under_random_sequences(self):
        rng = random.Random(1234)
        rolls = ["A1", "A2", "A3", "B1"]
        for _ in range(20):
            roster = Roster()
            for step in range(200):
                cid = f"c{rng.randint(0, 9)}"
                if rng.random() < 0.3:
                    roster.disconnect(cid)
                else:
                    try:
                        roster.join(cid, "Someone", rng.choice(rolls))
                    except ValidationError:
                        pass
                live = [p.roll_number for p in roster.live_players()]
                assert len(live) == len(set(live)), f"duplicate live identity at step {step}"
                for cid_, roll in roster.connections.items():
                    assert roster.players[roll].connection_id == cid_


class TestReconnection:
    def test_disconnect_preserves_record(self):
        roster = Roster()
        roster.join("c1", "Asha", "CS101")
        player = roster.disconnect("c1")
        assert player.connection_id is None
        assert "CS101" in roster.players
        assert "c1" not in roster.connections
        assert roster.live_players() == []

    def test_disconnect_unknown_connection(self):
        assert Roster().disconnect("nope") is None

    def test_rebind_restores_state(self):
        roster = Roster()
        player, _ = roster.join("c1", "Asha", "CS101")
        player.add_points(1, 3)
        player.add_points(2, 1)
        player.demote(PlayerStatus.SPECTATOR)
        player.answers["2_0"] = AnswerSubmission(
            question_key="2_0", question_id="q", payload=1,
            submitted_at=1.0, sequence=1, time_remaining=10,
        )
        before = player.model_dump(exclude={"connection_id"})

        roster.disconnect("c1")
        again, rebound = roster.join("c2", "Asha", "CS101")

        assert rebound
        assert again.model_dump(exclude={"connection_id"}) == before
        assert again.score == 4
        assert again.round_scores[1] == 3
        assert again.status == PlayerStatus.SPECTATOR
        assert "2_0" in again.answers
        assert roster.connections == {"c2": "CS101"}

    def test_old_connection_binding_discarded(self):
        roster = Roster()
        roster.join("c1", "Asha", "CS101")
        roster.disconnect("c1")
        roster.join("c2", "Asha", "CS101")
        assert roster.by_connection("c1") is None
        assert roster.by_connection("c2").roll_number == "CS101"
        # A late disconnect of the old handle must not unbind the new one
        roster.disconnect("c1")
        assert roster.get("CS101").connection_id == "c2"


class TestLateJoiners:
    def test_new_identity_after_start_is_spectator(self):
        player, _ = Roster().join("c1", "Asha", "CS101", late_joiner=True)
        assert player.status == PlayerStatus.SPECTATOR

    def test_returning_player_keeps_status(self):
        roster = Roster()
        roster.join("c1", "Asha", "CS101")
        roster.disconnect("c1")
        player, _ = roster.join("c2", "Asha", "CS101", late_joiner=True)
        assert player.status == PlayerStatus.ACTIVE


class TestStatusTransitions:
    def test_demote_only_from_active(self):
        player, _ = Roster().join("c1", "Asha", "CS101")
        assert player.demote(PlayerStatus.SPECTATOR)
        assert not player.demote(PlayerStatus.ELIMINATED)
        assert not player.demote(PlayerStatus.ACTIVE)
        assert player.status == PlayerStatus.SPECTATOR


class TestResetForNewGame:
    def test_drops_disconnected_and_zeroes_live(self):
        roster = Roster()
        live, _ = roster.join("c1", "Asha", "CS101")
        gone, _ = roster.join("c2", "Ravi", "CS102")
        live.add_points(1, 5)
        live.demote(PlayerStatus.SPECTATOR)
        roster.disconnect("c2")
        roster.reset_for_new_game()
        assert list(roster.players) == ["CS101"]
        assert live.score == 0
        assert live.round_scores == {1: 0, 2: 0, 3: 0}
        assert live.status == PlayerStatus.ACTIVE
        assert live.answers == {}
