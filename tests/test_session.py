"""Tests for the session state machine."""

import pytest

from punch_client.codec import PROBE_PONG, ProbeMessage
from punch_client.session import IllegalTransition, ProbeReply, PunchStateMachine, PunchTimeoutError
from punch_client.state import SessionState


PEER = ("10.0.0.9", 4444)
OTHER = ("10.0.0.10", 5555)


def ping(client_id="bob", room="demo"):
    return ProbeMessage("vpn-ping", room, client_id)


def pong(client_id="bob", room="demo"):
    return ProbeMessage("vpn-pong", room, client_id)


class TestResolution:
    def test_presence_pins_candidate(self, machine, presence):
        presence.upsert("bob", "10.0.0.9:4444")
        assert machine.observe_presence(presence) is True
        assert machine.state is SessionState.CANDIDATE_KNOWN
        assert machine.candidate == PEER
        assert machine.punching

    def test_presence_without_endpoint_keeps_unresolved(self, machine, presence):
        presence.upsert("bob", None)
        presence.upsert("carol", "1.1.1.1:1")
        assert machine.observe_presence(presence) is False
        assert machine.state is SessionState.UNRESOLVED

    def test_malformed_endpoint_is_dropped(self, machine, presence):
        presence.upsert("bob", "garbage")
        assert machine.observe_presence(presence) is False
        assert machine.candidate is None

    def test_first_pin_wins(self, machine, presence):
        presence.upsert("bob", "10.0.0.9:4444")
        machine.observe_presence(presence)
        presence.upsert("bob", "10.0.0.10:5555")
        assert machine.observe_presence(presence) is False
        assert machine.candidate == PEER

    def test_probe_pins_candidate_before_presence(self, machine, presence, clock):
        machine.handle_probe(pong(), OTHER, clock())
        presence.upsert("bob", "10.0.0.9:4444")
        machine.observe_presence(presence)
        assert machine.candidate == OTHER


class TestProbes:
    def test_ping_from_unresolved_peer_establishes_in_one_step(self, machine, clock):
        reply = machine.handle_probe(ping(), PEER, clock())
        assert reply == ProbeReply(PROBE_PONG, PEER)
        assert machine.state is SessionState.ESTABLISHED
        assert machine.candidate == PEER
        assert machine.established_at == clock()

    def test_pong_establishes_without_reply(self, machine, clock):
        assert machine.handle_probe(pong(), PEER, clock()) is None
        assert machine.state is SessionState.ESTABLISHED

    @pytest.mark.parametrize(
        "probe",
        [
            ping(client_id="mallory"),
            ping(room="other"),
            ping(client_id="alice"),
            ProbeMessage("hello", "demo", "bob"),
        ],
    )
    def test_foreign_probes_are_ignored(self, machine, clock, probe):
        assert machine.handle_probe(probe, PEER, clock()) is None
        assert machine.state is SessionState.UNRESOLVED
        assert machine.candidate is None

    def test_probe_from_other_address_does_not_establish(self, machine, presence, clock):
        presence.upsert("bob", "10.0.0.9:4444")
        machine.observe_presence(presence)
        reply = machine.handle_probe(ping(), OTHER, clock())
        assert reply == ProbeReply(PROBE_PONG, OTHER)
        assert machine.state is SessionState.CANDIDATE_KNOWN
        assert machine.candidate == PEER

    def test_probe_from_candidate_establishes(self, machine, presence, clock):
        presence.upsert("bob", "10.0.0.9:4444")
        machine.observe_presence(presence)
        machine.handle_probe(pong(), PEER, clock())
        assert machine.state is SessionState.ESTABLISHED

    def test_duplicates_after_established(self, session_factory, clock):
        machine = PunchStateMachine(session_factory(stay_secs=10))
        machine.handle_probe(ping(), PEER, clock())
        assert machine.handle_probe(pong(), PEER, clock()) is None
        assert machine.handle_probe(ping(), PEER, clock()) == ProbeReply(PROBE_PONG, PEER)
        assert machine.state is SessionState.ESTABLISHED

    def test_pong_is_sent_before_established_is_reported(self, session):
        events = []
        machine = PunchStateMachine(session, on_transition=lambda state, endpoint, source: events.append(state))
        machine.handle_probe(ping(), PEER, 1000.0, respond=lambda kind, target: events.append((kind, target)))
        assert events == [
            SessionState.CANDIDATE_KNOWN,
            (PROBE_PONG, PEER),
            SessionState.ESTABLISHED,
        ]

    def test_pong_is_not_sent_through_respond(self, machine, clock):
        sent = []
        machine.handle_probe(pong(), PEER, clock(), respond=lambda kind, target: sent.append(kind))
        assert sent == []
        assert machine.state is SessionState.ESTABLISHED


class TestDeadlines:
    def test_established_without_hold_finishes(self, machine, clock):
        machine.handle_probe(ping(), PEER, clock())
        result = machine.advance(clock())
        assert result.success
        assert machine.done
        assert result.candidate == PEER

    def test_hold_keeps_session_open(self, session_factory, clock):
        machine = PunchStateMachine(session_factory(stay_secs=5))
        machine.handle_probe(ping(), PEER, clock())
        assert machine.holding
        clock.advance(4)
        assert machine.advance(clock()) is None
        clock.advance(1)
        result = machine.advance(clock())
        assert result.success
        assert result.reason == "hold period elapsed"

    def test_timeout_names_both_ids(self, machine, clock):
        clock.advance(14.5)
        assert machine.advance(clock()) is None
        clock.advance(0.5)
        result = machine.advance(clock())
        assert not result.success
        assert "alice" in result.reason and "bob" in result.reason

    def test_timeout_from_candidate_known(self, machine, presence, clock):
        presence.upsert("bob", "10.0.0.9:4444")
        machine.observe_presence(presence)
        clock.advance(15)
        assert machine.advance(clock()).success is False

    def test_probes_after_done_are_ignored(self, machine, clock):
        clock.advance(20)
        machine.advance(clock())
        assert machine.handle_probe(ping(), PEER, clock()) is None
        assert machine.candidate is None

    def test_time_until_deadline(self, session_factory, clock):
        machine = PunchStateMachine(session_factory(stay_secs=3))
        assert machine.time_until_deadline(clock()) == pytest.approx(15)
        machine.handle_probe(pong(), PEER, clock())
        assert machine.time_until_deadline(clock()) == pytest.approx(3)


def test_discovery_only_completes_on_candidate(session_factory, presence, clock):
    machine = PunchStateMachine(session_factory(discovery_only=True))
    presence.upsert("bob", "10.0.0.9:4444")
    machine.observe_presence(presence)
    assert machine.done
    assert machine.result.success
    assert machine.result.candidate == PEER


def test_transition_callback(session, presence, clock):
    seen = []
    machine = PunchStateMachine(session, on_transition=lambda *args: seen.append(args))
    presence.upsert("bob", "10.0.0.9:4444")
    machine.observe_presence(presence)
    machine.handle_probe(pong(), PEER, clock())
    assert seen == [
        (SessionState.CANDIDATE_KNOWN, PEER, "presence"),
        (SessionState.ESTABLISHED, PEER, "probe"),
    ]


def test_state_never_regresses(machine, clock):
    machine.handle_probe(ping(), PEER, clock())
    with pytest.raises(IllegalTransition):
        machine._set_state(SessionState.CANDIDATE_KNOWN)


def test_timeout_error_message():
    exc = PunchTimeoutError("alice", "bob")
    assert str(exc) == "alice timed out waiting for direct udp with peer bob"
    assert exc.client_id == "alice" and exc.peer_id == "bob"
