"""Shared fixtures and fakes for the punch client tests."""

import threading
import time
from collections import deque

import pytest

from punch_client.codec import SignalingFrame
from punch_client.config import ClientSettings
from punch_client.peer_table import PresenceTable
from punch_client.session import PunchStateMachine
from punch_client.signaling import SignalingClosed
from punch_client.state import Session


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeUdp:
    """Registra envios em vez de tocar a rede."""

    def __init__(self, inbound=None):
        self.sent = []
        self.registrations = 0
        self._inbound = deque(inbound or [])
        self._lock = threading.Lock()

    def register(self):
        self.registrations += 1
        return True

    def send_probe(self, kind, target):
        self.sent.append((kind, target))
        return True

    def try_receive(self, max_wait):
        with self._lock:
            if self._inbound:
                return self._inbound.popleft()
        time.sleep(min(max_wait, 0.01))
        return None

    def feed(self, data, sender):
        with self._lock:
            self._inbound.append((data, sender))


class FakeChannel:
    def __init__(self, frames=None, connected=True):
        self.heartbeats = 0
        self.connected = connected
        self._frames = deque(frames or [])
        self._lock = threading.Lock()

    def send_heartbeat(self):
        self.heartbeats += 1

    def try_receive_frame(self, max_wait):
        if not self.connected:
            raise SignalingClosed("closed")
        with self._lock:
            if self._frames:
                return self._frames.popleft()
        time.sleep(min(max_wait, 0.01))
        return None

    def feed(self, event, payload, topic="rendezvous:demo"):
        with self._lock:
            self._frames.append(SignalingFrame(topic=topic, event=event, payload=payload))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return ClientSettings(client_id="alice", peer_id="bob", room="demo")


def make_session(clock, stay_secs=0, timeout_secs=15, discovery_only=False):
    now = clock()
    return Session(
        room="demo",
        local_id="alice",
        target_peer_id="bob",
        coordinator_udp_endpoint=("127.0.0.1", 3478),
        signaling_url="ws://coordinator:4000/socket/websocket?vsn=2.0.0",
        overall_deadline=now + timeout_secs,
        hold_until=now + stay_secs if stay_secs > 0 else None,
        discovery_only=discovery_only,
    )


@pytest.fixture
def session_factory(clock):
    def factory(**kwargs):
        return make_session(clock, **kwargs)

    return factory


@pytest.fixture
def session(clock):
    return make_session(clock)


@pytest.fixture
def machine(session):
    return PunchStateMachine(session)


@pytest.fixture
def presence():
    return PresenceTable()
