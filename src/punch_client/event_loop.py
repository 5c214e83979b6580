"""Cooperative event loop that drives one punch session to completion.

Duas threads de pump (``udp-pump`` e ``signaling-pump``) apenas fazem a
recepção com espera limitada e enfileiram eventos; toda decisão e todo estado
ficam na thread que chama ``run``. A espera na fila é limitada pelo próximo
timer ou deadline, então o loop nunca bloqueia além do deadline global.
"""
from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from .codec import (
    EVENT_PRESENCE_STATE,
    EVENT_REPLY,
    EVENT_UDP_SEEN,
    PROBE_PING,
    Endpoint,
    SignalingFrame,
    decode_presence_snapshot,
    decode_probe_datagram,
    decode_udp_seen,
)
from .config import ClientSettings
from .keep_alive import IntervalTimer, TimerSet
from .peer_table import PresenceTable
from .session import PunchStateMachine
from .signaling import SignalingChannel, SignalingClosed
from .state import SessionResult
from .udp_socket import RendezvousSocket


logger = logging.getLogger(__name__)

TIMER_COORDINATOR_KEEPALIVE = "coordinator-keepalive"
TIMER_CHANNEL_HEARTBEAT = "channel-heartbeat"
TIMER_PUNCH = "punch"
TIMER_PEER_KEEPALIVE = "peer-keepalive"


@dataclass(frozen=True, slots=True)
class DatagramEvent:
    data: bytes
    sender: Endpoint


@dataclass(frozen=True, slots=True)
class FrameEvent:
    frame: SignalingFrame


LoopEvent = Union[DatagramEvent, FrameEvent]


class EventLoop:
    """Multiplexa timers, recepção UDP e recepção do canal até ``DONE``."""

    def __init__(
        self,
        settings: ClientSettings,
        machine: PunchStateMachine,
        udp: RendezvousSocket,
        channel: SignalingChannel,
        presence: PresenceTable,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.machine = machine
        self.udp = udp
        self.channel = channel
        self.presence = presence
        self._clock = clock
        self._inbox: "queue.Queue[LoopEvent]" = queue.Queue()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self.timers = TimerSet(
            [
                IntervalTimer(
                    TIMER_COORDINATOR_KEEPALIVE,
                    settings.coordinator_keepalive_interval,
                    self.udp.register,
                ),
                IntervalTimer(
                    TIMER_CHANNEL_HEARTBEAT,
                    settings.heartbeat_interval,
                    self.channel.send_heartbeat,
                    active=lambda: self.channel.connected,
                ),
                IntervalTimer(
                    TIMER_PUNCH,
                    settings.punch_interval,
                    self._send_ping,
                    active=lambda: self.machine.punching,
                    fire_on_activate=True,
                ),
                IntervalTimer(
                    TIMER_PEER_KEEPALIVE,
                    settings.effective_keepalive_secs,
                    self._send_ping,
                    active=lambda: self.machine.holding,
                ),
            ]
        )

    def submit(self, event: LoopEvent) -> None:
        self._inbox.put(event)

    def start_pumps(self) -> None:
        if self._threads:
            return
        self._stop_event.clear()
        for name, target in (("udp-pump", self._udp_pump), ("signaling-pump", self._signaling_pump)):
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)

    def stop(self) -> None:
        self._stop_event.set()
        for thread in self._threads:
            if thread.is_alive():
                thread.join(timeout=2)
        self._threads = []

    def run(self) -> SessionResult:
        """Executa até a máquina de estados chegar em ``DONE``."""
        self.start_pumps()
        try:
            while True:
                result = self.step()
                if result is not None:
                    return result
        finally:
            self.stop()

    def step(self) -> Optional[SessionResult]:
        """Uma iteração: deadlines, timers vencidos e no máximo um evento."""
        now = self._clock()
        self.machine.observe_presence(self.presence)
        result = self.machine.advance(now)
        if result is not None:
            return result

        self.timers.fire_due(now, should_stop=lambda: self.machine.done)

        try:
            event = self._inbox.get(timeout=self._next_wait(now))
        except queue.Empty:
            return None
        self.dispatch(event)
        return None

    def dispatch(self, event: LoopEvent) -> None:
        if isinstance(event, DatagramEvent):
            self._handle_datagram(event)
        elif isinstance(event, FrameEvent):
            self._handle_frame(event.frame)

    def _next_wait(self, now: float) -> float:
        wait = self.machine.time_until_deadline(now)
        next_due = self.timers.next_due(now)
        if next_due is not None:
            wait = min(wait, next_due - now)
        return max(wait, 0.0)

    def _handle_datagram(self, event: DatagramEvent) -> None:
        probe = decode_probe_datagram(event.data)
        if probe is None:
            return
        self.machine.handle_probe(probe, event.sender, self._clock(), respond=self.udp.send_probe)

    def _handle_frame(self, frame: SignalingFrame) -> None:
        if frame.event == EVENT_PRESENCE_STATE:
            self.presence.merge_snapshot(decode_presence_snapshot(frame.payload))
            logger.debug("presence_state aplicado: %s", self.presence.stats())
        elif frame.event == EVENT_UDP_SEEN:
            seen = decode_udp_seen(frame.payload)
            if seen is not None:
                peer_id, endpoint = seen
                if self.presence.upsert(peer_id, endpoint):
                    logger.debug("udp_seen: novo peer %s em %s", peer_id, endpoint)
                else:
                    logger.debug("udp_seen: %s atualizado para %s", peer_id, endpoint)
        elif frame.event == EVENT_REPLY:
            pass
        else:
            logger.debug("Evento ignorado: %s/%s", frame.topic, frame.event)
        self.machine.observe_presence(self.presence)

    def _send_ping(self) -> None:
        if self.machine.candidate is not None:
            self.udp.send_probe(PROBE_PING, self.machine.candidate)

    def _udp_pump(self) -> None:
        while not self._stop_event.is_set():
            received = self.udp.try_receive(self.settings.udp_poll_timeout)
            if received is None or self._stop_event.is_set():
                continue
            data, sender = received
            self._inbox.put(DatagramEvent(data, sender))

    def _signaling_pump(self) -> None:
        while not self._stop_event.is_set():
            try:
                frame = self.channel.try_receive_frame(self.settings.channel_poll_timeout)
            except SignalingClosed as exc:
                # O probe UDP continua; sinalização é best-effort após o connect.
                if not self._stop_event.is_set():
                    logger.warning("Canal de sinalização indisponível: %s", exc)
                return
            except (ValueError, RecursionError) as exc:
                logger.warning("Frame do canal descartado: %s", exc)
                continue
            if frame is not None:
                self._inbox.put(FrameEvent(frame))
