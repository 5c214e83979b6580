"""High-level orchestrator for one rendezvous + hole punch session."""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .codec import Endpoint, format_endpoint
from .config import ClientSettings
from .event_loop import EventLoop
from .peer_table import PresenceTable
from .session import PunchStateMachine, PunchTimeoutError
from .signaling import SignalingChannel
from .state import Session, SessionResult, SessionState
from .udp_socket import RendezvousSocket, resolve_udp_target


logger = logging.getLogger(__name__)


class PunchClient:
    """Coordena registro UDP, canal de sinalização e o loop de eventos."""

    def __init__(
        self,
        settings: ClientSettings,
        clock: Callable[[], float] = time.monotonic,
        output: Callable[[str], None] = print,
    ) -> None:
        self.settings = settings
        self._clock = clock
        self._output = output
        self.presence = PresenceTable()
        self.session: Optional[Session] = None
        self.machine: Optional[PunchStateMachine] = None
        self.udp: Optional[RendezvousSocket] = None
        self.channel: Optional[SignalingChannel] = None
        self.loop: Optional[EventLoop] = None
        self._running = False

    def start(self) -> None:
        """
        Passos:
        1. Resolver o endpoint UDP do coordenador (falha é fatal).
        2. Abrir o socket UDP e enviar o registro.
        3. Conectar o canal (com retry até o deadline) e fazer o join.
        4. Reenviar o registro para o coordenador associar o endereço ao join.
        """

        if self._running:
            logger.debug("Cliente já iniciado; ignorando chamada extra.")
            return

        settings = self.settings
        started_at = self._clock()
        coordinator = resolve_udp_target(settings.coordinator_host, settings.coordinator_udp_port)
        self.session = Session(
            room=settings.room,
            local_id=settings.client_id,
            target_peer_id=settings.peer_id,
            coordinator_udp_endpoint=coordinator,
            signaling_url=settings.signaling_url,
            overall_deadline=started_at + settings.timeout_secs,
            hold_until=started_at + settings.stay_secs if settings.stay_secs > 0 else None,
            discovery_only=settings.discovery_only,
        )
        self.machine = PunchStateMachine(self.session, on_transition=self._on_transition)
        logger.info(
            "Iniciando sessão %s -> %s na sala %s (coordenador %s)",
            settings.client_id,
            settings.peer_id,
            settings.room,
            format_endpoint(coordinator),
        )

        self.udp = RendezvousSocket(coordinator, settings.room, settings.client_id, bind_host=settings.udp_bind_host)
        self._running = True
        try:
            self.udp.register()
            self.channel = SignalingChannel(
                settings.signaling_url,
                settings.topic,
                settings.client_id,
                retry_interval=settings.connect_retry_interval,
                clock=self._clock,
            )
            self.channel.connect(self.session.overall_deadline)
            self.udp.register()
        except Exception:
            self.shutdown()
            raise

        self.loop = EventLoop(settings, self.machine, self.udp, self.channel, self.presence, clock=self._clock)

    def run(self) -> SessionResult:
        """Executa a sessão até o fim.

        Raises:
            PunchTimeoutError: Se o deadline global expirar antes do sucesso.
        """
        if not self._running:
            self.start()
        result = self.loop.run()
        if not result.success:
            raise PunchTimeoutError(self.settings.client_id, self.settings.peer_id, result.reason)
        return result

    def shutdown(self) -> None:
        if not self._running:
            return
        logger.info("Encerrando cliente %s...", self.settings.client_id)
        if self.loop is not None:
            self.loop.stop()
        if self.channel is not None:
            self.channel.close()
        if self.udp is not None:
            self.udp.close()
        self._running = False

    @property
    def local_address(self) -> Optional[Endpoint]:
        return self.udp.local_address if self.udp is not None else None

    def _on_transition(self, state: SessionState, candidate: Optional[Endpoint], source: str) -> None:
        settings = self.settings
        if state is SessionState.CANDIDATE_KNOWN and candidate is not None:
            self._output(f"{settings.client_id} discovered peer {settings.peer_id} at {format_endpoint(candidate)}")
        elif state is SessionState.ESTABLISHED and candidate is not None:
            self._output(
                f"{settings.client_id} direct udp ok with {settings.peer_id} (from {format_endpoint(candidate)})"
            )
