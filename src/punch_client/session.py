"""Session state machine: candidate resolution and hole punch confirmation.

Nenhuma I/O acontece aqui. ``handle_probe`` devolve a resposta que o loop deve
enviar (um ``vpn-pong``) e ``advance`` aplica os deadlines. Transições:

    UNRESOLVED -> CANDIDATE_KNOWN -> ESTABLISHED -> DONE

O candidato é fixado uma única vez (o primeiro a chegar vence), seja pela
tabela de presença, seja pelo endereço de origem do primeiro probe do peer.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .codec import PROBE_KINDS, PROBE_PONG, Endpoint, ProbeMessage, format_endpoint, parse_endpoint
from .peer_table import PresenceTable
from .state import Session, SessionResult, SessionState


logger = logging.getLogger(__name__)

SOURCE_PRESENCE = "presence"
SOURCE_PROBE = "probe"


class PunchTimeoutError(RuntimeError):
    """Deadline global expirou sem conectividade direta com o peer."""

    def __init__(self, client_id: str, peer_id: str, message: Optional[str] = None) -> None:
        self.client_id = client_id
        self.peer_id = peer_id
        super().__init__(message or timeout_message(client_id, peer_id))


class IllegalTransition(RuntimeError):
    """Tentativa de regredir o estado da sessão."""


def timeout_message(client_id: str, peer_id: str, discovery_only: bool = False) -> str:
    if discovery_only:
        return f"{client_id} timed out waiting for peer {peer_id} udp endpoint"
    return f"{client_id} timed out waiting for direct udp with peer {peer_id}"


@dataclass(frozen=True, slots=True)
class ProbeReply:
    kind: str
    target: Endpoint


# callback(novo_estado, candidato, origem)
TransitionCallback = Callable[[SessionState, Optional[Endpoint], str], None]
ProbeSender = Callable[[str, Endpoint], object]


class PunchStateMachine:
    """Estado explícito da sessão com funções de transição testáveis."""

    def __init__(self, session: Session, on_transition: Optional[TransitionCallback] = None) -> None:
        self.session = session
        self._on_transition = on_transition
        self.candidate: Optional[Endpoint] = None
        self.established_at: Optional[float] = None
        self.result: Optional[SessionResult] = None

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def done(self) -> bool:
        return self.session.state is SessionState.DONE

    @property
    def punching(self) -> bool:
        """Timer de punch ativo: candidato conhecido e ainda não estabelecido."""
        return self.session.state is SessionState.CANDIDATE_KNOWN

    @property
    def holding(self) -> bool:
        """Keepalive pós-estabelecimento ativo (somente com período de hold)."""
        return self.session.state is SessionState.ESTABLISHED and self.session.hold_until is not None

    def observe_presence(self, table: PresenceTable) -> bool:
        """Fixa o candidato se a tabela já conhece o endpoint do peer."""
        if self.session.state is not SessionState.UNRESOLVED:
            return False
        endpoint_text = table.get(self.session.target_peer_id)
        if endpoint_text is None:
            return False
        endpoint = parse_endpoint(endpoint_text)
        if endpoint is None:
            logger.debug("Endpoint inválido para %s descartado: %r", self.session.target_peer_id, endpoint_text)
            return False
        self._pin(endpoint, SOURCE_PRESENCE)
        return True

    def handle_probe(
        self,
        probe: ProbeMessage,
        sender: Endpoint,
        now: float,
        respond: Optional[ProbeSender] = None,
    ) -> Optional[ProbeReply]:
        """Processa um probe recebido de ``sender``.

        Com ``respond``, o ``vpn-pong`` sai antes de a transição para
        ``ESTABLISHED`` ser concluída.

        Returns:
            O ``vpn-pong`` devido (já enviado se ``respond`` foi passado), ou ``None``.
        """
        if self.done:
            return None
        if (
            probe.room != self.session.room
            or probe.client_id != self.session.target_peer_id
            or probe.kind not in PROBE_KINDS
        ):
            return None

        if self.candidate is None:
            # NAT simétrico: o endereço que realmente funciona pode diferir do
            # observado pelo coordenador.
            self._pin(sender, SOURCE_PROBE)
            if self.done:
                return None

        reply = ProbeReply(PROBE_PONG, sender) if probe.is_ping else None
        if reply is not None and respond is not None:
            respond(reply.kind, reply.target)

        if sender != self.candidate:
            logger.debug(
                "Probe de %s ignorado para transição; candidato fixado em %s",
                format_endpoint(sender),
                format_endpoint(self.candidate),
            )
            return reply

        if self.session.state is SessionState.CANDIDATE_KNOWN:
            self.established_at = now
            self._set_state(SessionState.ESTABLISHED)
            logger.info(
                "%s conectividade UDP direta com %s (de %s)",
                self.session.local_id,
                self.session.target_peer_id,
                format_endpoint(sender),
            )
            self._notify(SessionState.ESTABLISHED, SOURCE_PROBE)
        return reply

    def advance(self, now: float) -> Optional[SessionResult]:
        """Aplica deadlines; devolve o resultado se a sessão terminou."""
        if self.done:
            return self.result
        state = self.session.state
        if state is SessionState.ESTABLISHED and self.session.hold_until is None:
            self._finish(True, "established")
        elif now >= self.session.overall_deadline:
            self._finish(
                False,
                timeout_message(self.session.local_id, self.session.target_peer_id, self.session.discovery_only),
            )
        elif state is SessionState.ESTABLISHED and now >= self.session.hold_until:
            self._finish(True, "hold period elapsed")
        return self.result

    def time_until_deadline(self, now: float) -> float:
        deadlines = [self.session.overall_deadline]
        if self.holding:
            deadlines.append(self.session.hold_until)
        return max(0.0, min(deadlines) - now)

    def _pin(self, endpoint: Endpoint, source: str) -> None:
        self.candidate = endpoint
        self._set_state(SessionState.CANDIDATE_KNOWN)
        logger.info(
            "%s descobriu peer %s em %s (via %s)",
            self.session.local_id,
            self.session.target_peer_id,
            format_endpoint(endpoint),
            source,
        )
        self._notify(SessionState.CANDIDATE_KNOWN, source)
        if self.session.discovery_only:
            self._finish(True, "peer discovered")

    def _finish(self, success: bool, reason: str) -> None:
        self._set_state(SessionState.DONE)
        self.result = SessionResult(
            success=success,
            state=SessionState.DONE,
            candidate=self.candidate,
            established_at=self.established_at,
            reason=reason,
        )
        if success:
            logger.info("Sessão concluída: %s", reason)
        else:
            logger.warning("Sessão falhou: %s", reason)

    def _set_state(self, new_state: SessionState) -> None:
        current = self.session.state
        if not current.can_advance_to(new_state):
            raise IllegalTransition(f"Transição inválida {current.name} -> {new_state.name}")
        self.session.state = new_state

    def _notify(self, state: SessionState, source: str) -> None:
        if self._on_transition:
            self._on_transition(state, self.candidate, source)
