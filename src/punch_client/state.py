"""Shared state models for the punch client runtime."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .codec import Endpoint


class SessionState(Enum):
    """Estados em ordem estrita; só avançam."""

    UNRESOLVED = 0
    CANDIDATE_KNOWN = 1
    ESTABLISHED = 2
    DONE = 3

    def can_advance_to(self, other: "SessionState") -> bool:
        return other.value > self.value


@dataclass(slots=True)
class Session:
    """Parâmetros imutáveis de uma sessão mais o estado corrente.

    Criada uma vez no startup e manipulada apenas pela thread do loop de eventos.
    ``overall_deadline`` e ``hold_until`` usam o relógio monotônico.
    """

    room: str
    local_id: str
    target_peer_id: str
    coordinator_udp_endpoint: Endpoint
    signaling_url: str
    overall_deadline: float
    hold_until: Optional[float] = None
    discovery_only: bool = False
    state: SessionState = SessionState.UNRESOLVED


@dataclass(slots=True)
class SessionResult:
    """Resultado terminal devolvido pelo loop."""

    success: bool
    state: SessionState
    candidate: Optional[Endpoint] = None
    established_at: Optional[float] = None
    reason: str = ""
