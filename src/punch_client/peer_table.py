"""In-memory registry of peer endpoints announced by the coordinator."""
from __future__ import annotations

from typing import Dict, Mapping, Optional


class PresenceTable:
    """Mapeia ``peer_id -> endpoint udp`` (ou ``None`` se ainda não observado).

    Alimentada apenas por eventos do canal; entradas são inseridas ou
    sobrescritas (last write wins) e nunca removidas durante a sessão. Sem
    lock: só a thread do loop de eventos toca a tabela.
    """

    def __init__(self) -> None:
        self._peers: Dict[str, Optional[str]] = {}

    def merge_snapshot(self, snapshot: Mapping[str, Optional[str]]) -> None:
        """Aplica um ``presence_state`` completo; chaves ausentes ficam intactas."""

        self._peers.update(snapshot)

    def upsert(self, peer_id: str, endpoint: Optional[str]) -> bool:
        """Atualiza um único peer (``udp_seen``).

        Returns:
            True se é um peer novo, False se já existia.
        """
        is_new = peer_id not in self._peers
        self._peers[peer_id] = endpoint
        return is_new

    def get(self, peer_id: str) -> Optional[str]:
        return self._peers.get(peer_id)

    def __len__(self) -> int:
        return len(self._peers)

    def stats(self) -> Dict[str, int]:
        """Contadores básicos para logs de debug."""

        total = len(self._peers)
        with_udp = sum(1 for endpoint in self._peers.values() if endpoint is not None)
        return {"total": total, "with_udp": with_udp, "pending": total - with_udp}
