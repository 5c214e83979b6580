"""Single UDP socket used for registration, punch probes and probe detection."""
from __future__ import annotations

import logging
import socket
from typing import Optional, Tuple

from .codec import Endpoint, encode_probe, encode_registration, format_endpoint


logger = logging.getLogger(__name__)
MAX_DATAGRAM_BYTES = 2048


class CoordinatorResolveError(RuntimeError):
    """O host do coordenador não resolveu para nenhum endereço UDP."""


def resolve_udp_target(host: str, port: int) -> Endpoint:
    """Resolve ``host:port`` e devolve o primeiro resultado."""
    try:
        infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_DGRAM)
    except socket.gaierror as exc:
        raise CoordinatorResolveError(f"Falha ao resolver {host}:{port}: {exc}") from exc
    if not infos:
        raise CoordinatorResolveError(f"Resolução de {host}:{port} não retornou resultados")
    sockaddr = infos[0][4]
    return sockaddr[0], sockaddr[1]


class RendezvousSocket:
    """Um socket só, para que o mapeamento do NAT fique estável.

    Todos os envios são fire-and-forget: erros são logados e absorvidos, o
    disparo periódico do timer correspondente é o retry.
    """

    def __init__(
        self,
        coordinator: Endpoint,
        room: str,
        client_id: str,
        bind_host: str = "0.0.0.0",
        bind_port: int = 0,
    ) -> None:
        self.coordinator = coordinator
        self.room = room
        self.client_id = client_id
        self._registration = encode_registration(room, client_id)
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self._sock.bind((bind_host, bind_port))
        except OSError:
            self._sock.close()
            raise
        self._closed = False
        host, port = self._sock.getsockname()[:2]
        self._local_address: Endpoint = (host, port)
        logger.info("Socket UDP escutando em %s", format_endpoint(self._local_address))

    @property
    def local_address(self) -> Endpoint:
        return self._local_address

    def register(self) -> bool:
        """Envia o registro JSON ao coordenador (idempotente)."""
        return self._send(self._registration, self.coordinator, "registro")

    def send_probe(self, kind: str, target: Endpoint) -> bool:
        return self._send(encode_probe(kind, self.room, self.client_id), target, kind)

    def try_receive(self, max_wait: float) -> Optional[Tuple[bytes, Endpoint]]:
        """Espera até ``max_wait`` segundos por um datagrama."""
        if self._closed:
            return None
        try:
            self._sock.settimeout(max_wait)
            data, addr = self._sock.recvfrom(MAX_DATAGRAM_BYTES)
        except socket.timeout:
            return None
        except OSError as exc:
            # ICMP port unreachable (Linux/Windows) aparece aqui; não é fatal.
            if not self._closed:
                logger.debug("Erro no recvfrom UDP: %s", exc)
            return None
        return data, (addr[0], addr[1])

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sock.close()

    def _send(self, data: bytes, target: Endpoint, what: str) -> bool:
        try:
            self._sock.sendto(data, target)
        except OSError as exc:
            logger.warning("Falha ao enviar %s para %s: %s", what, format_endpoint(target), exc)
            return False
        logger.debug("%s enviado para %s", what, format_endpoint(target))
        return True
