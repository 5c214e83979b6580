"""Wire codecs: registro UDP, probes em texto e frames do canal de sinalização.

Todas as funções de decode são tolerantes: entrada malformada devolve ``None``
(ou um mapeamento com ``None``) e nunca levanta exceção.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

PROBE_PING = "vpn-ping"
PROBE_PONG = "vpn-pong"
PROBE_KINDS = (PROBE_PING, PROBE_PONG)

EVENT_PRESENCE_STATE = "presence_state"
EVENT_UDP_SEEN = "udp_seen"
EVENT_REPLY = "phx_reply"
EVENT_JOIN = "phx_join"
EVENT_HEARTBEAT = "heartbeat"
HEARTBEAT_TOPIC = "phoenix"

Endpoint = Tuple[str, int]


@dataclass(frozen=True, slots=True)
class SignalingFrame:
    topic: str
    event: str
    payload: Any


@dataclass(frozen=True, slots=True)
class ProbeMessage:
    """Probe ``<kind> <room> <client_id>``; ``client_id`` é sempre o remetente."""

    kind: str
    room: str
    client_id: str

    @property
    def is_ping(self) -> bool:
        return self.kind == PROBE_PING


def _compact(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def decode_signaling_frame(text: str) -> Optional[SignalingFrame]:
    """Decodifica ``[join_ref, ref, topic, event, payload]``."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError, RecursionError):
        # RecursionError: aninhamento profundo estoura o decoder.
        return None
    if not isinstance(data, list) or len(data) < 5:
        return None
    topic, event, payload = data[2], data[3], data[4]
    if not isinstance(topic, str) or not isinstance(event, str):
        return None
    return SignalingFrame(topic=topic, event=event, payload=payload)


def decode_presence_snapshot(payload: Any) -> Dict[str, Optional[str]]:
    """Extrai ``peer_id -> udp`` de um payload ``presence_state``.

    O endpoint vem de ``metas[0].udp``; qualquer outro formato vira ``None``.
    """
    result: Dict[str, Optional[str]] = {}
    if not isinstance(payload, dict):
        return result
    for peer_id, entry in payload.items():
        udp = None
        metas = entry.get("metas") if isinstance(entry, dict) else None
        if isinstance(metas, list) and metas and isinstance(metas[0], dict):
            candidate = metas[0].get("udp")
            if isinstance(candidate, str):
                udp = candidate
        result[peer_id] = udp
    return result


def decode_udp_seen(payload: Any) -> Optional[Tuple[str, str]]:
    """Decodifica ``{"client_id": ..., "udp": ...}`` do evento ``udp_seen``."""
    if not isinstance(payload, dict):
        return None
    client_id = payload.get("client_id")
    udp = payload.get("udp")
    if isinstance(client_id, str) and isinstance(udp, str):
        return client_id, udp
    return None


def decode_probe_message(text: str) -> Optional[ProbeMessage]:
    tokens = text.split()
    if len(tokens) != 3:
        return None
    kind, room, client_id = tokens
    return ProbeMessage(kind=kind, room=room, client_id=client_id)


def decode_probe_datagram(data: bytes) -> Optional[ProbeMessage]:
    return decode_probe_message(data.decode("utf-8", errors="replace"))


def parse_endpoint(text: str) -> Optional[Endpoint]:
    """Converte ``host:port`` (ou ``[v6]:port``) em tupla de socket."""
    host, sep, port_text = text.strip().rpartition(":")
    if not sep or not host:
        return None
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        return None
    if not 0 < port <= 65535:
        return None
    return host, port


def format_endpoint(endpoint: Endpoint) -> str:
    host, port = endpoint[0], endpoint[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def encode_registration(room: str, client_id: str) -> bytes:
    return _compact({"room": room, "client_id": client_id}).encode("utf-8")


def encode_probe(kind: str, room: str, client_id: str) -> bytes:
    return f"{kind} {room} {client_id}".encode("utf-8")


def encode_join(topic: str, client_id: str) -> str:
    return _compact(["1", "1", topic, EVENT_JOIN, {"client_id": client_id}])


def encode_heartbeat(ref: int) -> str:
    return _compact(["0", str(ref), HEARTBEAT_TOPIC, EVENT_HEARTBEAT, {}])
