"""Configuration helpers for the punch client.

Responsabilidades:
- Ler as variáveis de ambiente do processo e aplicar defaults seguros.
- Permitir um arquivo ``config.json`` opcional, sobrescrito pelo ambiente.
- Validar limites (portas, deadline, intervalos) antes do loop iniciar.
- Expor a URL do canal de sinalização e o tópico da sala.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional


MIN_PORT = 1
MAX_PORT = 65535
MIN_KEEPALIVE_SECS = 1
MAX_ID_LENGTH = 64

# Nome da variável de ambiente -> (campo, conversor)
ENV_FIELDS = {
    "COORDINATOR_HOST": ("coordinator_host", str),
    "COORDINATOR_HTTP_PORT": ("coordinator_http_port", int),
    "COORDINATOR_UDP_PORT": ("coordinator_udp_port", int),
    "ROOM": ("room", str),
    "CLIENT_ID": ("client_id", str),
    "PEER_ID": ("peer_id", str),
    "TIMEOUT_SECS": ("timeout_secs", int),
    "KEEPALIVE_SECS": ("keepalive_secs", int),
    "STAY_SECS": ("stay_secs", int),
    "DISCOVERY_ONLY": ("discovery_only", "bool"),
    "LOG_LEVEL": ("log_level", str),
}

TIMING_FIELDS = (
    "punch_interval",
    "coordinator_keepalive_interval",
    "heartbeat_interval",
    "connect_retry_interval",
    "channel_poll_timeout",
    "udp_poll_timeout",
)

TRUE_VALUES ={"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}


class ConfigValidationError(ValueError):
    """Erro de validação de configuração."""
    pass


def validate_port(name: str, port: int) -> int:
    """Valida uma porta (1-65535)."""
    if not isinstance(port, int) or isinstance(port, bool):
        raise ConfigValidationError(f"{name} deve ser inteiro, recebido: {type(port).__name__}")
    if port < MIN_PORT or port > MAX_PORT:
        raise ConfigValidationError(f"{name} deve estar entre {MIN_PORT} e {MAX_PORT}, recebido: {port}")
    return port


def validate_identifier(name: str, value: str) -> str:
    """Valida ids usados no protocolo de probe (um único token, até 64 caracteres)."""
    if not isinstance(value, str) or not value:
        raise ConfigValidationError(f"{name} é obrigatório")
    if len(value) > MAX_ID_LENGTH:
        raise ConfigValidationError(f"{name} excede {MAX_ID_LENGTH} caracteres: {len(value)}")
    if len(value.split()) != 1:
        raise ConfigValidationError(f"{name} não pode conter espaços: {value!r}")
    return value


def validate_interval(name: str, value: Any) -> float:
    """Valida um intervalo em segundos (número positivo)."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ConfigValidationError(f"{name} deve ser numérico, recebido: {value!r}")
    if value <= 0:
        raise ConfigValidationError(f"{name} deve ser positivo, recebido: {value}")
    return value


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ConfigValidationError(f"{name} deve ser booleano, recebido: {raw!r}")


def _convert(env_name: str, converter: Any, raw: str) -> Any:
    if converter == "bool":
        return _parse_bool(env_name, raw)
    if converter is int:
        try:
            return int(raw.strip())
        except ValueError as exc:
            raise ConfigValidationError(f"{env_name} deve ser inteiro, recebido: {raw!r}") from exc
    return raw


@dataclass(slots=True)
class ClientSettings:
    """Conjunto de parâmetros de uma sessão de hole punching.

    ``client_id`` e ``peer_id`` não têm default útil; ``validate`` falha se
    continuarem vazios. Os intervalos em segundos abaixo do bloco de ambiente
    não são lidos do ambiente, mas os testes os reduzem.
    """

    coordinator_host: str = "coordinator"
    coordinator_http_port: int = 4000
    coordinator_udp_port: int = 3478
    room: str = "demo"
    client_id: str = ""
    peer_id: str = ""
    timeout_secs: int = 15
    keepalive_secs: int = 15
    stay_secs: int = 0
    discovery_only: bool = False
    log_level: str = "INFO"

    punch_interval: float = 0.2
    coordinator_keepalive_interval: float = 5.0
    heartbeat_interval: float = 25.0
    connect_retry_interval: float = 0.2
    channel_poll_timeout: float = 0.5
    udp_poll_timeout: float = 0.5
    udp_bind_host: str = "0.0.0.0"
    config_file: Optional[Path] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def signaling_url(self) -> str:
        """URL do endpoint de canal do coordenador (serializer V2)."""

        return f"ws://{self.coordinator_host}:{self.coordinator_http_port}/socket/websocket?vsn=2.0.0"

    @property
    def topic(self) -> str:
        return f"rendezvous:{self.room}"

    @property
    def effective_keepalive_secs(self) -> int:
        return max(self.keepalive_secs, MIN_KEEPALIVE_SECS)

    def validate(self) -> None:
        """Valida todos os campos.

        Raises:
            ConfigValidationError: Se algum campo estiver ausente ou fora dos limites.
        """
        validate_identifier("CLIENT_ID", self.client_id)
        validate_identifier("PEER_ID", self.peer_id)
        validate_identifier("ROOM", self.room)
        if not self.coordinator_host:
            raise ConfigValidationError("COORDINATOR_HOST não pode ser vazio")
        validate_port("COORDINATOR_HTTP_PORT", self.coordinator_http_port)
        validate_port("COORDINATOR_UDP_PORT", self.coordinator_udp_port)
        for name, value in (
            ("TIMEOUT_SECS", self.timeout_secs),
            ("KEEPALIVE_SECS", self.keepalive_secs),
            ("STAY_SECS", self.stay_secs),
        ):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigValidationError(f"{name} deve ser inteiro, recebido: {value!r}")
        if self.timeout_secs < 1:
            raise ConfigValidationError(f"TIMEOUT_SECS deve ser >= 1, recebido: {self.timeout_secs}")
        if self.stay_secs < 0:
            raise ConfigValidationError(f"STAY_SECS não pode ser negativo, recebido: {self.stay_secs}")
        for name in TIMING_FIELDS:
            validate_interval(name, getattr(self, name))
        # Piso de 1s.
        self.keepalive_secs = self.effective_keepalive_secs

    @classmethod
    def from_file(cls, path: Optional[Path]) -> "ClientSettings":
        """Carrega configurações de um arquivo JSON, se existir (sem validar)."""

        if path is None or not path.exists():
            return cls(config_file=path)

        with path.open("r", encoding="utf-8") as fp:
            try:
                raw_data = json.load(fp)
            except json.JSONDecodeError as exc:
                raise ConfigValidationError(f"Arquivo de configuração inválido {path}: {exc}") from exc

        if not isinstance(raw_data, dict):
            raise ConfigValidationError(f"Arquivo de configuração deve conter um objeto JSON: {path}")

        known_fields = {f.name for f in fields(cls)} - {"config_file", "extra"}
        init_kwargs: Dict[str, Any] = {
            key: value for key, value in raw_data.items() if key in known_fields
        }
        extra = {key: value for key, value in raw_data.items() if key not in known_fields}
        settings = cls(**init_kwargs, config_file=path)
        settings.extra.update(extra)
        return settings

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional["ClientSettings"] = None,
    ) -> "ClientSettings":
        """Aplica as variáveis de ambiente sobre ``base`` (ou defaults) e valida."""

        environ = os.environ if environ is None else environ
        settings = base if base is not None else cls()
        for env_name, (attr, converter) in ENV_FIELDS.items():
            raw = environ.get(env_name)
            if raw is None:
                continue
            setattr(settings, attr, _convert(env_name, converter, raw))
        settings.validate()
        return settings

    def to_dict(self) -> Dict[str, Any]:
        """Exporta a configuração atual (útil para logs e debug)."""

        return {
            "coordinator_host": self.coordinator_host,
            "coordinator_http_port": self.coordinator_http_port,
            "coordinator_udp_port": self.coordinator_udp_port,
            "room": self.room,
            "client_id": self.client_id,
            "peer_id": self.peer_id,
            "timeout_secs": self.timeout_secs,
            "keepalive_secs": self.keepalive_secs,
            "stay_secs": self.stay_secs,
            "discovery_only": self.discovery_only,
            "signaling_url": self.signaling_url,
            "topic": self.topic,
            "log_level": self.log_level,
            "config_file": str(self.config_file) if self.config_file else None,
            "extra": self.extra,
        }
