"""Client side of the coordinator's signaling channel (websocket, serializer V2)."""
from __future__ import annotations

import logging
import time
from contextlib import ExitStack
from typing import Any, Callable, Optional

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import ClientConnection, connect

from .codec import SignalingFrame, decode_signaling_frame, encode_heartbeat, encode_join


logger = logging.getLogger(__name__)

# Começa em 10 e incrementa antes de cada envio.
HEARTBEAT_REF_START = 10


class SignalingError(RuntimeError):
    """Erro genérico envolvendo o canal de sinalização."""


class SignalingConnectTimeout(SignalingError):
    """Não foi possível conectar ao canal antes do deadline."""


class SignalingClosed(SignalingError):
    """O stream foi fechado pelo coordenador ou pela rede."""


class SignalingChannel:
    """Encapsula connect/join, heartbeats e recepção de frames.

    O canal é best-effort depois do connect inicial: falhas de envio são só
    logadas, porque o probe UDP ainda pode fechar a sessão sem sinalização.
    """

    def __init__(
        self,
        url: str,
        topic: str,
        client_id: str,
        retry_interval: float = 0.2,
        connector: Callable[..., Any] = connect,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.url = url
        self.topic = topic
        self.client_id = client_id
        self.retry_interval = retry_interval
        self._connector = connector
        self._clock = clock
        self._sleep = sleep
        self._ws: Optional[ClientConnection] = None
        self._stack = ExitStack()
        self._heartbeat_ref = HEARTBEAT_REF_START
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._closed

    @property
    def last_heartbeat_ref(self) -> int:
        return self._heartbeat_ref

    def connect(self, deadline: float) -> None:
        """Conecta com retry a cada ``retry_interval`` até ``deadline`` e faz o join.

        Raises:
            SignalingConnectTimeout: Se o deadline (relógio monotônico) expirar.
        """
        attempts = 0
        while True:
            attempts += 1
            remaining = deadline - self._clock()
            try:
                connection = self._connector(self.url, open_timeout=max(remaining, self.retry_interval))
                break
            except (OSError, WebSocketException) as exc:
                if self._clock() + self.retry_interval >= deadline:
                    raise SignalingConnectTimeout(
                        f"Falha ao conectar em {self.url} após {attempts} tentativa(s): {exc}"
                    ) from exc
                logger.debug("Connect em %s falhou (%s); nova tentativa", self.url, exc)
                self._sleep(self.retry_interval)

        # O stack fecha a conexão em close().
        self._ws = self._stack.enter_context(connection)
        logger.info("Canal de sinalização conectado em %s", self.url)
        self._send(encode_join(self.topic, self.client_id), what="join", fatal=True)
        logger.info("Join enviado para %s como %s", self.topic, self.client_id)

    def send_heartbeat(self) -> None:
        """Fire-and-forget; o ref cresce a cada chamada."""
        self._heartbeat_ref += 1
        self._send(encode_heartbeat(self._heartbeat_ref), what="heartbeat")

    def try_receive_frame(self, max_wait: float) -> Optional[SignalingFrame]:
        """Devolve um frame decodificado ou ``None`` se nada chegou em ``max_wait``.

        Raises:
            SignalingClosed: Se o stream foi encerrado.
        """
        if self._ws is None or self._closed:
            raise SignalingClosed("Canal de sinalização não está aberto")
        try:
            message = self._ws.recv(timeout=max_wait)
        except TimeoutError:
            return None
        except ConnectionClosed as exc:
            self._closed = True
            raise SignalingClosed(f"Canal de sinalização encerrado: {exc}") from exc

        if not isinstance(message, str):
            logger.debug("Frame binário ignorado (%d bytes)", len(message))
            return None
        frame = decode_signaling_frame(message)
        if frame is None:
            logger.debug("Frame inválido descartado: %.80s", message)
        return frame

    def close(self) -> None:
        """Idempotente; sai do contexto da conexão mesmo após ``SignalingClosed``."""
        self._closed = True
        try:
            self._stack.close()
        except (OSError, WebSocketException) as exc:
            logger.debug("Erro ao fechar canal de sinalização: %s", exc)

    def _send(self, text: str, what: str, fatal: bool = False) -> None:
        if self._ws is None:
            raise SignalingError("Canal de sinalização não conectado")
        try:
            self._ws.send(text)
        except (ConnectionClosed, OSError) as exc:
            if fatal:
                raise SignalingError(f"Falha ao enviar {what}: {exc}") from exc
            logger.warning("Falha ao enviar %s pelo canal: %s", what, exc)
