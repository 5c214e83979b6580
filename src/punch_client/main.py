"""Entry-point helper for running the punch client."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Mapping, Optional, Sequence

from websockets.exceptions import WebSocketException

from .config import ClientSettings, ConfigValidationError
from .p2p_client import PunchClient
from .session import PunchTimeoutError
from .signaling import SignalingError
from .udp_socket import CoordinatorResolveError


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="UDP rendezvous / hole punch client")
    parser.add_argument("--config", type=Path, help="Arquivo JSON com defaults (o ambiente tem precedência)", default=None)
    parser.add_argument("--log-level", help="Override de nível de log", default=None)
    parser.add_argument(
        "--discovery-only",
        action="store_true",
        help="Encerra com sucesso assim que o endpoint do peer for conhecido",
    )
    return parser


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def load_settings(args: argparse.Namespace, environ: Mapping[str, str]) -> ClientSettings:
    base = ClientSettings.from_file(args.config)
    settings = ClientSettings.from_env(environ, base=base)
    if args.log_level:
        settings.log_level = args.log_level.upper()
    if args.discovery_only:
        settings.discovery_only = True
    return settings


def main(argv: Optional[Sequence[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    environ = os.environ if environ is None else environ

    try:
        settings = load_settings(args, environ)
    except ConfigValidationError as exc:
        client_id = environ.get("CLIENT_ID", "<unset>")
        peer_id = environ.get("PEER_ID", "<unset>")
        print(f"{client_id} -> {peer_id}: configuração inválida: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(settings.log_level)
    logging.getLogger(__name__).debug("Configuração efetiva: %s", settings.to_dict())

    ids = f"{settings.client_id} -> {settings.peer_id}"
    client = PunchClient(settings)
    try:
        client.run()
    except PunchTimeoutError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_FAILURE
    except CoordinatorResolveError as exc:
        print(f"{ids}: coordenador inacessível: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    except (SignalingError, WebSocketException) as exc:
        print(f"{ids}: falha no canal de sinalização: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    except OSError as exc:
        print(f"{ids}: falha de socket: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print(f"{ids}: interrompido", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        client.shutdown()
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
