"""Tests for the command-line entry point and its exit contract."""

import json
import threading

from coordinator_stub import CoordinatorStub
from punch_client.config import ClientSettings
from punch_client.main import EXIT_CONFIG, EXIT_FAILURE, EXIT_OK, build_arg_parser, load_settings, main
from punch_client.p2p_client import PunchClient


def stub_env(stub, **extra):
    env = {
        "COORDINATOR_HOST": "127.0.0.1",
        "COORDINATOR_HTTP_PORT": str(stub.http_port),
        "COORDINATOR_UDP_PORT": str(stub.udp_port),
        "ROOM": "demo",
    }
    env.update(extra)
    return env


def test_missing_client_id_is_config_error(capsys):
    assert main([], environ={"PEER_ID": "bob"}) == EXIT_CONFIG
    err = capsys.readouterr().err
    assert "CLIENT_ID" in err
    assert "bob" in err


def test_unparsable_port_is_config_error(capsys):
    env = {"CLIENT_ID": "alice", "PEER_ID": "bob", "COORDINATOR_UDP_PORT": "x"}
    assert main([], environ=env) == EXIT_CONFIG
    assert "alice" in capsys.readouterr().err


def test_unresolvable_coordinator(capsys):
    env = {"CLIENT_ID": "alice", "PEER_ID": "bob", "COORDINATOR_HOST": "coordinator.invalid", "TIMEOUT_SECS": "1"}
    assert main([], environ=env) == EXIT_FAILURE
    err = capsys.readouterr().err
    assert "alice" in err and "bob" in err


def test_timeout_exit_code_names_both_ids(capsys):
    with CoordinatorStub() as stub:
        code = main([], environ=stub_env(stub, CLIENT_ID="alice", PEER_ID="ghost", TIMEOUT_SECS="1"))
    assert code == EXIT_FAILURE
    assert "alice timed out waiting for direct udp with peer ghost" in capsys.readouterr().err


def test_success_exit_code(capsys):
    with CoordinatorStub() as stub:
        bob_settings = ClientSettings.from_env(stub_env(stub, CLIENT_ID="bob", PEER_ID="alice"))
        bob = PunchClient(bob_settings, output=lambda line: None)
        thread = threading.Thread(target=bob.run, daemon=True)
        thread.start()
        try:
            code = main([], environ=stub_env(stub, CLIENT_ID="alice", PEER_ID="bob"))
        finally:
            thread.join(20)
            bob.shutdown()
    assert code == EXIT_OK
    assert "alice direct udp ok with bob" in capsys.readouterr().out


def test_cli_flags_override(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"room": "lab", "timeout_secs": 30}))
    args = build_arg_parser().parse_args(["--config", str(path), "--log-level", "debug", "--discovery-only"])
    settings = load_settings(args, {"CLIENT_ID": "alice", "PEER_ID": "bob"})
    assert settings.room == "lab"
    assert settings.timeout_secs == 30
    assert settings.log_level == "DEBUG"
    assert settings.discovery_only is True


def test_bad_timing_in_config_file_is_config_error(tmp_path, capsys):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"punch_interval": 0}))
    assert main(["--config", str(path)], environ={"CLIENT_ID": "alice", "PEER_ID": "bob"}) == EXIT_CONFIG
    err = capsys.readouterr().err
    assert "punch_interval" in err
    assert "alice" in err and "bob" in err
