from __future__ import annotations

import pytest

from shell_agent.connection import LocalShellConnection, SSHConnection, parse_destination
from shell_agent.main import build_parser, connection_from_args


def test_ssh_args_default_port_omitted() -> None:
    c = SSHConnection(hostname="example.com", user="alice")
    assert c.spawn_command() == ("ssh", ["alice@example.com"])


def test_ssh_args_with_port_identity_and_options() -> None:
    c = SSHConnection(
        hostname="10.0.0.5",
        user="root",
        port=2222,
        identity_file="~/.ssh/id_ed25519",
        extra_options=("ForwardAgent yes", "StrictHostKeyChecking=accept-new"),
    )
    assert c.ssh_args() == [
        "-p",
        "2222",
        "-i",
        "~/.ssh/id_ed25519",
        "-o",
        "ForwardAgent yes",
        "-o",
        "StrictHostKeyChecking=accept-new",
        "root@10.0.0.5",
    ]


def test_parse_destination_variants() -> None:
    assert parse_destination("bob@host:2200") == SSHConnection(hostname="host", user="bob", port=2200)
    assert parse_destination("host").destination == "host"
    # Explicit port wins.
    assert parse_destination("host:2200", port=22).port == 22


@pytest.mark.parametrize("bad", ["", "user@", "host:abc", "host:70000"])
def test_parse_destination_rejects_garbage(bad) -> None:
    with pytest.raises(ValueError):
        parse_destination(bad)


def test_local_shell_uses_explicit_shell() -> None:
    assert LocalShellConnection(shell="/bin/bash", args=("-l",)).spawn_command() == ("/bin/bash", ["-l"])


def test_cli_builds_connection() -> None:
    ap = build_parser()
    args = ap.parse_args(["deploy@web1", "-p", "2022", "-o", "ServerAliveInterval=30", "--fake"])
    conn = connection_from_args(args)
    assert isinstance(conn, SSHConnection)
    assert conn.port == 2022
    assert conn.extra_options == ("ServerAliveInterval=30",)
    assert args.fake is True

    assert isinstance(connection_from_args(ap.parse_args(["--local"])), LocalShellConnection)
    assert connection_from_args(ap.parse_args([])) is None


def test_cli_provider_and_model_flags() -> None:
    args = build_parser().parse_args(["--provider", "ollama", "--model", "qwen2.5"])
    assert args.provider == "ollama"
    assert args.model == "qwen2.5"

    with pytest.raises(SystemExit):
        build_parser().parse_args(["--provider", "skynet"])
