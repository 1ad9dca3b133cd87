"""shell_agent.connection

Connection records: what to spawn for a session.

Records are produced elsewhere (CLI arguments here; an `~/.ssh/config`
editor is out of scope). A record only has to answer `spawn_command()`.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Optional, Protocol, Union


class ConnectionRecord(Protocol):
    name: str

    def spawn_command(self) -> tuple[str, list[str]]: ...


@dataclass(frozen=True)
class SSHConnection:
    hostname: str
    user: str = ""
    port: int = 22
    identity_file: Optional[str] = None
    # Extra `-o` options, e.g. "ForwardAgent yes".
    extra_options: tuple[str, ...] = field(default_factory=tuple)
    name: str = ""
    description: str = ""
    ssh_binary: str = "ssh"

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.hostname}" if self.user else self.hostname

    @property
    def label(self) -> str:
        return self.name or self.destination

    def ssh_args(self) -> list[str]:
        args: list[str] = []
        if self.port and self.port != 22:
            args += ["-p", str(self.port)]
        if self.identity_file:
            args += ["-i", self.identity_file]
        for opt in self.extra_options:
            args += ["-o", opt]
        args.append(self.destination)
        return args

    def spawn_command(self) -> tuple[str, list[str]]:
        return self.ssh_binary, self.ssh_args()


@dataclass(frozen=True)
class LocalShellConnection:
    """A local interactive shell; handy for trying the app without a remote host."""

    shell: str = ""
    args: tuple[str, ...] = ()
    name: str = "local"

    @property
    def label(self) -> str:
        return self.name

    def spawn_command(self) -> tuple[str, list[str]]:
        if self.shell:
            return self.shell, list(self.args)
        if sys.platform == "win32":
            return os.environ.get("COMSPEC", "cmd.exe"), list(self.args)
        return os.environ.get("SHELL", "/bin/sh"), list(self.args)


Connection = Union[SSHConnection, LocalShellConnection]


def parse_destination(
    dest: str,
    *,
    port: Optional[int] = None,
    identity_file: Optional[str] = None,
    options: tuple[str, ...] = (),
) -> SSHConnection:
    """`[user@]host[:port]` -> SSHConnection. An explicit `port` wins over `:port`."""

    d = (dest or "").strip()
    if not d:
        raise ValueError("empty destination")
    user = ""
    if "@" in d:
        user, d = d.rsplit("@", 1)
    host = d
    parsed_port: Optional[int] = None
    if d.count(":") == 1:
        host, p = d.split(":", 1)
        if not p.isdigit():
            raise ValueError(f"invalid port in destination: {dest!r}")
        parsed_port = int(p)
    if not host:
        raise ValueError(f"missing host in destination: {dest!r}")
    final_port = port if port is not None else (parsed_port if parsed_port is not None else 22)
    if not (0 < final_port < 65536):
        raise ValueError(f"port out of range: {final_port}")
    return SSHConnection(
        hostname=host,
        user=user,
        port=final_port,
        identity_file=identity_file,
        extra_options=tuple(options),
    )
