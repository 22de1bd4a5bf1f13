"""SSH target: hardens a remote build instance over paramiko."""

from __future__ import annotations

import logging
import shlex
import socket
import time
from pathlib import Path
from typing import Optional

import paramiko

from ..core.errors import ConfigurationError, TargetUnreachableError
from ..models.target import CommandResult
from .base import BaseTarget

logger = logging.getLogger(__name__)


class SSHTarget(BaseTarget):
    name = "ssh"

    def __init__(self, target_config: dict, common_config: dict):
        super().__init__(target_config, common_config)
        self.host = target_config.get("host") or ""
        if not self.host:
            raise ConfigurationError("target.host is required for ssh targets")
        self.port = int(target_config.get("port", 22))
        self.username = target_config.get("username", "ec2-user")
        self.key_file = target_config.get("key_file") or None
        self.connect_timeout = target_config.get("connect_timeout", 30)
        self.strict_host_keys = bool(target_config.get("strict_host_keys", False))
        self._client: Optional[paramiko.SSHClient] = None

    def describe(self) -> str:
        return f"ssh://{self.username}@{self.host}:{self.port}"

    def _connect(self) -> paramiko.SSHClient:
        if self._client is not None:
            transport = self._client.get_transport()
            if transport is not None and transport.is_active():
                return self._client
            raise TargetUnreachableError(f"{self.describe()}: connection lost")

        client = paramiko.SSHClient()
        if self.strict_host_keys:
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            # Build instances are fresh; their host keys are never known in advance
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        key_filename = str(Path(self.key_file).expanduser()) if self.key_file else None
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                key_filename=key_filename,
                timeout=self.connect_timeout,
                allow_agent=key_filename is None,
                look_for_keys=key_filename is None,
            )
        except paramiko.AuthenticationException as e:
            raise TargetUnreachableError(f"{self.describe()}: authentication failed: {e}") from e
        except (paramiko.SSHException, socket.error) as e:
            raise TargetUnreachableError(f"{self.describe()}: cannot connect: {e}") from e

        logger.info("Connected to %s", self.describe())
        self._client = client
        return client

    def _run(self, argv: list[str], input: Optional[bytes]) -> CommandResult:
        client = self._connect()
        command = shlex.join(argv)
        start = time.monotonic()
        try:
            stdin, stdout, stderr = client.exec_command(command, timeout=self.command_timeout)
            if input is not None:
                stdin.write(input)
                stdin.channel.shutdown_write()
            raw_stdout = stdout.read()
            stderr_data = stderr.read().decode("utf-8", errors="replace")
            exit_code = stdout.channel.recv_exit_status()
        except socket.timeout:
            logger.warning("Command timed out after %ss on %s: %s", self.command_timeout, self.host, argv[0])
            return CommandResult(
                stderr=f"timed out after {self.command_timeout}s",
                exit_code=124,
                duration=time.monotonic() - start,
            )
        except (paramiko.SSHException, EOFError, OSError) as e:
            self.close()
            raise TargetUnreachableError(f"{self.describe()}: {e}") from e

        return CommandResult(
            stdout=raw_stdout.decode("utf-8", errors="replace"),
            raw_stdout=raw_stdout,
            stderr=stderr_data,
            exit_code=exit_code,
            duration=time.monotonic() - start,
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
