"""Target abstraction: the machine controls are applied to and verified on.

The engine never assumes a transport. A target only needs to run a
privileged command given as an argument vector and to read a file.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence, runtime_checkable

from ..core.errors import ConfigurationError, TargetUnreachableError
from ..models.target import CommandResult

logger = logging.getLogger(__name__)


@runtime_checkable
class Target(Protocol):
    """Protocol that all targets must implement."""

    name: str

    def execute(self, args: Sequence[str], input: Optional[bytes] = None) -> CommandResult: ...

    def read_file(self, path: str) -> bytes: ...


class BaseTarget:
    """Base class with shared privilege handling and file reads."""

    name: str = "base"

    def __init__(self, target_config: dict, common_config: dict):
        self.config = target_config
        self.common = common_config
        self.command_timeout = common_config.get("command_timeout", 600)
        self.use_sudo = bool(target_config.get("sudo", True))

    def describe(self) -> str:
        return self.name

    def _privileged(self, args: Sequence[str]) -> list[str]:
        """Prefix a command with non-interactive sudo when required."""
        argv = [str(a) for a in args]
        if self.use_sudo:
            return ["sudo", "-n", "--"] + argv
        return argv

    def _run(self, argv: list[str], input: Optional[bytes]) -> CommandResult:
        raise NotImplementedError

    def execute(self, args: Sequence[str], input: Optional[bytes] = None) -> CommandResult:
        if not args:
            raise ValueError("empty command")
        argv = self._privileged(args)
        logger.debug("%s: %s", self.name, " ".join(argv))
        return self._run(argv, input)

    def read_file(self, path: str) -> bytes:
        """Read a file through the privileged channel.

        Raises FileNotFoundError when the file does not exist and OSError for
        any other read failure.
        """
        result = self.execute(["cat", "--", path])
        if result.ok:
            if result.raw_stdout is not None:
                return result.raw_stdout
            return result.stdout.encode("utf-8")
        if "No such file" in result.stderr:
            raise FileNotFoundError(path)
        raise OSError(f"cannot read {path}: {result.stderr.strip() or result.exit_code}")

    def probe(self) -> None:
        """Fail fast with TargetUnreachableError when the target cannot run commands."""
        result = self.execute(["true"])
        if not result.ok:
            raise TargetUnreachableError(
                f"{self.describe()}: probe command failed "
                f"(exit {result.exit_code}): {result.stderr.strip()}"
            )

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def get_target(
    config: dict,
    target_override: Optional[str] = None,
    host_override: Optional[str] = None,
) -> BaseTarget:
    """Factory function to create the configured target."""
    target_config = dict(config.get("target", {}))
    target_type = target_override or target_config.get("type", "local")

    if host_override:
        target_config["host"] = host_override

    common_config = dict(config.get("execution", {}))

    if target_type == "local":
        from .local import LocalTarget
        return LocalTarget(target_config, common_config)
    elif target_type == "ssh":
        from .ssh import SSHTarget
        return SSHTarget(target_config, common_config)
    elif target_type == "memory":
        from .memory import MemoryTarget
        return MemoryTarget.amazon_linux_baseline()
    else:
        raise ConfigurationError(f"Unknown target type: {target_type}")
