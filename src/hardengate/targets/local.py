"""Local shell target: hardens the machine the engine is running on.

This is the mode used when the build tool uploads hardengate to the
instance being imaged and runs it there.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from typing import Optional

from ..models.target import CommandResult
from .base import BaseTarget

logger = logging.getLogger(__name__)


class LocalTarget(BaseTarget):
    name = "local"

    def __init__(self, target_config: dict, common_config: dict):
        target_config = dict(target_config)
        # Mirror the hardening scripts: only escalate when not already root
        target_config.setdefault("sudo", os.geteuid() != 0)
        super().__init__(target_config, common_config)

    def _run(self, argv: list[str], input: Optional[bytes]) -> CommandResult:
        start = time.monotonic()
        try:
            proc = subprocess.run(
                argv,
                input=input,
                capture_output=True,
                timeout=self.command_timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out after %ss: %s", self.command_timeout, argv[0])
            return CommandResult(
                stderr=f"timed out after {self.command_timeout}s",
                exit_code=124,
                duration=time.monotonic() - start,
            )
        except FileNotFoundError:
            return CommandResult(
                stderr=f"{argv[0]}: command not found",
                exit_code=127,
                duration=time.monotonic() - start,
            )

        return CommandResult(
            stdout=proc.stdout.decode("utf-8", errors="replace"),
            raw_stdout=proc.stdout,
            stderr=proc.stderr.decode("utf-8", errors="replace"),
            exit_code=proc.returncode,
            duration=time.monotonic() - start,
        )
