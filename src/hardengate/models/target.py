"""Target command data models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class CommandResult(BaseModel):
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration: float = 0
    # Undecoded stdout, kept so file reads stay byte-exact
    raw_stdout: Optional[bytes] = Field(default=None, exclude=True, repr=False)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
