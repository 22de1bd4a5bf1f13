"""Post-build smoke test data models."""

from __future__ import annotations

from pydantic import BaseModel


class SmokeCheck(BaseModel):
    name: str
    category: str  # functional | security
    passed: bool
    detail: str = ""


class SmokeReport(BaseModel):
    target: str = ""
    system: dict[str, str] = {}
    checks: list[SmokeCheck] = []

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def failures(self) -> list[SmokeCheck]:
        return [c for c in self.checks if not c.passed]
