"""Control catalog construction: level filtering, section skips and overrides."""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from ..controls import SECTIONS, default_controls
from ..models.control import Control, HardeningParameters, Section
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class Catalog(BaseModel):
    """The ordered, immutable set of controls selected for one run."""

    model_config = ConfigDict(frozen=True)

    level: int
    skip_sections: tuple[str, ...] = ()
    sections: tuple[Section, ...] = ()
    controls: tuple[Control, ...] = ()

    def __len__(self) -> int:
        return len(self.controls)

    def __iter__(self):
        return iter(self.controls)

    @property
    def ids(self) -> list[str]:
        return [c.id for c in self.controls]

    @property
    def section_titles(self) -> dict[str, str]:
        return {s.key: s.title for s in self.sections}


def list_sections() -> list[Section]:
    return list(SECTIONS)


def _check_unique(controls: Sequence[Control]) -> None:
    seen: set[str] = set()
    for control in controls:
        if control.id in seen:
            raise ConfigurationError(f"Duplicate control id in catalog: {control.id}")
        seen.add(control.id)


def build_catalog(
    level: int,
    skip_sections: Optional[Iterable[str]] = None,
    parameters: Optional[HardeningParameters] = None,
    overrides: Optional[dict] = None,
    controls: Optional[Sequence[Control]] = None,
    sections: Optional[Sequence[Section]] = None,
) -> Catalog:
    """Select the controls for a run.

    Controls are kept in declaration order when their level is at most
    ``level`` and their section is not skipped. ``overrides`` maps control
    ids to ``{"weight": int, "enabled": bool}``. ``controls`` and
    ``sections`` replace the built-in CIS definitions (used by tests and
    custom catalogs).
    """
    if isinstance(level, bool) or level not in (1, 2):
        raise ConfigurationError(f"level must be 1 or 2, got {level!r}")
    if isinstance(skip_sections, str):
        raise ConfigurationError("skip_sections must be a collection of section keys, not a string")

    skip: list[str] = []
    for key in skip_sections or []:
        if not isinstance(key, str) or not key.strip():
            raise ConfigurationError(f"Malformed skip_sections entry: {key!r}")
        if key.strip() not in skip:
            skip.append(key.strip())

    all_controls = list(controls) if controls is not None else default_controls(parameters)
    all_sections = list(sections) if sections is not None else list(SECTIONS)
    _check_unique(all_controls)

    known_sections = {s.key for s in all_sections} | {c.section for c in all_controls}
    for key in skip:
        if key not in known_sections:
            logger.warning("Unknown section in skip_sections: %s", key)

    overrides = overrides or {}
    known_ids = {c.id for c in all_controls}
    for control_id in overrides:
        if control_id not in known_ids:
            logger.warning("Override for unknown control id: %s", control_id)

    selected: list[Control] = []
    for control in all_controls:
        if control.level > level or control.section in skip:
            continue
        override = overrides.get(control.id) or {}
        if override.get("enabled", True) is False:
            logger.debug("Control %s disabled by override", control.id)
            continue
        if "weight" in override:
            control = control.model_copy(update={"weight": int(override["weight"])})
        selected.append(control)

    used_sections = {c.section for c in selected}
    return Catalog(
        level=level,
        skip_sections=tuple(skip),
        sections=tuple(s for s in all_sections if s.key in used_sections),
        controls=tuple(selected),
    )
