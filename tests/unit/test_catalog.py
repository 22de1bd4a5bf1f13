"""Tests for core/catalog.py and the built-in control definitions."""

from __future__ import annotations

import logging

import pytest

from hardengate.controls import SECTIONS, default_controls
from hardengate.core.catalog import build_catalog, list_sections
from hardengate.core.errors import ConfigurationError
from hardengate.models.control import HardeningParameters

LEVEL_2_ONLY = {"1.1.2", "1.1.3", "1.8.1", "2.2.2", "4.1.1", "4.1.2", "5.2.6", "5.2.20"}


class TestBuildCatalog:
    def test_level_filter(self, sample_controls, sample_sections):
        catalog = build_catalog(1, controls=sample_controls, sections=sample_sections)
        assert catalog.ids == ["9.1.1", "9.2.1"]

    def test_level_two_includes_everything(self, sample_controls, sample_sections):
        catalog = build_catalog(2, controls=sample_controls, sections=sample_sections)
        assert catalog.ids == ["9.1.1", "9.1.2", "9.2.1", "9.2.2"]

    def test_skip_sections(self, sample_controls, sample_sections):
        catalog = build_catalog(2, ["9.1"], controls=sample_controls, sections=sample_sections)
        assert catalog.ids == ["9.2.1", "9.2.2"]
        assert catalog.skip_sections == ("9.1",)
        assert [s.key for s in catalog.sections] == ["9.2"]

    def test_deterministic(self, sample_controls, sample_sections):
        first = build_catalog(2, ["9.2"], controls=sample_controls, sections=sample_sections)
        second = build_catalog(2, ["9.2"], controls=sample_controls, sections=sample_sections)
        assert first.ids == second.ids

    @pytest.mark.parametrize("level", [0, 3, "2", True, None])
    def test_invalid_level(self, level):
        with pytest.raises(ConfigurationError, match="level"):
            build_catalog(level)

    def test_string_skip_list_rejected(self, sample_controls):
        with pytest.raises(ConfigurationError, match="not a string"):
            build_catalog(1, "9.1", controls=sample_controls)

    @pytest.mark.parametrize("entry", ["", "  ", 5, None])
    def test_malformed_skip_entry(self, sample_controls, entry):
        with pytest.raises(ConfigurationError, match="Malformed"):
            build_catalog(1, [entry], controls=sample_controls)

    def test_unknown_section_warns(self, sample_controls, caplog):
        with caplog.at_level(logging.WARNING):
            catalog = build_catalog(1, ["7.7"], controls=sample_controls)
        assert "Unknown section" in caplog.text
        assert len(catalog) == 2

    def test_duplicate_ids_rejected(self, make_flag):
        with pytest.raises(ConfigurationError, match="Duplicate"):
            build_catalog(1, controls=[make_flag("9.1.1"), make_flag("9.1.1")])

    def test_override_weight(self, sample_controls):
        catalog = build_catalog(1, controls=sample_controls, overrides={"9.1.1": {"weight": 5}})
        assert catalog.controls[0].weight == 5
        assert sample_controls[0].weight == 1

    def test_override_disable(self, sample_controls):
        catalog = build_catalog(1, controls=sample_controls, overrides={"9.1.1": {"enabled": False}})
        assert catalog.ids == ["9.2.1"]

    def test_unknown_override_warns(self, sample_controls, caplog):
        with caplog.at_level(logging.WARNING):
            build_catalog(1, controls=sample_controls, overrides={"1.2.3": {"weight": 2}})
        assert "unknown control id" in caplog.text

    def test_catalog_is_immutable(self, sample_controls):
        catalog = build_catalog(1, controls=sample_controls)
        with pytest.raises(Exception):
            catalog.level = 2

    def test_section_titles(self, sample_controls, sample_sections):
        catalog = build_catalog(1, controls=sample_controls, sections=sample_sections)
        assert catalog.section_titles["9.2"] == "More flags"
        assert "8.8" not in catalog.section_titles


class TestBuiltinCatalog:
    def test_ids_unique(self):
        ids = [c.id for c in default_controls()]
        assert len(ids) == len(set(ids))

    def test_level_two_size(self):
        assert len(build_catalog(2)) == 130

    def test_level_one_excludes_level_two_controls(self):
        catalog = build_catalog(1)
        assert len(catalog) == 130 - len(LEVEL_2_ONLY)
        assert not LEVEL_2_ONLY & set(catalog.ids)

    def test_every_control_section_is_declared(self):
        declared = {s.key for s in SECTIONS}
        assert {c.section for c in default_controls()} <= declared

    def test_declared_in_section_order(self):
        order = [s.key for s in SECTIONS]
        positions = [order.index(c.section) for c in default_controls()]
        assert positions == sorted(positions)

    def test_skip_ssh_section(self):
        catalog = build_catalog(2, ["5.2"])
        assert not [c for c in catalog if c.section == "5.2"]
        assert len(catalog) == 130 - 22

    def test_parameters_flow_into_controls(self, baseline):
        params = HardeningParameters(ssh_allow_users=["builder", "ops"])
        catalog = build_catalog(1, parameters=params)
        control = next(c for c in catalog if c.id == "5.2.4")
        control.apply(baseline)
        assert "AllowUsers builder ops" in baseline.files["/etc/ssh/sshd_config"]

    def test_list_sections(self):
        sections = list_sections()
        assert sections[0].key == "1.1"
        assert sections[-1].key == "6.2"
