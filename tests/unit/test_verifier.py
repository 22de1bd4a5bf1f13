"""Tests for core/verifier.py."""

from __future__ import annotations

import pytest

from hardengate.core.catalog import build_catalog
from hardengate.core.errors import ControlVerifyError, TargetUnreachableError
from hardengate.core.executor import apply_catalog
from hardengate.core.verifier import NOT_VERIFIED_DETAIL, unverified, verify_catalog, verify_control
from hardengate.models.control import Control, VerificationStatus


class TestVerifyControl:
    def test_pass_and_fail(self, empty_target, make_flag):
        control = make_flag("9.1.1", weight=3)
        before = verify_control(control, empty_target)
        assert before.status == VerificationStatus.FAIL
        assert not before.error
        assert before.weight == 3

        control.apply(empty_target)
        after = verify_control(control, empty_target)
        assert after.status == VerificationStatus.PASS
        assert after.section == "9.1"
        assert after.description == "Flag 9.1.1"

    def test_missing_predicate_is_not_applicable(self, empty_target):
        control = Control(id="9.1.1", section="9.1", level=1, description="x", apply=lambda t: None)
        result = verify_control(control, empty_target)
        assert result.status == VerificationStatus.NOT_APPLICABLE

    def test_precondition_false_is_not_applicable(self, empty_target, make_flag):
        control = make_flag("9.1.1").model_copy(update={"precondition": lambda t: False})
        assert verify_control(control, empty_target).status == VerificationStatus.NOT_APPLICABLE

    def test_predicate_error_is_fail_with_error_flag(self, empty_target, make_raising):
        result = verify_control(make_raising("9.1.1", OSError("permission denied")), empty_target)
        assert result.status == VerificationStatus.FAIL
        assert result.error
        assert "permission denied" in result.detail

    def test_verify_error_detail_kept(self, empty_target, make_raising):
        result = verify_control(make_raising("9.1.1", ControlVerifyError("sshd -T failed")), empty_target)
        assert result.error
        assert result.detail == "sshd -T failed"

    def test_non_check_return_is_error(self, empty_target):
        control = Control(
            id="9.1.1", section="9.1", level=1, description="x",
            apply=lambda t: None, verify=lambda t: True,
        )
        result = verify_control(control, empty_target)
        assert result.status == VerificationStatus.FAIL
        assert result.error
        assert "expected Check" in result.detail

    def test_fixed_statuses(self, empty_target, make_fixed):
        for status in VerificationStatus:
            assert verify_control(make_fixed("9.1.1", status), empty_target).status == status

    def test_unreachable_propagates(self, empty_target, make_raising):
        with pytest.raises(TargetUnreachableError):
            verify_control(make_raising("9.1.1", TargetUnreachableError("gone")), empty_target)


class TestVerifyCatalog:
    def test_independent_of_apply(self, empty_target, sample_controls):
        catalog = build_catalog(2, controls=sample_controls)
        empty_target.add_file("/etc/flags/9.1.2", "on\n")
        results = verify_catalog(catalog, empty_target)
        assert [r.control_id for r in results] == catalog.ids
        assert [r.status for r in results] == [
            VerificationStatus.FAIL, VerificationStatus.PASS, VerificationStatus.FAIL, VerificationStatus.FAIL,
        ]

    def test_all_pass_after_apply(self, empty_target, sample_controls):
        catalog = build_catalog(2, controls=sample_controls)
        apply_catalog(catalog, empty_target)
        assert all(r.status == VerificationStatus.PASS for r in verify_catalog(catalog, empty_target))

    def test_unreachable_carries_partial_results(self, empty_target, make_flag, make_raising):
        controls = [make_flag("9.1.1"), make_raising("9.1.2", TargetUnreachableError("x")), make_flag("9.1.3")]
        catalog = build_catalog(1, controls=controls)
        with pytest.raises(TargetUnreachableError) as excinfo:
            verify_catalog(catalog, empty_target)
        assert [r.control_id for r in excinfo.value.verifications] == ["9.1.1"]

    def test_on_result_callback(self, empty_target, sample_controls):
        seen = []
        catalog = build_catalog(1, controls=sample_controls)
        verify_catalog(catalog, empty_target, on_result=lambda control, result: seen.append(result.control_id))
        assert seen == catalog.ids


class TestUnverified:
    def test_placeholder(self, make_flag):
        result = unverified(make_flag("9.1.1", weight=2))
        assert result.status == VerificationStatus.FAIL
        assert result.error
        assert result.detail == NOT_VERIFIED_DETAIL
        assert result.weight == 2
