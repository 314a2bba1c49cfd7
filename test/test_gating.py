"""
Unit tests for the gating verdict.
"""

from conftest import make_finding
from review_router.schemas.common import Provenance, Severity
from review_router.schemas.config import GatingConfig
from review_router.schemas.report import DriftLevel, DriftSignal
from review_router.supervisor.gating import evaluate_gating, is_blocking


def _inline(level: DriftLevel) -> DriftSignal:
    return DriftSignal(level=level, degradation_percent=60.0, auto_fix_percent=0.0, message="60% degraded")


class TestGating:

    def test_disabled_always_passes(self):
        verdict = evaluate_gating(GatingConfig(enabled=False), [make_finding(severity=Severity.ERROR)])

        assert verdict.passed
        assert not verdict.enabled

    def test_blocking_error_fails(self):
        verdict = evaluate_gating(GatingConfig(enabled=True), [make_finding(severity=Severity.ERROR)])

        assert not verdict.passed
        assert verdict.blocking_count == 1

    def test_warning_below_error_threshold_passes(self):
        verdict = evaluate_gating(GatingConfig(enabled=True), [make_finding(severity=Severity.WARNING)])
        assert verdict.passed

    def test_warning_threshold_blocks_errors_and_warnings(self):
        gating = GatingConfig(enabled=True, fail_on_severity=Severity.WARNING)
        findings = [
            make_finding(severity=Severity.ERROR),
            make_finding(severity=Severity.WARNING, line=12),
            make_finding(severity=Severity.INFO, line=13),
        ]

        assert evaluate_gating(gating, findings).blocking_count == 2

    def test_partial_findings_never_gate(self):
        partial = make_finding(severity=Severity.ERROR).model_copy(update={"provenance": Provenance.PARTIAL})
        assert evaluate_gating(GatingConfig(enabled=True), [partial]).passed

    def test_drift_gate_suppresses_inline(self):
        verdict = evaluate_gating(GatingConfig(enabled=True, drift_gate=True), [], _inline(DriftLevel.FAIL))

        assert verdict.passed
        assert verdict.suppress_inline

    def test_drift_failure_fails_when_configured(self):
        gating = GatingConfig(enabled=True, drift_gate=True, fail_on_drift=True)
        verdict = evaluate_gating(gating, [], _inline(DriftLevel.FAIL))

        assert not verdict.passed
        assert "drift" in verdict.reason

    def test_drift_warn_does_not_suppress(self):
        verdict = evaluate_gating(GatingConfig(enabled=True, drift_gate=True), [], _inline(DriftLevel.WARN))
        assert not verdict.suppress_inline

    def test_is_blocking(self):
        assert is_blocking(make_finding(severity=Severity.ERROR), Severity.WARNING)
        assert not is_blocking(make_finding(severity=Severity.INFO), Severity.WARNING)
