"""Unit tests for podreplay/replay/gate.py."""

import pytest

from podreplay.replay.gate import Decision, ImageSecurityGate, decide
from podreplay.replay.scanner import VulnerabilityScanResult
from tests.mocks import FakeScanner, scan_result

SKIPPED = VulnerabilityScanResult.skipped_result("nginx:latest", "trivy missing")


class TestDecide:
    @pytest.mark.parametrize(
        ("result", "allow", "fail_closed", "expected"),
        [
            (scan_result(), False, False, Decision.PROCEED),
            (scan_result(high=5, medium=3), False, False, Decision.PROCEED),
            (scan_result(critical=1), False, False, Decision.NEEDS_CONFIRMATION),
            (scan_result(critical=1), True, False, Decision.PROCEED),
            (SKIPPED, False, False, Decision.PROCEED),
            (SKIPPED, False, True, Decision.BLOCKED),
            (scan_result(critical=3), False, True, Decision.NEEDS_CONFIRMATION),
        ],
    )
    def test_decision_table(self, result, allow, fail_closed, expected):
        assert decide(result, allow_critical_vulnerabilities=allow, fail_closed=fail_closed) == expected


class TestImageSecurityGate:
    async def test_evaluate_returns_scan_and_decision(self):
        scanner = FakeScanner(scan_result(critical=2))
        gate = ImageSecurityGate(scanner)

        result, decision = await gate.evaluate("nginx:latest")

        assert scanner.scanned == ["nginx:latest"]
        assert result.vulnerabilities.critical == 2
        assert decision == Decision.NEEDS_CONFIRMATION

    async def test_unexpected_scanner_error_fails_open(self):
        gate = ImageSecurityGate(FakeScanner(error=RuntimeError("boom")))

        result, decision = await gate.evaluate("nginx:latest")

        assert result.skipped is True
        assert "boom" in result.skip_reason
        assert decision == Decision.PROCEED

    async def test_unexpected_scanner_error_fail_closed(self):
        gate = ImageSecurityGate(FakeScanner(error=RuntimeError("boom")), fail_closed=True)
        _, decision = await gate.evaluate("nginx:latest")
        assert decision == Decision.BLOCKED
