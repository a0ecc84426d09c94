"""Image security gate.

Turns a vulnerability scan into a replay decision:

    critical == 0                                  -> PROCEED
    critical > 0, critical vulnerabilities allowed -> PROCEED
    critical > 0, not allowed                      -> NEEDS_CONFIRMATION
    scan skipped                                   -> PROCEED (fail-open), or
                                                      BLOCKED when fail_closed

Asking the operator for confirmation is the orchestrator's job; a
declined confirmation is treated as BLOCKED there.
"""

import logging
from enum import StrEnum

from podreplay.replay.scanner import ImageScanner, VulnerabilityScanResult

logger = logging.getLogger(__name__)


class Decision(StrEnum):
    """Outcome of the image security gate."""

    PROCEED = "proceed"
    BLOCKED = "blocked"
    NEEDS_CONFIRMATION = "needs_confirmation"


def decide(
    result: VulnerabilityScanResult,
    *,
    allow_critical_vulnerabilities: bool = False,
    fail_closed: bool = False,
) -> Decision:
    """Pure decision over a scan result."""
    if result.skipped:
        return Decision.BLOCKED if fail_closed else Decision.PROCEED
    if result.vulnerabilities.critical > 0 and not allow_critical_vulnerabilities:
        return Decision.NEEDS_CONFIRMATION
    return Decision.PROCEED


class ImageSecurityGate:
    """Scans an image and renders a pass/block/confirm decision."""

    def __init__(
        self,
        scanner: ImageScanner,
        *,
        allow_critical_vulnerabilities: bool = False,
        fail_closed: bool = False,
    ) -> None:
        self.scanner = scanner
        self.allow_critical_vulnerabilities = allow_critical_vulnerabilities
        self.fail_closed = fail_closed

    async def evaluate(self, image: str) -> tuple[VulnerabilityScanResult, Decision]:
        """Scan ``image`` and decide whether the replay may proceed.

        Never raises for scanner problems: an unavailable or failing
        scanner yields a skipped, all-zero result.
        """
        try:
            result = await self.scanner.scan(image)
        except Exception as e:
            logger.warning("Image scan skipped for %s: unexpected scanner error: %s", image, e)
            result = VulnerabilityScanResult.skipped_result(image, f"unexpected scanner error: {e!s}")

        decision = decide(
            result,
            allow_critical_vulnerabilities=self.allow_critical_vulnerabilities,
            fail_closed=self.fail_closed,
        )

        if result.skipped:
            if decision == Decision.BLOCKED:
                logger.warning("Scan skipped for %s and fail-closed is set; blocking", image)
            else:
                logger.warning(
                    "Scan skipped for %s; proceeding without vulnerability information (fail-open)",
                    image,
                )
        elif result.vulnerabilities.critical > 0:
            logger.warning(
                "Image %s has %d critical vulnerabilities (decision: %s)",
                image,
                result.vulnerabilities.critical,
                decision.value,
            )

        return result, decision
