"""Image vulnerability scanning via an external scanner (trivy).

The scanner is a black box: it is run as a subprocess against an image
reference and only the severity of each finding is read from its JSON
output. When the scanner is missing, one best-effort install is attempted
per process. A scan that cannot run yields an all-zero result marked
``SKIPPED``, which is never the same thing as a clean scan.
"""

import asyncio
import json
import logging
import os
import shutil
import sys
import time
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

TRIVY_INSTALL_SCRIPT = "https://raw.githubusercontent.com/aquasecurity/trivy/main/contrib/install.sh"

SEVERITIES = ("critical", "high", "medium", "low", "unknown")


class ScanStatus(StrEnum):
    """Whether the scanner actually ran."""

    COMPLETED = "completed"
    SKIPPED = "skipped"


class VulnerabilityCounts(BaseModel):
    """Per-severity finding counts."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    unknown: int = 0

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low + self.unknown


class VulnerabilityScanResult(BaseModel):
    """Result of scanning one image."""

    image: str = Field(..., description="Scanned image reference")
    vulnerabilities: VulnerabilityCounts = Field(default_factory=VulnerabilityCounts)
    details: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Raw per-vulnerability entries from the scanner",
    )
    scanned_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    scan_duration_ms: int = Field(default=0, ge=0)
    status: ScanStatus = ScanStatus.COMPLETED
    skip_reason: str | None = Field(default=None, description="Why the scan did not run")

    @property
    def skipped(self) -> bool:
        return self.status == ScanStatus.SKIPPED

    @classmethod
    def skipped_result(cls, image: str, reason: str, duration_ms: int = 0) -> "VulnerabilityScanResult":
        """The all-zero result returned when the scan could not run."""
        return cls(
            image=image,
            status=ScanStatus.SKIPPED,
            skip_reason=reason,
            scan_duration_ms=duration_ms,
        )


def count_vulnerabilities(scan_data: Any) -> tuple[VulnerabilityCounts, list[dict[str, Any]]]:
    """Count findings by severity in a trivy JSON report.

    Unknown fields are ignored; findings with a missing or unrecognized
    severity count as ``unknown``.

    Returns:
        Tuple of (counts, flattened per-vulnerability details)
    """
    counts = dict.fromkeys(SEVERITIES, 0)
    details: list[dict[str, Any]] = []

    results = scan_data.get("Results") if isinstance(scan_data, dict) else None
    if not isinstance(results, list):
        return VulnerabilityCounts(**counts), details

    for result in results:
        if not isinstance(result, dict):
            continue
        vulnerabilities = result.get("Vulnerabilities")
        if not isinstance(vulnerabilities, list):
            continue
        for vuln in vulnerabilities:
            if not isinstance(vuln, dict):
                continue
            severity = vuln.get("Severity")
            severity = severity.lower() if isinstance(severity, str) else "unknown"
            counts[severity if severity in counts else "unknown"] += 1
            details.append({"Target": result.get("Target"), **vuln})

    return VulnerabilityCounts(**counts), details


class ImageScanner:
    """Runs the external vulnerability scanner against an image.

    Usage:
        scanner = ImageScanner()
        result = await scanner.scan("nginx:latest")
        if result.skipped:
            ...
    """

    _INSTALL_TIMEOUT = 300  # seconds

    def __init__(
        self,
        binary: str = "trivy",
        timeout_seconds: int = 300,
        auto_install: bool = True,
        install_dir: str = "/usr/local/bin",
        platform: str | None = None,
    ) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds
        self.auto_install = auto_install
        self.install_dir = install_dir
        self.platform = platform or sys.platform
        self._install_attempted: bool = False  # Only attempt install once per process
        self._install_lock = asyncio.Lock()

    def locate(self) -> str | None:
        """Path to the scanner executable, if installed."""
        return shutil.which(self.binary) or shutil.which(self.binary, path=self.install_dir)

    async def ensure_installed(self) -> str | None:
        """Locate the scanner, installing it once if missing.

        Returns:
            Path to the scanner executable, or None if unavailable
        """
        path = self.locate()
        if path is not None:
            return path

        if not self.auto_install:
            return None

        # Concurrent scans wait for the single install attempt
        async with self._install_lock:
            if self._install_attempted:
                return self.locate()

            self._install_attempted = True
            logger.warning("%s is not installed. Attempting installation...", self.binary)
            if await self._install():
                path = self.locate()
                if path is not None:
                    logger.info("Installed %s at %s", self.binary, path)
                    return path
            logger.warning("Automatic installation of %s failed", self.binary)
            return None

    async def _install(self) -> bool:
        """Platform-specific best-effort installation."""
        script = f"curl -sfL {TRIVY_INSTALL_SCRIPT} | sh -s -- -b {self.install_dir}"

        if self.platform == "darwin":
            if await self._run_install(["brew", "install", "aquasecurity/trivy/trivy"]):
                return True
            logger.warning("Homebrew not available, trying direct download")
            return await self._run_install(["sh", "-c", script])

        if self.platform.startswith("linux"):
            return await self._run_install(["sh", "-c", script])

        logger.error("Unsupported platform for automatic %s installation: %s", self.binary, self.platform)
        return False

    async def _run_install(self, cmd: list[str]) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            await asyncio.wait_for(process.communicate(), timeout=self._INSTALL_TIMEOUT)
            return process.returncode == 0
        except TimeoutError:
            logger.warning("Install command %s timed out after %ds", cmd[0], self._INSTALL_TIMEOUT)
            return False
        except Exception as exc:
            logger.warning("Install command %s failed: %s", cmd[0], exc)
            return False

    async def scan(self, image: str) -> VulnerabilityScanResult:
        """Scan an image. Never raises.

        Args:
            image: Image reference to scan

        Returns:
            VulnerabilityScanResult; ``status`` is SKIPPED when the scan could not run
        """
        start = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        binary_path = await self.ensure_installed()
        if binary_path is None:
            reason = f"{self.binary} is not available and could not be installed"
            logger.warning("Image scan skipped for %s: %s", image, reason)
            return VulnerabilityScanResult.skipped_result(image, reason, elapsed_ms())

        cmd = [
            binary_path,
            "image",
            "--format",
            "json",
            "--quiet",
            "--severity",
            "CRITICAL,HIGH,MEDIUM,LOW,UNKNOWN",
            image,
        ]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, "TRIVY_NO_PROGRESS": "true"},
            )
            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(),
                    timeout=self.timeout_seconds,
                )
            except TimeoutError:
                process.kill()
                await process.wait()
                reason = f"scan timed out after {self.timeout_seconds}s"
                logger.warning("Image scan skipped for %s: %s", image, reason)
                return VulnerabilityScanResult.skipped_result(image, reason, elapsed_ms())
        except Exception as e:
            reason = f"scanner could not be started: {e!s}"
            logger.warning("Image scan skipped for %s: %s", image, reason)
            return VulnerabilityScanResult.skipped_result(image, reason, elapsed_ms())

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[:500]
            reason = f"scanner exited with code {process.returncode}: {detail}"
            logger.warning("Image scan skipped for %s: %s", image, reason)
            return VulnerabilityScanResult.skipped_result(image, reason, elapsed_ms())

        try:
            scan_data = json.loads(stdout or b"{}")
        except ValueError as e:
            reason = f"unparseable scanner output: {e!s}"
            logger.warning("Image scan skipped for %s: %s", image, reason)
            return VulnerabilityScanResult.skipped_result(image, reason, elapsed_ms())

        counts, details = count_vulnerabilities(scan_data)
        result = VulnerabilityScanResult(
            image=image,
            vulnerabilities=counts,
            details=details,
            scan_duration_ms=elapsed_ms(),
        )
        if counts.total == 0:
            logger.info("Image scan clean for %s (%dms)", image, result.scan_duration_ms)
        else:
            logger.info(
                "Image scan completed for %s: %s (%dms)",
                image,
                counts.model_dump(),
                result.scan_duration_ms,
            )
        return result


def _risk_assessment(counts: VulnerabilityCounts) -> str:
    if counts.critical > 0:
        return "CRITICAL RISK - Image contains critical vulnerabilities that should be addressed immediately"
    if counts.high > 0:
        return "HIGH RISK - Image contains high severity vulnerabilities that pose significant risk"
    if counts.medium > 0:
        return "MEDIUM RISK - Image contains medium severity vulnerabilities that should be reviewed"
    if counts.low > 0:
        return "LOW RISK - Image contains only low severity vulnerabilities"
    return "MINIMAL RISK - No known vulnerabilities detected"


def _recommendation(counts: VulnerabilityCounts) -> str:
    if counts.critical > 0 or counts.high > 0:
        return (
            "DO NOT deploy this image to production. Update base image and "
            "dependencies to patch vulnerabilities."
        )
    if counts.medium > 0:
        return "Review and patch medium severity vulnerabilities before production deployment."
    return "Image is relatively safe for deployment. Continue monitoring for new vulnerabilities."


def render_security_report(result: VulnerabilityScanResult) -> str:
    """Render a plain-text security report for a scan result."""
    if result.skipped:
        return "\n".join(
            [
                "=== IMAGE SECURITY SCAN REPORT ===",
                f"Image: {result.image}",
                f"Scanned at: {result.scanned_at.isoformat()}",
                "",
                f"SCAN SKIPPED: {result.skip_reason}",
                "No vulnerability information is available for this image.",
            ]
        )

    counts = result.vulnerabilities
    return "\n".join(
        [
            "=== IMAGE SECURITY SCAN REPORT ===",
            f"Image: {result.image}",
            f"Scanned at: {result.scanned_at.isoformat()}",
            f"Scan duration: {result.scan_duration_ms}ms",
            "",
            "VULNERABILITY SUMMARY:",
            f"- Critical: {counts.critical}",
            f"- High: {counts.high}",
            f"- Medium: {counts.medium}",
            f"- Low: {counts.low}",
            f"- Unknown: {counts.unknown}",
            "",
            f"TOTAL: {counts.total} vulnerabilities",
            "",
            "RISK ASSESSMENT:",
            _risk_assessment(counts),
            "",
            "RECOMMENDATION:",
            _recommendation(counts),
        ]
    )


__all__ = [
    "ImageScanner",
    "ScanStatus",
    "VulnerabilityCounts",
    "VulnerabilityScanResult",
    "count_vulnerabilities",
    "render_security_report",
]
