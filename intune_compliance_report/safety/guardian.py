"""
Safety Guardian — Enforces read-only operation against the tenant.
Rejects any non-read HTTP method and every managed-device action endpoint.
"""

from __future__ import annotations

import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("intune_compliance_report.safety")

READ_METHODS = {"GET", "HEAD", "OPTIONS"}

# Intune remote actions on managedDevices
DEVICE_ACTION_PATTERNS = [
    re.compile(r"/wipe$", re.IGNORECASE),
    re.compile(r"/retire$", re.IGNORECASE),
    re.compile(r"/syncDevice$", re.IGNORECASE),
    re.compile(r"/rebootNow$", re.IGNORECASE),
    re.compile(r"/shutDown$", re.IGNORECASE),
    re.compile(r"/remoteLock$", re.IGNORECASE),
    re.compile(r"/resetPasscode$", re.IGNORECASE),
    re.compile(r"/locateDevice$", re.IGNORECASE),
    re.compile(r"/cleanWindowsDevice$", re.IGNORECASE),
    re.compile(r"/windowsDefenderScan$", re.IGNORECASE),
    re.compile(r"/bypassActivationLock$", re.IGNORECASE),
    re.compile(r"/disableLostMode$", re.IGNORECASE),
    re.compile(r"/deleteUserFromSharedAppleDevice$", re.IGNORECASE),
]


class SafetyViolation(Exception):
    """Raised when a non-read request is attempted."""
    pass


class SafetyGuardian:
    """
    Validates every outbound request before it leaves the Graph client
    and keeps an audit record of the checks.
    """

    def __init__(self):
        self.violations: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = datetime.now(timezone.utc).isoformat()

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Return True for a read request; raise SafetyViolation otherwise.
        """
        self.checks_performed += 1
        method_upper = method.upper()

        if method_upper in READ_METHODS:
            return True

        path = url.split("?", 1)[0]
        for pattern in DEVICE_ACTION_PATTERNS:
            if pattern.search(path):
                self._record_violation(method_upper, url, "Device action endpoint blocked")
                raise SafetyViolation(
                    f"SAFETY VIOLATION: Device action detected: {method_upper} {url}"
                )

        self._record_violation(method_upper, url, "Write HTTP method blocked")
        raise SafetyViolation(
            f"SAFETY VIOLATION: Write method blocked: {method_upper} {url}"
        )

    def _record_violation(self, method: str, url: str, reason: str):
        self.violations.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "url": url,
            "reason": reason,
        })
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the safety audit record for the run."""
        return {
            "mode": "READ-ONLY",
            "started_at": self.started_at,
            "checks_performed": self.checks_performed,
            "violations_detected": len(self.violations),
            "violations": self.violations,
            "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
        }

    @staticmethod
    def print_banner():
        """Print the read-only notice."""
        enc = getattr(sys.stdout, "encoding", "") or ""
        unicode_ok = enc.lower().replace("-", "") in ("utf8", "utf16", "utf32")
        rule = "═" * 70 if unicode_ok else "=" * 70
        print(rule)
        print(" Intune Device Compliance Report")
        print(" Mode: READ-ONLY — devices and policies are never modified")
        print(rule)
