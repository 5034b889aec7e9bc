"""Error taxonomy for HaarScan."""

from __future__ import annotations


class HaarScanError(Exception):
    """Base class for all HaarScan errors."""


class ConfigError(HaarScanError, ValueError):
    """A cascade model is malformed or self-inconsistent."""


class InputError(HaarScanError, ValueError):
    """A pixel buffer (or uploaded image) cannot be scanned."""


class ScanCancelledError(HaarScanError):
    """The caller cancelled a scan before it completed."""


class ScanDeadlineExceeded(HaarScanError, TimeoutError):
    """A scan ran past the caller-supplied deadline."""
