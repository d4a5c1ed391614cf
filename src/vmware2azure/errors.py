"""Error taxonomy for a migration attempt.

Every error is terminal for the attempt that raised it. The orchestrator
turns them into a FAILED outcome carrying ``str(error)``.
"""

from __future__ import annotations

from typing import Optional


class MigrationError(Exception):
    """Base class for all migration failures."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail and self.detail not in self.message:
            return f"{self.message}: {self.detail}"
        return self.message


class TransportError(MigrationError):
    """The conversion host or the cloud API could not be reached, or rejected the session."""


class ConversionError(MigrationError):
    """The remote conversion script reported error output."""


class DependencyError(MigrationError):
    """A resource a provisioning step depends on did not resolve."""


class ProvisioningError(MigrationError):
    """The cloud control plane rejected or failed a create request."""

    def __init__(self, message: str, detail: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message, detail)
        self.code = code

    def __str__(self) -> str:
        text = super().__str__()
        if self.code and self.code not in text:
            return f"{text} [{self.code}]"
        return text


class SourceVMError(MigrationError):
    """The source VM could not be found or controlled on the hypervisor."""


class PowerOffTimeoutError(MigrationError):
    """The source VM did not reach powered-off within the allowed number of checks."""


class MigrationInProgressError(MigrationError):
    """Another attempt for the same VM is still active."""
