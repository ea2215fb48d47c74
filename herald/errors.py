"""
Error taxonomy for the launcher.

Every fatal condition raised before delegation derives from ``HeraldError`` so
``herald.launcher.main`` can print one descriptive message (plus optional
remediation text) and exit non-zero. Lock problems never show up here: the
locking layer degrades to unsynchronised operation instead of raising.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "ConfigError",
    "DelegateExecError",
    "HeraldError",
    "PrerequisiteError",
    "RebuildError",
    "ResolutionError",
    "RetryExhaustedError",
    "UnknownRevisionError",
]


class HeraldError(Exception):
    """Base class for fatal launcher errors."""

    exit_code: int = 1

    def __init__(self, message: str, *, remediation: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.remediation = remediation

    def render(self) -> str:
        if not self.remediation:
            return f"Error: {self.message}"
        return f"Error: {self.message}\n{self.remediation}"


class PrerequisiteError(HeraldError):
    """Version-control executable missing or the root is not a checkout."""


class ResolutionError(HeraldError):
    """The launcher's own path could not be resolved."""


class UnknownRevisionError(HeraldError):
    """The current source revision could not be determined."""


class ConfigError(HeraldError):
    """``bin/herald.json`` exists but cannot be used."""


class RetryExhaustedError(HeraldError):
    def __init__(self, step: str, attempts: int) -> None:
        super().__init__(f"Command '{step}' still failed after {attempts} tries, giving up.")
        self.step = step
        self.attempts = attempts


class RebuildError(HeraldError):
    """A rebuild step exited non-zero, produced nothing, or hit a filesystem error."""

    def __init__(
        self,
        step: str,
        returncode: Optional[int],
        output: str = "",
        *,
        detail: Optional[str] = None,
    ) -> None:
        if detail is not None:
            message = f"{step} failed: {detail}"
        elif returncode is None:
            message = f"{step} did not produce the expected artifact."
        else:
            message = f"{step} failed with exit code {returncode}."
        super().__init__(message)
        self.step = step
        self.returncode = returncode
        self.output = output

    def render(self) -> str:
        text = super().render()
        if self.output.strip():
            text = f"{self.output.rstrip()}\n{text}"
        return text


class DelegateExecError(HeraldError):
    """The cached artifact could not be launched."""
