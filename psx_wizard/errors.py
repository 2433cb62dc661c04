"""Exception types raised by psx-wizard.

Executors never raise these for per-item failures; they are caught,
converted to strings and reported on the result objects instead.
"""

from __future__ import annotations


class PsxWizardError(Exception):
    """Base class for all psx-wizard errors."""


class ConfigError(PsxWizardError, ValueError):
    """Invalid configuration value."""


class UnsupportedContentModeError(PsxWizardError):
    """Raised for content handling modes that have no defined behavior."""


class ToolError(PsxWizardError):
    """The external conversion tool could not be run."""


class ConversionCancelledError(ToolError):
    """A running conversion was terminated because cancellation was requested."""


class MergeBlockedError(PsxWizardError):
    """A merge operation was planned as blocked and cannot be executed."""
