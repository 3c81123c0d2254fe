"""Exception hierarchy shared by the engine and its front ends."""

from __future__ import annotations


class ShrinkError(Exception):
    """Base class for all errors raised by shrink."""


class FileAccessError(ShrinkError):
    """Permission denied, vanished file, disk full or any other I/O failure."""


class CompressionError(ShrinkError):
    """The codec failed or produced a stream that does not round-trip."""


class IntegrityError(ShrinkError):
    """The replacement could not be put in place safely."""


class ConfigError(ShrinkError):
    """Invalid configuration value. Only raised at startup."""


class InvalidTransition(ShrinkError):
    """A candidate was asked to move to a state it cannot reach."""


class ConfirmationRequired(ShrinkError):
    """A destructive operation was called without explicit confirmation."""


class CandidateBusy(ShrinkError):
    """The candidate is being compressed and cannot be touched right now."""
