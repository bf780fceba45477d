"""
core/errors.py -- Exception taxonomy shared by every layer.

Only AuthenticationError and ConfigurationError ever reach a caller. Provider
failures are raised inside events/ as ProviderError and are logged there; the
code that triggered a lifecycle action never sees them.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/, or events/.
"""

from __future__ import annotations


class StudioError(Exception):
    """Base class for all studio errors."""

    code: str = "studio_error"


class AuthenticationError(StudioError):
    """Missing, expired, or tampered studio session.

    The message is deliberately the same for every cause so a client cannot
    tell an expired cookie from a forged one.
    """

    code = "unauthorized"

    def __init__(self, message: str = "Authentication required.") -> None:
        super().__init__(message)


class ConfigurationError(StudioError):
    """Invalid studio configuration, detected at construction time."""

    code = "configuration_error"


class ProviderError(StudioError):
    """An event ingestion provider could not perform the requested operation."""

    code = "provider_error"
