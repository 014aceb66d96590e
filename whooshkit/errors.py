from __future__ import annotations


class WhooshError(Exception):
    """Base error for the whooshkit library."""


class InvalidParameterError(WhooshError, ValueError):
    """Raised when settings or arguments violate their documented constraints."""


class DeviceUnavailableError(WhooshError):
    """Raised when the live audio output device cannot be acquired or started."""


class RenderFailureError(WhooshError):
    """Raised when an offline render cannot complete."""
