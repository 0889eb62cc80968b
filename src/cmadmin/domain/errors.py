"""
Error types for provider operations.

Separates the failure classes callers care about:
- configuration errors (bad arguments, raised before any remote call)
- connection errors (session or provider resolution, fatal)
- transport errors (a remote call did not happen; may be transient)
- resolution misses (update/delete target not found)

Method calls that execute but report a non-zero ReturnValue are NOT errors;
they come back as MethodResult data.
"""

from __future__ import annotations

from typing import Optional


def normalize_hresult(value: Optional[int]) -> Optional[int]:
    """Return the HRESULT as an unsigned 32-bit integer (or None)."""
    if value is None:
        return None
    try:
        return int(value) & 0xFFFFFFFF
    except (TypeError, ValueError):
        return None


class CMError(Exception):
    """Base exception for all cmadmin failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(CMError, ValueError):
    """Invalid or missing arguments. Never retried."""


class CMConnectionError(CMError):
    """Connection bootstrap failed; the connection state has been cleared."""

    def __init__(self, message: str, host: Optional[str] = None):
        super().__init__(message)
        self.host = host


class SessionError(CMConnectionError):
    """No transport session could be opened to a host."""


class ProviderNotFoundError(CMConnectionError):
    """No SMS provider location matched the connection request."""


class TransportError(CMError):
    """A remote call failed before a result was produced."""

    def __init__(self, message: str, host: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.host = host
        self.operation = operation


class RemoteCallError(TransportError):
    """
    The remote side raised an error for a call.

    Carries the HRESULT reported by the provider (if any) so the retry
    wrapper can recognise transient RPC faults.
    """

    def __init__(
        self,
        message: str,
        hresult: Optional[int] = None,
        host: Optional[str] = None,
        operation: Optional[str] = None,
        error_type: Optional[str] = None,
    ):
        super().__init__(message, host=host, operation=operation)
        self.hresult = normalize_hresult(hresult)
        self.error_type = error_type

    def __str__(self) -> str:
        if self.hresult is not None:
            return f"{self.message} (HRESULT 0x{self.hresult:08X})"
        return self.message


class ObjectNotFoundError(CMError, LookupError):
    """An update/delete target could not be resolved."""

    def __init__(self, class_name: str, filter_text: str = ""):
        message = f"No {class_name} object matched"
        if filter_text:
            message += f" filter: {filter_text}"
        super().__init__(message)
        self.class_name = class_name
        self.filter_text = filter_text
