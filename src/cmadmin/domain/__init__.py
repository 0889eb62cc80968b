"""
Domain layer package.

Contains pure data models with no I/O dependencies: connection state,
object handles, method results, filters, settings and error types.
"""

from cmadmin.domain.config import ClientSettings, GatewaySettings, RetryPolicy
from cmadmin.domain.errors import (
    CMConnectionError,
    CMError,
    ConfigurationError,
    ObjectNotFoundError,
    ProviderNotFoundError,
    RemoteCallError,
    SessionError,
    TransportError,
)
from cmadmin.domain.filters import (
    AllOf,
    AnyOf,
    Comparison,
    RawFilter,
    all_of,
    any_of,
    build_predicate,
    field_in,
    render_filter,
)
from cmadmin.domain.models import (
    Connection,
    Credential,
    ManagementObject,
    MethodResult,
    Session,
    SessionProtocol,
)

__all__ = [
    # Settings
    "ClientSettings",
    "GatewaySettings",
    "RetryPolicy",
    # Errors
    "CMError",
    "CMConnectionError",
    "ConfigurationError",
    "ObjectNotFoundError",
    "ProviderNotFoundError",
    "RemoteCallError",
    "SessionError",
    "TransportError",
    # Filters
    "AllOf",
    "AnyOf",
    "Comparison",
    "RawFilter",
    "all_of",
    "any_of",
    "build_predicate",
    "field_in",
    "render_filter",
    # Models
    "Connection",
    "Credential",
    "ManagementObject",
    "MethodResult",
    "Session",
    "SessionProtocol",
]
