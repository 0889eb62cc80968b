"""CIM access: transport boundary, session cache and retry policy."""

from cmadmin.infrastructure.cim.retry import call_with_retry, is_transient, retry_with_policy
from cmadmin.infrastructure.cim.sessions import SessionManager
from cmadmin.infrastructure.cim.transport import ManagementTransport, PowerShellCimTransport

__all__ = [
    "ManagementTransport",
    "PowerShellCimTransport",
    "SessionManager",
    "call_with_retry",
    "is_transient",
    "retry_with_policy",
]
