"""
PSRemote Infrastructure Package.

Runs the generated PowerShell CIM scripts, either in a local
powershell.exe or on a WinRM gateway via pywinrm.
"""

from cmadmin.infrastructure.psremote.runner import (
    AuthMethod,
    PowerShellRunner,
    RunResult,
    Transport,
)

__all__ = [
    "AuthMethod",
    "PowerShellRunner",
    "RunResult",
    "Transport",
]
