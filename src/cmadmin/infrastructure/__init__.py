"""
Infrastructure layer package.

Contains all I/O and external system integrations:
- PowerShell execution, local or over WinRM (psremote/)
- CIM transport, session cache and retry (cim/)
- Settings and credential files (config/)
- Logging setup
"""
