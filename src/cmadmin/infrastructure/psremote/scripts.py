"""
PowerShell script builders for CIM operations.

Every script shares the same frame: build a CIM session (WSMan or DCOM),
run one body, and print a single JSON envelope:

    {"ok": true, "data": ...}
    {"ok": false, "error": "...", "hresult": 2147944126, "type": "..."}

Instances are written as records with __CLASS/__NAMESPACE/__KEYS/__PATH
and a Properties map so the Python side can rebuild ManagementObjects.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from cmadmin.domain.errors import ConfigurationError
from cmadmin.domain.filters import Comparison, all_of
from cmadmin.domain.models import Credential, ManagementObject, Session, SessionProtocol

JSON_DEPTH = 10

HELPERS = r"""
$ErrorActionPreference = 'Stop'
$ProgressPreference = 'SilentlyContinue'
function ConvertTo-CMValue($v) {
    if ($null -eq $v) { return $null }
    if ($v -is [Microsoft.Management.Infrastructure.CimInstance] -or $v -is [System.Management.ManagementBaseObject]) { return ConvertTo-CMRecord $v }
    if ($v -is [array]) { return ,@($v | ForEach-Object { ConvertTo-CMValue $_ }) }
    if ($v -is [datetime]) { return $v.ToString('o') }
    return $v
}
function ConvertTo-CMRecord($o) {
    $props = [ordered]@{}
    if ($o -is [Microsoft.Management.Infrastructure.CimInstance]) {
        foreach ($p in $o.CimInstanceProperties) { $props[$p.Name] = ConvertTo-CMValue $p.Value }
        $keys = @($o.CimClass.CimClassProperties | Where-Object { $_.Flags -band [Microsoft.Management.Infrastructure.CimFlags]::Key } | ForEach-Object { $_.Name })
        return [ordered]@{ __CLASS = $o.CimClass.CimClassName; __NAMESPACE = $o.CimSystemProperties.Namespace; __KEYS = $keys; __PATH = $null; Properties = $props }
    }
    foreach ($p in $o.Properties) { $props[$p.Name] = ConvertTo-CMValue $p.Value }
    $keys = @($o.Properties | Where-Object { @($_.Qualifiers | Where-Object { $_.Name -eq 'key' }).Count -gt 0 } | ForEach-Object { $_.Name })
    return [ordered]@{ __CLASS = $o.__CLASS; __NAMESPACE = $o.__NAMESPACE; __KEYS = $keys; __PATH = $o.__PATH; Properties = $props }
}
function Write-CMResult($Data) {
    ConvertTo-Json -InputObject ([ordered]@{ ok = $true; data = $Data }) -Depth %(depth)d -Compress
}
"""

CATCH = r"""
} catch {
    $e = $_.Exception
    while ($e.InnerException -and -not $e.ErrorData) { if ($e -is [System.Runtime.InteropServices.COMException]) { break }; $e = $e.InnerException }
    $code = $e.HResult
    if ($e.ErrorData -and $e.ErrorData.CimInstanceProperties['error_Code']) { $code = [int64]$e.ErrorData.CimInstanceProperties['error_Code'].Value }
    ConvertTo-Json -InputObject ([ordered]@{ ok = $false; error = $e.Message; hresult = $code; type = $e.GetType().FullName }) -Compress
} finally {
    if ($cimSession) { Remove-CimSession -CimSession $cimSession -ErrorAction SilentlyContinue }
}
"""


def ps_quote(value: str) -> str:
    """Single-quoted PowerShell string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def ps_literal(value: Any, namespace: str = "") -> str:
    """Render a Python value as a PowerShell expression."""
    if value is None:
        return "$null"
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, int):
        return f"[int64]{value}" if abs(value) > 2**31 - 1 else str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        return ps_quote(value)
    if isinstance(value, datetime):
        return f"[datetime]{ps_quote(value.isoformat())}"
    if isinstance(value, ManagementObject):
        return instance_expression(value, namespace)
    if isinstance(value, Mapping):
        return ps_hashtable(value, namespace)
    if isinstance(value, (list, tuple, set)):
        return "@(" + ", ".join(ps_literal(v, namespace) for v in value) + ")"
    raise ConfigurationError(f"Cannot pass value of type {type(value).__name__} to PowerShell")


def ps_hashtable(values: Mapping[str, Any], namespace: str = "") -> str:
    items = "; ".join(f"{ps_quote(k)} = {ps_literal(v, namespace)}" for k, v in values.items())
    return "@{" + items + "}"


def key_filter(obj: ManagementObject) -> str:
    """WQL filter addressing `obj` through its key properties."""
    if not obj.key_properties:
        raise ConfigurationError(f"{obj.class_name} instance has no key properties to address it by")
    clauses = []
    for name, value in obj.key_values.items():
        if value is None:
            raise ConfigurationError(f"{obj.class_name} key property {name} is not set")
        clauses.append(Comparison(name, "=", value))
    return str(all_of(*clauses))


def instance_expression(obj: ManagementObject, namespace: str = "") -> str:
    """
    PowerShell expression producing `obj` inside a script.

    Client-only (embedded) instances are rebuilt in memory; committed ones are
    re-read from the provider by key.
    """
    ns = obj.namespace or namespace
    if obj.is_client_only:
        props = {k: v for k, v in obj.properties.items() if v is not None}
        return (
            f"(New-CimInstance -ClientOnly -Namespace {ps_quote(ns)} -ClassName {ps_quote(obj.class_name)} "
            f"-Property {ps_hashtable(props, ns)})"
        )
    return (
        f"(Get-CimInstance -CimSession $cimSession -Namespace {ps_quote(ns)} "
        f"-ClassName {ps_quote(obj.class_name)} -Filter {ps_quote(key_filter(obj))})"
    )


# The password never appears in script text; runners pass it in the
# environment of the PowerShell process.
PASSWORD_ENV = "CMADMIN_CIM_PASSWORD"


def credential_block(credential: Optional[Credential]) -> str:
    if credential is None:
        return "$cred = $null\n"
    return (
        f"$securePassword = ConvertTo-SecureString $env:{PASSWORD_ENV} -AsPlainText -Force\n"
        f"$cred = New-Object System.Management.Automation.PSCredential({ps_quote(credential.username)}, $securePassword)\n"
    )


def script_environment(credential: Optional[Credential]) -> Dict[str, str]:
    """Environment variables a framed script expects for `credential`."""
    if credential is None:
        return {}
    return {PASSWORD_ENV: credential.get_password()}


def session_block(session: Session) -> str:
    """Create `$cimSession` for the session's host and protocol."""
    parts = [f"$sessionArgs = @{{ ComputerName = {ps_quote(session.host)} }}"]
    parts.append("if ($cred) { $sessionArgs['Credential'] = $cred }")
    if session.protocol is SessionProtocol.DCOM:
        parts.append("$sessionArgs['SessionOption'] = New-CimSessionOption -Protocol Dcom")
    parts.append("$cimSession = New-CimSession @sessionArgs")
    return "\n".join(parts) + "\n"


def wmi_args_block(session: Session, namespace: str) -> str:
    """Splat for Get-WmiObject (the legacy, always-DCOM path)."""
    return (
        f"$wmiArgs = @{{ ComputerName = {ps_quote(session.host)}; Namespace = {ps_quote(namespace)} }}\n"
        "if ($cred) { $wmiArgs['Credential'] = $cred }\n"
    )


def frame(body: str, credential: Optional[Credential], session: Optional[Session] = None) -> str:
    """Wrap `body` with helpers, credential/session setup and the error envelope."""
    script = HELPERS % {"depth": JSON_DEPTH}
    script += "$cimSession = $null\ntry {\n"
    script += credential_block(credential)
    if session is not None:
        script += session_block(session)
    script += body.rstrip() + "\n"
    script += CATCH
    return script


def wql(class_name: str, filter_text: str = "", requires_join: bool = False) -> str:
    """SELECT statement for a class and optional filter/join clause."""
    statement = f"SELECT * FROM {class_name}"
    if not filter_text:
        return statement
    if requires_join:
        return f"{statement} {filter_text}"
    return f"{statement} WHERE {filter_text}"


# -- operation bodies -------------------------------------------------------

def probe_wsman_script(host: str, credential: Optional[Credential]) -> str:
    body = (
        f"$testArgs = @{{ ComputerName = {ps_quote(host)} }}\n"
        "if ($cred) { $testArgs['Credential'] = $cred; $testArgs['Authentication'] = 'Default' }\n"
        "$r = Test-WSMan @testArgs\n"
        "$stack = ($r.ProductVersion -split 'Stack:\\s*')[-1].Trim()\n"
        "Write-CMResult ([ordered]@{ stack = $stack })\n"
    )
    return frame(body, credential)


def open_session_script(session: Session) -> str:
    body = "Write-CMResult ([ordered]@{ computer = $cimSession.ComputerName; protocol = [string]$cimSession.Protocol })\n"
    return frame(body, session.credential, session)


def query_script(session: Session, namespace: str, statement: str, legacy: bool) -> str:
    if legacy:
        body = wmi_args_block(session, namespace)
        body += (
            f"$items = @(Get-WmiObject @wmiArgs -Query {ps_quote(statement)} | ForEach-Object {{ $_.Get(); $_ }})\n"
            "Write-CMResult @($items | ForEach-Object { ConvertTo-CMRecord $_ })\n"
        )
        return frame(body, session.credential)
    body = (
        f"$items = @(Get-CimInstance -CimSession $cimSession -Namespace {ps_quote(namespace)} -Query {ps_quote(statement)})\n"
        "Write-CMResult @($items | ForEach-Object { ConvertTo-CMRecord $_ })\n"
    )
    return frame(body, session.credential, session)


def get_instance_script(session: Session, namespace: str, obj: ManagementObject) -> str:
    body = (
        f"$item = {instance_expression(obj, namespace)} | Get-CimInstance\n"
        "Write-CMResult (ConvertTo-CMRecord $item)\n"
    )
    return frame(body, session.credential, session)


def create_instance_script(session: Session, namespace: str, class_name: str, properties: Dict[str, Any]) -> str:
    body = (
        f"$item = New-CimInstance -CimSession $cimSession -Namespace {ps_quote(namespace)} "
        f"-ClassName {ps_quote(class_name)} -Property {ps_hashtable(properties, namespace)}\n"
        "Write-CMResult (ConvertTo-CMRecord $item)\n"
    )
    return frame(body, session.credential, session)


def legacy_commit_script(session: Session, namespace: str, class_name: str, assignments: Dict[str, Any]) -> str:
    """
    Create through the WMI class object: CreateInstance(), one assignment per
    property, then Put(). Needed for classes the CIM path cannot create.
    """
    lines = [wmi_args_block(session, namespace).rstrip()]
    lines.append(f"$class = Get-WmiObject @wmiArgs -List -Class {ps_quote(class_name)}")
    lines.append("$item = $class.CreateInstance()")
    for name, value in assignments.items():
        lines.append(f"$item[{ps_quote(name)}] = {ps_literal(value, namespace)}")
    lines.append("$putPath = $item.Put()")
    lines.append("$saved = New-Object System.Management.ManagementObject($class.Scope, $putPath, $null)")
    lines.append("$saved.Get()")
    lines.append("Write-CMResult (ConvertTo-CMRecord $saved)")
    return frame("\n".join(lines), session.credential)


def update_instance_script(session: Session, namespace: str, obj: ManagementObject, properties: Dict[str, Any]) -> str:
    body = (
        f"$item = {instance_expression(obj, namespace)}\n"
        "if (-not $item) { throw 'Instance no longer exists' }\n"
        f"$item = Set-CimInstance -InputObject $item -Property {ps_hashtable(properties, namespace)} -PassThru\n"
        "Write-CMResult (ConvertTo-CMRecord $item)\n"
    )
    return frame(body, session.credential, session)


def delete_instance_script(session: Session, namespace: str, obj: ManagementObject) -> str:
    body = (
        f"$item = {instance_expression(obj, namespace)}\n"
        "if (-not $item) { throw 'Instance no longer exists' }\n"
        "Remove-CimInstance -InputObject $item\n"
        "Write-CMResult $true\n"
    )
    return frame(body, session.credential, session)


def invoke_method_script(
    session: Session,
    namespace: str,
    target: Any,
    method_name: str,
    arguments: Dict[str, Any],
) -> str:
    if isinstance(target, ManagementObject):
        scope = f"-InputObject {instance_expression(target, namespace)}"
    else:
        scope = f"-Namespace {ps_quote(namespace)} -ClassName {ps_quote(target)}"
    body = (
        f"$r = Invoke-CimMethod -CimSession $cimSession {scope} -MethodName {ps_quote(method_name)} "
        f"-Arguments {ps_hashtable(arguments, namespace)}\n"
        "$out = [ordered]@{}\n"
        "foreach ($p in $r.OutParameters) { if ($p.Name -ne 'ReturnValue') { $out[$p.Name] = ConvertTo-CMValue $p.Value } }\n"
        "Write-CMResult ([ordered]@{ ReturnValue = $r.ReturnValue; OutParameters = $out })\n"
    )
    return frame(body, session.credential, session)
