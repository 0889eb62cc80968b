"""
Remote management endpoint.

`ManagementTransport` is the boundary the object client talks to. The
concrete `PowerShellCimTransport` renders each call as a PowerShell CIM
script (see psremote.scripts), runs it through a PowerShellRunner and turns
the JSON envelope back into domain objects.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

from cmadmin.domain.errors import RemoteCallError, TransportError
from cmadmin.domain.models import Credential, ManagementObject, MethodResult, Session, SessionProtocol
from cmadmin.infrastructure.psremote import scripts
from cmadmin.infrastructure.psremote.runner import PowerShellRunner

logger = logging.getLogger(__name__)

# Test-WSMan must report at least this stack for CIM sessions over WSMan.
MIN_WSMAN_STACK = 3


class ManagementTransport(Protocol):
    """Operations the remote management endpoint must support."""

    def probe_wsman(self, host: str, credential: Optional[Credential]) -> bool: ...

    def open_session(self, host: str, protocol: SessionProtocol, credential: Optional[Credential]) -> Session: ...

    def close_session(self, session: Session) -> None: ...

    def query(
        self,
        session: Session,
        namespace: str,
        class_name: str,
        filter_text: str = "",
        *,
        requires_join: bool = False,
        legacy: bool = False,
    ) -> Iterable[ManagementObject]: ...

    def get_instance(self, session: Session, namespace: str, obj: ManagementObject) -> ManagementObject: ...

    def create_instance(
        self, session: Session, namespace: str, class_name: str, properties: Dict[str, Any]
    ) -> ManagementObject: ...

    def new_instance(self, session: Session, namespace: str, class_name: str) -> ManagementObject: ...

    def set_property(self, instance: ManagementObject, name: str, value: Any) -> None: ...

    def commit_instance(self, session: Session, namespace: str, instance: ManagementObject) -> ManagementObject: ...

    def update_instance(
        self, session: Session, namespace: str, obj: ManagementObject, properties: Dict[str, Any]
    ) -> ManagementObject: ...

    def delete_instance(self, session: Session, namespace: str, obj: ManagementObject) -> None: ...

    def invoke_method(
        self,
        session: Session,
        namespace: str,
        target: Union[str, ManagementObject],
        method_name: str,
        arguments: Dict[str, Any],
    ) -> MethodResult: ...


def record_to_object(record: Dict[str, Any], embedded: bool = False) -> ManagementObject:
    """Rebuild a ManagementObject from a script record."""
    properties = {
        name: convert_value(value) for name, value in (record.get("Properties") or {}).items()
    }
    return ManagementObject(
        class_name=record.get("__CLASS") or "",
        properties=properties,
        key_properties=list(record.get("__KEYS") or []),
        namespace=record.get("__NAMESPACE") or "",
        path=record.get("__PATH"),
        client_only=embedded,
    )


def convert_value(value: Any) -> Any:
    """Nested records are embedded instances; everything else passes through."""
    if isinstance(value, dict) and "__CLASS" in value:
        return record_to_object(value, embedded=True)
    if isinstance(value, list):
        return [convert_value(v) for v in value]
    return value


def parse_envelope(output: str) -> Optional[Dict[str, Any]]:
    """Extract the JSON envelope from script output (None if absent)."""
    output = output.strip()
    start = output.find("{")
    end = output.rfind("}") + 1
    if start < 0 or end <= start:
        return None
    try:
        data = json.loads(output[start:end])
    except json.JSONDecodeError as e:
        logger.debug("Unparseable script output: %s", e)
        return None
    return data if isinstance(data, dict) and "ok" in data else None


class PowerShellCimTransport:
    """ManagementTransport backed by PowerShell CIM cmdlets."""

    def __init__(self, runner: Optional[PowerShellRunner] = None) -> None:
        self.runner = runner or PowerShellRunner()

    def _execute(
        self,
        script: str,
        operation: str,
        host: Optional[str] = None,
        credential: Optional[Credential] = None,
    ) -> Any:
        result = self.runner.run(script, env=scripts.script_environment(credential))
        envelope = parse_envelope(result.stdout)

        if envelope is None:
            detail = (result.stderr or result.stdout or "no output").strip()
            raise TransportError(
                f"{operation} on {host or 'gateway'} produced no result: {detail[:500]}",
                host=host,
                operation=operation,
            )

        if not envelope.get("ok"):
            raise RemoteCallError(
                f"{operation} on {host or 'gateway'} failed: {envelope.get('error') or 'unknown error'}",
                hresult=envelope.get("hresult"),
                host=host,
                operation=operation,
                error_type=envelope.get("type"),
            )

        logger.debug("%s on %s succeeded via %s", operation, host, result.transport_used)
        return envelope.get("data")

    def probe_wsman(self, host: str, credential: Optional[Credential]) -> bool:
        data = self._execute(scripts.probe_wsman_script(host, credential), "Test-WSMan", host, credential) or {}
        stack = str(data.get("stack") or "0")
        try:
            major = int(stack.split(".")[0])
        except ValueError:
            return False
        return major >= MIN_WSMAN_STACK

    def open_session(self, host: str, protocol: SessionProtocol, credential: Optional[Credential]) -> Session:
        session = Session(host=host, protocol=protocol, credential=credential)
        data = self._execute(
            scripts.open_session_script(session), f"New-CimSession ({protocol.value})", host, credential
        )
        session.handle = data
        return session

    def close_session(self, session: Session) -> None:
        # Script sessions are torn down at the end of every script.
        session.handle = None

    def query(
        self,
        session: Session,
        namespace: str,
        class_name: str,
        filter_text: str = "",
        *,
        requires_join: bool = False,
        legacy: bool = False,
    ) -> Iterable[ManagementObject]:
        statement = scripts.wql(class_name, filter_text, requires_join)
        data = self._execute(
            scripts.query_script(session, namespace, statement, legacy),
            f"Query {class_name}",
            session.host,
            session.credential,
        )
        if data is None:
            records: List[Dict[str, Any]] = []
        elif isinstance(data, dict):
            records = [data]
        else:
            records = list(data)
        return (record_to_object(r) for r in records)

    def get_instance(self, session: Session, namespace: str, obj: ManagementObject) -> ManagementObject:
        data = self._execute(
            scripts.get_instance_script(session, namespace, obj),
            f"Get {obj.class_name}",
            session.host,
            session.credential,
        )
        return record_to_object(data)

    def create_instance(
        self, session: Session, namespace: str, class_name: str, properties: Dict[str, Any]
    ) -> ManagementObject:
        data = self._execute(
            scripts.create_instance_script(session, namespace, class_name, properties),
            f"New {class_name}",
            session.host,
            session.credential,
        )
        return record_to_object(data)

    def new_instance(self, session: Session, namespace: str, class_name: str) -> ManagementObject:
        # Assignments are collected locally and replayed by commit_instance.
        return ManagementObject(class_name=class_name, namespace=namespace, client_only=True)

    def set_property(self, instance: ManagementObject, name: str, value: Any) -> None:
        instance.properties[name] = value

    def commit_instance(self, session: Session, namespace: str, instance: ManagementObject) -> ManagementObject:
        data = self._execute(
            scripts.legacy_commit_script(session, namespace, instance.class_name, instance.properties),
            f"Put {instance.class_name}",
            session.host,
            session.credential,
        )
        return record_to_object(data)

    def update_instance(
        self, session: Session, namespace: str, obj: ManagementObject, properties: Dict[str, Any]
    ) -> ManagementObject:
        data = self._execute(
            scripts.update_instance_script(session, namespace, obj, properties),
            f"Set {obj.class_name}",
            session.host,
            session.credential,
        )
        return record_to_object(data)

    def delete_instance(self, session: Session, namespace: str, obj: ManagementObject) -> None:
        self._execute(
            scripts.delete_instance_script(session, namespace, obj),
            f"Remove {obj.class_name}",
            session.host,
            session.credential,
        )

    def invoke_method(
        self,
        session: Session,
        namespace: str,
        target: Union[str, ManagementObject],
        method_name: str,
        arguments: Dict[str, Any],
    ) -> MethodResult:
        class_name = target.class_name if isinstance(target, ManagementObject) else target
        data = self._execute(
            scripts.invoke_method_script(session, namespace, target, method_name, arguments),
            f"{class_name}.{method_name}",
            session.host,
            session.credential,
        ) or {}
        out = {name: convert_value(value) for name, value in (data.get("OutParameters") or {}).items()}
        return_value = data.get("ReturnValue")
        if return_value is None:
            return_value = 0
        elif not isinstance(return_value, (int, float)):
            # Methods such as ExportXml return data, not a status code
            out["ReturnValue"] = convert_value(return_value)
            return_value = 0
        return MethodResult(
            return_value=int(return_value),
            out_parameters=out,
            class_name=class_name,
            method_name=method_name,
        )
