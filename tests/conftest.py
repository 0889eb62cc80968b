"""
Shared fixtures: a recording in-memory transport and a client wired to it.
"""

from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest

from cmadmin.application.client import CMClient
from cmadmin.domain.config import RPC_S_CALL_FAILED, ClientSettings
from cmadmin.domain.errors import RemoteCallError, TransportError
from cmadmin.domain.models import ManagementObject, MethodResult, Session, SessionProtocol


def provider_location(
    namespace_path: str = r"\\SRV1\root\sms\site_ABC",
    machine: str = "SRV1",
    site_code: str = "ABC",
) -> ManagementObject:
    return ManagementObject(
        class_name="SMS_ProviderLocation",
        properties={
            "NamespacePath": namespace_path,
            "Machine": machine,
            "SiteCode": site_code,
            "ProviderForLocalSite": True,
        },
        key_properties=["Machine", "SiteCode"],
        namespace="root\\SMS",
    )


def transient_error(operation: str = "call") -> RemoteCallError:
    return RemoteCallError(
        "The remote procedure call failed.", hresult=RPC_S_CALL_FAILED, operation=operation
    )


class FakeTransport:
    """
    In-memory ManagementTransport that records every call.

    `instances[class_name]` holds query results, either a list or a
    callable taking the filter text. `methods[(class, method)]` holds a
    MethodResult or a callable taking the argument dict. `fail(op, exc, n)`
    makes the next `n` calls of `op` raise `exc`.
    """

    def __init__(self):
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.wsman = True
        self.fail_protocols = set()
        self.fail_hosts = set()
        self.locations: List[ManagementObject] = [provider_location()]
        self.instances: Dict[str, Union[List[ManagementObject], Callable[[str], List[ManagementObject]]]] = {}
        self.methods: Dict[Tuple[str, str], Any] = {}
        self.lazy: Dict[str, Dict[str, Any]] = {}
        self._failures: Dict[str, List[Exception]] = defaultdict(list)

    # -- test helpers ------------------------------------------------------

    def fail(self, operation: str, exc: Exception, times: int = 1) -> None:
        self._failures[operation].extend([exc] * times)

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def count(self, name: str) -> int:
        return self.names().count(name)

    def last(self, name: str) -> Dict[str, Any]:
        return [args for n, args in self.calls if n == name][-1]

    def _record(self, name: str, /, **kwargs: Any) -> None:
        self.calls.append((name, kwargs))
        if self._failures[name]:
            raise self._failures[name].pop(0)

    # -- ManagementTransport -----------------------------------------------

    def probe_wsman(self, host, credential):
        self._record("probe_wsman", host=host)
        return self.wsman

    def open_session(self, host, protocol, credential):
        self._record("open_session", host=host, protocol=protocol)
        if protocol in self.fail_protocols or host in self.fail_hosts:
            raise TransportError(f"{protocol.value} refused", host=host)
        return Session(host=host, protocol=protocol, credential=credential)

    def close_session(self, session):
        self._record("close_session", host=session.host)

    def query(self, session, namespace, class_name, filter_text="", *, requires_join=False, legacy=False):
        self._record(
            "query",
            host=session.host,
            namespace=namespace,
            class_name=class_name,
            filter_text=filter_text,
            requires_join=requires_join,
            legacy=legacy,
        )
        if class_name == "SMS_ProviderLocation":
            return list(self.locations)
        found = self.instances.get(class_name, [])
        if callable(found):
            return list(found(filter_text))
        return list(found)

    def get_instance(self, session, namespace, obj):
        self._record("get_instance", class_name=obj.class_name)
        properties = dict(obj.properties)
        properties.update(self.lazy.get(obj.class_name, {}))
        return ManagementObject(obj.class_name, properties, list(obj.key_properties), namespace)

    def create_instance(self, session, namespace, class_name, properties):
        self._record("create_instance", class_name=class_name, properties=dict(properties))
        return ManagementObject(class_name, dict(properties), namespace=namespace)

    def new_instance(self, session, namespace, class_name):
        self._record("new_instance", class_name=class_name)
        return ManagementObject(class_name, {}, namespace=namespace, client_only=True)

    def set_property(self, instance, name, value):
        self._record("set_property", name=name, value=value)
        instance.properties[name] = value

    def commit_instance(self, session, namespace, instance):
        self._record("commit_instance", class_name=instance.class_name)
        return ManagementObject(instance.class_name, dict(instance.properties), namespace=namespace)

    def update_instance(self, session, namespace, obj, properties):
        self._record("update_instance", class_name=obj.class_name, properties=dict(properties))
        merged = dict(obj.properties)
        merged.update(properties)
        return ManagementObject(obj.class_name, merged, list(obj.key_properties), namespace)

    def delete_instance(self, session, namespace, obj):
        self._record("delete_instance", class_name=obj.class_name, keys=obj.key_values)

    def invoke_method(self, session, namespace, target, method_name, arguments):
        class_name = target.class_name if isinstance(target, ManagementObject) else target
        self._record(
            "invoke_method",
            class_name=class_name,
            target=target,
            method_name=method_name,
            arguments=dict(arguments),
        )
        result = self.methods.get((class_name, method_name))
        if callable(result):
            result = result(arguments)
        if result is None:
            result = MethodResult(0, {}, class_name, method_name)
        return result


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(provider_server="SRV1")


@pytest.fixture
def client(transport, settings) -> CMClient:
    return CMClient(transport=transport, settings=settings)


@pytest.fixture
def connected_client(client, transport) -> CMClient:
    """Client connected to SRV1 with the call log cleared."""
    client.connect()
    transport.calls.clear()
    return client


def make_object(class_name: str, keys: Optional[List[str]] = None, **properties: Any) -> ManagementObject:
    return ManagementObject(class_name, properties, keys or [], namespace=r"root\sms\site_ABC")
