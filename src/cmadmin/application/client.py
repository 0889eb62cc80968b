"""
Generic object client for the SMS provider.

CMClient owns a connection, a session cache and a transport. Every
operation passes the lazy-connect gate (`ensure_connected`) before its first
remote call, and every remote call is individually wrapped in the retry
policy.

    with CMClient.from_config(Path("config")) as client:
        for package in client.query("SMS_Package", build_predicate("Name", ["Office%"], search=True)):
            print(package["PackageID"])
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, TypeVar, Union

from cmadmin.application.connection import ConnectionResolver
from cmadmin.domain.config import ClientSettings
from cmadmin.domain.errors import (
    CMConnectionError,
    ConfigurationError,
    ObjectNotFoundError,
    TransportError,
)
from cmadmin.domain.filters import FilterLike, render_filter
from cmadmin.domain.models import Connection, Credential, ManagementObject, MethodResult
from cmadmin.domain.results import CallFailure, Failure, MethodOutcome, Success
from cmadmin.infrastructure.cim.retry import retry_with_policy
from cmadmin.infrastructure.cim.sessions import SessionManager
from cmadmin.infrastructure.cim.transport import ManagementTransport, PowerShellCimTransport
from cmadmin.infrastructure.config import ConfigRepository, CredentialManager
from cmadmin.infrastructure.psremote.runner import PowerShellRunner

logger = logging.getLogger(__name__)

T = TypeVar("T")

Target = Union[str, ManagementObject]


def _require_class(class_name: Any) -> str:
    if not isinstance(class_name, str) or not class_name.strip():
        raise ConfigurationError("Class not specified")
    return class_name.strip()


class CMClient:
    """Query, create, update, delete and invoke against provider classes."""

    def __init__(
        self,
        transport: Optional[ManagementTransport] = None,
        settings: Optional[ClientSettings] = None,
        credential: Optional[Credential] = None,
    ):
        self.settings = settings or ClientSettings()
        if transport is None:
            transport = PowerShellCimTransport(PowerShellRunner(self.settings.gateway))
        self.transport = transport
        self.sessions = SessionManager(self.transport)
        self.resolver = ConnectionResolver(self.sessions, self.settings, credential)

    @classmethod
    def from_config(
        cls,
        config_dir: Path,
        master_password: Optional[str] = None,
        transport: Optional[ManagementTransport] = None,
        **overrides: Any,
    ) -> "CMClient":
        """
        Build a client from `<config_dir>/cmadmin.json` and stored credentials.

        Keyword overrides (provider_server, site_code, credential_ref) take
        precedence over the file; None values are ignored.
        """
        repository = ConfigRepository(config_dir)
        settings = repository.load_settings()
        updates = {k: v for k, v in overrides.items() if v is not None}
        if updates:
            settings = ClientSettings(**{**settings.model_dump(), **updates})

        credentials = CredentialManager(repository, master_password)
        credential = None
        if settings.credential_ref:
            credential = credentials.load_credential(settings.credential_ref)

        if transport is None:
            gateway_credential = None
            if settings.gateway.credential_ref:
                gateway_credential = credentials.load_credential(settings.gateway.credential_ref)
            transport = PowerShellCimTransport(PowerShellRunner(settings.gateway, gateway_credential))

        return cls(transport=transport, settings=settings, credential=credential)

    # -- connection --------------------------------------------------------

    @property
    def connection(self) -> Connection:
        return self.resolver.connection

    def connect(
        self,
        host: Optional[str] = None,
        site_code: Optional[str] = None,
        credential: Optional[Credential] = None,
    ) -> Connection:
        return self.resolver.connect(host, site_code, credential)

    def ensure_connected(self) -> bool:
        return self.resolver.ensure_connected()

    def close(self) -> None:
        self.resolver.close()

    def __enter__(self) -> "CMClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _call(self, description: str, action: Callable[[], T]) -> T:
        return retry_with_policy(action, self.settings.retry, description)

    # -- queries -----------------------------------------------------------

    def query(
        self,
        class_name: str,
        filter: FilterLike = "",  # pylint: disable=redefined-builtin
        *,
        requires_join: bool = False,
        lazy_properties: bool = False,
    ) -> Iterator[ManagementObject]:
        """
        Query instances of `class_name`.

        The legacy (WMI) strategy is used when the filter carries a JOIN clause
        (`requires_join`, the filter is then the text following `FROM class`)
        or when the class has lazy properties the fast path cannot return.

        The whole result set is fetched before this returns, so a retried
        query never yields partial results; the iterator only walks that
        in-memory list.

        Returns:
            One-shot iterator over the matching objects
        """
        class_name = _require_class(class_name)
        filter_text = render_filter(filter)
        self.ensure_connected()
        conn = self.connection
        legacy = requires_join or lazy_properties

        logger.debug("Query %s [%s]%s", class_name, filter_text or "*", " (legacy)" if legacy else "")
        results = self._call(
            f"Query {class_name}",
            lambda: list(self.transport.query(
                conn.session,
                conn.namespace,
                class_name,
                filter_text,
                requires_join=requires_join,
                legacy=legacy,
            )),
        )
        return iter(results)

    def query_one(self, class_name: str, filter: FilterLike = "", **kwargs: Any) -> Optional[ManagementObject]:  # pylint: disable=redefined-builtin
        """First match or None."""
        return next(self.query(class_name, filter, **kwargs), None)

    def get_instance(self, obj: ManagementObject) -> ManagementObject:
        """Re-read one object from the provider, lazy properties included."""
        if not isinstance(obj, ManagementObject):
            raise ConfigurationError("No object supplied")
        self.ensure_connected()
        conn = self.connection
        return self._call(
            f"Get {obj.class_name}",
            lambda: self.transport.get_instance(conn.session, conn.namespace, obj),
        )

    # -- create / update / delete ------------------------------------------

    def create(
        self,
        class_name: str,
        properties: Optional[Mapping[str, Any]],
        *,
        legacy: bool = False,
        client_only: bool = False,
    ) -> ManagementObject:
        """
        Create an instance of `class_name`.

        Standard mode commits the full property set in one call. Legacy mode
        creates a bare instance, assigns each property individually and then
        commits; it is required for keyless embedded classes. With
        `client_only` nothing is committed and the in-memory instance is
        returned for use as an embedded value.
        """
        class_name = _require_class(class_name)
        if not properties:
            raise ConfigurationError(f"No properties supplied for {class_name}")
        properties = dict(properties)
        self.ensure_connected()
        conn = self.connection

        if legacy:
            instance = self._call(
                f"New {class_name}",
                lambda: self.transport.new_instance(conn.session, conn.namespace, class_name),
            )
            for name, value in properties.items():
                self._call(
                    f"Set {class_name}.{name}",
                    lambda n=name, v=value: self.transport.set_property(instance, n, v),
                )
            if client_only:
                return instance
            created = self._call(
                f"Put {class_name}",
                lambda: self.transport.commit_instance(conn.session, conn.namespace, instance),
            )
        elif client_only:
            return ManagementObject(
                class_name=class_name,
                properties=properties,
                namespace=conn.namespace,
                client_only=True,
            )
        else:
            created = self._call(
                f"New {class_name}",
                lambda: self.transport.create_instance(conn.session, conn.namespace, class_name, properties),
            )

        logger.info("Created %s", class_name)
        return created

    def _resolve(self, target: Target, filter: FilterLike) -> List[ManagementObject]:  # pylint: disable=redefined-builtin
        if isinstance(target, ManagementObject):
            return [target]
        if not isinstance(target, str) or not target.strip():
            raise ConfigurationError("No object supplied")
        filter_text = render_filter(filter)
        if not filter_text:
            raise ConfigurationError(f"A filter is required to target {target} by class name")
        return list(self.query(target, filter_text))

    def _not_found(self, target: Target, filter: FilterLike, missing_ok: bool, operation: str) -> None:  # pylint: disable=redefined-builtin
        class_name = target.class_name if isinstance(target, ManagementObject) else str(target)
        error = ObjectNotFoundError(class_name, render_filter(filter))
        if not missing_ok:
            raise error
        logger.warning("%s skipped: %s", operation, error)

    def update(
        self,
        target: Target,
        properties: Optional[Mapping[str, Any]] = None,
        *,
        filter: FilterLike = "",  # pylint: disable=redefined-builtin
        pass_thru: bool = False,
        missing_ok: bool = False,
    ) -> Optional[List[ManagementObject]]:
        """
        Commit property changes to a target object.

        `target` is a ManagementObject or a class name resolved with `filter`
        (every match is updated). Without `properties`, a ManagementObject's
        own non-key properties are committed.

        Raises:
            ObjectNotFoundError: If nothing matched and not `missing_ok`
        """
        if not properties and not isinstance(target, ManagementObject):
            raise ConfigurationError("No properties supplied for update")
        self.ensure_connected()
        objects = self._resolve(target, filter)
        if not objects:
            self._not_found(target, filter, missing_ok, "Update")
            return [] if pass_thru else None

        conn = self.connection
        updated = []
        for obj in objects:
            changes = dict(properties) if properties else {
                k: v for k, v in obj.properties.items() if k not in obj.key_properties
            }
            updated.append(self._call(
                f"Set {obj.class_name}",
                lambda o=obj, c=changes: self.transport.update_instance(conn.session, conn.namespace, o, c),
            ))
            logger.info("Updated %s %s", obj.class_name, obj.key_values)
        return updated if pass_thru else None

    def delete(
        self,
        target: Target,
        *,
        filter: FilterLike = "",  # pylint: disable=redefined-builtin
        missing_ok: bool = False,
    ) -> int:
        """
        Remove the target object(s).

        Returns:
            Number of objects removed

        Raises:
            ObjectNotFoundError: If nothing matched and not `missing_ok`
        """
        self.ensure_connected()
        objects = self._resolve(target, filter)
        if not objects:
            self._not_found(target, filter, missing_ok, "Delete")
            return 0

        conn = self.connection
        for obj in objects:
            self._call(
                f"Remove {obj.class_name}",
                lambda o=obj: self.transport.delete_instance(conn.session, conn.namespace, o),
            )
            logger.info("Removed %s %s", obj.class_name, obj.key_values)
        return len(objects)

    # -- methods -----------------------------------------------------------

    def invoke(
        self,
        target: Target,
        method_name: str,
        arguments: Optional[Mapping[str, Any]] = None,
        *,
        skip_validation: bool = False,
    ) -> MethodResult:
        """
        Call a provider method on a class (static) or an instance.

        A non-zero ReturnValue is logged as a failure but NOT raised; the
        caller gets the full MethodResult either way. Only configuration,
        connection and transport problems raise.
        """
        if isinstance(target, ManagementObject):
            class_name = target.class_name
        elif isinstance(target, str) and target.strip():
            class_name = target = target.strip()
        else:
            raise ConfigurationError("Neither a class name nor an instance was supplied")
        if not isinstance(method_name, str) or not method_name.strip():
            raise ConfigurationError(f"No method specified for {class_name}")
        method_name = method_name.strip()
        args: Dict[str, Any] = dict(arguments or {})

        self.ensure_connected()
        conn = self.connection
        result = self._call(
            f"{class_name}.{method_name}",
            lambda: self.transport.invoke_method(conn.session, conn.namespace, target, method_name, args),
        )

        if not skip_validation:
            if result.return_value == 0:
                logger.info("%s.%s succeeded", class_name, method_name)
            else:
                logger.warning("%s.%s failed with ReturnValue %d", class_name, method_name, result.return_value)
        return result

    def try_invoke(
        self,
        target: Target,
        method_name: str,
        arguments: Optional[Mapping[str, Any]] = None,
        *,
        skip_validation: bool = False,
    ) -> MethodOutcome:
        """
        `invoke` as a railway result.

        Success wraps the MethodResult (whatever its ReturnValue); Failure
        says why the call did not happen.
        """
        operation = f"{getattr(target, 'class_name', target)}.{method_name}"
        try:
            result = self.invoke(target, method_name, arguments, skip_validation=skip_validation)
        except ConfigurationError as e:
            return Failure(CallFailure("configuration", e.message, operation))
        except CMConnectionError as e:
            return Failure(CallFailure("connection", e.message, operation, host=e.host))
        except TransportError as e:
            return Failure(
                CallFailure("transport", str(e), operation, host=e.host, hresult=getattr(e, "hresult", None)),
                recoverable=True,
            )
        return Success(result)
