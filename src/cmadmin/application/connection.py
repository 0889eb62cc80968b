"""
Connection resolver.

Turns a (host, site code, credential) request into a resolved provider
connection: finds the SMS_ProviderLocation for the site, follows the
redirect to the real provider host and keeps a session to it.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from cmadmin.domain.config import SMS_PROVIDER_NAMESPACE, ClientSettings
from cmadmin.domain.errors import CMConnectionError, ProviderNotFoundError, SessionError, TransportError
from cmadmin.domain.filters import Comparison
from cmadmin.domain.models import Connection, Credential, ManagementObject, session_key
from cmadmin.infrastructure.cim.sessions import SessionManager

logger = logging.getLogger(__name__)

PROVIDER_LOCATION_CLASS = "SMS_ProviderLocation"


def parse_namespace_path(path: str) -> Tuple[str, str]:
    r"""
    Split a provider namespace path into (host, namespace).

    `\\SRV1\root\sms\site_ABC` -> ("SRV1", "root\sms\site_ABC").
    A path without a leading `\\host` yields an empty host.
    """
    path = (path or "").strip().replace("/", "\\")
    if path.startswith("\\\\"):
        parts = [p for p in path[2:].split("\\") if p]
        if not parts:
            return "", ""
        return parts[0], "\\".join(parts[1:])
    return "", path.strip("\\")


@dataclass(frozen=True)
class ConnectRequest:
    host: str
    site_code: str
    credential: Optional[Credential]


class ConnectionResolver:
    """Owns one Connection and resolves it lazily."""

    def __init__(
        self,
        sessions: SessionManager,
        settings: Optional[ClientSettings] = None,
        credential: Optional[Credential] = None,
    ):
        self.sessions = sessions
        self.settings = settings or ClientSettings()
        self.default_credential = credential
        self.connection = Connection()
        self._last_request: Optional[ConnectRequest] = None

    def default_host(self) -> str:
        return self.settings.provider_server or socket.gethostname()

    def _locate_provider(self, host: str, site_code: str, credential: Optional[Credential]) -> ManagementObject:
        session = self.sessions.get_session(host, credential)

        if site_code:
            location_filter = Comparison("SiteCode", "=", site_code)
        else:
            location_filter = Comparison("ProviderForLocalSite", "=", True)

        logger.debug("Looking up %s on %s (%s)", PROVIDER_LOCATION_CLASS, host, location_filter)
        try:
            locations = list(self.sessions.transport.query(
                session, SMS_PROVIDER_NAMESPACE, PROVIDER_LOCATION_CLASS, str(location_filter)
            ))
        except TransportError as e:
            raise CMConnectionError(
                f"Unable to query {PROVIDER_LOCATION_CLASS} on {host}: {e}", host=host
            ) from e
        if not locations:
            target = f"site {site_code}" if site_code else "the local site"
            raise ProviderNotFoundError(
                f"Unable to connect to specified provider: no SMS provider for {target} on {host}",
                host=host,
            )
        return locations[0]

    def connect(
        self,
        host: Optional[str] = None,
        site_code: Optional[str] = None,
        credential: Optional[Credential] = None,
    ) -> Connection:
        """
        Resolve the provider connection.

        Raises:
            SessionError: If a session to the entry or provider host cannot be opened
            ProviderNotFoundError: If no provider location matches
        """
        host = (host or self.default_host()).strip()
        site_code = (self.settings.site_code if site_code is None else site_code).strip().upper()
        credential = credential if credential is not None else self.default_credential
        self._last_request = ConnectRequest(host, site_code, credential)

        logger.info("Connecting to SMS provider via %s (site: %s)", host, site_code or "local")
        try:
            location = self._locate_provider(host, site_code, credential)

            provider_host, namespace = parse_namespace_path(location.get("NamespacePath", ""))
            provider_host = provider_host or location.get("Machine") or host
            if not namespace:
                raise ProviderNotFoundError(
                    f"Provider location on {host} has no usable NamespacePath", host=host
                )

            conn = self.connection
            conn.provider_host = provider_host
            conn.namespace = namespace
            conn.site_code = location.get("SiteCode") or site_code
            conn.credential = credential

            if session_key(provider_host) != session_key(host):
                logger.info("Provider for site %s is on %s", conn.site_code, provider_host)
                try:
                    conn.session = self.sessions.get_session(provider_host, credential)
                except SessionError as e:
                    raise SessionError(
                        f"Unable to establish session to {provider_host}", host=provider_host
                    ) from e
            else:
                conn.session = self.sessions.get_session(host, credential)
            conn.connected_at = datetime.now(timezone.utc)
        except CMConnectionError:
            self.connection.clear()
            raise

        logger.info(
            "Connected to %s, namespace %s (%s)",
            self.connection.provider_host,
            self.connection.namespace,
            self.connection.session.protocol.value.upper(),
        )
        return self.connection

    def is_stale(self) -> bool:
        max_age = self.settings.connection_max_age_seconds
        return bool(max_age) and self.connection.age_seconds() > max_age

    def ensure_connected(self) -> bool:
        """Connect with defaults unless a complete, fresh connection exists."""
        if self.connection.is_complete and not self.is_stale():
            return True

        if self.connection.is_complete and self._last_request is not None:
            logger.info("Connection to %s is stale, reconnecting", self.connection.provider_host)
            request = self._last_request
            self.close()
            self.connect(request.host, request.site_code, request.credential)
            return True

        self.connect()
        return True

    def close(self) -> None:
        """Drop the connection and every cached session."""
        self.connection.clear()
        self.sessions.close_all()
