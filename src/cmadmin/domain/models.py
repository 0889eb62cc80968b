"""
Provider Domain Models

Core data structures shared by the connection layer, the object client and
the domain operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class SessionProtocol(Enum):
    """CIM session protocols, in order of preference."""

    WSMAN = "wsman"
    DCOM = "dcom"


class Credential(BaseModel):
    """
    Explicit principal used for provider sessions.

    A missing credential means "use the caller's identity".
    """

    model_config = ConfigDict(frozen=True)

    username: str = Field(..., description="Account name (DOMAIN\\user or user@domain)")
    password: SecretStr = Field(..., description="Account password")

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Validate username is not empty."""
        if not v or not v.strip():
            raise ValueError("Username cannot be empty")
        return v.strip()

    def get_password(self) -> str:
        """Get the plain text password."""
        return self.password.get_secret_value()  # pylint: disable=no-member


@dataclass
class Session:
    """Transport-level handle to one host."""

    host: str
    protocol: SessionProtocol
    credential: Optional[Credential] = None
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    handle: Any = None

    @property
    def key(self) -> str:
        return session_key(self.host)

    @property
    def is_legacy(self) -> bool:
        return self.protocol is SessionProtocol.DCOM


def session_key(host: str) -> str:
    """Session cache key; host names compare case-insensitively."""
    return host.strip().lower()


@dataclass
class Connection:
    """Resolved provider connection owned by one client."""

    provider_host: str = ""
    namespace: str = ""
    site_code: str = ""
    credential: Optional[Credential] = None
    session: Optional[Session] = None
    connected_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.provider_host and self.site_code and self.namespace and self.session)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        if self.connected_at is None:
            return 0.0
        now = now or datetime.now(timezone.utc)
        return (now - self.connected_at).total_seconds()

    def clear(self) -> None:
        self.provider_host = ""
        self.namespace = ""
        self.site_code = ""
        self.credential = None
        self.session = None
        self.connected_at = None


@dataclass
class ManagementObject:
    """
    Handle for one remote instance of a named class.

    Property values are a snapshot taken when the object was read; nothing is
    cached beyond that and every read goes back to the provider.
    """

    class_name: str
    properties: Dict[str, Any] = field(default_factory=dict)
    key_properties: List[str] = field(default_factory=list)
    namespace: str = ""
    path: Optional[str] = None
    client_only: bool = False

    @property
    def is_client_only(self) -> bool:
        return self.client_only

    @property
    def key_values(self) -> Dict[str, Any]:
        """Key property values used to address this instance remotely."""
        return {name: self.properties.get(name) for name in self.key_properties}

    def __getitem__(self, name: str) -> Any:
        return self.properties[name]

    def __contains__(self, name: str) -> bool:
        return name in self.properties

    def get(self, name: str, default: Any = None) -> Any:
        return self.properties.get(name, default)

    def __iter__(self) -> Iterator[str]:
        return iter(self.properties)


@dataclass(frozen=True)
class MethodResult:
    """Outcome of a provider method call that executed remotely."""

    return_value: int
    out_parameters: Dict[str, Any] = field(default_factory=dict)
    class_name: str = ""
    method_name: str = ""

    @property
    def succeeded(self) -> bool:
        return self.return_value == 0

    def __getitem__(self, name: str) -> Any:
        if name == "ReturnValue":
            return self.out_parameters.get(name, self.return_value)
        return self.out_parameters[name]

    def get(self, name: str, default: Any = None) -> Any:
        if name == "ReturnValue":
            return self.out_parameters.get(name, self.return_value)
        return self.out_parameters.get(name, default)
