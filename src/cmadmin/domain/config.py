"""
Client settings domain models.

This module defines the settings that control how the client reaches the
SMS provider: default provider/site, the PowerShell gateway, retry policy
and connection lifetime.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# "The remote procedure call failed." Seen on slow WAN links to DCOM endpoints.
RPC_S_CALL_FAILED = 0x800706BE

SMS_PROVIDER_NAMESPACE = "root\\SMS"


class RetryPolicy(BaseModel):
    """Bounded retry on known transient RPC faults."""

    max_retries: int = Field(
        default=3,
        description="Retries after the first attempt",
        ge=0,
        le=10
    )
    transient_hresults: List[int] = Field(
        default_factory=lambda: [RPC_S_CALL_FAILED],
        description="HRESULT codes treated as transient"
    )
    delay_seconds: float = Field(
        default=0.0,
        description="Pause between attempts",
        ge=0.0,
        le=60.0
    )

    @field_validator("transient_hresults", mode="before")
    @classmethod
    def parse_hresults(cls, v):
        """Accept hex strings such as "0x800706BE" from config files."""
        parsed = []
        for item in v or []:
            if isinstance(item, str):
                item = int(item, 0)
            parsed.append(int(item) & 0xFFFFFFFF)
        return parsed


class GatewaySettings(BaseModel):
    """
    Where the PowerShell CIM scripts run.

    With no host configured scripts run in a local powershell.exe; otherwise
    they are sent to the host over WinRM.
    """

    host: Optional[str] = Field(None, description="WinRM gateway host (None = local PowerShell)")
    username: Optional[str] = Field(None, description="Gateway account")
    credential_ref: Optional[str] = Field(None, description="Stored credential for the gateway")
    port_http: int = Field(default=5985, ge=1, le=65535)
    port_https: int = Field(default=5986, ge=1, le=65535)
    verify_ssl: bool = Field(default=True)
    allow_http: bool = Field(default=True, description="Fall back to HTTP (5985)")
    read_timeout_seconds: int = Field(default=40, ge=5, le=900)
    operation_timeout_seconds: int = Field(default=120, ge=5, le=900)
    powershell_executable: str = Field(default="powershell.exe")


class ClientSettings(BaseModel):
    """Top-level settings for a CMClient."""

    model_config = ConfigDict(extra="ignore")

    provider_server: Optional[str] = Field(None, description="Default entry host for connect()")
    site_code: str = Field(default="", description="Default site code ('' = provider for local site)")
    credential_ref: Optional[str] = Field(None, description="Stored credential for provider sessions")
    connection_max_age_seconds: int = Field(
        default=0,
        description="Reconnect when the connection is older than this (0 = never)",
        ge=0
    )
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)

    @field_validator("site_code")
    @classmethod
    def normalize_site_code(cls, v: str) -> str:
        """Site codes are three characters and upper-case."""
        v = (v or "").strip().upper()
        if v and len(v) != 3:
            raise ValueError(f"Site code must be three characters: {v!r}")
        return v
