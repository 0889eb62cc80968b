"""
PowerShell Runner - executes CIM scripts locally or on a WinRM gateway.

Local mode (no gateway host) writes the script to a temp file and runs it
with powershell.exe. Gateway mode uses pywinrm and tries transport/auth
combinations until one works, then keeps that session. Secrets are handed
to the PowerShell process as environment variables, never as script text.

Transport Priority:
1. HTTPS (5986) with certificate validation
2. HTTPS (5986) without certificate validation (when verify_ssl is off)
3. HTTP (5985) (when allow_http is on)

Auth Priority:
1. Negotiate
2. Kerberos
3. NTLM
"""

from __future__ import annotations

import base64
import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from enum import Enum

import winrm  # pywinrm

from cmadmin.domain.config import GatewaySettings
from cmadmin.domain.errors import TransportError
from cmadmin.domain.models import Credential

logger = logging.getLogger(__name__)


class Transport(Enum):
    """WinRM transport protocols."""

    HTTPS = "https"
    HTTP = "http"


class AuthMethod(Enum):
    """WinRM authentication methods."""

    NEGOTIATE = "negotiate"
    KERBEROS = "kerberos"
    NTLM = "ntlm"


@dataclass
class RunResult:
    """Output of one PowerShell invocation."""

    success: bool
    stdout: str = ""
    stderr: str = ""
    return_code: int = -1
    transport_used: str = ""


class PowerShellRunner:
    """
    Runs PowerShell scripts for the CIM transport.

    Raises TransportError when the script could not be executed at all; a
    script that ran and exited non-zero is returned as an unsuccessful
    RunResult.
    """

    def __init__(self, settings: GatewaySettings | None = None, credential: Credential | None = None) -> None:
        self.settings = settings or GatewaySettings()
        self.credential = credential
        self._session: winrm.Session | None = None
        self._working: tuple[Transport, AuthMethod, bool] | None = None

    @property
    def is_local(self) -> bool:
        return not self.settings.host

    def describe(self) -> str:
        if self.is_local:
            return "local"
        if self._working:
            transport, auth, _ = self._working
            return f"{self.settings.host} ({transport.value}+{auth.value})"
        return self.settings.host

    def _combinations(self) -> list[tuple[Transport, AuthMethod, bool]]:
        auths = [AuthMethod.NEGOTIATE, AuthMethod.KERBEROS, AuthMethod.NTLM]
        combos = [(Transport.HTTPS, auth, True) for auth in auths]
        if not self.settings.verify_ssl:
            combos += [(Transport.HTTPS, auth, False) for auth in auths]
        if self.settings.allow_http:
            combos += [(Transport.HTTP, auth, False) for auth in auths]
        return combos

    def _open(self, transport: Transport, auth: AuthMethod, verify_ssl: bool) -> winrm.Session | None:
        port = self.settings.port_https if transport is Transport.HTTPS else self.settings.port_http
        endpoint = f"{transport.value}://{self.settings.host}:{port}/wsman"
        username = self.credential.username if self.credential else self.settings.username
        password = self.credential.get_password() if self.credential else None

        logger.debug("Trying gateway %s with %s (SSL verify: %s)", endpoint, auth.value, verify_ssl)
        try:
            session = winrm.Session(
                target=endpoint,
                auth=(username, password),
                transport=auth.value,
                server_cert_validation="validate" if verify_ssl else "ignore",
                operation_timeout_sec=self.settings.operation_timeout_seconds,
                read_timeout_sec=self.settings.read_timeout_seconds,
            )
            result = session.run_cmd("echo", ["OK"])
        except Exception as e:  # pylint: disable=broad-except
            logger.debug("Gateway attempt failed: %s - %s", type(e).__name__, str(e)[:100])
            return None

        if result.status_code == 0 and b"OK" in result.std_out:
            return session
        return None

    def connect(self) -> None:
        """
        Open the gateway session (no-op in local mode).

        Raises:
            TransportError: If no transport/auth combination works
        """
        if self.is_local or self._session is not None:
            return

        for transport, auth, verify_ssl in self._combinations():
            session = self._open(transport, auth, verify_ssl)
            if session is not None:
                if transport is Transport.HTTP:
                    logger.warning("Gateway %s reached over HTTP", self.settings.host)
                logger.info("Connected to gateway %s: %s + %s", self.settings.host, transport.value, auth.value)
                self._session = session
                self._working = (transport, auth, verify_ssl)
                return

        raise TransportError(
            f"Unable to open a WinRM session to gateway {self.settings.host}",
            host=self.settings.host,
            operation="connect",
        )

    def run(self, script: str, env: dict[str, str] | None = None) -> RunResult:
        """
        Execute a PowerShell script and capture its output.

        `env` is added to the environment of the PowerShell process; it is
        how secrets reach a script without being written into it.
        """
        if self.is_local:
            return self._run_local(script, env)

        self.connect()
        try:
            if env:
                result = self._run_ps_with_env(script, env)
            else:
                result = self._session.run_ps(script)
        except Exception as e:  # pylint: disable=broad-except
            # Drop the session so the next call renegotiates.
            self._session = None
            self._working = None
            raise TransportError(
                f"WinRM execution on {self.settings.host} failed: {e}",
                host=self.settings.host,
                operation="run_ps",
            ) from e

        return RunResult(
            success=result.status_code == 0,
            stdout=result.std_out.decode("utf-8", errors="replace"),
            stderr=result.std_err.decode("utf-8", errors="replace"),
            return_code=result.status_code,
            transport_used=self.describe(),
        )

    def _run_ps_with_env(self, script: str, env: dict[str, str]) -> winrm.Response:
        # Session.run_ps cannot set shell variables, so drive the protocol directly.
        encoded = base64.b64encode(script.encode("utf_16_le")).decode("ascii")
        protocol = self._session.protocol
        shell_id = protocol.open_shell(env_vars=env)
        try:
            command_id = protocol.run_command(
                shell_id, "powershell", ["-NoProfile", "-NonInteractive", "-EncodedCommand", encoded]
            )
            try:
                std_out, std_err, status_code = protocol.get_command_output(shell_id, command_id)
            finally:
                protocol.cleanup_command(shell_id, command_id)
        finally:
            protocol.close_shell(shell_id)
        return winrm.Response((std_out, std_err, status_code))

    def _run_local(self, script: str, env: dict[str, str] | None = None) -> RunResult:
        with tempfile.NamedTemporaryFile(mode="w", suffix=".ps1", delete=False, encoding="utf-8-sig") as f:
            f.write(script)
            script_path = f.name

        cmd = [
            self.settings.powershell_executable,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-File",
            script_path,
        ]
        logger.debug("Executing: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.settings.operation_timeout_seconds,
                env={**os.environ, **env} if env else None,
                check=False,
            )
        except FileNotFoundError as e:
            raise TransportError(
                f"PowerShell not found: {self.settings.powershell_executable}",
                operation="run_local",
            ) from e
        except subprocess.TimeoutExpired as e:
            raise TransportError(
                f"Script timed out after {self.settings.operation_timeout_seconds}s",
                operation="run_local",
            ) from e
        finally:
            try:
                os.unlink(script_path)
            except OSError:
                pass

        return RunResult(
            success=result.returncode == 0,
            stdout=result.stdout,
            stderr=result.stderr,
            return_code=result.returncode,
            transport_used="local",
        )

    def close(self) -> None:
        """Forget the gateway session."""
        self._session = None
        self._working = None
