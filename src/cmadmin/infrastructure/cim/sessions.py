"""
Session Manager - per-host CIM sessions with WSMan -> DCOM fallback.

Provides:
- One cached session per host (case-insensitive), replaced when the
  requested credential differs from the one it was opened with
- WSMan capability probe; probe failures mean "use DCOM"
- DCOM fallback when WSMan is unavailable or fails to open
- Explicit close of one or all sessions

Does NOT provide:
- Health checks on cached sessions
- Retry of session creation (retries apply to calls, not bootstrap)
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from cmadmin.domain.errors import SessionError
from cmadmin.domain.models import Credential, Session, SessionProtocol, session_key
from cmadmin.infrastructure.cim.transport import ManagementTransport

logger = logging.getLogger(__name__)


class SessionManager:
    """Caches transport sessions keyed by host name, one credential per host."""

    def __init__(self, transport: ManagementTransport):
        self.transport = transport
        self.sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def __contains__(self, host: str) -> bool:
        return session_key(host) in self.sessions

    def __len__(self) -> int:
        return len(self.sessions)

    def cached(self, host: str) -> Optional[Session]:
        with self._lock:
            return self.sessions.get(session_key(host))

    def _probe(self, host: str, credential: Optional[Credential]) -> bool:
        try:
            return bool(self.transport.probe_wsman(host, credential))
        except Exception as e:  # pylint: disable=broad-except
            logger.debug("WSMan probe of %s failed, assuming DCOM: %s", host, e)
            return False

    def _open(self, host: str, credential: Optional[Credential]) -> Session:
        errors = []

        if self._probe(host, credential):
            try:
                return self.transport.open_session(host, SessionProtocol.WSMAN, credential)
            except Exception as e:  # pylint: disable=broad-except
                logger.debug("WSMan session to %s failed, falling back to DCOM: %s", host, e)
                errors.append(f"WSMan: {e}")
        else:
            logger.debug("WSMan not available on %s, using DCOM", host)

        try:
            return self.transport.open_session(host, SessionProtocol.DCOM, credential)
        except Exception as e:  # pylint: disable=broad-except
            errors.append(f"DCOM: {e}")
            raise SessionError(
                f"Unable to establish a session to {host}: {'; '.join(errors)}", host=host
            ) from e

    def get_session(self, host: str, credential: Optional[Credential] = None) -> Session:
        """
        Return the cached session for `host`, opening one if needed.

        A cached session opened with a different credential is closed and
        replaced, so calls always run as the requested principal.

        Raises:
            SessionError: If neither WSMan nor DCOM could be opened
        """
        if not host or not host.strip():
            raise SessionError("No host specified for session", host=host)

        key = session_key(host)
        existing = self.cached(host)
        if existing is not None:
            if existing.credential == credential:
                return existing
            logger.info("Credential for %s changed, replacing cached session", host)
            self.close_session(host)

        session = self._open(host.strip(), credential)

        with self._lock:
            raced = self.sessions.get(key)
            if raced is None or raced.credential != credential:
                self.sessions[key] = session
        if raced is not None and raced.credential == credential:
            logger.debug("Session to %s was created concurrently, using cached one", host)
            self.transport.close_session(session)
            return raced
        if raced is not None:
            self.transport.close_session(raced)

        logger.info("Opened %s session to %s", session.protocol.value.upper(), host)
        return session

    def close_session(self, host: str) -> None:
        with self._lock:
            session = self.sessions.pop(session_key(host), None)
        if session is not None:
            self.transport.close_session(session)
            logger.debug("Closed session to %s", host)

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self.sessions.values())
            self.sessions.clear()
        for session in sessions:
            self.transport.close_session(session)
