"""
Tests for the per-host session cache and protocol fallback.
"""

import pytest
from pydantic import SecretStr

from cmadmin.domain.errors import SessionError
from cmadmin.domain.models import Credential, Session, SessionProtocol, session_key
from cmadmin.infrastructure.cim.sessions import SessionManager


class TestProtocolSelection:
    """WSMan first, DCOM when WSMan is missing or broken."""

    def test_wsman_when_probe_succeeds(self, transport):
        session = SessionManager(transport).get_session("SRV1")
        assert session.protocol is SessionProtocol.WSMAN
        assert transport.count("open_session") == 1

    def test_dcom_when_probe_fails(self, transport):
        transport.wsman = False
        session = SessionManager(transport).get_session("SRV1")
        assert session.protocol is SessionProtocol.DCOM
        assert transport.last("open_session")["protocol"] is SessionProtocol.DCOM
        assert transport.count("open_session") == 1

    def test_dcom_when_probe_raises(self, transport):
        transport.fail("probe_wsman", RuntimeError("WinRM not listening"))
        session = SessionManager(transport).get_session("SRV1")
        assert session.protocol is SessionProtocol.DCOM

    def test_dcom_when_wsman_open_fails(self, transport):
        transport.fail_protocols.add(SessionProtocol.WSMAN)
        session = SessionManager(transport).get_session("SRV1")
        assert session.protocol is SessionProtocol.DCOM
        assert transport.count("open_session") == 2

    def test_both_protocols_fail(self, transport):
        transport.fail_protocols.update({SessionProtocol.WSMAN, SessionProtocol.DCOM})
        manager = SessionManager(transport)
        with pytest.raises(SessionError) as exc_info:
            manager.get_session("SRV1")
        assert "SRV1" in str(exc_info.value)
        assert exc_info.value.host == "SRV1"
        assert "SRV1" not in manager

    def test_empty_host_rejected(self, transport):
        with pytest.raises(SessionError):
            SessionManager(transport).get_session("  ")
        assert transport.calls == []


class TestSessionCache:
    """One session per host, reused until closed."""

    def test_second_request_reuses_session(self, transport):
        manager = SessionManager(transport)
        first = manager.get_session("SRV1")
        second = manager.get_session("SRV1")
        assert first is second
        assert transport.count("open_session") == 1
        assert transport.count("probe_wsman") == 1

    def test_host_names_are_case_insensitive(self, transport):
        manager = SessionManager(transport)
        assert manager.get_session("srv1") is manager.get_session("SRV1")
        assert len(manager) == 1

    def test_distinct_hosts_get_distinct_sessions(self, transport):
        manager = SessionManager(transport)
        manager.get_session("SRV1")
        manager.get_session("SRV2")
        assert len(manager) == 2
        assert "srv2" in manager

    def test_close_session_drops_cache_entry(self, transport):
        manager = SessionManager(transport)
        manager.get_session("SRV1")
        manager.close_session("SRV1")
        assert "SRV1" not in manager
        assert transport.count("close_session") == 1
        manager.get_session("SRV1")
        assert transport.count("open_session") == 2

    def test_close_all(self, transport):
        manager = SessionManager(transport)
        manager.get_session("SRV1")
        manager.get_session("SRV2")
        manager.close_all()
        assert len(manager) == 0
        assert transport.count("close_session") == 2

    def test_same_credential_reuses_session(self, transport):
        manager = SessionManager(transport)
        cred = Credential(username="CORP\\svc_cm", password=SecretStr("pw"))
        first = manager.get_session("SRV1", cred)
        assert manager.get_session("srv1", Credential(username="CORP\\svc_cm", password=SecretStr("pw"))) is first
        assert transport.count("open_session") == 1

    def test_different_credential_replaces_session(self, transport):
        manager = SessionManager(transport)
        first = manager.get_session("SRV1", Credential(username="CORP\\a", password=SecretStr("pa")))
        other = Credential(username="CORP\\b", password=SecretStr("pb"))

        second = manager.get_session("SRV1", other)

        assert second is not first
        assert second.credential == other
        assert manager.cached("SRV1") is second
        assert transport.count("close_session") == 1
        assert len(manager) == 1


class TestConcurrentOpen:
    """A session cached while ours was opening wins; ours is closed."""

    def test_cached_session_wins(self, transport):
        manager = SessionManager(transport)
        competing = Session(host="SRV1", protocol=SessionProtocol.WSMAN)
        open_session = transport.open_session

        def open_while_another_caches(host, protocol, credential):
            session = open_session(host, protocol, credential)
            manager.sessions[session_key(host)] = competing
            return session

        transport.open_session = open_while_another_caches

        assert manager.get_session("SRV1") is competing
        assert manager.cached("SRV1") is competing
        assert transport.count("close_session") == 1

    def test_cached_session_with_other_credential_is_replaced(self, transport):
        manager = SessionManager(transport)
        competing = Session(
            host="SRV1",
            protocol=SessionProtocol.WSMAN,
            credential=Credential(username="CORP\\other", password=SecretStr("x")),
        )
        open_session = transport.open_session

        def open_while_another_caches(host, protocol, credential):
            session = open_session(host, protocol, credential)
            manager.sessions[session_key(host)] = competing
            return session

        transport.open_session = open_while_another_caches

        session = manager.get_session("SRV1")

        assert session is not competing
        assert manager.cached("SRV1") is session
        assert transport.count("close_session") == 1
