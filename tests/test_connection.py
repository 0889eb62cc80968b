"""
Tests for provider resolution and the lazy-connect gate.
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import SecretStr

from conftest import provider_location
from cmadmin.application.client import CMClient
from cmadmin.application.connection import parse_namespace_path
from cmadmin.domain.config import ClientSettings
from cmadmin.domain.errors import CMConnectionError, ProviderNotFoundError, SessionError, TransportError
from cmadmin.domain.models import Credential, SessionProtocol


class TestParseNamespacePath:
    """Splitting `\\\\host\\namespace` paths."""

    def test_host_and_namespace(self):
        assert parse_namespace_path(r"\\SRV1\root\ns\Site_ABC") == ("SRV1", r"root\ns\Site_ABC")

    def test_forward_slashes(self):
        assert parse_namespace_path("//SRV1/root/sms/site_ABC") == ("SRV1", r"root\sms\site_ABC")

    def test_no_host(self):
        assert parse_namespace_path(r"root\sms\site_ABC") == ("", r"root\sms\site_ABC")

    def test_empty(self):
        assert parse_namespace_path("") == ("", "")


class TestConnect:
    """Resolution through SMS_ProviderLocation."""

    def test_end_to_end_against_stub(self, client, transport):
        transport.locations = [provider_location(r"\\SRV1\root\ns\Site_ABC", "SRV1", "ABC")]

        conn = client.connect("SRV1", "ABC")

        assert conn.provider_host == "SRV1"
        assert conn.namespace == r"root\ns\Site_ABC"
        assert conn.site_code == "ABC"
        assert conn.session.protocol is SessionProtocol.WSMAN
        assert conn.connected_at is not None
        lookup = transport.last("query")
        assert lookup["namespace"] == "root\\SMS"
        assert lookup["filter_text"] == "(SiteCode = 'ABC')"

    def test_local_site_lookup_without_site_code(self, client, transport):
        client.connect("SRV1")
        assert transport.last("query")["filter_text"] == "(ProviderForLocalSite = True)"
        assert client.connection.site_code == "ABC"

    def test_redirect_opens_session_to_provider_host(self, client, transport):
        transport.locations = [provider_location(r"\\PROV2\root\sms\site_ABC", "PROV2", "ABC")]

        conn = client.connect("SRV1", "ABC")

        assert conn.provider_host == "PROV2"
        assert conn.session.host == "PROV2"
        assert [args["host"] for name, args in transport.calls if name == "open_session"] == ["SRV1", "PROV2"]

    def test_machine_used_when_path_has_no_host(self, client, transport):
        transport.locations = [provider_location(r"root\sms\site_ABC", "PROV3", "ABC")]
        assert client.connect("SRV1", "ABC").provider_host == "PROV3"

    def test_new_credential_replaces_session(self, client, transport):
        first = Credential(username="CORP\\a", password=SecretStr("pa"))
        second = Credential(username="CORP\\b", password=SecretStr("pb"))

        client.connect("SRV1", "ABC", credential=first)
        client.connect("SRV1", "ABC", credential=second)

        assert client.connection.credential == second
        assert client.connection.session.credential == second
        assert transport.count("close_session") == 1
        assert len(client.sessions) == 1

    def test_no_provider_location(self, client, transport):
        transport.locations = []
        with pytest.raises(ProviderNotFoundError) as exc_info:
            client.connect("SRV1", "XYZ")
        assert "Unable to connect to specified provider" in str(exc_info.value)
        assert not client.connection.is_complete

    def test_provider_session_failure_clears_connection(self, client, transport):
        transport.locations = [provider_location(r"\\PROV2\root\sms\site_ABC", "PROV2", "ABC")]
        transport.fail_hosts.add("PROV2")

        with pytest.raises(SessionError) as exc_info:
            client.connect("SRV1", "ABC")
        assert "Unable to establish session to PROV2" in str(exc_info.value)
        assert client.connection.provider_host == ""
        assert client.connection.session is None

    def test_query_failure_becomes_connection_error(self, client, transport):
        transport.fail("query", TransportError("Invalid namespace"))
        with pytest.raises(CMConnectionError):
            client.connect("SRV1", "ABC")
        assert not client.connection.is_complete

    def test_default_host_from_settings(self, client, transport):
        client.connect()
        assert transport.calls[0] == ("probe_wsman", {"host": "SRV1"})


class TestEnsureConnected:
    """Lazy connect exactly once per client."""

    def test_lazy_connect_happens_once(self, client, transport):
        client.query("SMS_Package")
        client.query("SMS_Package")

        assert transport.count("open_session") == 1
        lookups = [a for n, a in transport.calls if n == "query" and a["class_name"] == "SMS_ProviderLocation"]
        assert len(lookups) == 1

    def test_explicit_connect_is_not_repeated(self, connected_client, transport):
        connected_client.ensure_connected()
        assert transport.calls == []

    def test_stale_connection_reconnects(self, transport):
        client = CMClient(
            transport=transport,
            settings=ClientSettings(provider_server="SRV1", connection_max_age_seconds=60),
        )
        client.connect("SRV1", "ABC")
        client.connection.connected_at = datetime.now(timezone.utc) - timedelta(minutes=5)

        client.ensure_connected()

        assert transport.count("close_session") == 1
        assert transport.count("open_session") == 2
        assert client.connection.age_seconds() < 60
        assert transport.last("query")["filter_text"] == "(SiteCode = 'ABC')"

    def test_close_clears_everything(self, connected_client, transport):
        connected_client.close()
        assert not connected_client.connection.is_complete
        assert len(connected_client.sessions) == 0
        assert transport.count("close_session") == 1

    def test_context_manager_closes(self, transport, settings):
        with CMClient(transport=transport, settings=settings) as client:
            client.connect()
        assert transport.count("close_session") == 1
