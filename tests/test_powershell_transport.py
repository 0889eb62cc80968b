"""
Tests for the PowerShell CIM transport, its scripts and the runner.
"""

import json
import subprocess
from unittest.mock import MagicMock, Mock, patch

import pytest
from pydantic import SecretStr

from cmadmin.domain.config import RPC_S_CALL_FAILED, GatewaySettings
from cmadmin.domain.errors import ConfigurationError, RemoteCallError, TransportError
from cmadmin.domain.models import Credential, ManagementObject, Session, SessionProtocol
from cmadmin.infrastructure.cim.transport import PowerShellCimTransport, parse_envelope
from cmadmin.infrastructure.psremote import scripts
from cmadmin.infrastructure.psremote.runner import PowerShellRunner, RunResult

NAMESPACE = r"root\sms\site_ABC"


class FakeRunner:
    """Returns queued stdout values and keeps the scripts it was given."""

    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.scripts = []
        self.envs = []

    def run(self, script, env=None):
        self.scripts.append(script)
        self.envs.append(env)
        output = self.outputs.pop(0)
        if not isinstance(output, str):
            output = json.dumps(output)
        return RunResult(success=True, stdout=output, return_code=0, transport_used="fake")


def record(class_name, keys=(), **properties):
    return {
        "__CLASS": class_name,
        "__NAMESPACE": NAMESPACE,
        "__KEYS": list(keys),
        "__PATH": None,
        "Properties": properties,
    }


@pytest.fixture
def wsman_session():
    return Session(host="SRV1", protocol=SessionProtocol.WSMAN)


@pytest.fixture
def dcom_session():
    return Session(host="SRV1", protocol=SessionProtocol.DCOM)


class TestParseEnvelope:
    """Locating the JSON envelope in script output."""

    def test_plain(self):
        assert parse_envelope('{"ok": true, "data": 1}') == {"ok": True, "data": 1}

    def test_surrounding_noise(self):
        assert parse_envelope('WARNING: x\r\n{"ok": true, "data": [1]}\r\n') == {"ok": True, "data": [1]}

    def test_not_an_envelope(self):
        assert parse_envelope('{"data": 1}') is None

    def test_garbage(self):
        assert parse_envelope("Access is denied.") is None
        assert parse_envelope("{not json}") is None


class TestTransportCalls:
    """Envelope handling per operation."""

    def test_query_rebuilds_objects(self, wsman_session):
        runner = FakeRunner({"ok": True, "data": [
            record("SMS_Package", ["PackageID"], PackageID="ABC00001", Name="Office"),
        ]})
        transport = PowerShellCimTransport(runner)

        objects = list(transport.query(wsman_session, NAMESPACE, "SMS_Package", "(Name = 'Office')"))

        assert len(objects) == 1
        assert objects[0].class_name == "SMS_Package"
        assert objects[0].key_values == {"PackageID": "ABC00001"}
        assert "SELECT * FROM SMS_Package WHERE (Name = ''Office'')" in runner.scripts[0]
        assert "Get-CimInstance" in runner.scripts[0]

    def test_single_record_is_wrapped(self, wsman_session):
        runner = FakeRunner({"ok": True, "data": record("SMS_Site", SiteCode="ABC")})
        assert len(list(PowerShellCimTransport(runner).query(wsman_session, NAMESPACE, "SMS_Site"))) == 1

    def test_embedded_instances(self, wsman_session):
        step = record("SMS_TaskSequence_Step", Name="Format")
        runner = FakeRunner({"ok": True, "data": [record("SMS_TaskSequence", Steps=[step])]})

        obj = next(iter(PowerShellCimTransport(runner).query(wsman_session, NAMESPACE, "SMS_TaskSequence")))

        assert isinstance(obj["Steps"][0], ManagementObject)
        assert obj["Steps"][0].is_client_only

    def test_error_envelope_raises_with_hresult(self, wsman_session):
        signed = RPC_S_CALL_FAILED - 0x100000000
        runner = FakeRunner({"ok": False, "error": "The remote procedure call failed.", "hresult": signed})

        with pytest.raises(RemoteCallError) as exc_info:
            list(PowerShellCimTransport(runner).query(wsman_session, NAMESPACE, "SMS_Package"))

        assert exc_info.value.hresult == RPC_S_CALL_FAILED
        assert exc_info.value.host == "SRV1"
        assert "0x800706BE" in str(exc_info.value)

    def test_missing_envelope_raises_transport_error(self, wsman_session):
        runner = FakeRunner("New-CimSession : WinRM cannot complete the operation")
        with pytest.raises(TransportError) as exc_info:
            PowerShellCimTransport(runner).open_session("SRV1", SessionProtocol.WSMAN, None)
        assert not isinstance(exc_info.value, RemoteCallError)

    @pytest.mark.parametrize("stack,expected", [("3.0", True), ("2.0", False), ("", False)])
    def test_probe_wsman(self, stack, expected):
        runner = FakeRunner({"ok": True, "data": {"stack": stack}})
        assert PowerShellCimTransport(runner).probe_wsman("SRV1", None) is expected

    def test_invoke_method_result(self, wsman_session):
        runner = FakeRunner({"ok": True, "data": {"ReturnValue": 7, "OutParameters": {"OperationID": 12}}})

        result = PowerShellCimTransport(runner).invoke_method(
            wsman_session, NAMESPACE, "SMS_ClientOperation", "InitiateClientOperation", {"Type": 8}
        )

        assert result.return_value == 7
        assert result["OperationID"] == 12
        assert result.class_name == "SMS_ClientOperation"
        assert "-MethodName 'InitiateClientOperation'" in runner.scripts[0]
        assert "@{'Type' = 8}" in runner.scripts[0]

    def test_invoke_method_data_return_value(self, wsman_session):
        runner = FakeRunner({"ok": True, "data": {"ReturnValue": "<sequence/>", "OutParameters": {}}})

        result = PowerShellCimTransport(runner).invoke_method(
            wsman_session, NAMESPACE, "SMS_TaskSequencePackage", "ExportXml", {}
        )

        assert result.return_value == 0
        assert result["ReturnValue"] == "<sequence/>"

    def test_legacy_create_is_one_script(self, dcom_session):
        runner = FakeRunner({"ok": True, "data": record("SMS_ObjectContainerNode", Name="X")})
        transport = PowerShellCimTransport(runner)

        instance = transport.new_instance(dcom_session, NAMESPACE, "SMS_ObjectContainerNode")
        transport.set_property(instance, "Name", "X")
        transport.set_property(instance, "ObjectType", 2)
        created = transport.commit_instance(dcom_session, NAMESPACE, instance)

        assert len(runner.scripts) == 1
        script = runner.scripts[0]
        assert "$class.CreateInstance()" in script
        assert "$item['Name'] = 'X'" in script
        assert "$item['ObjectType'] = 2" in script
        assert "$item.Put()" in script
        assert created["Name"] == "X"

    def test_password_passed_in_environment(self):
        cred = Credential(username="CORP\\svc_cm", password=SecretStr("s3cret"))
        session = Session(host="SRV1", protocol=SessionProtocol.WSMAN, credential=cred)
        runner = FakeRunner({"ok": True, "data": []})

        list(PowerShellCimTransport(runner).query(session, NAMESPACE, "SMS_Package"))

        assert "s3cret" not in runner.scripts[0]
        assert runner.envs[0] == {scripts.PASSWORD_ENV: "s3cret"}

    def test_no_environment_without_credential(self, wsman_session):
        runner = FakeRunner({"ok": True, "data": []})
        list(PowerShellCimTransport(runner).query(wsman_session, NAMESPACE, "SMS_Package"))
        assert runner.envs[0] == {}


class TestScripts:
    """Script text for sessions and arguments."""

    def test_dcom_session_option(self, dcom_session, wsman_session):
        assert "New-CimSessionOption -Protocol Dcom" in scripts.session_block(dcom_session)
        assert "Dcom" not in scripts.session_block(wsman_session)

    def test_legacy_query_reads_lazy_properties(self, wsman_session):
        script = scripts.query_script(wsman_session, NAMESPACE, "SELECT * FROM SMS_TaskSequencePackage", legacy=True)
        assert "Get-WmiObject @wmiArgs" in script
        assert "$_.Get()" in script

    def test_wql_join(self):
        join = "pkg JOIN SMS_DistributionPoint dp ON pkg.PackageID = dp.PackageID"
        assert scripts.wql("SMS_Package", join, requires_join=True) == f"SELECT * FROM SMS_Package {join}"
        assert scripts.wql("SMS_Package") == "SELECT * FROM SMS_Package"

    def test_ps_quote(self):
        assert scripts.ps_quote("O'Brien") == "'O''Brien'"

    def test_ps_literals(self):
        assert scripts.ps_literal(None) == "$null"
        assert scripts.ps_literal(True) == "$true"
        assert scripts.ps_literal(2**40) == f"[int64]{2**40}"
        assert scripts.ps_literal(["a", 1]) == "@('a', 1)"

    def test_client_only_instance_rebuilt(self):
        obj = ManagementObject("SMS_TaskSequencePackage", {"Name": "OSD"}, client_only=True)
        expr = scripts.instance_expression(obj, NAMESPACE)
        assert expr.startswith("(New-CimInstance -ClientOnly")
        assert "@{'Name' = 'OSD'}" in expr

    def test_committed_instance_read_by_key(self):
        obj = ManagementObject("SMS_Package", {"PackageID": "ABC00001"}, ["PackageID"])
        expr = scripts.instance_expression(obj, NAMESPACE)
        assert "-Filter '(PackageID = ''ABC00001'')'" in expr

    def test_keyless_instance_cannot_be_addressed(self):
        with pytest.raises(ConfigurationError):
            scripts.key_filter(ManagementObject("SMS_Package", {"Name": "x"}))

    def test_credential_block(self):
        cred = Credential(username="CORP\\svc_cm", password=SecretStr("p'w"))
        block = scripts.credential_block(cred)
        assert "'CORP\\svc_cm'" in block
        assert f"$env:{scripts.PASSWORD_ENV}" in block
        assert "p'w" not in block and "p''w" not in block
        assert scripts.credential_block(None) == "$cred = $null\n"

    def test_script_environment(self):
        cred = Credential(username="svc", password=SecretStr("pw"))
        assert scripts.script_environment(cred) == {scripts.PASSWORD_ENV: "pw"}
        assert scripts.script_environment(None) == {}


class TestPowerShellRunner:
    """Local and gateway execution."""

    @patch("cmadmin.infrastructure.psremote.runner.winrm.Session")
    def test_gateway_falls_through_combinations(self, mock_session_cls):
        bad = MagicMock()
        bad.run_cmd.side_effect = ConnectionError("refused")
        good = MagicMock()
        good.run_cmd.return_value = Mock(status_code=0, std_out=b"OK\r\n")
        good.run_ps.return_value = Mock(status_code=0, std_out=b'{"ok": true}', std_err=b"")
        mock_session_cls.side_effect = [bad, good]

        runner = PowerShellRunner(GatewaySettings(host="gw01"))
        result = runner.run("Write-Output 1")

        assert result.success
        assert result.stdout == '{"ok": true}'
        assert mock_session_cls.call_count == 2
        assert "gw01" in runner.describe()

    @patch("cmadmin.infrastructure.psremote.runner.winrm.Session")
    def test_gateway_password_sent_as_shell_variable(self, mock_session_cls):
        session = MagicMock()
        session.run_cmd.return_value = Mock(status_code=0, std_out=b"OK")
        protocol = session.protocol
        protocol.open_shell.return_value = "shell-1"
        protocol.run_command.return_value = "cmd-1"
        protocol.get_command_output.return_value = (b'{"ok": true}', b"", 0)
        mock_session_cls.return_value = session

        result = PowerShellRunner(GatewaySettings(host="gw01")).run(
            "Write-Output 1", env={scripts.PASSWORD_ENV: "s3cret"}
        )

        assert result.success
        assert result.stdout == '{"ok": true}'
        protocol.open_shell.assert_called_once_with(env_vars={scripts.PASSWORD_ENV: "s3cret"})
        assert "s3cret" not in str(protocol.run_command.call_args)
        protocol.cleanup_command.assert_called_once_with("shell-1", "cmd-1")
        protocol.close_shell.assert_called_once_with("shell-1")
        session.run_ps.assert_not_called()

    @patch("cmadmin.infrastructure.psremote.runner.winrm.Session")
    def test_gateway_unreachable(self, mock_session_cls):
        mock_session_cls.side_effect = ConnectionError("refused")
        with pytest.raises(TransportError):
            PowerShellRunner(GatewaySettings(host="gw01")).connect()

    @patch("cmadmin.infrastructure.psremote.runner.winrm.Session")
    def test_execution_failure_drops_session(self, mock_session_cls):
        session = MagicMock()
        session.run_cmd.return_value = Mock(status_code=0, std_out=b"OK")
        session.run_ps.side_effect = OSError("connection reset")
        mock_session_cls.return_value = session

        runner = PowerShellRunner(GatewaySettings(host="gw01"))
        with pytest.raises(TransportError):
            runner.run("x")
        assert runner.describe() == "gw01"

    @patch("cmadmin.infrastructure.psremote.runner.subprocess.run")
    def test_local_missing_powershell(self, mock_run):
        mock_run.side_effect = FileNotFoundError()
        with pytest.raises(TransportError, match="PowerShell not found"):
            PowerShellRunner().run("x")

    @patch("cmadmin.infrastructure.psremote.runner.subprocess.run")
    def test_local_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="powershell.exe", timeout=120)
        with pytest.raises(TransportError, match="timed out"):
            PowerShellRunner().run("x")

    @patch("cmadmin.infrastructure.psremote.runner.subprocess.run")
    def test_local_run(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout='{"ok": true}', stderr="")
        result = PowerShellRunner().run("x")
        assert result.success
        assert result.transport_used == "local"
        assert mock_run.call_args[0][0][0] == "powershell.exe"
        assert mock_run.call_args[1]["env"] is None

    @patch("cmadmin.infrastructure.psremote.runner.subprocess.run")
    def test_local_script_file_has_no_password(self, mock_run):
        seen = {}

        def fake_run(cmd, **kwargs):
            with open(cmd[-1], encoding="utf-8-sig") as f:
                seen["script"] = f.read()
            seen["env"] = kwargs["env"]
            return Mock(returncode=0, stdout='{"ok": true}', stderr="")

        mock_run.side_effect = fake_run
        cred = Credential(username="CORP\\svc_cm", password=SecretStr("s3cret"))

        PowerShellRunner().run(scripts.frame("Write-Output 1", cred), env=scripts.script_environment(cred))

        assert "s3cret" not in seen["script"]
        assert f"$env:{scripts.PASSWORD_ENV}" in seen["script"]
        assert seen["env"][scripts.PASSWORD_ENV] == "s3cret"
