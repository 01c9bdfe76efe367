"""Tests for the WinRM transport, Kerberos setup and provider wiring"""
import base64
import subprocess

import pytest
from winrm.exceptions import AuthenticationError, WinRMTransportError

from adprovider.config import ProviderSettings
from adprovider.errors import AuthError, CommandError, TransportError
from adprovider.provider import Provider
from adprovider.services import kerberos, transport
from adprovider.services.kerberos import KerberosContext, render_krb5_config
from adprovider.services.transport import CommandSession, FileSession, open_winrm_session, restore_script

from conftest import FakeFactory


class RecordingSession:
    def __init__(self, endpoint, auth, **kwargs):
        self.endpoint = endpoint
        self.auth = auth
        self.kwargs = kwargs


class FakeResponse:
    def __init__(self, std_out=b"", std_err=b"", status_code=0):
        self.std_out = std_out
        self.std_err = std_err
        self.status_code = status_code


class FakeProtocol:
    def __init__(self, code=0):
        self.code = code
        self.shells = 0
        self.closed = []
        self.commands = []

    def open_shell(self):
        self.shells += 1
        return f"shell-{self.shells}"

    def run_command(self, shell_id, command, args):
        self.commands.append((shell_id, command, args))
        return f"cmd-{len(self.commands)}"

    def get_command_output(self, shell_id, command_id):
        return b"", (b"" if self.code == 0 else b"Access denied"), self.code

    def cleanup_command(self, shell_id, command_id):
        pass

    def close_shell(self, shell_id):
        self.closed.append(shell_id)


class ProtocolHolder:
    def __init__(self, protocol):
        self.protocol = protocol


def _settings(**values) -> ProviderSettings:
    return ProviderSettings.from_map(dict({"winrm_hostname": "dc1.example.com", "winrm_username": "admin"}, **values))


def test_open_session_basic_over_http(monkeypatch):
    monkeypatch.setattr(transport.winrm, "Session", RecordingSession)
    session = open_winrm_session(_settings(winrm_password="pw"))
    assert session.endpoint == "http://dc1.example.com:5985/wsman"
    assert session.auth == ("admin", "pw")
    assert session.kwargs["transport"] == "plaintext"
    assert session.kwargs["server_cert_validation"] == "validate"


def test_open_session_kerberos(monkeypatch):
    monkeypatch.setattr(transport.winrm, "Session", RecordingSession)
    session = open_winrm_session(_settings(
        krb_realm="EXAMPLE.COM", krb_spn="WSMAN/dc1.example.com", winrm_proto="https", winrm_port=5986,
        winrm_insecure=True,
    ))
    assert session.auth[0] == "admin@EXAMPLE.COM"
    assert session.kwargs["transport"] == "kerberos"
    assert session.kwargs["service"] == "WSMAN"
    assert session.kwargs["kerberos_hostname_override"] == "dc1.example.com"
    assert session.kwargs["server_cert_validation"] == "ignore"


def test_is_local_connection(monkeypatch):
    monkeypatch.setattr(transport.platform, "system", lambda: "Windows")
    assert transport.is_local_connection(ProviderSettings.from_map({"winrm_hostname": "", "winrm_username": ""}))
    assert not transport.is_local_connection(_settings())
    monkeypatch.setattr(transport.platform, "system", lambda: "Linux")
    assert not transport.is_local_connection(ProviderSettings.from_map({"winrm_hostname": "", "winrm_username": ""}))


def test_command_session_decodes_output():
    class Session:
        def run_cmd(self, command, args):
            assert command == "powershell.exe"
            assert args[-1] == "ZQBjAGgAbwA="
            return FakeResponse(b"ok\r\n", b"", 0)

    assert CommandSession(Session()).run_encoded("ZQBjAGgAbwA=") == ("ok\r\n", "", 0)


@pytest.mark.parametrize("error, expected", [
    (AuthenticationError("bad credentials"), AuthError),
    (WinRMTransportError("http", 500, "<s:Fault/>"), TransportError),
])
def test_command_session_translates_errors(error, expected):
    class Session:
        def run_cmd(self, command, args):
            raise error

    with pytest.raises(expected):
        CommandSession(Session()).run_encoded("x")


def test_transport_error_keeps_body():
    translated = transport._translate(WinRMTransportError("http", 500, "<s:Fault/>"))
    assert translated.body == "<s:Fault/>"


def test_file_upload_stages_chunks_then_restores():
    protocol = FakeProtocol()
    session = FileSession(ProtocolHolder(protocol))
    data = b"x" * 5000

    session.upload("C:\\Windows\\SYSVOL\\gpt.ini", data)

    echoes = [c for c in protocol.commands if c[1] == "echo"]
    staged = "".join(args[0] for _, _, args in echoes)
    assert base64.b64decode(staged) == data
    assert len(echoes) == 2
    assert protocol.commands[-1][1] == "powershell.exe"


def test_file_session_rotates_shell():
    protocol = FakeProtocol()
    session = FileSession(ProtocolHolder(protocol))

    # 16 chunks plus the restore command
    session.upload("C:\\big.bin", b"\0" * (transport.UPLOAD_CHUNK_SIZE * 16 * 3 // 4))
    session.close()

    assert protocol.shells == 2
    assert protocol.closed == ["shell-1", "shell-2"]


def test_file_upload_failure():
    session = FileSession(ProtocolHolder(FakeProtocol(code=1)))
    with pytest.raises(CommandError):
        session.upload("C:\\x", b"data")


def test_restore_script():
    script = restore_script("adprovider-1.tmp", "C:\\Policies\\gpt.ini")
    assert script.startswith('$dest = "C:\\Policies\\gpt.ini"')
    assert "FromBase64String" in script
    assert "WriteAllBytes($dest, [byte[]]@())" in restore_script("t", "C:\\x", empty=True)


def test_render_krb5_config():
    conf = render_krb5_config("EXAMPLE.COM", "dc1.example.com")
    assert "  default_realm = EXAMPLE.COM\n" in conf
    assert "    kdc = dc1.example.com:88\n" in conf
    assert "  .example.com = EXAMPLE.COM\n" in conf
    assert "dns_lookup_kdc = false" in conf


@pytest.fixture
def krb_environment(monkeypatch):
    monkeypatch.setenv("KRB5_CONFIG", "")
    monkeypatch.setenv("KRB5CCNAME", "")


def test_kerberos_configure_writes_config(tmp_path, krb_environment):
    context = KerberosContext(_settings(krb_realm="EXAMPLE.COM"), work_dir=tmp_path)
    context.configure()

    assert context.principal == "admin@EXAMPLE.COM"
    assert (tmp_path / "krb5.conf").read_text(encoding="utf-8") == render_krb5_config(
        "EXAMPLE.COM", "dc1.example.com"
    )
    assert context.environment()["KRB5CCNAME"] == f"FILE:{tmp_path / 'ccache'}"


def test_kerberos_missing_config_file(tmp_path, krb_environment):
    context = KerberosContext(_settings(krb_realm="EXAMPLE.COM", krb_conf=str(tmp_path / "none.conf")), tmp_path)
    with pytest.raises(TransportError):
        context.configure()


@pytest.mark.parametrize("stderr, expected", [
    ("kinit: Preauthentication failed while getting initial credentials", AuthError),
    ("kinit: Cannot contact any KDC for realm 'EXAMPLE.COM'", TransportError),
])
def test_kinit_failures(monkeypatch, tmp_path, krb_environment, stderr, expected):
    calls = []

    def run(args, **kwargs):
        calls.append((args, kwargs.get("input")))
        return subprocess.CompletedProcess(args, 1, "", stderr)

    monkeypatch.setattr(kerberos.subprocess, "run", run)
    context = KerberosContext(_settings(krb_realm="EXAMPLE.COM", winrm_password="pw"), work_dir=tmp_path)

    with pytest.raises(expected):
        context.ensure_ticket()
    assert calls == [(["klist", "-s"], None), (["kinit", "admin@EXAMPLE.COM"], "pw\n")]


def test_valid_ticket_skips_kinit(monkeypatch, tmp_path, krb_environment):
    calls = []

    def run(args, **kwargs):
        calls.append(args)
        return subprocess.CompletedProcess(args, 0, "", "")

    monkeypatch.setattr(kerberos.subprocess, "run", run)
    KerberosContext(_settings(krb_realm="EXAMPLE.COM"), work_dir=tmp_path).ensure_ticket()
    assert calls == [["klist", "-s"]]


def test_provider_gpo_options():
    provider = Provider(_settings(
        krb_realm="EXAMPLE.COM", winrm_proto="https", winrm_pass_credentials=True, winrm_password="pw",
    ))
    options = provider.options(gpo=True)
    assert options.invoke_command
    assert options.server == "$env:computername"
    assert options.pass_credentials

    plain = provider.options()
    assert not plain.invoke_command
    assert plain.server == "EXAMPLE.COM"


def test_provider_pass_credentials_needs_https():
    assert not Provider(_settings(winrm_pass_credentials=True)).pass_credentials_enabled


def test_provider_runs_through_pool():
    factory = FakeFactory(outputs=[('{"Name": "x"}', "", 0)])
    provider = Provider(_settings(), factory=factory)

    result = provider.run(["Get-ADDomain"], json_output=True)
    provider.upload("C:\\x", b"data")
    provider.close()

    assert result.decode_json() == {"Name": "x"}
    assert provider.operator == "admin"
    assert all(session.closed for session in factory.created)
