"""WinRM transport: command and file-copy sessions"""
import base64
import platform
import subprocess
import uuid
from pathlib import Path
from typing import Optional, Sequence, Tuple

import requests
import winrm
from winrm.exceptions import (
    AuthenticationError,
    WinRMError,
    WinRMOperationTimeoutError,
    WinRMTransportError,
)

from adprovider.config import ProviderSettings
from adprovider.errors import AuthError, CommandError, TransportError
from adprovider.logger import get_logger
from adprovider.services.kerberos import KerberosContext
from adprovider.services.powershell import encode_command, quote

logger = get_logger("services.transport")

POWERSHELL = "powershell.exe"
POWERSHELL_ARGS = ["-NoProfile", "-NonInteractive", "-EncodedCommand"]

READ_TIMEOUT = 30
OPERATION_TIMEOUT = 20

MAX_OPERATIONS_PER_SHELL = 15
UPLOAD_CHUNK_SIZE = 4000

CommandOutput = Tuple[str, str, int]


def is_local_connection(settings: ProviderSettings) -> bool:
    """Commands run in a local shell on Windows when no remote endpoint or credential is set."""
    return (
        platform.system() == "Windows"
        and not settings.winrm_hostname
        and not settings.winrm_username
        and not settings.winrm_password
    )


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _translate(e: Exception) -> Exception:
    if isinstance(e, AuthenticationError):
        return AuthError(f"authentication failed: {e}")
    if isinstance(e, WinRMTransportError):
        body = getattr(e, "response_text", None)
        return TransportError(f"winrm transport error: {e}", body=body)
    if isinstance(e, WinRMOperationTimeoutError):
        return TransportError("winrm operation timed out")
    return TransportError(f"winrm request failed: {e}")


_WINRM_ERRORS = (WinRMError, WinRMTransportError, WinRMOperationTimeoutError, requests.exceptions.RequestException)


def open_winrm_session(settings: ProviderSettings) -> winrm.Session:
    """Create a pywinrm session for the configured endpoint and auth mode."""
    kwargs = {
        "server_cert_validation": "ignore" if settings.winrm_insecure else "validate",
        "operation_timeout_sec": OPERATION_TIMEOUT,
        "read_timeout_sec": READ_TIMEOUT,
    }
    username = settings.winrm_username
    mode = settings.auth_mode
    if mode == "kerberos":
        kwargs["transport"] = "kerberos"
        if "@" not in username:
            username = f"{username}@{settings.krb_realm}"
        if settings.krb_spn:
            service, _, host = settings.krb_spn.rpartition("/")
            if service:
                kwargs["service"] = service
            kwargs["kerberos_hostname_override"] = host
    elif mode == "ntlm":
        kwargs["transport"] = "ntlm"
    else:
        kwargs["transport"] = "basic" if settings.winrm_proto == "https" else "plaintext"

    logger.debug(f"Opening winrm session to {settings.endpoint} ({kwargs['transport']})")
    return winrm.Session(settings.endpoint, auth=(username, settings.winrm_password), **kwargs)


class CommandSession:
    """Runs encoded PowerShell commands over WS-Management."""

    def __init__(self, session: winrm.Session):
        self.session = session

    def run_encoded(self, encoded: str) -> CommandOutput:
        try:
            response = self.session.run_cmd(POWERSHELL, POWERSHELL_ARGS + [encoded])
        except _WINRM_ERRORS as e:
            raise _translate(e) from e
        return _decode(response.std_out), _decode(response.std_err), response.status_code

    def close(self) -> None:
        """Sessions hold no shell between commands."""


class FileSession:
    """Uploads files to the remote host.

    The content is appended to a temp file in base64 chunks and then decoded
    into place. A remote shell serves at most MAX_OPERATIONS_PER_SHELL
    commands before it is replaced.
    """

    def __init__(self, session: winrm.Session):
        self.protocol = session.protocol
        self._shell_id: Optional[str] = None
        self._operations = 0

    def _shell(self) -> str:
        if self._shell_id is not None and self._operations >= MAX_OPERATIONS_PER_SHELL:
            self.close()
        if self._shell_id is None:
            self._shell_id = self.protocol.open_shell()
            self._operations = 0
        return self._shell_id

    def _run(self, command: str, args: Sequence[str] = ()) -> CommandOutput:
        try:
            shell_id = self._shell()
            command_id = self.protocol.run_command(shell_id, command, list(args))
            try:
                stdout, stderr, code = self.protocol.get_command_output(shell_id, command_id)
            finally:
                self.protocol.cleanup_command(shell_id, command_id)
        except _WINRM_ERRORS as e:
            raise _translate(e) from e
        self._operations += 1
        return _decode(stdout), _decode(stderr), code

    def upload(self, path: str, data: bytes) -> None:
        """Write data to path on the remote host, replacing any existing file.

        Args:
            path: Destination path on the remote host
            data: File contents
        """
        tmp_name = f"adprovider-{uuid.uuid4()}.tmp"
        payload = encode_base64(data)
        logger.debug(f"Uploading {len(data)} bytes to {path}")

        for offset in range(0, len(payload), UPLOAD_CHUNK_SIZE):
            chunk = payload[offset:offset + UPLOAD_CHUNK_SIZE]
            _, stderr, code = self._run("echo", [chunk, ">>", f'"%TEMP%\\{tmp_name}"'])
            if code != 0:
                raise CommandError(f"failed to stage upload for {path}: {stderr}", code, stderr)

        script = restore_script(tmp_name, path, empty=not data)
        _, stderr, code = self._run(POWERSHELL, POWERSHELL_ARGS + [encode_command(script)])
        if code != 0:
            raise CommandError(f"failed to write {path}: {stderr}", code, stderr)

    def close(self) -> None:
        if self._shell_id is None:
            return
        shell_id, self._shell_id = self._shell_id, None
        try:
            self.protocol.close_shell(shell_id)
        except _WINRM_ERRORS as e:
            logger.warning(f"Failed to close remote shell {shell_id}: {e}")


def encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def restore_script(tmp_name: str, path: str, empty: bool = False) -> str:
    """PowerShell script that decodes a staged base64 temp file into path."""
    lines = [
        f"$dest = {quote(path)}",
        "$dir = [System.IO.Path]::GetDirectoryName($dest)",
        "if (-not (Test-Path -LiteralPath $dir)) { New-Item -ItemType Directory -Force -Path $dir | Out-Null }",
    ]
    if empty:
        lines.append("[System.IO.File]::WriteAllBytes($dest, [byte[]]@())")
    else:
        lines += [
            f"$tmp = [System.IO.Path]::Combine($env:TEMP, {quote(tmp_name)})",
            "$b64 = [System.IO.File]::ReadAllText($tmp) -replace '\\s', ''",
            "[System.IO.File]::WriteAllBytes($dest, [System.Convert]::FromBase64String($b64))",
            "Remove-Item -LiteralPath $tmp -Force",
        ]
    return "\n".join(lines)


class LocalCommandSession:
    """Runs encoded PowerShell commands with the local powershell.exe."""

    def run_encoded(self, encoded: str) -> CommandOutput:
        try:
            completed = subprocess.run(
                [POWERSHELL] + POWERSHELL_ARGS + [encoded],
                capture_output=True,
            )
        except OSError as e:
            raise TransportError(f"failed to start local powershell: {e}") from e
        return _decode(completed.stdout), _decode(completed.stderr), completed.returncode

    def close(self) -> None:
        pass


class LocalFileSession:
    """Writes files on the local filesystem (local mode on a domain controller)."""

    def upload(self, path: str, data: bytes) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def close(self) -> None:
        pass


class SessionFactory:
    """Creates command and file sessions for one provider configuration."""

    def __init__(self, settings: ProviderSettings, kerberos: Optional[KerberosContext] = None):
        self.settings = settings
        self.local = is_local_connection(settings)
        if kerberos is None and settings.auth_mode == "kerberos" and not self.local:
            kerberos = KerberosContext(settings)
        self.kerberos = kerberos

    def _winrm_session(self) -> winrm.Session:
        if self.kerberos is not None:
            self.kerberos.ensure_ticket()
        return open_winrm_session(self.settings)

    def command_session(self):
        if self.local:
            return LocalCommandSession()
        return CommandSession(self._winrm_session())

    def file_session(self):
        if self.local:
            return LocalFileSession()
        return FileSession(self._winrm_session())
