"""PowerShell command generation"""
import base64
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from adprovider.logger import get_logger

logger = get_logger("services.powershell")

REDACTED = "<REDACTED>"

_ESCAPES = {
    "`": "``",
    '"': '`"',
    "$": "`$",
    "\x00": "`0",
    "\x07": "`a",
    "\x08": "`b",
    "\x1f": "`e",
    "\x0c": "`f",
    "\n": "`n",
    "\r": "`r",
    "\t": "`t",
    "\x0b": "`v",
}


def sanitise(value: str) -> str:
    """Escape a caller-supplied string for use inside a double-quoted PowerShell string.

    Args:
        value: Raw input

    Returns:
        Escaped string
    """
    return "".join(_ESCAPES.get(ch, ch) for ch in value)


def quote(value: str) -> str:
    """Sanitise a value and wrap it in double quotes."""
    return f'"{sanitise(value)}"'


def quote_or_null(value: str) -> str:
    """Quoted value, or $null so the directory attribute gets cleared."""
    return quote(value) if value else "$null"


def ps_bool(value: bool) -> str:
    return "$true" if value else "$false"


def yes_no(value: bool) -> str:
    return '"Yes"' if value else '"No"'


def quote_list(values: Iterable[str]) -> str:
    """Comma-joined list of quoted values."""
    return ",".join(quote(v) for v in values)


def encode_command(script: str) -> str:
    """Encode a script for powershell.exe -EncodedCommand (base64 of UTF-16LE)."""
    return base64.b64encode(script.encode("utf-16-le")).decode("ascii")


class CommandOptions(BaseModel):
    """Rendering and execution options of a PowerShell command."""
    model_config = ConfigDict(frozen=True)

    exec_locally: bool = False
    force_array: bool = False
    invoke_command: bool = False
    json_output: bool = False
    pass_credentials: bool = False
    skip_cred_prefix: bool = False
    skip_cred_suffix: bool = False
    server: str = ""
    username: str = ""
    password: str = ""


class PSCommand:
    """A PowerShell script assembled from ordered fragments.

    The rendered script and its redacted log copy are computed once; the
    command is immutable afterwards.
    """

    def __init__(
        self,
        fragments: Sequence[str],
        options: Optional[CommandOptions] = None,
        secrets: Sequence[str] = (),
    ):
        self.fragments = tuple(fragments)
        self.options = options or CommandOptions()
        self.secrets = tuple(s for s in secrets if s)
        self._script = self._render()
        self._log_copy = self._redact(self._script)
        logger.debug(f"Constructing powershell command: {self._log_copy}")

    @property
    def name(self) -> str:
        """First word of the first fragment (the cmdlet), used in error messages."""
        if not self.fragments:
            return ""
        parts = self.fragments[0].split()
        return parts[0] if parts else ""

    def _render(self) -> str:
        opts = self.options
        cmds: List[str] = list(self.fragments)

        if opts.invoke_command and opts.pass_credentials:
            if opts.json_output:
                cmds.append("| ConvertTo-Json")
            cmds = [
                "Invoke-Command -Authentication Kerberos",
                f"-ScriptBlock {{{' '.join(cmds)}}}",
            ]

        if opts.pass_credentials:
            if not opts.skip_cred_prefix:
                cmds = [
                    f'$Password = ConvertTo-SecureString -String "{sanitise(opts.password)}" -AsPlainText -Force\n',
                    f'$User = "{sanitise(opts.username)}"\n',
                    "$Credential = New-Object -TypeName System.Management.Automation.PSCredential "
                    "-ArgumentList $User, $Password\n",
                ] + cmds
            if not opts.skip_cred_suffix:
                cmds.append("-Credential $Credential")

        if opts.pass_credentials and opts.server:
            if opts.invoke_command:
                cmds.append(f"-Computername {opts.server}")
            else:
                cmds.append(f"-Server {opts.server}")

        if not opts.invoke_command and opts.json_output:
            cmds.append("| ConvertTo-Json")

        return " ".join(cmds)

    def _redact(self, text: str) -> str:
        secrets = list(self.secrets)
        if self.options.password:
            secrets.append(self.options.password)
        # longest first so a secret containing another is masked whole
        for secret in sorted(set(secrets), key=len, reverse=True):
            text = text.replace(secret, REDACTED)
            escaped = sanitise(secret)
            if escaped != secret:
                text = text.replace(escaped, REDACTED)
        return text

    @property
    def log_string(self) -> str:
        """Script with every secret replaced by <REDACTED>."""
        return self._log_copy

    def encoded(self) -> str:
        return encode_command(self._script)

    def __str__(self) -> str:
        return self._script

    def __repr__(self) -> str:
        return f"PSCommand({self._log_copy!r})"
