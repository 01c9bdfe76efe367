"""PowerShell command execution and output decoding"""
import json
import xml.etree.ElementTree as ET
from typing import Any, Optional

from pydantic import BaseModel

from adprovider.errors import ParseError, classify_command_failure
from adprovider.logger import get_logger
from adprovider.services.powershell import PSCommand
from adprovider.services.session_pool import SessionPool
from adprovider.services.transport import LocalCommandSession

logger = get_logger("services.runner")

CLIXML_MARKER = "#< CLIXML"
CLIXML_NAMESPACE = "http://schemas.microsoft.com/powershell/2004/04"


class CommandResult(BaseModel):
    """stdout, stderr and exit code of a PowerShell command."""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    def decode_json(self) -> Any:
        """Decode stdout as JSON."""
        try:
            return json.loads(self.stdout)
        except ValueError as e:
            logger.debug(f"Failed to decode json document: {self.stdout}")
            raise ParseError(f"failed while unmarshalling json response: {e}") from e


def _clixml_string(text: Optional[str]) -> str:
    text = (text or "").strip()
    if text.startswith("+") and len(text) > 2:
        return "\n" + text[2:]
    return text


def decode_clixml(document: str) -> str:
    """Extract the error message serialised in a CLIXML stderr document.

    Documents without the CLIXML marker, and documents that fail to parse,
    are returned unchanged.
    """
    if CLIXML_MARKER not in document:
        return document
    xml_doc = document.replace(CLIXML_MARKER, "").strip()
    try:
        root = ET.fromstring(xml_doc)
    except ET.ParseError as e:
        logger.debug(f"stderr was not serialised as CLIXML, passing back as is ({e})")
        return document

    strings = [
        _clixml_string(child.text)
        for child in root
        if child.tag in (f"{{{CLIXML_NAMESPACE}}}S", "S")
    ]
    message = "".join(strings).replace("_x000D_", "").replace("_x000A_", "")
    return message.strip()


class CommandRunner:
    """Runs PSCommands through leased command sessions."""

    def __init__(self, pool: SessionPool, local_session_factory=LocalCommandSession):
        self.pool = pool
        self.local_session_factory = local_session_factory

    def run(self, cmd: PSCommand) -> CommandResult:
        """Execute a command and return its decoded result.

        Exactly one command invocation happens per call. Transport failures
        propagate; a non-zero exit code does not raise here.
        """
        if cmd.options.exec_locally:
            logger.debug("Executing command on local host")
            stdout, stderr, exit_code = self.local_session_factory().run_encoded(cmd.encoded())
        else:
            with self.pool.command_session() as session:
                stdout, stderr, exit_code = session.run_encoded(cmd.encoded())

        logger.debug(f"Powershell command exited with code {exit_code}")
        if exit_code != 0:
            logger.debug(f"stdout: {stdout}, stderr: {stderr}")

        result = CommandResult(
            stdout=stdout.strip(),
            stderr=decode_clixml(stderr),
            exit_code=exit_code,
        )
        if cmd.options.force_array and result.stdout and not result.stdout.startswith("["):
            result.stdout = f"[{result.stdout}]"
        return result

    def run_checked(self, cmd: PSCommand) -> CommandResult:
        """Execute a command and raise a classified error on non-zero exit."""
        result = self.run(cmd)
        if result.exit_code != 0:
            raise classify_command_failure(cmd.name, result.exit_code, result.stderr, result.stdout)
        return result
