"""Error kinds raised by the AD execution layer"""
from typing import Optional


NOT_FOUND_MARKERS = (
    "ObjectNotFound",
    "ADIdentityNotFoundException",
    "GpoWithNameNotFound",
    "GpoWithIdNotFound",
    "GpoLinkNotFound",
    "ItemNotFoundException",
    "There is no such object",
)

CONFLICT_MARKERS = (
    "AlreadyExists",
    "already exists",
    "is already linked",
    "GpoWithNameAlreadyExists",
)


class ADError(Exception):
    """Base class for every error produced by the provider."""


class TransportError(ADError):
    """HTTP/TCP/TLS failure, non-200 response or Kerberos setup failure."""

    def __init__(self, message: str, body: Optional[str] = None):
        super().__init__(message)
        self.body = body


class AuthError(ADError):
    """Bind or SPNEGO failure."""


class RemoteError(ADError):
    """Failure reported by the directory, with the command output when there is one."""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = "", stdout: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
        self.stdout = stdout


class CommandError(RemoteError):
    """A PowerShell command exited with a non-zero code."""


class NotFoundError(RemoteError):
    """The remote object does not exist."""


class ConflictError(RemoteError):
    """The remote object already exists."""


class ParseError(ADError):
    """JSON, CLIXML or INF content could not be decoded."""


class InvariantViolation(ADError):
    """Decoded data breaks an invariant (empty GUID, ambiguous LDAP result)."""


class ValidationError(ADError):
    """Caller input rejected before anything reaches the wire."""


def is_not_found(message: str) -> bool:
    return any(marker in message for marker in NOT_FOUND_MARKERS)


def is_conflict(message: str) -> bool:
    return any(marker in message for marker in CONFLICT_MARKERS)


def classify_command_failure(
    command: str,
    exit_code: int,
    stderr: str,
    stdout: str = "",
) -> RemoteError:
    """Build the most specific error for a failed command.

    Args:
        command: Cmdlet name used in the message (e.g. 'New-ADUser')
        exit_code: Process exit code
        stderr: Decoded stderr
        stdout: Trimmed stdout

    Returns:
        NotFoundError, ConflictError or plain CommandError
    """
    message = f"command {command} exited with a non-zero exit code {exit_code}, stderr: {stderr}"
    if is_not_found(stderr):
        return NotFoundError(message, exit_code, stderr, stdout)
    if is_conflict(stderr):
        return ConflictError(message, exit_code, stderr, stdout)
    return CommandError(message, exit_code, stderr, stdout)
