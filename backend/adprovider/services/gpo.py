"""Group Policy Object codec, gpt.ini versioning and host operations"""
import configparser
import io
from typing import Any, List, Optional, Tuple

from adprovider.errors import ConflictError, NotFoundError, ParseError, ValidationError
from adprovider.logger import get_logger
from adprovider.models.ad import check_guid
from adprovider.models.gpo import GPO, GPO_STATUS_BY_NUMBER, GPOStatus
from adprovider.services.codec import Commands, as_object, get, require_guid, text
from adprovider.services.powershell import quote

logger = get_logger("services.gpo")

GPT_INI = "gpt.ini"
GPT_SECTION = "General"


def parse_status(value: Any) -> GPOStatus:
    """Numeric GpoStatus of ConvertTo-Json to its name."""
    if isinstance(value, str):
        try:
            return GPOStatus(value)
        except ValueError:
            pass
    elif isinstance(value, int) and not isinstance(value, bool) and value in GPO_STATUS_BY_NUMBER:
        return GPO_STATUS_BY_NUMBER[value]
    raise ParseError(f"unknown GPO status {value!r}")


def check_status(value: str) -> GPOStatus:
    """Status given by a caller."""
    try:
        return GPOStatus(value)
    except ValueError as e:
        allowed = ", ".join(s.value for s in GPOStatus)
        raise ValidationError(f"invalid GPO status {value!r}, expected one of {allowed}") from e


def split_version(version: int) -> Tuple[int, int]:
    """Split a gpt.ini Version into (user version, computer version).

    The low 16 bits hold the computer version and the high 16 bits the user version.
    """
    version &= 0xFFFFFFFF
    return version >> 16, version & 0xFFFF


def join_version(user_version: int, computer_version: int) -> int:
    return ((user_version & 0xFFFF) << 16) | (computer_version & 0xFFFF)


def parse_gpt_ini(content: str) -> configparser.ConfigParser:
    """Parse gpt.ini; it must hold a single [General] section. Version defaults to 0."""
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    parser.optionxform = str
    try:
        parser.read_string(content)
    except configparser.Error as e:
        raise ParseError(f"contents of {GPT_INI} are not an ini file: {e}") from e
    sections = parser.sections()
    if sections != [GPT_SECTION]:
        raise ParseError(f"found unexpected sections in {GPT_INI}, aborting (sections found: {sections})")
    if not parser.has_option(GPT_SECTION, "Version"):
        parser.set(GPT_SECTION, "Version", "0")
    return parser


def gpt_version(parser: configparser.ConfigParser) -> int:
    raw = parser.get(GPT_SECTION, "Version")
    try:
        return int(raw)
    except ValueError as e:
        raise ParseError(f"failed to convert gpo version {raw!r} to an integer") from e


def render_gpt_ini(parser: configparser.ConfigParser) -> bytes:
    buf = io.StringIO()
    parser.write(buf, space_around_delimiters=False)
    return buf.getvalue().strip().replace("\n", "\r\n").encode("utf-8") + b"\r\n"


def gpt_path(base_path: str) -> str:
    return f"{base_path}\\{GPT_INI}"


def container_filter(guid: str) -> str:
    return f"'(&(objectClass=groupPolicyContainer)(cn={{{guid}}}))'"


def build_read(guid: str) -> List[str]:
    return [f"Get-GPO -Guid {quote(check_guid(guid, 'GPO'))}"]


def build_create(gpo: GPO) -> List[str]:
    cmds = [f"New-GPO -Name {quote(gpo.name)}"]
    if gpo.domain:
        cmds.append(f"-Domain {quote(gpo.domain)}")
    if gpo.description:
        cmds.append(f"-Comment {quote(gpo.description)}")
    return cmds


def build_update(old: GPO, new: GPO) -> Commands:
    """Rename-GPO, then description and status set on the Get-GPO object."""
    guid = check_guid(old.guid, "GPO")
    commands: Commands = []
    if old.name != new.name:
        cmds = [f"Rename-GPO -Guid {quote(guid)} -TargetName {quote(new.name)}"]
        if new.domain:
            cmds.append(f"-Domain {quote(new.domain)}")
        commands.append(cmds)
    if old.description != new.description:
        commands.append([f"(Get-GPO -Guid {quote(guid)}).Description = {quote(new.description)}"])
    if old.status != new.status:
        status = GPOStatus(new.status).value
        commands.append([f"(Get-GPO -Guid {quote(guid)}).GpoStatus = {quote(status)}"])
    return commands


def build_delete(gpo: GPO) -> List[str]:
    cmds = [f"Remove-GPO -Name {quote(gpo.name)}"]
    if gpo.domain:
        cmds.append(f"-Domain {quote(gpo.domain)}")
    return cmds


def build_base_path(guid: str) -> List[str]:
    return [
        f"(Get-ADObject -LDAPFilter {container_filter(check_guid(guid, 'GPO'))} "
        "-Properties gPCFileSysPath).gPCFileSysPath"
    ]


def parse(document: Any) -> GPO:
    doc = as_object(document, "GPO")
    return GPO(
        guid=require_guid(doc, "Id", "GPO"),
        name=text(doc, "DisplayName"),
        domain=text(doc, "DomainName"),
        description=text(doc, "Description"),
        status=parse_status(get(doc, "GpoStatus")),
        dn=text(doc, "Path"),
    )


def get_base_path(provider, guid: str) -> str:
    """SYSVOL folder of the GPO (gPCFileSysPath)."""
    result = provider.run(build_base_path(guid))
    if not result.stdout:
        raise NotFoundError(f"no gPCFileSysPath found for GPO {guid}")
    return result.stdout


def load_gpt_ini(provider, base_path: str) -> configparser.ConfigParser:
    path = gpt_path(base_path)
    logger.debug(f"Getting GPT ini from {path}")
    result = provider.run([f"Get-Content {quote(path)}"], gpo=True)
    return parse_gpt_ini(result.stdout)


def set_versions(provider, gpo: GPO, user_version: int, computer_version: int) -> None:
    """Write a new version to gpt.ini and to the AD object's versionNumber."""
    version = join_version(user_version, computer_version)
    logger.info(f"Setting GPO {gpo.guid} version to {version} (user {user_version}, computer {computer_version})")

    parser = load_gpt_ini(provider, gpo.base_path)
    parser.set(GPT_SECTION, "Version", str(version))
    provider.upload(gpt_path(gpo.base_path), render_gpt_ini(parser))

    lookup = provider.command(
        [f"Get-ADObject -LDAPFilter {container_filter(gpo.guid)} -Properties *"],
        skip_cred_prefix=True,
    )
    assign = provider.command([f"$o.VersionNumber={version};Set-AdObject -Instance $o"], skip_cred_prefix=True)
    provider.run([f"$o=({lookup});{assign}"], skip_cred_suffix=True, server="")


def create(provider, gpo: GPO) -> GPO:
    logger.info(f"Adding GPO {gpo.name!r}")
    try:
        result = provider.run(build_create(gpo), json_output=True, gpo=True)
    except ConflictError as e:
        raise ConflictError(f"there is another GPO named {gpo.name!r}", e.exit_code, e.stderr, e.stdout) from e
    created = parse(result.decode_json())
    if gpo.status != GPOStatus.ALL_SETTINGS_ENABLED:
        for fragments in build_update(created, created.model_copy(update={"status": gpo.status})):
            provider.run(fragments, gpo=True)
    return read(provider, created.guid) or created


def _fetch(provider, cmds: List[str]) -> Optional[GPO]:
    """GPO with its SYSVOL path and versions, None when absent."""
    try:
        result = provider.run(cmds, json_output=True, gpo=True)
    except NotFoundError:
        return None
    gpo = parse(result.decode_json())
    base_path = get_base_path(provider, gpo.guid)
    user_version, computer_version = split_version(gpt_version(load_gpt_ini(provider, base_path)))
    return gpo.model_copy(update={
        "base_path": base_path,
        "user_version": user_version,
        "computer_version": computer_version,
    })


def read(provider, guid: str) -> Optional[GPO]:
    return _fetch(provider, build_read(guid))


def lookup(provider, name: str = "", guid: str = "", domain: str = "") -> Optional[GPO]:
    """GPO by display name or, failing that, by GUID."""
    if name:
        cmds = [f"Get-GPO -Name {quote(name)}"]
    elif guid:
        cmds = build_read(guid)
    else:
        raise ValidationError("name or guid is required to look up a GPO")
    if domain:
        cmds.append(f"-Domain {quote(domain)}")
    return _fetch(provider, cmds)


def update(provider, old: GPO, new: GPO) -> Optional[GPO]:
    for fragments in build_update(old, new):
        provider.run(fragments, gpo=True)
    return read(provider, old.guid)


def delete(provider, gpo: GPO) -> None:
    try:
        provider.run(build_delete(gpo), gpo=True)
    except NotFoundError:
        logger.debug(f"GPO {gpo.name!r} already absent")
