"""GPO security settings: GptTmpl.inf codec and upload"""
import codecs
import configparser
from typing import Dict, List, Optional, Tuple, Type, Union

from adprovider.errors import NotFoundError, ParseError, ValidationError
from adprovider.logger import get_logger
from adprovider.models.ad import check_guid
from adprovider.models.gposec import (
    AccountLockout,
    EventAudit,
    EventLogPolicy,
    FileSystemEntry,
    FixedKeySection,
    KerberosPolicy,
    PasswordPolicies,
    RegistryKey,
    RegistryValue,
    RestrictedGroup,
    SecuritySettings,
    SystemService,
)
from adprovider.services import gpo as gpo_service
from adprovider.services.powershell import quote

logger = get_logger("services.gposec")

ID_SUFFIX = "securitysettings"
INF_PATH = "Machine\\Microsoft\\Windows NT\\SecEdit\\GptTmpl.inf"
CRLF = "\r\n"

HEADER = ["[Unicode]", "Unicode=yes", "[Version]", 'signature="$CHICAGO$"', "Revision=1"]

MACHINE_EXTENSION_NAMES = "[{827D319E-6EAC-11D2-A4EA-00C04F79F83A}{803E14A0-B4FB-11D0-A0D0-00A0C90F574B}]"

SYSTEM_ACCESS = "System Access"
GROUP_MEMBERSHIP = "Group Membership"
SERVICE_SETTINGS = "Service General Setting"

# field of SecuritySettings -> (INF section, model), in emission order
FIXED_SECTIONS: List[Tuple[str, str, Type[FixedKeySection]]] = [
    ("password_policies", SYSTEM_ACCESS, PasswordPolicies),
    ("account_lockout", SYSTEM_ACCESS, AccountLockout),
    ("kerberos_policy", "Kerberos Policy", KerberosPolicy),
    ("event_audit", "Event Audit", EventAudit),
    ("system_log", "System Log", EventLogPolicy),
    ("audit_log", "Security Log", EventLogPolicy),
    ("application_log", "Application Log", EventLogPolicy),
]

# field of SecuritySettings -> (INF section, record model, record fields)
RECORD_SECTIONS = [
    ("registry_keys", "Registry Keys", RegistryKey, ("key_name", "propagation_mode", "acl")),
    ("registry_values", "Registry Values", RegistryValue, ("key_name", "value_type", "value")),
    ("system_services", SERVICE_SETTINGS, SystemService, ("service_name", "startup_mode", "acl")),
    ("filesystem", "File Security", FileSystemEntry, ("path", "propagation_mode", "acl")),
]

Record = Union[RegistryKey, RegistryValue, SystemService, FileSystemEntry]


def resource_id(gpo_guid: str) -> str:
    return f"{gpo_guid}_{ID_SUFFIX}"


def parse_id(value: str) -> str:
    """GPO GUID of a '<gpoGUID>_securitysettings' id."""
    gpo_guid, sep, suffix = value.partition("_")
    if not sep or suffix != ID_SUFFIX:
        raise ValidationError(f"malformed security settings id {value!r}, expected <gpo>_{ID_SUFFIX}")
    return check_guid(gpo_guid, "GPO")


def inf_path(base_path: str) -> str:
    return f"{base_path}\\{INF_PATH}"


def _record_line(record: Record, fields: Tuple[str, str, str]) -> str:
    first, middle, last = (getattr(record, f) for f in fields)
    return f'"{first}",{middle},"{last}"'


def emit_text(settings: SecuritySettings) -> str:
    """Render the INF text with CRLF line breaks."""
    lines = list(HEADER)

    sections: Dict[str, List[str]] = {}
    for field, section, _ in FIXED_SECTIONS:
        model = getattr(settings, field)
        if model is None:
            continue
        items = [f"{k}={v}" for k, v in model.ini_items()]
        if items:
            sections.setdefault(section, []).extend(items)
    for section, items in sections.items():
        lines.append(f"[{section}]")
        lines.extend(items)

    if settings.restricted_groups:
        lines.append(f"[{GROUP_MEMBERSHIP}]")
        for group in settings.restricted_groups:
            lines.append(f"{group.group_name}__Members={group.group_members}")
            lines.append(f"{group.group_name}__Memberof={group.group_memberof}")

    for field, section, _, fields in RECORD_SECTIONS:
        records = getattr(settings, field)
        if not records:
            continue
        lines.append(f"[{section}]")
        lines.extend(_record_line(r, fields) for r in records)

    return CRLF.join(lines) + CRLF


def emit(settings: SecuritySettings) -> bytes:
    """INF bytes: UTF-16LE with a byte order mark."""
    return codecs.BOM_UTF16_LE + emit_text(settings).encode("utf-16-le")


def decode(content: Union[bytes, str]) -> str:
    """Decode INF content, detecting UTF-16 by its BOM or NUL pattern."""
    if isinstance(content, str):
        return content.lstrip("\ufeff")
    if content.startswith(codecs.BOM_UTF16_LE) or content.startswith(codecs.BOM_UTF16_BE):
        return content.decode("utf-16")
    if len(content) >= 2 and content[1] == 0:
        return content.decode("utf-16-le")
    if len(content) >= 2 and content[0] == 0:
        return content.decode("utf-16-be")
    return content.decode("utf-8-sig")


def _parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(
        delimiters=("=",),
        allow_no_value=True,
        interpolation=None,
        strict=False,
        inline_comment_prefixes=None,
    )
    parser.optionxform = str
    return parser


def _raw_lines(parser: configparser.ConfigParser, section: str) -> List[str]:
    """Section entries as whole lines; configparser splits lines holding '='."""
    lines = []
    for key, value in parser.items(section, raw=True):
        lines.append(key if value is None else f"{key}={value}")
    return lines


def _parse_record(line: str, model, fields: Tuple[str, str, str]):
    if not line.startswith('"') and "=" in line:
        # GPMC writes registry values as key=type,value
        key, _, rest = line.partition("=")
        parts = [key] + rest.split(",", 1)
    else:
        parts = line.split(",", 2)
    if len(parts) != 3:
        raise ParseError(f"invalid record {line!r}, expected 3 comma-separated fields")
    values = [p.strip().strip('"') for p in parts]
    return model(**dict(zip(fields, values)))


def _parse_restricted_groups(parser: configparser.ConfigParser) -> List[RestrictedGroup]:
    groups: Dict[str, Dict[str, str]] = {}
    for key, value in parser.items(GROUP_MEMBERSHIP, raw=True):
        parts = key.split("__")
        if len(parts) != 2:
            raise ParseError(f"invalid restricted group key {key!r}, expected <group>__Members or <group>__Memberof")
        name, kind = parts
        kind = kind.lower()
        if kind not in ("members", "memberof"):
            raise ParseError(f"invalid restricted group key {key!r}")
        groups.setdefault(name, {})[kind] = value or ""
    return [
        RestrictedGroup(
            group_name=name,
            group_members=values.get("members", ""),
            group_memberof=values.get("memberof", ""),
        )
        for name, values in groups.items()
    ]


def parse(content: Union[bytes, str]) -> SecuritySettings:
    """Parse GptTmpl.inf content into SecuritySettings."""
    parser = _parser()
    try:
        parser.read_string(decode(content))
    except (configparser.Error, UnicodeDecodeError) as e:
        raise ParseError(f"security settings are not a valid INF file: {e}") from e

    values = {}
    for field, section, model in FIXED_SECTIONS:
        if parser.has_section(section):
            entries = {k: v or "" for k, v in parser.items(section, raw=True)}
            values[field] = model.from_ini(entries)

    if parser.has_section(GROUP_MEMBERSHIP):
        values["restricted_groups"] = _parse_restricted_groups(parser)

    for field, section, model, fields in RECORD_SECTIONS:
        if parser.has_section(section):
            values[field] = [_parse_record(line, model, fields) for line in _raw_lines(parser, section)]

    return SecuritySettings(**values)


def _bump_computer_version(provider, gpo) -> None:
    gpo_service.set_versions(provider, gpo, gpo.user_version, gpo.computer_version + 1)


def _set_machine_extensions(provider, gpo) -> None:
    provider.run([
        f"Set-ADObject -Identity {quote(gpo.dn)} "
        f"-Replace @{{gPCMachineExtensionNames={quote(MACHINE_EXTENSION_NAMES)}}}"
    ])


def _load_gpo(provider, gpo_guid: str):
    found = gpo_service.read(provider, gpo_guid)
    if found is None:
        raise NotFoundError(f"GPO {gpo_guid} not found")
    return found


def read(provider, gpo_guid: str) -> Optional[SecuritySettings]:
    """Security settings of a GPO, None when the GPO or its GptTmpl.inf is absent."""
    found = gpo_service.read(provider, gpo_guid)
    if found is None:
        return None
    path = inf_path(found.base_path)
    try:
        result = provider.run([f"Get-Content {quote(path)}"], gpo=True)
    except NotFoundError:
        logger.debug(f"{path} does not exist")
        return None
    return parse(result.stdout)


def upload(provider, gpo_guid: str, settings: SecuritySettings) -> SecuritySettings:
    """Write GptTmpl.inf, bump the computer version and register the extensions."""
    found = _load_gpo(provider, gpo_guid)
    path = inf_path(found.base_path)
    logger.info(f"Writing security settings of GPO {gpo_guid} to {path}")
    provider.upload(path, emit(settings))
    _bump_computer_version(provider, found)
    _set_machine_extensions(provider, found)
    return settings


def remove(provider, gpo_guid: str) -> None:
    """Delete GptTmpl.inf (absence ignored) and bump the computer version."""
    found = gpo_service.read(provider, gpo_guid)
    if found is None:
        logger.debug(f"GPO {gpo_guid} already absent")
        return
    path = inf_path(found.base_path)
    try:
        provider.run([f"Remove-Item {quote(path)}"], gpo=True)
    except NotFoundError:
        logger.debug(f"{path} already absent")
    _bump_computer_version(provider, found)
