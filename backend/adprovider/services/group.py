"""Group codec and host operations"""
from typing import Any, List, Optional, Sequence

from adprovider.errors import ConflictError, NotFoundError, ParseError, ValidationError
from adprovider.logger import get_logger
from adprovider.models.ad import ADGroup, GroupCategory, GroupScope, check_guid, container_from_dn
from adprovider.models.ldap import LDAPGroup
from adprovider.services.codec import Commands, as_object, get, require_guid, sid, text
from adprovider.services.powershell import quote, quote_or_null

logger = get_logger("services.group")

# ConvertTo-Json renders the enums as their numeric value
SCOPES = [GroupScope.DOMAINLOCAL, GroupScope.GLOBAL, GroupScope.UNIVERSAL]
CATEGORIES = [GroupCategory.DISTRIBUTION, GroupCategory.SECURITY]

UPDATE_PARAMS = [
    ("sam_account_name", "SamAccountName"),
    ("scope", "GroupScope"),
    ("category", "GroupCategory"),
    ("description", "Description"),
]


def _enum_value(value: Any, choices: Sequence, what: str):
    if isinstance(value, bool):
        raise ParseError(f"invalid group {what}: {value!r}")
    if isinstance(value, int):
        if 0 <= value < len(choices):
            return choices[value]
    elif isinstance(value, str):
        for choice in choices:
            if choice.value == value.lower():
                return choice
    raise ParseError(f"invalid group {what}: {value!r}")


def build_create(group: ADGroup) -> List[str]:
    cmds = [
        f"New-ADGroup -Passthru -Name {quote(group.name)} "
        f"-GroupScope {quote(group.scope.value)} -GroupCategory {quote(group.category.value)} "
        f"-Path {quote(group.container)}"
    ]
    if group.sam_account_name:
        cmds.append(f"-SamAccountName {quote(group.sam_account_name)}")
    if group.description:
        cmds.append(f"-Description {quote(group.description)}")
    return cmds


def build_update(old: ADGroup, new: ADGroup) -> Commands:
    """Set-ADGroup for attribute changes, then Rename-ADObject and Move-ADObject."""
    guid = check_guid(old.guid, "group")
    commands: Commands = []

    cmds = [f"Set-ADGroup -Identity {quote(guid)}"]
    for field, param in UPDATE_PARAMS:
        value = getattr(new, field)
        if getattr(old, field) == value:
            continue
        if isinstance(value, (GroupScope, GroupCategory)):
            value = value.value
        cmds.append(f"-{param} {quote_or_null(value)}")
    if len(cmds) > 1:
        commands.append(cmds)

    if old.name != new.name:
        commands.append([f"Rename-ADObject -Identity {quote(guid)} -NewName {quote(new.name)}"])
    if new.container and old.container != new.container:
        commands.append([f"Move-ADObject -Identity {quote(guid)} -TargetPath {quote(new.container)}"])
    return commands


def build_delete(guid: str) -> List[str]:
    return [f"Remove-ADGroup -Identity {quote(check_guid(guid, 'group'))} -Confirm:$false"]


def parse(document: Any) -> ADGroup:
    doc = as_object(document, "Group")
    dn = text(doc, "DistinguishedName")
    return ADGroup(
        guid=require_guid(doc, "ObjectGUID", "Group"),
        dn=dn,
        name=text(doc, "Name"),
        sam_account_name=text(doc, "SamAccountName"),
        container=container_from_dn(dn),
        scope=_enum_value(get(doc, "GroupScope"), SCOPES, "scope"),
        category=_enum_value(get(doc, "GroupCategory"), CATEGORIES, "category"),
        description=text(doc, "Description"),
        sid=sid(doc),
    )


def create(provider, group: ADGroup) -> ADGroup:
    logger.info(f"Adding group {group.name!r}")
    try:
        result = provider.run(build_create(group), json_output=True)
    except ConflictError as e:
        raise ConflictError(f"there is another Group named {group.name!r}", e.exit_code, e.stderr, e.stdout) from e
    created = parse(result.decode_json())
    return read(provider, created.guid) or created


def read(provider, guid: str) -> Optional[ADGroup]:
    cmd = f"Get-ADGroup -Identity {quote(check_guid(guid, 'group'))} -Properties *"
    try:
        result = provider.run([cmd], json_output=True)
    except NotFoundError:
        return None
    return parse(result.decode_json())


def update(provider, old: ADGroup, new: ADGroup) -> Optional[ADGroup]:
    for fragments in build_update(old, new):
        provider.run(fragments)
    return read(provider, old.guid)


def delete(provider, guid: str) -> None:
    try:
        provider.run(build_delete(guid))
    except NotFoundError:
        logger.debug(f"Group {guid} already absent")


def lookup(provider, dn: str, domain_dn: str) -> Optional[LDAPGroup]:
    """Group by DN, read through the LDAP back-end."""
    if not dn or not domain_dn:
        raise ValidationError("dn and domain_dn are required to look up a group")
    with provider.ldap_client() as client:
        try:
            return client.get_group(dn, domain_dn)
        except NotFoundError:
            logger.debug(f"No group found with dn {dn!r}")
            return None
