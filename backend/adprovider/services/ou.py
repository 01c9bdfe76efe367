"""Organizational unit codec and host operations"""
from typing import Any, List, Optional

from ldap3.utils.dn import escape_rdn

from adprovider.errors import ConflictError, NotFoundError, ValidationError
from adprovider.logger import get_logger
from adprovider.models.ad import ADOrgUnit, check_guid, container_from_dn
from adprovider.services.codec import Commands, as_object, flag, require_guid, text
from adprovider.services.powershell import ps_bool, quote, quote_or_null

logger = get_logger("services.ou")


def _protect(guid: str, protected: bool) -> List[str]:
    return [f"Set-ADObject -Identity {quote(guid)} -ProtectedFromAccidentalDeletion:{ps_bool(protected)}"]


def build_create(ou: ADOrgUnit) -> List[str]:
    cmds = [f"New-ADOrganizationalUnit -Passthru -Name {quote(ou.name)}"]
    if ou.display_name:
        cmds.append(f"-DisplayName {quote(ou.display_name)}")
    if ou.description:
        cmds.append(f"-Description {quote(ou.description)}")
    if ou.path:
        cmds.append(f"-Path {quote(ou.path)}")
    cmds.append(f"-ProtectedFromAccidentalDeletion:{ps_bool(ou.protected)}")
    return cmds


def build_update(old: ADOrgUnit, new: ADOrgUnit) -> Commands:
    """Attribute changes, then a move (protection lifted around it), protection and rename."""
    guid = check_guid(old.guid, "OU")
    commands: Commands = []

    cmds = [f"Set-ADOrganizationalUnit -Identity {quote(guid)}"]
    if old.description != new.description:
        cmds.append(f"-Description {quote_or_null(new.description)}")
    if old.display_name != new.display_name:
        cmds.append(f"-DisplayName {quote_or_null(new.display_name)}")
    if len(cmds) > 1:
        commands.append(cmds)

    if new.path and old.path != new.path:
        if old.protected:
            commands.append(_protect(guid, False))
        commands.append([f"Move-ADObject -Identity {quote(guid)} -TargetPath {quote(new.path)}"])
        if old.protected and new.protected:
            commands.append(_protect(guid, True))

    if old.protected != new.protected:
        commands.append(_protect(guid, new.protected))

    if old.name != new.name:
        commands.append([f"Rename-ADObject -Identity {quote(guid)} -NewName {quote(new.name)}"])
    return commands


def build_delete(guid: str) -> List[str]:
    identity = quote(check_guid(guid, "OU"))
    return [
        f"Get-ADObject -Identity {identity} |",
        "Set-ADObject -ProtectedFromAccidentalDeletion:$false -Passthru |",
        "Remove-ADOrganizationalUnit -Confirm:$false",
    ]


def parse(document: Any) -> ADOrgUnit:
    doc = as_object(document, "OU")
    name = text(doc, "Name")
    dn = text(doc, "DistinguishedName")
    prefix = f"OU={name},"
    path = dn[len(prefix):] if dn.startswith(prefix) else container_from_dn(dn)
    return ADOrgUnit(
        guid=require_guid(doc, "ObjectGUID", "OU"),
        dn=dn,
        name=name,
        display_name=text(doc, "DisplayName"),
        description=text(doc, "Description"),
        path=path,
        protected=flag(doc, "ProtectedFromAccidentalDeletion"),
    )


def create(provider, ou: ADOrgUnit) -> ADOrgUnit:
    logger.info(f"Adding OU {ou.name!r} under {ou.path!r}")
    try:
        result = provider.run(build_create(ou), json_output=True)
    except ConflictError as e:
        raise ConflictError(f"there is another OU named {ou.name!r}", e.exit_code, e.stderr, e.stdout) from e
    created = parse(result.decode_json())
    return read(provider, created.guid) or created


def _fetch(provider, identity: str) -> Optional[ADOrgUnit]:
    cmd = f"Get-ADObject -Properties * -Identity {quote(identity)}"
    try:
        result = provider.run([cmd], json_output=True)
    except NotFoundError:
        return None
    return parse(result.decode_json())


def read(provider, guid: str) -> Optional[ADOrgUnit]:
    return _fetch(provider, check_guid(guid, "OU"))


def lookup(provider, dn: str = "", name: str = "", path: str = "") -> Optional[ADOrgUnit]:
    """OU by DN, or by name within its parent path."""
    if not dn and not (name and path):
        raise ValidationError("dn or a combination of path and name are required")
    return _fetch(provider, dn or f"OU={escape_rdn(name)},{path}")


def update(provider, old: ADOrgUnit, new: ADOrgUnit) -> Optional[ADOrgUnit]:
    for fragments in build_update(old, new):
        provider.run(fragments)
    return read(provider, old.guid)


def delete(provider, guid: str) -> None:
    try:
        provider.run(build_delete(guid))
    except NotFoundError:
        logger.debug(f"OU {guid} already absent")
