"""Computer codec and host operations"""
from typing import Any, List, Optional

from adprovider.errors import ConflictError, NotFoundError, ValidationError
from adprovider.logger import get_logger
from adprovider.models.ad import ADComputer, check_guid, container_from_dn
from adprovider.services.codec import Commands, as_object, require_guid, sid, text
from adprovider.services.powershell import quote, quote_or_null

logger = get_logger("services.computer")


def build_create(computer: ADComputer) -> List[str]:
    cmds = [f"New-ADComputer -Passthru -Name {quote(computer.name)}"]
    if computer.pre2kname:
        cmds.append(f"-SamAccountName {quote(computer.pre2kname)}")
    if computer.container:
        cmds.append(f"-Path {quote(computer.container)}")
    if computer.description:
        cmds.append(f"-Description {quote(computer.description)}")
    return cmds


def build_update(old: ADComputer, new: ADComputer) -> Commands:
    guid = check_guid(old.guid, "computer")
    commands: Commands = []
    if old.description != new.description:
        commands.append([f"Set-ADComputer -Identity {quote(guid)} -Description {quote_or_null(new.description)}"])
    if new.container and old.container != new.container:
        commands.append([f"Move-ADObject -Identity {quote(guid)} -TargetPath {quote(new.container)}"])
    return commands


def build_delete(guid: str) -> List[str]:
    return [f"Remove-ADObject -Identity {quote(check_guid(guid, 'computer'))} -Recursive -Confirm:$false"]


def parse(document: Any) -> ADComputer:
    doc = as_object(document, "Computer")
    dn = text(doc, "DistinguishedName")
    return ADComputer(
        guid=require_guid(doc, "ObjectGUID", "Computer"),
        dn=dn,
        name=text(doc, "Name"),
        pre2kname=text(doc, "SamAccountName"),
        container=container_from_dn(dn),
        description=text(doc, "Description"),
        sid=sid(doc),
    )


def create(provider, computer: ADComputer) -> ADComputer:
    logger.info(f"Adding computer {computer.name!r}")
    try:
        result = provider.run(build_create(computer), json_output=True)
    except ConflictError as e:
        raise ConflictError(
            f"there is another Computer named {computer.name!r}", e.exit_code, e.stderr, e.stdout
        ) from e
    created = parse(result.decode_json())
    return read(provider, created.guid) or created


def _fetch(provider, identity: str) -> Optional[ADComputer]:
    cmd = f"Get-ADComputer -Identity {quote(identity)} -Properties *"
    try:
        result = provider.run([cmd], json_output=True)
    except NotFoundError:
        return None
    return parse(result.decode_json())


def read(provider, guid: str) -> Optional[ADComputer]:
    """Observed computer by GUID, None when absent."""
    return _fetch(provider, check_guid(guid, "computer"))


def lookup(provider, guid: str = "", dn: str = "") -> Optional[ADComputer]:
    """Computer by GUID or, failing that, by DN."""
    if guid:
        return read(provider, guid)
    if not dn:
        raise ValidationError("dn or guid is required to look up a computer")
    return _fetch(provider, dn)


def update(provider, old: ADComputer, new: ADComputer) -> Optional[ADComputer]:
    for fragments in build_update(old, new):
        provider.run(fragments)
    return read(provider, old.guid)


def delete(provider, guid: str) -> None:
    try:
        provider.run(build_delete(guid))
    except NotFoundError:
        logger.debug(f"Computer {guid} already absent")
