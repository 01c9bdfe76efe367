"""GPO link codec: New-GPLink / Set-GPLink and gPLink attribute parsing"""
import re
from typing import Any, List, NamedTuple, Optional

from adprovider.errors import ConflictError, NotFoundError
from adprovider.logger import get_logger
from adprovider.models.ad import check_guid
from adprovider.models.gpo import GPLink
from adprovider.services.codec import Commands, as_object, require_guid, text
from adprovider.services.powershell import quote, yes_no

logger = get_logger("services.gplink")

GPLINK_PATTERN = re.compile(r"\{([\w-]+)\}\]?[\w,=-]*;([0-3])")

# gPLink option value -> (enforced, enabled)
LINK_STATES = {
    "0": (False, True),
    "1": (False, False),
    "2": (True, True),
    "3": (True, False),
}


class LinkEntry(NamedTuple):
    gpo_guid: str
    order: int
    enforced: bool
    enabled: bool


def parse_gplink(value: str) -> List[LinkEntry]:
    """Parse a container's gPLink attribute into its links, in attribute order."""
    entries = []
    for chunk in (value or "").split("["):
        match = GPLINK_PATTERN.search(chunk)
        if not match:
            continue
        enforced, enabled = LINK_STATES[match.group(2)]
        entries.append(LinkEntry(match.group(1), len(entries), enforced, enabled))
    return entries


def find_link(document: Any, gpo_guid: str, target_guid: str = "") -> Optional[GPLink]:
    """The link of gpo_guid on the container described by a Get-ADObject document."""
    doc = as_object(document, "ADObject")
    for entry in parse_gplink(text(doc, "gplink")):
        if entry.gpo_guid.lower() == gpo_guid.lower():
            return GPLink(
                gpo_guid=gpo_guid,
                target_dn=text(doc, "DistinguishedName"),
                target_guid=target_guid or text(doc, "ObjectGUID"),
                enforced=entry.enforced,
                enabled=entry.enabled,
                order=entry.order,
            )
    return None


def parse_id(resource_id: str):
    gpo_guid, sep, target_guid = resource_id.partition("_")
    return check_guid(gpo_guid, "GPO"), check_guid(target_guid if sep else "", "link target")


def order_param(order: int) -> str:
    """-Order of the GroupPolicy cmdlets counts from 1."""
    return f"-Order {int(order) + 1}"


def build_create(link: GPLink) -> List[str]:
    cmds = [
        f"New-GPLink -Guid {quote(check_guid(link.gpo_guid, 'GPO'))} -Target {quote(link.target_dn)} "
        f"-LinkEnabled {yes_no(link.enabled)} -Enforced {yes_no(link.enforced)}"
    ]
    if link.order is not None:
        cmds.append(order_param(link.order))
    return cmds


def build_update(old: GPLink, new: GPLink) -> Commands:
    cmds = [f"Set-GPLink -Guid {quote(check_guid(old.gpo_guid, 'GPO'))} -Target {quote(old.target_dn)}"]
    if old.enforced != new.enforced:
        cmds.append(f"-Enforced {yes_no(new.enforced)}")
    if old.enabled != new.enabled:
        cmds.append(f"-LinkEnabled {yes_no(new.enabled)}")
    if new.order is not None and old.order != new.order:
        cmds.append(order_param(new.order))
    return [cmds] if len(cmds) > 1 else []


def build_delete(link: GPLink) -> List[str]:
    return [f"Remove-GPLink -Guid {quote(check_guid(link.gpo_guid, 'GPO'))} -Target {quote(link.target_dn)}"]


def build_container_read(target_guid: str) -> List[str]:
    return [f"Get-ADObject -Filter '{{ObjectGUID -eq {quote(check_guid(target_guid, 'link target'))}}}' -Properties gplink"]


def target_guid_of(provider, target_dn: str) -> str:
    result = provider.run([f"Get-ADObject -Identity {quote(target_dn)}"], json_output=True)
    return require_guid(as_object(result.decode_json(), "ADObject"), "ObjectGUID", "ADObject")


def create(provider, link: GPLink) -> GPLink:
    logger.info(f"Linking GPO {link.gpo_guid} to {link.target_dn!r}")
    try:
        provider.run(build_create(link), json_output=True)
    except ConflictError as e:
        raise ConflictError(
            f"GPO {link.gpo_guid} is already linked to {link.target_dn!r}", e.exit_code, e.stderr, e.stdout
        ) from e
    target_guid = target_guid_of(provider, link.target_dn)
    return read(provider, f"{link.gpo_guid}_{target_guid}") or link.model_copy(update={"target_guid": target_guid})


def read(provider, resource_id: str) -> Optional[GPLink]:
    """Link state from the target's gPLink attribute, None when the target or link is gone."""
    gpo_guid, target_guid = parse_id(resource_id)
    try:
        result = provider.run(build_container_read(target_guid), json_output=True)
    except NotFoundError:
        return None
    if not result.stdout:
        logger.debug(f"Did not find a container with GUID {target_guid}")
        return None
    link = find_link(result.decode_json(), gpo_guid, target_guid)
    if link is None:
        logger.debug(f"GPO {gpo_guid} is not linked to container {target_guid}")
    return link


def update(provider, old: GPLink, new: GPLink) -> Optional[GPLink]:
    for fragments in build_update(old, new):
        provider.run(fragments)
    return read(provider, old.id)


def delete(provider, link: GPLink) -> None:
    try:
        provider.run(build_delete(link))
    except NotFoundError:
        logger.debug(f"Link of GPO {link.gpo_guid} to {link.target_dn!r} already absent")
