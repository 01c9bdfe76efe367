"""Group membership codec: authoritative member sets and single member pairs"""
import uuid
from typing import Any, Iterable, List, Optional, Set, Tuple

from adprovider.errors import CommandError, NotFoundError, ParseError, ValidationError
from adprovider.logger import get_logger
from adprovider.models.ad import ADGroupMember, ADGroupMembership, ADMember, check_guid
from adprovider.services.codec import as_object, require_guid, text
from adprovider.services.powershell import quote, quote_list

logger = get_logger("services.membership")

# Remove-ADGroupMember with an empty -Members list
EMPTY_GROUP_MARKER = "InvalidData"


def new_membership_id(group_id: str) -> str:
    return f"{group_id}_{uuid.uuid4()}"


def parse_id(resource_id: str) -> Tuple[str, str]:
    """Split '<groupID>_<rest>' on the first underscore.

    Raises:
        ValidationError: when either part is missing
    """
    group_id, sep, rest = resource_id.partition("_")
    if not sep or not group_id or not rest:
        raise ValidationError(f"malformed membership id {resource_id!r}, expected <group>_<id>")
    return group_id, rest


def _identifiers(member: ADMember) -> Set[str]:
    return {v.lower() for v in (member.guid, member.dn, member.sam_account_name) if v}


def diff(desired: Iterable[str], observed: List[ADMember]) -> Tuple[List[str], List[ADMember]]:
    """Members to add and members to remove so that observed matches desired.

    A desired identifier matches an observed member by GUID, DN or SAM
    account name, case-insensitively.

    Returns:
        (identifiers to add, observed members to remove)
    """
    desired = [d for d in desired if d]
    known = set()
    for member in observed:
        known |= _identifiers(member)
    wanted = {d.lower() for d in desired}

    to_add = sorted({d for d in desired if d.lower() not in known})
    to_remove = [m for m in observed if not (_identifiers(m) & wanted)]
    return to_add, to_remove


def build_list(group_id: str) -> List[str]:
    return [f"Get-ADGroupMember -Identity {quote(check_guid(group_id, 'group'))}"]


def build_add(group_id: str, members: Iterable[str]) -> List[str]:
    group = quote(check_guid(group_id, "group"))
    return [f"Add-ADGroupMember -Identity {group} -Members {quote_list(members)} -Confirm:$false"]


def build_remove(group_id: str, members: Iterable[str]) -> List[str]:
    group = quote(check_guid(group_id, "group"))
    return [f"Remove-ADGroupMember -Identity {group} -Members {quote_list(members)} -Confirm:$false"]


def build_delete(group_id: str) -> List[str]:
    group = quote(check_guid(group_id, "group"))
    return [f"Remove-ADGroupMember {group} -Members (Get-ADGroupMember {group}) -Confirm:$false"]


def parse_members(document: Any) -> List[ADMember]:
    if document is None:
        return []
    if not isinstance(document, list):
        raise ParseError(f"invalid data while unmarshalling group membership, json doc was: {document!r}")
    members = []
    for item in document:
        doc = as_object(item, "GroupMember")
        members.append(ADMember(
            guid=require_guid(doc, "ObjectGUID", "GroupMember"),
            dn=text(doc, "DistinguishedName"),
            sam_account_name=text(doc, "SamAccountName"),
            name=text(doc, "Name"),
        ))
    return members


def list_members(provider, group_id: str) -> List[ADMember]:
    result = provider.run(build_list(group_id), json_output=True, force_array=True)
    if not result.stdout:
        return []
    return parse_members(result.decode_json())


def read(provider, membership_id: str) -> Optional[ADGroupMembership]:
    """Observed membership, None when the group is gone."""
    group_id, _ = parse_id(membership_id)
    try:
        members = list_members(provider, group_id)
    except NotFoundError:
        return None
    return ADGroupMembership(id=membership_id, group_id=group_id, members={m.guid for m in members})


def create(provider, membership: ADGroupMembership) -> ADGroupMembership:
    members = sorted(m for m in membership.members if m)
    if members:
        provider.run(build_add(membership.group_id, members))
    membership_id = membership.id or new_membership_id(membership.group_id)
    return read(provider, membership_id) or membership.model_copy(update={"id": membership_id})


def update(provider, membership: ADGroupMembership) -> Optional[ADGroupMembership]:
    """Converge the group on the desired member set: one add, then one remove."""
    existing = list_members(provider, membership.group_id)
    to_add, to_remove = diff(membership.members, existing)
    if to_add:
        provider.run(build_add(membership.group_id, to_add))
    if to_remove:
        provider.run(build_remove(membership.group_id, [m.guid for m in to_remove]))
    return read(provider, membership.id)


def delete(provider, membership_id: str) -> None:
    group_id, _ = parse_id(membership_id)
    try:
        provider.run(build_delete(group_id))
    except NotFoundError:
        logger.debug(f"Group {group_id} already absent")
    except CommandError as e:
        if EMPTY_GROUP_MARKER not in e.stderr:
            raise
        logger.debug(f"Group {group_id} has no members left")


def add_member(provider, pair: ADGroupMember) -> ADGroupMember:
    provider.run(build_add(pair.group_id, [pair.member_id]))
    return pair


def read_member(provider, member_id: str) -> Optional[ADGroupMember]:
    """The pair when the member is still in the group, else None."""
    group_id, member = parse_id(member_id)
    try:
        members = list_members(provider, group_id)
    except NotFoundError:
        return None
    to_add, _ = diff([member], members)
    if to_add:
        return None
    return ADGroupMember(group_id=group_id, member_id=member)


def remove_member(provider, member_id: str) -> None:
    group_id, member = parse_id(member_id)
    try:
        provider.run(build_remove(group_id, [member]))
    except NotFoundError:
        logger.debug(f"{member} is not a member of {group_id}")
