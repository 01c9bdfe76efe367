"""Adapters for group membership, as a whole set or as single pairs"""
from typing import Optional

from adprovider.errors import ValidationError
from adprovider.models.ad import ADGroupMember, ADGroupMembership
from adprovider.resources.base import Resource, record, require_current
from adprovider.services import membership


def create_membership(provider, desired: ADGroupMembership) -> ADGroupMembership:
    created = membership.create(provider, desired)
    record(provider, "CREATE", "group_membership", created.id, f"{len(desired.members)} members")
    return created


def update_membership(provider, resource_id: str, desired: ADGroupMembership) -> Optional[ADGroupMembership]:
    group_id, _ = membership.parse_id(resource_id)
    if desired.group_id.lower() != group_id.lower():
        raise ValidationError(f"membership {resource_id} belongs to group {group_id}, not {desired.group_id}")
    require_current("group_membership", resource_id, membership.read(provider, resource_id))
    updated = membership.update(provider, desired.model_copy(update={"id": resource_id, "group_id": group_id}))
    record(provider, "UPDATE", "group_membership", resource_id)
    return updated


def delete_membership(provider, resource_id: str) -> None:
    membership.delete(provider, resource_id)
    record(provider, "DELETE", "group_membership", resource_id)


def create_member(provider, desired: ADGroupMember) -> ADGroupMember:
    created = membership.add_member(provider, desired)
    record(provider, "CREATE", "group_member", created.id)
    return created


def delete_member(provider, resource_id: str) -> None:
    membership.remove_member(provider, resource_id)
    record(provider, "DELETE", "group_member", resource_id)


def _id(obj) -> str:
    return obj.id


RESOURCES = [
    Resource(
        "group_membership", ADGroupMembership, _id,
        membership.read, create_membership, update_membership, delete_membership,
    ),
    # A pair has no mutable attribute: changing either side replaces it.
    Resource("group_member", ADGroupMember, _id, membership.read_member, create_member, None, delete_member),
]
