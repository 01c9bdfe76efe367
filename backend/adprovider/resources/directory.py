"""Adapters for directory objects: users, groups, OUs, computers, gMSAs and the domain"""
from typing import Optional

from adprovider.models.ad import (
    ADComputer,
    ADDomain,
    ADGroup,
    ADOrgUnit,
    ADServiceAccount,
    ADUser,
)
from adprovider.resources.base import Resource, record, require_current
from adprovider.services import computer, domain, gmsa, group, ou, user

# Fields owned by the directory, carried from the observed object into an update
IDENTITY_FIELDS = ("guid", "dn", "sid")


def _identity(current, desired):
    carried = {f: getattr(current, f) for f in IDENTITY_FIELDS if f in type(current).model_fields}
    return desired.model_copy(update=carried)


# Users

def read_user(provider, resource_id: str) -> Optional[ADUser]:
    return user.read(provider, resource_id)


def create_user(provider, desired: ADUser) -> ADUser:
    created = user.create(provider, desired)
    record(provider, "CREATE", "user", created.guid, desired.principal_name or desired.sam_account_name)
    return created


def update_user(provider, resource_id: str, desired: ADUser) -> Optional[ADUser]:
    current = require_current("user", resource_id, user.read(provider, resource_id, desired.custom_attributes.keys()))
    updated = user.update(provider, current, _identity(current, desired))
    record(provider, "UPDATE", "user", resource_id)
    return updated


def delete_user(provider, resource_id: str) -> None:
    user.delete(provider, resource_id)
    record(provider, "DELETE", "user", resource_id)


# Groups

def create_group(provider, desired: ADGroup) -> ADGroup:
    created = group.create(provider, desired)
    record(provider, "CREATE", "group", created.guid, desired.name)
    return created


def update_group(provider, resource_id: str, desired: ADGroup) -> Optional[ADGroup]:
    current = require_current("group", resource_id, group.read(provider, resource_id))
    updated = group.update(provider, current, _identity(current, desired))
    record(provider, "UPDATE", "group", resource_id)
    return updated


def delete_group(provider, resource_id: str) -> None:
    group.delete(provider, resource_id)
    record(provider, "DELETE", "group", resource_id)


# Organizational units

def create_ou(provider, desired: ADOrgUnit) -> ADOrgUnit:
    created = ou.create(provider, desired)
    record(provider, "CREATE", "ou", created.guid, desired.name)
    return created


def update_ou(provider, resource_id: str, desired: ADOrgUnit) -> Optional[ADOrgUnit]:
    current = require_current("ou", resource_id, ou.read(provider, resource_id))
    updated = ou.update(provider, current, _identity(current, desired))
    record(provider, "UPDATE", "ou", resource_id)
    return updated


def delete_ou(provider, resource_id: str) -> None:
    ou.delete(provider, resource_id)
    record(provider, "DELETE", "ou", resource_id)


# Computers

def create_computer(provider, desired: ADComputer) -> ADComputer:
    created = computer.create(provider, desired)
    record(provider, "CREATE", "computer", created.guid, desired.name)
    return created


def update_computer(provider, resource_id: str, desired: ADComputer) -> Optional[ADComputer]:
    current = require_current("computer", resource_id, computer.read(provider, resource_id))
    updated = computer.update(provider, current, _identity(current, desired))
    record(provider, "UPDATE", "computer", resource_id)
    return updated


def delete_computer(provider, resource_id: str) -> None:
    computer.delete(provider, resource_id)
    record(provider, "DELETE", "computer", resource_id)


# Group-managed service accounts

def create_gmsa(provider, desired: ADServiceAccount) -> ADServiceAccount:
    created = gmsa.create(provider, desired)
    record(provider, "CREATE", "gmsa", created.guid, desired.name)
    return created


def update_gmsa(provider, resource_id: str, desired: ADServiceAccount) -> Optional[ADServiceAccount]:
    current = require_current("gmsa", resource_id, gmsa.read(provider, resource_id))
    updated = gmsa.update(provider, current, _identity(current, desired))
    record(provider, "UPDATE", "gmsa", resource_id)
    return updated


def delete_gmsa(provider, resource_id: str) -> None:
    gmsa.delete(provider, resource_id)
    record(provider, "DELETE", "gmsa", resource_id)


def _guid(obj) -> str:
    return obj.guid


RESOURCES = [
    Resource("user", ADUser, _guid, read_user, create_user, update_user, delete_user),
    Resource("group", ADGroup, _guid, group.read, create_group, update_group, delete_group),
    Resource("ou", ADOrgUnit, _guid, ou.read, create_ou, update_ou, delete_ou),
    Resource("computer", ADComputer, _guid, computer.read, create_computer, update_computer, delete_computer),
    Resource("gmsa", ADServiceAccount, _guid, gmsa.read, create_gmsa, update_gmsa, delete_gmsa),
    Resource("domain", ADDomain, _guid, domain.read),
]
