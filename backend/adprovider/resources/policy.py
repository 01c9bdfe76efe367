"""Adapters for Group Policy: GPOs, links and security settings"""
from typing import Optional

from adprovider.errors import ValidationError
from adprovider.models.gpo import GPLink, GPO
from adprovider.models.gposec import SecuritySettings
from adprovider.resources.base import Resource, record, require_current
from adprovider.services import gplink, gpo, gposec


class GPOSecurity(SecuritySettings):
    """Security settings bound to the GPO they live in."""
    gpo_guid: str

    @property
    def id(self) -> str:
        return gposec.resource_id(self.gpo_guid)


# GPOs

def create_gpo(provider, desired: GPO) -> GPO:
    created = gpo.create(provider, desired)
    record(provider, "CREATE", "gpo", created.guid, desired.name)
    return created


def update_gpo(provider, resource_id: str, desired: GPO) -> Optional[GPO]:
    current = require_current("gpo", resource_id, gpo.read(provider, resource_id))
    updated = gpo.update(provider, current, desired.model_copy(update={"guid": current.guid}))
    record(provider, "UPDATE", "gpo", resource_id)
    return updated


def delete_gpo(provider, resource_id: str) -> None:
    current = gpo.read(provider, resource_id)
    if current is not None:
        gpo.delete(provider, current)
    record(provider, "DELETE", "gpo", resource_id)


# Links

def create_link(provider, desired: GPLink) -> GPLink:
    created = gplink.create(provider, desired)
    record(provider, "CREATE", "gplink", created.id, desired.target_dn)
    return created


def update_link(provider, resource_id: str, desired: GPLink) -> Optional[GPLink]:
    current = require_current("gplink", resource_id, gplink.read(provider, resource_id))
    if desired.gpo_guid.lower() != current.gpo_guid.lower() or desired.target_dn.lower() != current.target_dn.lower():
        raise ValidationError(f"link {resource_id} can not be moved to another GPO or target")
    updated = gplink.update(provider, current, desired.model_copy(update={"target_guid": current.target_guid}))
    record(provider, "UPDATE", "gplink", resource_id)
    return updated


def delete_link(provider, resource_id: str) -> None:
    current = gplink.read(provider, resource_id)
    if current is not None:
        gplink.delete(provider, current)
    record(provider, "DELETE", "gplink", resource_id)


# Security settings

def read_security(provider, resource_id: str) -> Optional[GPOSecurity]:
    gpo_guid = gposec.parse_id(resource_id)
    found = gposec.read(provider, gpo_guid)
    if found is None:
        return None
    return GPOSecurity(gpo_guid=gpo_guid, **found.model_dump())


def _write_security(provider, gpo_guid: str, desired: GPOSecurity) -> GPOSecurity:
    settings = SecuritySettings(**desired.model_dump(exclude={"gpo_guid"}))
    gposec.upload(provider, gpo_guid, settings)
    return read_security(provider, gposec.resource_id(gpo_guid)) or desired


def create_security(provider, desired: GPOSecurity) -> GPOSecurity:
    created = _write_security(provider, desired.gpo_guid, desired)
    record(provider, "CREATE", "gpo_security", created.id)
    return created


def update_security(provider, resource_id: str, desired: GPOSecurity) -> Optional[GPOSecurity]:
    gpo_guid = gposec.parse_id(resource_id)
    updated = _write_security(provider, gpo_guid, desired.model_copy(update={"gpo_guid": gpo_guid}))
    record(provider, "UPDATE", "gpo_security", resource_id)
    return updated


def delete_security(provider, resource_id: str) -> None:
    gposec.remove(provider, gposec.parse_id(resource_id))
    record(provider, "DELETE", "gpo_security", resource_id)


RESOURCES = [
    Resource("gpo", GPO, lambda g: g.guid, gpo.read, create_gpo, update_gpo, delete_gpo),
    Resource("gplink", GPLink, lambda link: link.id, gplink.read, create_link, update_link, delete_link),
    Resource(
        "gpo_security", GPOSecurity, lambda s: s.id,
        read_security, create_security, update_security, delete_security,
    ),
]
