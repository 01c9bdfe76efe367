"""Query parameters of the read-only directory lookups"""
from pydantic import BaseModel


class UserQuery(BaseModel):
    """Any identity Get-ADUser accepts: GUID, DN, SID or SAM account name."""
    user_id: str


class ComputerQuery(BaseModel):
    guid: str = ""
    dn: str = ""


class OrgUnitQuery(BaseModel):
    """Either dn, or name together with the parent path."""
    dn: str = ""
    name: str = ""
    path: str = ""


class GPOQuery(BaseModel):
    name: str = ""
    guid: str = ""
    domain: str = ""


class GroupQuery(BaseModel):
    """Group read through the LDAP back-end."""
    dn: str
    domain_dn: str
