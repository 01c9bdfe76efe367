"""Models for the LDAP back-end"""
from typing import Optional

from pydantic import BaseModel, field_validator


class LDAPConfig(BaseModel):
    """Connection parameters of an LDAP back-end."""
    host: str
    port: Optional[int] = None
    protocol: str = "ldap"
    username: str = ""
    password: str = ""
    insecure: bool = False
    use_ntlm: bool = False
    timeout: int = 30

    @field_validator("protocol")
    @classmethod
    def check_protocol(cls, value: str) -> str:
        value = value.lower()
        if value not in ("ldap", "ldaps"):
            raise ValueError(f"protocol must be ldap or ldaps, got {value!r}")
        return value

    @property
    def effective_port(self) -> int:
        if self.port:
            return self.port
        return 636 if self.protocol == "ldaps" else 389

    @property
    def url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.effective_port}"


class LDAPUser(BaseModel):
    """User as written by the LDAP back-end."""
    sam_account_name: str
    display_name: str
    principal_name: str = ""
    password: str = ""
    container: str = "Users"
    domain_dn: str = ""
    disabled: bool = False
    password_never_expires: bool = False
    cannot_change_password: bool = False
    change_at_next_login: bool = False


class LDAPGroup(BaseModel):
    """Group as written by the LDAP back-end."""
    dn: str = ""
    sam_account_name: str
    name: str
    container: str = "Users"
    domain_dn: str = ""
    scope: str = "global"
    category: str = "security"


class LDAPDomain(BaseModel):
    """Entry of the partitions container."""
    dn: str
    netbios_name: str = ""
    domain_name: str = ""
