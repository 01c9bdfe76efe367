"""Active Directory object models"""
import re
from enum import Enum
from typing import Dict, List, Optional, Set, Union

from pydantic import BaseModel, Field

from adprovider.errors import ValidationError

GUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def check_guid(value: str, what: str = "object") -> str:
    """Reject identifiers that are not plain GUIDs before they reach the wire."""
    value = value.strip("{}")
    if not GUID_PATTERN.match(value):
        raise ValidationError(f"invalid {what} GUID: {value!r}")
    return value


def container_from_dn(dn: str) -> str:
    """Everything after the first unescaped comma of a DN."""
    escaped = False
    for idx, char in enumerate(dn):
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ",":
            return dn[idx + 1:]
    return ""


class ADUser(BaseModel):
    """AD User model."""
    guid: str = ""
    dn: str = ""
    sam_account_name: str = ""
    principal_name: str = ""
    display_name: str = ""
    container: str = ""
    initial_password: str = ""
    enabled: bool = True
    password_never_expires: bool = False
    cannot_change_password: bool = False
    smart_card_logon_required: bool = False
    trusted_for_delegation: bool = False
    city: str = ""
    company: str = ""
    country: str = ""
    department: str = ""
    description: str = ""
    division: str = ""
    email_address: str = ""
    employee_id: str = ""
    employee_number: str = ""
    fax: str = ""
    given_name: str = ""
    home_directory: str = ""
    home_drive: str = ""
    home_phone: str = ""
    home_page: str = ""
    initials: str = ""
    mobile_phone: str = ""
    office: str = ""
    office_phone: str = ""
    organization: str = ""
    other_name: str = ""
    po_box: str = ""
    postal_code: str = ""
    state: str = ""
    street_address: str = ""
    surname: str = ""
    title: str = ""
    sid: str = ""
    custom_attributes: Dict[str, Union[str, List[str]]] = Field(default_factory=dict)


class GroupScope(str, Enum):
    """Group scope as the AD cmdlets name it."""
    DOMAINLOCAL = "domainlocal"
    GLOBAL = "global"
    UNIVERSAL = "universal"


class GroupCategory(str, Enum):
    """Group category as the AD cmdlets name it."""
    DISTRIBUTION = "distribution"
    SECURITY = "security"


class ADGroup(BaseModel):
    """AD Group model."""
    guid: str = ""
    dn: str = ""
    name: str
    sam_account_name: str = ""
    container: str = ""
    scope: GroupScope = GroupScope.GLOBAL
    category: GroupCategory = GroupCategory.SECURITY
    description: str = ""
    sid: str = ""


class ADMember(BaseModel):
    """A principal listed by Get-ADGroupMember."""
    guid: str
    dn: str = ""
    sam_account_name: str = ""
    name: str = ""


class ADGroupMembership(BaseModel):
    """Authoritative membership of a group (membership-as-set)."""
    id: str = ""
    group_id: str
    members: Set[str] = Field(default_factory=set)


class ADGroupMember(BaseModel):
    """A single group/member pair (membership-as-pair)."""
    group_id: str
    member_id: str

    @property
    def id(self) -> str:
        return f"{self.group_id}_{self.member_id}"


class ADOrgUnit(BaseModel):
    """AD Organizational Unit model."""
    guid: str = ""
    dn: str = ""
    name: str
    display_name: str = ""
    description: str = ""
    path: str = ""
    protected: bool = False


class ADComputer(BaseModel):
    """AD Computer model."""
    guid: str = ""
    dn: str = ""
    name: str
    pre2kname: str = ""
    container: str = ""
    description: str = ""
    sid: str = ""


class EncryptionType(str, Enum):
    RC4 = "RC4"
    AES128 = "AES128"
    AES256 = "AES256"


class ADServiceAccount(BaseModel):
    """Group-managed service account model."""
    guid: str = ""
    dn: str = ""
    name: str
    dns_host_name: str = ""
    container: str = ""
    description: str = ""
    display_name: str = ""
    enabled: bool = True
    expiration: str = ""
    home_page: str = ""
    kerberos_encryption_type: Set[EncryptionType] = Field(default_factory=set)
    managed_password_interval_in_days: int = 0
    principals_allowed_to_delegate_to_account: List[str] = Field(default_factory=list)
    principals_allowed_to_retrieve_managed_password: List[str] = Field(default_factory=list)
    sam_account_name: str = ""
    service_principal_names: List[str] = Field(default_factory=list)
    trusted_for_delegation: bool = False
    account_not_delegated: bool = False
    sid: str = ""


class ADDomain(BaseModel):
    """AD Domain (read only)."""
    guid: str
    dn: str
    name: str
    sid: str = ""
    netbios_name: str = ""
    dns_root: str = ""
