"""User codec and host operations"""
import re
from typing import Any, Dict, Iterable, List, Optional, Union

from adprovider.errors import ConflictError, NotFoundError, ValidationError
from adprovider.logger import get_logger
from adprovider.models.ad import ADUser, check_guid, container_from_dn
from adprovider.services.codec import Commands, as_object, flag, get, require_guid, sid, text
from adprovider.services.ldap import decode_user_account_control
from adprovider.services.powershell import ps_bool, quote, quote_list, quote_or_null

logger = get_logger("services.user")

# (model field, cmdlet parameter), in the order New-ADUser receives them
STRING_PARAMS = [
    ("city", "City"),
    ("company", "Company"),
    ("country", "Country"),
    ("department", "Department"),
    ("description", "Description"),
    ("division", "Division"),
    ("email_address", "EmailAddress"),
    ("employee_id", "EmployeeID"),
    ("employee_number", "EmployeeNumber"),
    ("fax", "Fax"),
    ("given_name", "GivenName"),
    ("home_directory", "HomeDirectory"),
    ("home_drive", "HomeDrive"),
    ("home_phone", "HomePhone"),
    ("home_page", "HomePage"),
    ("initials", "Initials"),
    ("mobile_phone", "MobilePhone"),
    ("office", "Office"),
    ("office_phone", "OfficePhone"),
    ("organization", "Organization"),
    ("other_name", "OtherName"),
    ("po_box", "POBox"),
    ("postal_code", "PostalCode"),
    ("state", "State"),
    ("street_address", "StreetAddress"),
    ("surname", "Surname"),
    ("title", "Title"),
]

IDENTITY_PARAMS = [
    ("sam_account_name", "SamAccountName"),
    ("display_name", "DisplayName"),
    ("principal_name", "UserPrincipalName"),
]

BOOL_PARAMS = [
    ("cannot_change_password", "CannotChangePassword"),
    ("password_never_expires", "PasswordNeverExpires"),
    ("enabled", "Enabled"),
    ("smart_card_logon_required", "SmartcardLogonRequired"),
    ("trusted_for_delegation", "TrustedForDelegation"),
]

# JSON property of Get-ADUser for each string field
JSON_KEYS = {
    "city": "City",
    "company": "Company",
    "country": "Country",
    "department": "Department",
    "description": "Description",
    "division": "Division",
    "email_address": "EmailAddress",
    "employee_id": "EmployeeID",
    "employee_number": "EmployeeNumber",
    "fax": "Fax",
    "given_name": "GivenName",
    "home_directory": "HomeDirectory",
    "home_drive": "HomeDrive",
    "home_phone": "HomePhone",
    "home_page": "HomePage",
    "initials": "Initials",
    "mobile_phone": "MobilePhone",
    "office": "Office",
    "office_phone": "OfficePhone",
    "organization": "Organization",
    "other_name": "OtherName",
    "po_box": "POBox",
    "postal_code": "PostalCode",
    "state": "State",
    "street_address": "StreetAddress",
    "surname": "Surname",
    "title": "Title",
}

ATTRIBUTE_NAME = re.compile(r"^[A-Za-z][\w-]*$")

AttributeValue = Union[str, List[str]]


def check_attribute_name(name: str) -> str:
    """Custom attribute names are LDAP display names and are emitted unquoted."""
    if not ATTRIBUTE_NAME.match(name):
        raise ValidationError(f"invalid custom attribute name: {name!r}")
    return name


def _normalise(value: AttributeValue) -> AttributeValue:
    if isinstance(value, list):
        return sorted(str(v) for v in value)
    return str(value)


def _attribute_value(value: AttributeValue) -> str:
    if isinstance(value, list):
        return quote_list(sorted(value))
    return quote(value)


def _hashtable(attributes: Dict[str, AttributeValue]) -> str:
    pairs = [
        f"'{check_attribute_name(k)}'={_attribute_value(v)}"
        for k, v in sorted(attributes.items())
    ]
    return "@{" + ";".join(pairs) + "}"


def account_password(password: str) -> str:
    return f"(ConvertTo-SecureString -AsPlainText {quote(password)} -Force)"


def build_create(user: ADUser) -> List[str]:
    """New-ADUser fragments; only non-empty optional values are emitted."""
    name = user.principal_name or user.sam_account_name
    cmds = [
        f"New-ADUser -Passthru -Name {quote(name)}",
        f"-CannotChangePassword {ps_bool(user.cannot_change_password)}",
        f"-PasswordNeverExpires {ps_bool(user.password_never_expires)}",
        f"-Enabled {ps_bool(user.enabled)}",
    ]
    if user.sam_account_name:
        cmds.append(f"-SamAccountName {quote(user.sam_account_name)}")
    if user.principal_name:
        cmds.append(f"-UserPrincipalName {quote(user.principal_name)}")
    if user.initial_password:
        cmds.append(f"-AccountPassword {account_password(user.initial_password)}")
    if user.display_name:
        cmds.append(f"-DisplayName {quote(user.display_name)}")
    if user.container:
        cmds.append(f"-Path {quote(user.container)}")
    if user.smart_card_logon_required:
        cmds.append("-SmartcardLogonRequired $true")
    if user.trusted_for_delegation:
        cmds.append("-TrustedForDelegation $true")

    for field, param in STRING_PARAMS:
        value = getattr(user, field)
        if not value:
            continue
        if field == "country":
            value = value.upper()
        cmds.append(f"-{param} {quote(value)}")

    if user.custom_attributes:
        cmds.append(f"-OtherAttributes {_hashtable(user.custom_attributes)}")
    return cmds


def custom_attribute_changes(
    old: Dict[str, AttributeValue],
    new: Dict[str, AttributeValue],
) -> List[str]:
    """-Clear / -Replace / -Add fragments that turn old custom attributes into new."""
    old = {check_attribute_name(k): _normalise(v) for k, v in old.items()}
    new = {check_attribute_name(k): _normalise(v) for k, v in new.items()}

    to_clear = sorted(k for k in old if k not in new)
    to_replace = {k: v for k, v in new.items() if k in old and old[k] != v}
    to_add = {k: v for k, v in new.items() if k not in old}

    cmds = []
    if to_clear:
        cmds.append(f"-Clear {','.join(to_clear)}")
    if to_replace:
        cmds.append(f"-Replace {_hashtable(to_replace)}")
    if to_add:
        cmds.append(f"-Add {_hashtable(to_add)}")
    return cmds


def build_update(old: ADUser, new: ADUser) -> Commands:
    """Commands that bring the user from old to new state.

    Returns:
        Set-ADUser (when attributes changed), Set-ADAccountPassword (when the
        initial password changed) and Move-ADObject (when the container changed)
    """
    guid = check_guid(old.guid, "user")
    commands: Commands = []

    cmds = [f"Set-ADUser -Identity {quote(guid)}"]
    for field, param in IDENTITY_PARAMS + STRING_PARAMS:
        value = getattr(new, field)
        if getattr(old, field) == value:
            continue
        if field == "country":
            value = value.upper()
        cmds.append(f"-{param} {quote_or_null(value)}")
    for field, param in BOOL_PARAMS:
        if getattr(old, field) != getattr(new, field):
            cmds.append(f"-{param} {ps_bool(getattr(new, field))}")
    cmds += custom_attribute_changes(old.custom_attributes, new.custom_attributes)
    if len(cmds) > 1:
        commands.append(cmds)

    if new.initial_password and old.initial_password != new.initial_password:
        commands.append([
            f"Set-ADAccountPassword -Identity {quote(guid)} -Reset "
            f"-NewPassword {account_password(new.initial_password)}"
        ])

    if new.container and old.container != new.container:
        commands.append([f"Move-ADObject -Identity {quote(guid)} -TargetPath {quote(new.container)}"])
    return commands


def build_delete(guid: str) -> List[str]:
    return [f"Remove-ADUser -Identity {quote(check_guid(guid, 'user'))} -Confirm:$false"]


def parse(document: Any, custom_attribute_names: Optional[Iterable[str]] = None) -> ADUser:
    """Build an ADUser from the JSON document of Get-ADUser -Properties *."""
    doc = as_object(document, "User")
    dn = text(doc, "DistinguishedName")
    flags = decode_user_account_control(get(doc, "userAccountControl"))

    values = {field: text(doc, key) for field, key in JSON_KEYS.items()}
    custom = {}
    for name in custom_attribute_names or []:
        value = get(doc, name)
        if value is not None:
            custom[name] = [str(v) for v in value] if isinstance(value, list) else str(value)

    return ADUser(
        guid=require_guid(doc, "ObjectGUID", "User"),
        dn=dn,
        sam_account_name=text(doc, "SamAccountName"),
        principal_name=text(doc, "UserPrincipalName"),
        display_name=text(doc, "DisplayName"),
        container=container_from_dn(dn),
        enabled="disabled" not in flags,
        password_never_expires="password_never_expires" in flags,
        cannot_change_password="cannot_change_password" in flags,
        smart_card_logon_required=flag(doc, "SmartcardLogonRequired"),
        trusted_for_delegation=flag(doc, "TrustedForDelegation"),
        sid=sid(doc),
        custom_attributes=custom,
        **values,
    )


def create(provider, user: ADUser) -> ADUser:
    """Create the user and return its observed state."""
    logger.info(f"Adding user with UPN: {user.principal_name!r}")
    try:
        result = provider.run(build_create(user), secrets=[user.initial_password], json_output=True)
    except ConflictError as e:
        raise ConflictError(
            f"there is another User named {user.principal_name or user.sam_account_name!r}",
            e.exit_code, e.stderr, e.stdout,
        ) from e
    created = parse(result.decode_json())
    return read(provider, created.guid, user.custom_attributes.keys()) or created


def _fetch(provider, identity: str, custom_attribute_names: Optional[Iterable[str]] = None) -> Optional[ADUser]:
    cmd = f"Get-ADUser -Identity {quote(identity)} -Properties *"
    try:
        result = provider.run([cmd], json_output=True)
    except NotFoundError:
        logger.debug(f"User {identity} not found")
        return None
    return parse(result.decode_json(), custom_attribute_names)


def read(provider, guid: str, custom_attribute_names: Optional[Iterable[str]] = None) -> Optional[ADUser]:
    """Observed user state, None when the user does not exist."""
    return _fetch(provider, check_guid(guid, "user"), custom_attribute_names)


def lookup(provider, identity: str) -> Optional[ADUser]:
    """User by GUID, DN, SID or SAM account name."""
    if not identity.strip():
        raise ValidationError("user_id is required")
    return _fetch(provider, identity.strip())


def update(provider, old: ADUser, new: ADUser) -> Optional[ADUser]:
    logger.info(f"Modifying user: {old.principal_name or old.guid!r}")
    for fragments in build_update(old, new):
        provider.run(fragments, secrets=[new.initial_password])
    return read(provider, old.guid, new.custom_attributes.keys())


def delete(provider, guid: str) -> None:
    """Remove the user; a missing user counts as removed."""
    try:
        provider.run(build_delete(guid))
    except NotFoundError:
        logger.debug(f"User {guid} already absent")