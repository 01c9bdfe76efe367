"""Group-managed service account codec and host operations"""
import re
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Set

from adprovider.errors import ConflictError, NotFoundError, ParseError
from adprovider.logger import get_logger
from adprovider.models.ad import ADServiceAccount, EncryptionType, check_guid, container_from_dn
from adprovider.services.codec import Commands, as_object, flag, get, require_guid, sid, string_list, text
from adprovider.services.powershell import ps_bool, quote, quote_list, quote_or_null

logger = get_logger("services.gmsa")

DATE_PATTERN = re.compile(r"^/Date\((.+)\)/$")
RFC3339 = "%Y-%m-%dT%H:%M:%SZ"

ENCRYPTION_BITS = {
    EncryptionType.RC4: 0x4,
    EncryptionType.AES128: 0x8,
    EncryptionType.AES256: 0x10,
}

STRING_PARAMS = [
    ("expiration", "AccountExpirationDate"),
    ("sam_account_name", "SamAccountName"),
    ("display_name", "DisplayName"),
    ("description", "Description"),
    ("dns_host_name", "DNSHostName"),
    ("home_page", "HomePage"),
]

BOOL_PARAMS = [
    ("account_not_delegated", "AccountNotDelegated"),
    ("enabled", "Enabled"),
    ("trusted_for_delegation", "TrustedForDelegation"),
]


def parse_expiration(value: str) -> str:
    """'/Date(<ms>)/' to an RFC 3339 UTC timestamp."""
    match = DATE_PATTERN.match(value)
    if not match:
        raise ParseError(f"expiration date {value!r} does not match /Date(<ms>)/")
    try:
        millis = int(match.group(1))
    except ValueError as e:
        raise ParseError(f"invalid expiration timestamp {match.group(1)!r}: {e}") from e
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).strftime(RFC3339)


def decode_encryption_types(value: Any) -> Set[EncryptionType]:
    """Encryption types set in a msDS-SupportedEncryptionTypes value (or list of values)."""
    bits = 0
    for item in value if isinstance(value, list) else [value]:
        if item is None:
            continue
        try:
            bits |= int(item)
        except (TypeError, ValueError) as e:
            raise ParseError(f"invalid kerberos encryption type {item!r}") from e
    return {enc for enc, bit in ENCRYPTION_BITS.items() if bits & bit}


def _encryption_param(types: Iterable[EncryptionType]) -> str:
    names = sorted(EncryptionType(t).value for t in types)
    return quote(",".join(names)) if names else "None"


def build_create(gmsa: ADServiceAccount) -> List[str]:
    cmds = [f"New-ADServiceAccount -Passthru -Name {quote(gmsa.name)} -DNSHostName {quote(gmsa.dns_host_name)}"]
    if gmsa.container:
        cmds.append(f"-Path {quote(gmsa.container)}")
    if gmsa.account_not_delegated:
        cmds.append("-AccountNotDelegated $true")
    if gmsa.description:
        cmds.append(f"-Description {quote(gmsa.description)}")
    if gmsa.display_name:
        cmds.append(f"-DisplayName {quote(gmsa.display_name)}")
    cmds.append(f"-Enabled {ps_bool(gmsa.enabled)}")
    if gmsa.expiration:
        cmds.append(f"-AccountExpirationDate {quote(gmsa.expiration)}")
    if gmsa.home_page:
        cmds.append(f"-HomePage {quote(gmsa.home_page)}")
    if gmsa.kerberos_encryption_type:
        cmds.append(f"-KerberosEncryptionType {_encryption_param(gmsa.kerberos_encryption_type)}")
    if gmsa.managed_password_interval_in_days:
        cmds.append(f"-ManagedPasswordIntervalInDays {int(gmsa.managed_password_interval_in_days)}")
    if gmsa.principals_allowed_to_delegate_to_account:
        cmds.append(
            f"-PrincipalsAllowedToDelegateToAccount {quote_list(gmsa.principals_allowed_to_delegate_to_account)}"
        )
    if gmsa.principals_allowed_to_retrieve_managed_password:
        cmds.append(
            "-PrincipalsAllowedToRetrieveManagedPassword "
            f"{quote_list(gmsa.principals_allowed_to_retrieve_managed_password)}"
        )
    cmds.append(f"-SamAccountName {quote(gmsa.sam_account_name or gmsa.name)}")
    if gmsa.service_principal_names:
        cmds.append(f"-ServicePrincipalNames {quote_list(gmsa.service_principal_names)}")
    cmds.append(f"-TrustedForDelegation {ps_bool(gmsa.trusted_for_delegation)}")
    return cmds


def _reset_list(identity: str, param: str, values: List[str], add: bool = False) -> Commands:
    """Clear a multi-valued attribute, then set it again when values remain."""
    commands = [[f"Set-ADServiceAccount -Identity {identity} -{param} $null"]]
    if values:
        value = f"@{{Add={quote_list(values)}}}" if add else quote_list(values)
        commands.append([f"Set-ADServiceAccount -Identity {identity} -{param} {value}"])
    return commands


def build_update(old: ADServiceAccount, new: ADServiceAccount) -> Commands:
    """Set-ADServiceAccount for scalar changes, list resets, then rename and move.

    The managed password interval can only be set at creation and is not updated.
    """
    guid = check_guid(old.guid, "gMSA")
    identity = quote(guid)
    commands: Commands = []

    cmds = [f"Set-ADServiceAccount -Identity {identity}"]
    for field, param in STRING_PARAMS:
        if getattr(old, field) != getattr(new, field):
            cmds.append(f"-{param} {quote_or_null(getattr(new, field))}")
    for field, param in BOOL_PARAMS:
        if getattr(old, field) != getattr(new, field):
            cmds.append(f"-{param} {ps_bool(getattr(new, field))}")
    if len(cmds) > 1:
        commands.append(cmds)

    if set(old.service_principal_names) != set(new.service_principal_names):
        commands += _reset_list(identity, "ServicePrincipalNames", sorted(new.service_principal_names), add=True)
    if set(old.principals_allowed_to_delegate_to_account) != set(new.principals_allowed_to_delegate_to_account):
        commands += _reset_list(
            identity, "PrincipalsAllowedToDelegateToAccount",
            sorted(new.principals_allowed_to_delegate_to_account),
        )
    if set(old.principals_allowed_to_retrieve_managed_password) != set(
        new.principals_allowed_to_retrieve_managed_password
    ):
        commands += _reset_list(
            identity, "PrincipalsAllowedToRetrieveManagedPassword",
            sorted(new.principals_allowed_to_retrieve_managed_password),
        )
    if set(old.kerberos_encryption_type) != set(new.kerberos_encryption_type):
        commands.append([
            f"Set-ADServiceAccount -Identity {identity} "
            f"-KerberosEncryptionType {_encryption_param(new.kerberos_encryption_type)}"
        ])

    if old.name != new.name:
        commands.append([f"Rename-ADObject -Identity {identity} -NewName {quote(new.name)}"])
    if new.container and old.container != new.container:
        commands.append([f"Move-ADObject -Identity {identity} -TargetPath {quote(new.container)}"])
    return commands


def build_delete(guid: str) -> List[str]:
    return [f"Remove-ADServiceAccount -Identity {quote(check_guid(guid, 'gMSA'))} -Confirm:$false"]


def parse(document: Any) -> ADServiceAccount:
    doc = as_object(document, "gMSA")
    dn = text(doc, "DistinguishedName")
    expiration = text(doc, "AccountExpirationDate")
    interval = get(doc, "msDS-ManagedPasswordInterval")
    return ADServiceAccount(
        guid=require_guid(doc, "ObjectGUID", "gMSA"),
        dn=dn,
        name=text(doc, "Name"),
        dns_host_name=text(doc, "DNSHostName"),
        container=container_from_dn(dn),
        description=text(doc, "Description"),
        display_name=text(doc, "DisplayName"),
        enabled=flag(doc, "Enabled"),
        expiration=parse_expiration(expiration) if expiration else "",
        home_page=text(doc, "HomePage"),
        kerberos_encryption_type=decode_encryption_types(get(doc, "KerberosEncryptionType")),
        managed_password_interval_in_days=int(interval or 0),
        principals_allowed_to_delegate_to_account=string_list(get(doc, "PrincipalsAllowedToDelegateToAccount")),
        principals_allowed_to_retrieve_managed_password=string_list(
            get(doc, "PrincipalsAllowedToRetrieveManagedPassword")
        ),
        sam_account_name=text(doc, "SamAccountName"),
        service_principal_names=string_list(get(doc, "ServicePrincipalNames")),
        trusted_for_delegation=flag(doc, "TrustedForDelegation"),
        account_not_delegated=flag(doc, "AccountNotDelegated"),
        sid=sid(doc),
    )


def create(provider, gmsa: ADServiceAccount) -> ADServiceAccount:
    logger.info(f"Adding gMSA {gmsa.name!r}")
    try:
        result = provider.run(build_create(gmsa), json_output=True)
    except ConflictError as e:
        raise ConflictError(f"there is another gMSA named {gmsa.name!r}", e.exit_code, e.stderr, e.stdout) from e
    created = parse(result.decode_json())
    return read(provider, created.guid) or created


def read(provider, guid: str) -> Optional[ADServiceAccount]:
    cmd = f"Get-ADServiceAccount -Identity {quote(check_guid(guid, 'gMSA'))} -Properties *"
    try:
        result = provider.run([cmd], json_output=True)
    except NotFoundError:
        return None
    return parse(result.decode_json())


def update(provider, old: ADServiceAccount, new: ADServiceAccount) -> Optional[ADServiceAccount]:
    for fragments in build_update(old, new):
        provider.run(fragments)
    return read(provider, old.guid)


def delete(provider, guid: str) -> None:
    try:
        provider.run(build_delete(guid))
    except NotFoundError:
        logger.debug(f"gMSA {guid} already absent")
