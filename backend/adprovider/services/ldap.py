"""LDAP back-end: bind, search, add and modify plus bitfield helpers"""
import ssl
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ldap3 import (
    ALL_ATTRIBUTES,
    BASE,
    MODIFY_REPLACE,
    NONE,
    NTLM,
    SIMPLE,
    SUBTREE,
    Connection,
    Server,
    Tls,
)
from ldap3.core.exceptions import (
    LDAPBindError,
    LDAPEntryAlreadyExistsResult,
    LDAPException,
    LDAPInvalidCredentialsResult,
    LDAPInvalidFilterError,
    LDAPNoSuchObjectResult,
    LDAPSocketOpenError,
)
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import escape_rdn

from adprovider.errors import (
    AuthError,
    ConflictError,
    InvariantViolation,
    NotFoundError,
    ParseError,
    TransportError,
    ValidationError,
)
from adprovider.logger import get_logger
from adprovider.models.ldap import LDAPConfig, LDAPDomain, LDAPGroup, LDAPUser

logger = get_logger("services.ldap")

GROUP_SCOPES = {
    "global": 0x00000002,
    "local": 0x00000004,
    "universal": 0x00000008,
}

# checked in this order when decoding
GROUP_CATEGORIES = {
    "security": 0x80000000,
    "system": 0x00000001,
    "app_basic": 0x00000010,
    "app_query": 0x00000020,
}

UAC_NORMAL_ACCOUNT = 0x200
UAC_FLAGS = {
    "disabled": 0x00000002,
    "cannot_change_password": 0x00000040,
    "password_never_expires": 0x00010000,
}

USER_OBJECT_CLASSES = ["top", "person", "organizationalPerson", "user"]
GROUP_OBJECT_CLASSES = ["top", "group"]


def encode_group_type(scope: str, category: str) -> int:
    """Combine a group scope and category into the groupType bitfield.

    Args:
        scope: global, local or universal
        category: security, system, app_basic or app_query

    Returns:
        Unsigned 32-bit groupType value (e.g. 0x80000002 for a global security group)
    """
    if scope not in GROUP_SCOPES:
        raise ValidationError(f"invalid group scope {scope!r}")
    if category not in GROUP_CATEGORIES:
        raise ValidationError(f"invalid group type {category!r}")
    return GROUP_SCOPES[scope] | GROUP_CATEGORIES[category]


def decode_group_type(value: int) -> Tuple[str, str]:
    """Split a groupType value (signed or unsigned) into (scope, category)."""
    value = int(value) & 0xFFFFFFFF
    category = next((k for k, bit in GROUP_CATEGORIES.items() if value & bit), "")
    scope = next((k for k, bit in GROUP_SCOPES.items() if value & bit), "")
    if not scope or not category:
        raise ParseError(f"could not translate {value} to a meaningful type and scope")
    return scope, category


def to_signed32(value: int) -> int:
    """groupType is a signed 32-bit integer on the wire."""
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def encode_user_account_control(flags: Iterable[str]) -> int:
    """userAccountControl for a normal account with the given flags set."""
    value = UAC_NORMAL_ACCOUNT
    for name in flags:
        if name not in UAC_FLAGS:
            raise ValidationError(f"unknown userAccountControl flag {name!r}")
        value |= UAC_FLAGS[name]
    return value


def decode_user_account_control(value: Any) -> Set[str]:
    """Flag names set in an observed userAccountControl value."""
    try:
        value = int(value or 0)
    except (TypeError, ValueError) as e:
        raise ParseError(f"error while parsing uac value {value!r} into integer: {e}") from e
    return {name for name, bit in UAC_FLAGS.items() if value & bit}


def user_flags(user: LDAPUser) -> List[str]:
    return [name for name in UAC_FLAGS if getattr(user, name)]


def encode_password(password: str) -> bytes:
    """Encode a password for the unicodePwd attribute.

    The password must be enclosed in quotes and encoded as UTF-16LE (no BOM).
    """
    return f'"{password}"'.encode("utf-16-le")


def build_dn(name: str, container: str, domain_dn: str) -> str:
    return f"CN={escape_rdn(name)},CN={escape_rdn(container)},{domain_dn}"


def _value(attributes: Dict[str, Any], name: str) -> str:
    """First value of an attribute, matched case-insensitively."""
    for key, value in attributes.items():
        if key.lower() != name.lower():
            continue
        if isinstance(value, (list, tuple)):
            value = value[0] if value else ""
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        return "" if value is None else str(value)
    return ""


class LDAPClient:
    """ldap3 connection to a domain controller."""

    def __init__(self, config: LDAPConfig, connection: Optional[Connection] = None):
        self.config = config
        self.connection = connection

    def _create_connection(self) -> Connection:
        use_ssl = self.config.protocol == "ldaps"
        tls = None
        if use_ssl:
            if self.config.insecure:
                logger.warning(f"Certificate validation disabled for {self.config.url}")
            tls = Tls(validate=ssl.CERT_NONE if self.config.insecure else ssl.CERT_REQUIRED)
        server = Server(
            self.config.host,
            port=self.config.effective_port,
            use_ssl=use_ssl,
            tls=tls,
            get_info=NONE,
            connect_timeout=self.config.timeout,
        )
        return Connection(
            server,
            user=self.config.username,
            password=self.config.password,
            authentication=NTLM if self.config.use_ntlm else SIMPLE,
            auto_bind=False,
            raise_exceptions=True,
            receive_timeout=self.config.timeout,
        )

    def bind(self) -> None:
        """Open and authenticate the connection."""
        if self.connection is None:
            self.connection = self._create_connection()
        logger.debug(f"Binding to {self.config.url} as {self.config.username or 'anonymous'}")
        try:
            self.connection.bind()
        except (LDAPBindError, LDAPInvalidCredentialsResult) as e:
            raise AuthError(f"ldap bind to {self.config.url} failed: {e}") from e
        except LDAPSocketOpenError as e:
            raise TransportError(f"could not connect to {self.config.url}: {e}") from e
        except LDAPException as e:
            raise TransportError(f"ldap bind to {self.config.url} failed: {e}") from e

    def unbind(self) -> None:
        if self.connection is not None:
            self.connection.unbind()
            self.connection = None

    def __enter__(self) -> "LDAPClient":
        self.bind()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unbind()

    def _conn(self) -> Connection:
        if self.connection is None:
            raise TransportError("ldap connection is not bound")
        return self.connection

    def search(
        self,
        search_filter: str,
        base: str,
        scope=SUBTREE,
        attributes: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Run a search and return the matching entries.

        Returns:
            List of {"dn": ..., "attributes": {...}} dictionaries
        """
        conn = self._conn()
        logger.debug(f"ldap search: filter={search_filter!r} base={base!r}")
        try:
            conn.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=scope,
                attributes=attributes or ALL_ATTRIBUTES,
            )
        except LDAPNoSuchObjectResult as e:
            raise NotFoundError(f"ldap search base {base!r} does not exist: {e}") from e
        except LDAPInvalidFilterError as e:
            raise ValidationError(f"invalid ldap filter {search_filter!r}: {e}") from e
        except LDAPException as e:
            raise TransportError(
                f"ldap search failed. Filter was {search_filter!r}, base was {base!r}. error: {e}"
            ) from e
        return [
            {"dn": entry.get("dn", ""), "attributes": entry.get("attributes", {})}
            for entry in (conn.response or [])
            if entry.get("type") == "searchResEntry"
        ]

    def search_one(
        self,
        search_filter: str,
        base: str,
        scope=SUBTREE,
        attributes: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Search expecting exactly one entry."""
        entries = self.search(search_filter, base, scope, attributes)
        if len(entries) > 1:
            raise InvariantViolation(f"multiple entries found for filter ({search_filter!r}). Aborting")
        if not entries:
            raise NotFoundError(f"no entries found for filter {search_filter!r}")
        return entries[0]

    def add(self, dn: str, object_class: List[str], attributes: Dict[str, Any]) -> None:
        conn = self._conn()
        logger.debug(f"ldap add: {dn}")
        try:
            conn.add(dn, object_class, attributes)
        except LDAPEntryAlreadyExistsResult as e:
            raise ConflictError(f"{dn} AlreadyExists: {e}") from e
        except LDAPException as e:
            raise TransportError(f"ldap add of {dn} failed: {e}") from e

    def modify(self, dn: str, changes: Dict[str, list]) -> None:
        if not changes:
            return
        conn = self._conn()
        logger.debug(f"ldap modify: {dn} ({', '.join(sorted(changes))})")
        try:
            conn.modify(dn, changes)
        except LDAPNoSuchObjectResult as e:
            raise NotFoundError(f"{dn}: There is no such object: {e}") from e
        except LDAPException as e:
            raise TransportError(f"ldap modify of {dn} failed: {e}") from e

    def get_default_naming_context(self) -> str:
        """defaultNamingContext of the rootDSE."""
        entry = self.search_one("(defaultNamingContext=*)", "", BASE, ["defaultNamingContext"])
        return _value(entry["attributes"], "defaultNamingContext")

    def get_domain(self, dn: str = "", netbios_name: str = "", domain_name: str = "") -> LDAPDomain:
        """Look a domain up in the partitions container.

        Args:
            dn: Domain naming context (nCName)
            netbios_name: NetBIOS name
            domain_name: DNS root

        Returns:
            The single matching partition entry
        """
        filters = []
        if dn:
            filters.append(f"(nCName={escape_filter_chars(dn)})")
        if netbios_name:
            filters.append(f"(nETBIOSName={escape_filter_chars(netbios_name)})")
        if domain_name:
            filters.append(f"(dnsRoot={escape_filter_chars(domain_name)})")
        if not filters:
            raise ValidationError("one of dn, netbios_name or domain_name is required")
        search_filter = f"(&{''.join(filters)})" if len(filters) > 1 else filters[0]

        base = f"cn=partitions,cn=configuration,{self.get_default_naming_context()}"
        entry = self.search_one(search_filter, base, SUBTREE, ["nCName", "nETBIOSName", "dnsRoot"])
        attrs = entry["attributes"]
        return LDAPDomain(
            dn=_value(attrs, "nCName"),
            netbios_name=_value(attrs, "nETBIOSName"),
            domain_name=_value(attrs, "dnsRoot"),
        )

    def add_user(self, user: LDAPUser) -> str:
        """Create a user and return its DN."""
        dn = build_dn(user.display_name, user.container, user.domain_dn)
        attributes = {
            "sAMAccountName": user.sam_account_name,
            "displayName": user.display_name,
            "userPrincipalName": user.principal_name,
            "userAccountControl": str(encode_user_account_control(user_flags(user))),
        }
        if user.password:
            attributes["unicodePwd"] = encode_password(user.password)
        if user.change_at_next_login:
            attributes["pwdLastSet"] = "0"
        self.add(dn, USER_OBJECT_CLASSES, attributes)
        return dn

    def get_user(self, dn: str, domain_dn: str) -> LDAPUser:
        entry = self.search_one(f"(&(distinguishedName={escape_filter_chars(dn)})(objectClass=user))", domain_dn)
        attrs = entry["attributes"]
        flags = decode_user_account_control(_value(attrs, "userAccountControl"))
        return LDAPUser(
            sam_account_name=_value(attrs, "sAMAccountName"),
            display_name=_value(attrs, "displayName"),
            principal_name=_value(attrs, "userPrincipalName"),
            domain_dn=domain_dn,
            **{name: name in flags for name in UAC_FLAGS},
        )

    def modify_user(self, old: LDAPUser, new: LDAPUser) -> None:
        changes = {}
        for field, attr in (
            ("sam_account_name", "sAMAccountName"),
            ("display_name", "displayName"),
            ("principal_name", "userPrincipalName"),
        ):
            if getattr(old, field) != getattr(new, field):
                changes[attr] = [(MODIFY_REPLACE, [getattr(new, field)])]
        if new.password and old.password != new.password:
            changes["unicodePwd"] = [(MODIFY_REPLACE, [encode_password(new.password)])]
        if set(user_flags(old)) != set(user_flags(new)):
            uac = encode_user_account_control(user_flags(new))
            changes["userAccountControl"] = [(MODIFY_REPLACE, [str(uac)])]
        self.modify(build_dn(old.display_name, old.container, old.domain_dn), changes)

    def add_group(self, group: LDAPGroup) -> str:
        """Create a group and return its DN."""
        dn = build_dn(group.name, group.container, group.domain_dn)
        group_type = to_signed32(encode_group_type(group.scope, group.category))
        self.add(dn, GROUP_OBJECT_CLASSES, {
            "sAMAccountName": group.sam_account_name,
            "cn": group.name,
            "instanceType": "4",
            "groupType": str(group_type),
        })
        return dn

    def get_group(self, dn: str, domain_dn: str) -> LDAPGroup:
        entry = self.search_one(f"(&(distinguishedName={escape_filter_chars(dn)})(objectClass=group))", domain_dn)
        attrs = entry["attributes"]
        raw_type = _value(attrs, "groupType")
        try:
            scope, category = decode_group_type(int(raw_type))
        except ValueError as e:
            raise ParseError(f"error while parsing groupType {raw_type!r}: {e}") from e
        return LDAPGroup(
            dn=entry["dn"],
            sam_account_name=_value(attrs, "sAMAccountName"),
            name=_value(attrs, "cn"),
            domain_dn=domain_dn,
            scope=scope,
            category=category,
        )

    def modify_group(self, old: LDAPGroup, new: LDAPGroup) -> None:
        changes = {}
        if old.sam_account_name != new.sam_account_name:
            changes["sAMAccountName"] = [(MODIFY_REPLACE, [new.sam_account_name])]
        if (old.scope, old.category) != (new.scope, new.category):
            group_type = to_signed32(encode_group_type(new.scope, new.category))
            changes["groupType"] = [(MODIFY_REPLACE, [str(group_type)])]
        self.modify(build_dn(old.name, old.container, old.domain_dn), changes)
