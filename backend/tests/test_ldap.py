"""Property-based tests for the LDAP back-end"""
import pytest
from hypothesis import given, strategies as st, settings
from ldap3 import BASE, MODIFY_REPLACE
from ldap3.core.exceptions import (
    LDAPBindError,
    LDAPEntryAlreadyExistsResult,
    LDAPNoSuchObjectResult,
    LDAPSocketOpenError,
)

from adprovider.errors import (
    AuthError,
    ConflictError,
    InvariantViolation,
    NotFoundError,
    ParseError,
    TransportError,
    ValidationError,
)
from adprovider.models.ldap import LDAPConfig, LDAPGroup, LDAPUser
from adprovider.services.ldap import (
    GROUP_CATEGORIES,
    GROUP_SCOPES,
    UAC_FLAGS,
    UAC_NORMAL_ACCOUNT,
    LDAPClient,
    build_dn,
    decode_group_type,
    decode_user_account_control,
    encode_group_type,
    encode_password,
    encode_user_account_control,
    to_signed32,
)

from conftest import mock_directory

DOMAIN_DN = "DC=example,DC=com"


class FakeConnection:
    """Records ldap3 calls; search results are looked up by search base."""

    def __init__(self, entries=None, error=None):
        self.entries = entries or {}
        self.error = error
        self.response = None
        self.searches = []
        self.added = []
        self.modified = []
        self.bound = False

    def bind(self):
        if self.error:
            raise self.error
        self.bound = True

    def unbind(self):
        self.bound = False

    def search(self, search_base, search_filter, search_scope, attributes):
        self.searches.append((search_base, search_filter, search_scope))
        if self.error:
            raise self.error
        self.response = [
            {"type": "searchResEntry", "dn": dn, "attributes": attrs}
            for dn, attrs in self.entries.get(search_base, [])
        ] + [{"type": "searchResRef", "uri": ["ldap://elsewhere"]}]

    def add(self, dn, object_class, attributes):
        if self.error:
            raise self.error
        self.added.append((dn, object_class, attributes))

    def modify(self, dn, changes):
        if self.error:
            raise self.error
        self.modified.append((dn, changes))


def _client(**kwargs) -> LDAPClient:
    return LDAPClient(LDAPConfig(host="dc1.example.com"), connection=FakeConnection(**kwargs))


# **Feature: ad-provider, Property 1: Group type round trip**
# **Validates: Requirements 4.7**
@given(scope=st.sampled_from(list(GROUP_SCOPES)), category=st.sampled_from(list(GROUP_CATEGORIES)))
@settings(max_examples=100)
def test_group_type_round_trip(scope: str, category: str):
    """For any scope and category, decoding the encoded groupType (signed or not) gives them back."""
    value = encode_group_type(scope, category)
    assert decode_group_type(value) == (scope, category)
    assert decode_group_type(to_signed32(value)) == (scope, category)


def test_global_security_group_type():
    assert encode_group_type("global", "security") == 0x80000002
    assert to_signed32(0x80000002) == -2147483646
    assert decode_group_type(0x80000002) == ("global", "security")


def test_group_type_rejects_unknown_values():
    with pytest.raises(ValidationError):
        encode_group_type("forest", "security")
    with pytest.raises(ValidationError):
        encode_group_type("global", "mail")
    with pytest.raises(ParseError):
        decode_group_type(0x80000000)


# **Feature: ad-provider, Property 2: UAC round trip**
# **Validates: Requirements 4.7**
@given(flags=st.sets(st.sampled_from(list(UAC_FLAGS))))
@settings(max_examples=100)
def test_user_account_control_round_trip(flags):
    """For any flag set, the normal account bit is set and decoding gives the flags back."""
    value = encode_user_account_control(flags)
    assert value & UAC_NORMAL_ACCOUNT
    assert decode_user_account_control(value) == set(flags)


def test_user_account_control_errors():
    with pytest.raises(ValidationError):
        encode_user_account_control(["locked"])
    with pytest.raises(ParseError):
        decode_user_account_control("not a number")
    assert decode_user_account_control(None) == set()


def test_encode_password():
    assert encode_password("P@ss") == b'"\x00P\x00@\x00s\x00s\x00"\x00'
    assert not encode_password("x").startswith(b"\xff\xfe")


def test_build_dn_escapes_names():
    assert build_dn("Smith, John", "Users", DOMAIN_DN) == "CN=Smith\\, John,CN=Users,DC=example,DC=com"


def test_config_url():
    assert LDAPConfig(host="dc1").url == "ldap://dc1:389"
    assert LDAPConfig(host="dc1", protocol="LDAPS").url == "ldaps://dc1:636"
    assert LDAPConfig(host="dc1", port=3269, protocol="ldaps").url == "ldaps://dc1:3269"
    with pytest.raises(ValueError):
        LDAPConfig(host="dc1", protocol="http")


def test_search_one_requires_exactly_one_entry():
    client = _client(entries={DOMAIN_DN: [("CN=a," + DOMAIN_DN, {}), ("CN=b," + DOMAIN_DN, {})]})
    with pytest.raises(InvariantViolation):
        client.search_one("(cn=*)", DOMAIN_DN)

    with pytest.raises(NotFoundError):
        _client().search_one("(cn=nobody)", DOMAIN_DN)


def test_search_skips_referrals():
    client = _client(entries={DOMAIN_DN: [("CN=a," + DOMAIN_DN, {"cn": ["a"]})]})
    assert client.search("(cn=a)", DOMAIN_DN) == [{"dn": "CN=a," + DOMAIN_DN, "attributes": {"cn": ["a"]}}]


def test_search_missing_base():
    client = _client(error=LDAPNoSuchObjectResult(description="noSuchObject"))
    with pytest.raises(NotFoundError):
        client.search("(cn=a)", "OU=gone," + DOMAIN_DN)


def test_get_domain_uses_partitions_container():
    partitions = "cn=partitions,cn=configuration," + DOMAIN_DN
    client = _client(entries={
        "": [("", {"defaultNamingContext": [DOMAIN_DN]})],
        partitions: [("CN=EXAMPLE," + partitions, {
            "nCName": DOMAIN_DN, "nETBIOSName": "EXAMPLE", "dnsRoot": ["example.com"],
        })],
    })

    domain = client.get_domain(netbios_name="EXAMPLE")

    assert domain.dn == DOMAIN_DN
    assert domain.domain_name == "example.com"
    searches = client.connection.searches
    assert searches[0] == ("", "(defaultNamingContext=*)", BASE)
    assert searches[1][:2] == (partitions, "(nETBIOSName=EXAMPLE)")


def test_get_domain_needs_a_key():
    with pytest.raises(ValidationError):
        _client().get_domain()


def test_add_user_attributes():
    client = _client()
    user = LDAPUser(
        sam_account_name="jdoe",
        display_name="John Doe",
        principal_name="jdoe@example.com",
        password="S3cret!",
        domain_dn=DOMAIN_DN,
        password_never_expires=True,
        change_at_next_login=True,
    )

    dn = client.add_user(user)

    assert dn == "CN=John Doe,CN=Users," + DOMAIN_DN
    added_dn, object_class, attributes = client.connection.added[0]
    assert object_class == ["top", "person", "organizationalPerson", "user"]
    assert attributes["userAccountControl"] == str(0x200 | 0x10000)
    assert attributes["unicodePwd"] == encode_password("S3cret!")
    assert attributes["pwdLastSet"] == "0"


def test_add_existing_entry_conflicts():
    client = _client(error=LDAPEntryAlreadyExistsResult(description="entryAlreadyExists"))
    with pytest.raises(ConflictError):
        client.add_group(LDAPGroup(sam_account_name="g", name="g", domain_dn=DOMAIN_DN))


def test_add_group_uses_signed_group_type():
    client = _client()
    client.add_group(LDAPGroup(sam_account_name="g", name="g", domain_dn=DOMAIN_DN))
    _, object_class, attributes = client.connection.added[0]
    assert object_class == ["top", "group"]
    assert attributes["groupType"] == "-2147483646"
    assert attributes["instanceType"] == "4"


def test_get_group_decodes_group_type():
    dn = "CN=g,CN=Users," + DOMAIN_DN
    client = _client(entries={DOMAIN_DN: [(dn, {"cn": ["g"], "sAMAccountName": ["g"], "groupType": [-2147483644]})]})
    group = client.get_group(dn, DOMAIN_DN)
    assert (group.scope, group.category) == ("local", "security")


def test_modify_group_changes_only_what_differs():
    client = _client()
    old = LDAPGroup(sam_account_name="g", name="g", domain_dn=DOMAIN_DN)

    client.modify_group(old, old.model_copy())
    assert client.connection.modified == []

    client.modify_group(old, old.model_copy(update={"scope": "universal"}))
    dn, changes = client.connection.modified[0]
    assert dn == "CN=g,CN=Users," + DOMAIN_DN
    assert changes == {"groupType": [(MODIFY_REPLACE, [str(to_signed32(0x80000008))])]}


def test_get_user_decodes_flags():
    dn = "CN=John Doe,CN=Users," + DOMAIN_DN
    client = _client(entries={DOMAIN_DN: [(dn, {
        "sAMAccountName": "jdoe", "displayName": "John Doe", "userPrincipalName": "jdoe@example.com",
        "userAccountControl": 0x200 | 0x2,
    })]})
    user = client.get_user(dn, DOMAIN_DN)
    assert user.disabled
    assert not user.password_never_expires


@pytest.mark.parametrize("error, expected", [
    (LDAPBindError("invalid credentials"), AuthError),
    (LDAPSocketOpenError("connection refused"), TransportError),
])
def test_bind_errors(error, expected):
    client = _client(error=error)
    with pytest.raises(expected):
        client.bind()


def test_filter_values_are_escaped():
    dn = "CN=John (IT)*,CN=Users," + DOMAIN_DN
    client = _client(entries={DOMAIN_DN: [(dn, {"sAMAccountName": "jdoe", "userAccountControl": 0x200})]})

    client.get_user(dn, DOMAIN_DN)

    _, search_filter, _ = client.connection.searches[0]
    assert search_filter == (
        r"(&(distinguishedName=CN=John \28IT\29\2a,CN=Users,DC=example,DC=com)(objectClass=user))"
    )


def test_lookup_dn_with_parentheses_in_directory():
    dn = "CN=Ops (IT),CN=Users," + DOMAIN_DN
    connection = mock_directory(DOMAIN_DN, {dn: {
        "objectClass": ["top", "group"],
        "cn": "Ops (IT)",
        "sAMAccountName": "ops-it",
        "groupType": "-2147483646",
    }})

    with LDAPClient(LDAPConfig(host="dc1.example.com"), connection=connection) as client:
        group = client.get_group(dn, DOMAIN_DN)

    assert group.dn.lower() == dn.lower()
    assert (group.sam_account_name, group.scope, group.category) == ("ops-it", "global", "security")
