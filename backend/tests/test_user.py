"""Tests for the user codec"""
import json

import pytest
from hypothesis import given, strategies as st, settings

from adprovider.errors import ConflictError, InvariantViolation, NotFoundError, ValidationError
from adprovider.models.ad import ADUser
from adprovider.services import user

GUID = "b0d4a4f1-5ff0-4c1e-9a1c-0b2f8a3c4d5e"

attribute_names = st.from_regex(r"\A[A-Za-z][A-Za-z0-9-]{0,10}\Z")
attribute_values = st.one_of(
    st.text(alphabet="abcdefxyz0123", min_size=1, max_size=6),
    st.lists(st.text(alphabet="abcdefxyz0123", min_size=1, max_size=6), min_size=1, max_size=3),
)


def _observed(**overrides):
    doc = {
        "ObjectGUID": GUID,
        "DistinguishedName": "CN=a@x.com,OU=Staff,DC=x,DC=com",
        "SamAccountName": "a",
        "UserPrincipalName": "a@x.com",
        "DisplayName": "A",
        "userAccountControl": 0x200 | 0x10000,
        "City": "Berlin",
        "SID": {"BinaryLength": 28, "Value": "S-1-5-21-1-2-3-1104"},
        "SmartcardLogonRequired": False,
        "TrustedForDelegation": True,
    }
    doc.update(overrides)
    return doc


def test_build_create_emits_only_non_empty_values():
    u = ADUser(principal_name="a@x.com", sam_account_name="a", country="de", container="OU=Staff,DC=x,DC=com")
    cmds = user.build_create(u)
    assert '-Country "DE"' in cmds
    assert '-Path "OU=Staff,DC=x,DC=com"' in cmds
    assert not any(c.startswith("-City") for c in cmds)
    assert not any(c.startswith("-AccountPassword") for c in cmds)


def test_build_create_custom_attributes():
    u = ADUser(sam_account_name="a", custom_attributes={"extensionAttribute1": "x", "carLicense": ["b", "a"]})
    assert user.build_create(u)[-1] == "-OtherAttributes @{'carLicense'=\"a\",\"b\";'extensionAttribute1'=\"x\"}"


def test_invalid_custom_attribute_name():
    with pytest.raises(ValidationError):
        user.build_create(ADUser(sam_account_name="a", custom_attributes={"bad name'": "x"}))


def test_parse_observed_user():
    parsed = user.parse(_observed(carLicense=["b", "a"]), ["carLicense"])
    assert parsed.guid == GUID
    assert parsed.container == "OU=Staff,DC=x,DC=com"
    assert parsed.enabled
    assert parsed.password_never_expires
    assert not parsed.cannot_change_password
    assert parsed.trusted_for_delegation
    assert parsed.city == "Berlin"
    assert parsed.sid == "S-1-5-21-1-2-3-1104"
    assert parsed.custom_attributes == {"carLicense": ["b", "a"]}


def test_parse_disabled_user_and_key_casing():
    parsed = user.parse({"objectguid": GUID, "useraccountcontrol": 0x202, "city": "Paris"})
    assert not parsed.enabled
    assert parsed.city == "Paris"
    assert parsed.dn == ""


def test_parse_requires_guid():
    with pytest.raises(InvariantViolation):
        user.parse(_observed(ObjectGUID=""))


def test_build_update_commands():
    old = user.parse(_observed())
    new = old.model_copy(update={
        "display_name": "",
        "city": "Munich",
        "enabled": False,
        "initial_password": "N3w!",
        "container": "OU=Former,DC=x,DC=com",
    })

    commands = user.build_update(old, new)

    assert commands[0] == [
        f'Set-ADUser -Identity "{GUID}"', "-DisplayName $null", '-City "Munich"', "-Enabled $false",
    ]
    assert commands[1] == [
        f'Set-ADAccountPassword -Identity "{GUID}" -Reset '
        '-NewPassword (ConvertTo-SecureString -AsPlainText "N3w!" -Force)'
    ]
    assert commands[2] == [f'Move-ADObject -Identity "{GUID}" -TargetPath "OU=Former,DC=x,DC=com"']


def test_build_update_nothing_changed():
    old = user.parse(_observed())
    assert user.build_update(old, old.model_copy()) == []


@given(
    old=st.dictionaries(attribute_names, attribute_values, max_size=4),
    new=st.dictionaries(attribute_names, attribute_values, max_size=4),
)
@settings(max_examples=100)
def test_custom_attribute_changes_cover_every_key(old, new):
    """Removed keys are cleared, changed keys replaced, new keys added, equal keys untouched."""
    cmds = user.custom_attribute_changes(old, new)
    text = " ".join(cmds)

    for key in old:
        if key not in new:
            assert key in cmds[0]
    for key in new:
        mentioned = f"'{key}'=" in text
        same = key in old and user._normalise(old[key]) == user._normalise(new[key])
        assert mentioned != same
    if old == new:
        assert cmds == []


def test_create_conflict_message(provider):
    provider.respond("New-ADUser", error=ConflictError("AlreadyExists", 1, "AlreadyExists"))
    with pytest.raises(ConflictError, match="there is another User named 'a@x.com'"):
        user.create(provider, ADUser(principal_name="a@x.com", initial_password="pw"))


def test_create_reads_back(provider):
    provider.respond("New-ADUser", json.dumps(_observed()))
    provider.respond("Get-ADUser", json.dumps(_observed()))

    created = user.create(provider, ADUser(principal_name="a@x.com", sam_account_name="a", initial_password="pw"))

    assert created.guid == GUID
    assert provider.ran(f'Get-ADUser -Identity "{GUID}" -Properties *')


def test_delete_absent_user_succeeds(provider):
    provider.respond("Remove-ADUser", error=NotFoundError("ADIdentityNotFoundException"))
    user.delete(provider, GUID)
