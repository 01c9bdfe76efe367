"""Tests for application and provider configuration"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from adprovider.config import ProviderSettings, Settings, load_provider_config
from adprovider.errors import ValidationError
from adprovider.provider import Provider

AD_VARIABLES = [
    "AD_USER", "AD_PASSWORD", "AD_HOSTNAME", "AD_PORT", "AD_PROTO",
    "AD_WINRM_INSECURE", "AD_KRB_REALM", "AD_KRB_CONF", "AD_KRB_SPN",
    "AD_LDAP_HOSTNAME", "AD_LDAP_PORT", "AD_LDAP_PROTO", "AD_LDAP_INSECURE",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in AD_VARIABLES:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    conf = ProviderSettings.from_map()
    assert conf.winrm_port == 5985
    assert conf.winrm_proto == "http"
    assert conf.auth_mode == "basic"
    assert not conf.winrm_insecure


def test_environment_fills_gaps(monkeypatch):
    monkeypatch.setenv("AD_HOSTNAME", "dc1.example.com")
    monkeypatch.setenv("AD_PORT", "5986")
    monkeypatch.setenv("AD_PROTO", "HTTPS")
    monkeypatch.setenv("AD_USER", "admin")

    conf = ProviderSettings.from_map({"winrm_username": "deploy", "winrm_password": None})

    assert conf.winrm_hostname == "dc1.example.com"
    assert conf.winrm_port == 5986
    assert conf.winrm_proto == "https"
    assert conf.winrm_username == "deploy"
    assert conf.endpoint == "https://dc1.example.com:5986/wsman"


def test_auth_mode():
    assert ProviderSettings.from_map({"winrm_use_ntlm": True}).auth_mode == "ntlm"
    assert ProviderSettings.from_map({"winrm_use_ntlm": True, "krb_realm": "EXAMPLE.COM"}).auth_mode == "kerberos"


@pytest.mark.parametrize("conf", [
    {"winrm_proto": "ftp"}, {"winrm_port": 0}, {"winrm_port": 70000}, {"ldap_proto": "http"}, {"ldap_port": -1},
])
def test_invalid_settings(conf):
    with pytest.raises(PydanticValidationError):
        ProviderSettings.from_map(conf)


def test_ldap_config_follows_the_winrm_connection():
    provider = Provider.from_config({
        "winrm_hostname": "dc1.example.com",
        "winrm_username": "EXAMPLE\\admin",
        "winrm_password": "pw",
        "winrm_use_ntlm": True,
    })
    config = provider.ldap_config
    assert config.url == "ldap://dc1.example.com:389"
    assert (config.username, config.password, config.use_ntlm) == ("EXAMPLE\\admin", "pw", True)

    provider = Provider.from_config({
        "winrm_hostname": "dc1.example.com",
        "domain_controller": "dc2.example.com",
        "ldap_proto": "LDAPS",
        "ldap_insecure": True,
    })
    assert provider.ldap_config.url == "ldaps://dc2.example.com:636"
    assert provider.ldap_config.insecure

    provider = Provider.from_config({"winrm_hostname": "dc1", "ldap_hostname": "ldap.example.com", "ldap_port": 3269})
    assert provider.ldap_config.url == "ldap://ldap.example.com:3269"


def test_ldap_client_needs_a_host():
    with pytest.raises(ValidationError):
        Provider.from_config({}).ldap_client()


def test_settings_are_frozen():
    conf = ProviderSettings.from_map()
    with pytest.raises(PydanticValidationError):
        conf.winrm_port = 1


def test_provider_rejects_invalid_configuration():
    with pytest.raises(ValidationError):
        Provider.from_config({"winrm_proto": "ftp"})


def test_load_provider_config(tmp_path):
    path = tmp_path / "provider.yaml"
    path.write_text("winrm_hostname: dc1\nwinrm_port: 5986\nkrb_realm: EXAMPLE.COM\n", encoding="utf-8")

    conf = load_provider_config(path)

    assert conf == {"winrm_hostname": "dc1", "winrm_port": 5986, "krb_realm": "EXAMPLE.COM"}
    assert Provider.from_config(conf).settings.auth_mode == "kerberos"


def test_load_provider_config_missing_or_invalid(tmp_path):
    assert load_provider_config(tmp_path / "absent.yaml") == {}

    (tmp_path / "empty.yaml").write_text("", encoding="utf-8")
    assert load_provider_config(tmp_path / "empty.yaml") == {}

    (tmp_path / "list.yaml").write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_provider_config(tmp_path / "list.yaml")


def test_app_settings_from_environment(monkeypatch):
    monkeypatch.setenv("ADPROVIDER_API_PORT", "9000")
    monkeypatch.setenv("ADPROVIDER_DEBUG", "true")
    app_settings = Settings()
    assert app_settings.api_port == 9000
    assert app_settings.debug
