"""Application and provider configuration"""
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "AD Provider"
    debug: bool = False

    # HTTP surface
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Paths
    base_dir: Path = Path(__file__).parent.parent
    project_root: Path = base_dir.parent
    logs_dir: Path = project_root / "logs"
    log_file: Path = logs_dir / "backend.log"
    provider_config: Path = project_root / "provider.yaml"

    class Config:
        env_prefix = "ADPROVIDER_"


class ProviderSettings(BaseSettings):
    """Provider-level options.

    Values given explicitly (a configuration map or YAML file) win over the
    AD_* environment variables, which act as defaults.
    """
    winrm_username: str = Field("", validation_alias=AliasChoices("winrm_username", "AD_USER"))
    winrm_password: str = Field("", validation_alias=AliasChoices("winrm_password", "AD_PASSWORD"))
    winrm_hostname: str = Field("", validation_alias=AliasChoices("winrm_hostname", "AD_HOSTNAME"))
    winrm_port: int = Field(5985, validation_alias=AliasChoices("winrm_port", "AD_PORT"))
    winrm_proto: str = Field("http", validation_alias=AliasChoices("winrm_proto", "AD_PROTO"))
    winrm_insecure: bool = Field(False, validation_alias=AliasChoices("winrm_insecure", "AD_WINRM_INSECURE"))
    winrm_use_ntlm: bool = False
    winrm_pass_credentials: bool = False
    krb_realm: str = Field("", validation_alias=AliasChoices("krb_realm", "AD_KRB_REALM"))
    krb_conf: str = Field("", validation_alias=AliasChoices("krb_conf", "AD_KRB_CONF"))
    krb_keytab: str = ""
    krb_spn: str = Field("", validation_alias=AliasChoices("krb_spn", "AD_KRB_SPN"))
    domain_controller: str = ""
    ldap_hostname: str = Field("", validation_alias=AliasChoices("ldap_hostname", "AD_LDAP_HOSTNAME"))
    ldap_port: int = Field(0, validation_alias=AliasChoices("ldap_port", "AD_LDAP_PORT"))
    ldap_proto: str = Field("ldap", validation_alias=AliasChoices("ldap_proto", "AD_LDAP_PROTO"))
    ldap_insecure: bool = Field(False, validation_alias=AliasChoices("ldap_insecure", "AD_LDAP_INSECURE"))

    class Config:
        frozen = True
        extra = "ignore"

    @field_validator("winrm_proto")
    @classmethod
    def check_proto(cls, value: str) -> str:
        value = value.lower()
        if value not in ("http", "https"):
            raise ValueError(f"winrm_proto must be http or https, got {value!r}")
        return value

    @field_validator("ldap_proto")
    @classmethod
    def check_ldap_proto(cls, value: str) -> str:
        value = value.lower()
        if value not in ("ldap", "ldaps"):
            raise ValueError(f"ldap_proto must be ldap or ldaps, got {value!r}")
        return value

    @field_validator("winrm_port")
    @classmethod
    def check_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError(f"winrm_port out of range: {value}")
        return value

    @field_validator("ldap_port")
    @classmethod
    def check_ldap_port(cls, value: int) -> int:
        if not 0 <= value < 65536:
            raise ValueError(f"ldap_port out of range: {value}")
        return value

    @property
    def auth_mode(self) -> str:
        if self.krb_realm:
            return "kerberos"
        if self.winrm_use_ntlm:
            return "ntlm"
        return "basic"

    @property
    def endpoint(self) -> str:
        return f"{self.winrm_proto}://{self.winrm_hostname}:{self.winrm_port}/wsman"

    @classmethod
    def from_map(cls, conf: Optional[Dict[str, Any]] = None) -> "ProviderSettings":
        """Build settings from a configuration map, dropping unset (None) entries."""
        values = {k: v for k, v in (conf or {}).items() if v is not None}
        return cls(**values)


def load_provider_config(path: Path) -> Dict[str, Any]:
    """Read a provider configuration map from a YAML file.

    Args:
        path: YAML file with top-level provider options

    Returns:
        Configuration map (empty if the file does not exist)
    """
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping of provider options")
    return data


settings = Settings()

# Ensure directories exist
settings.logs_dir.mkdir(parents=True, exist_ok=True)
