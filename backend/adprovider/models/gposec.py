"""GPO security settings (GptTmpl.inf) models

Each fixed-key section maps python field names to the INF key names through
pydantic aliases; list sections hold ordered records.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FixedKeySection(BaseModel):
    """A section made of well-known keys with opaque string values."""
    model_config = ConfigDict(populate_by_name=True)

    def ini_items(self) -> List[tuple]:
        """(INF key, value) pairs for the non-empty values, in declaration order."""
        items = []
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if value:
                items.append((field.alias or name, value))
        return items

    @classmethod
    def ini_keys(cls) -> List[str]:
        return [field.alias or name for name, field in cls.model_fields.items()]

    @classmethod
    def from_ini(cls, values: dict) -> Optional["FixedKeySection"]:
        """Build the section from an INF key map; None when none of its keys are present."""
        known = {k: v for k, v in values.items() if k in cls.ini_keys() and v}
        if not known:
            return None
        return cls(**known)


class PasswordPolicies(FixedKeySection):
    maximum_password_age: str = Field("", alias="MaximumPasswordAge")
    minimum_password_age: str = Field("", alias="MinimumPasswordAge")
    minimum_password_length: str = Field("", alias="MinimumPasswordLength")
    password_complexity: str = Field("", alias="PasswordComplexity")
    clear_text_password: str = Field("", alias="ClearTextPassword")
    password_history_size: str = Field("", alias="PasswordHistorySize")


class AccountLockout(FixedKeySection):
    force_logoff_when_hour_expire: str = Field("", alias="ForceLogoffWhenHourExpire")
    lockout_duration: str = Field("", alias="LockoutDuration")
    lockout_bad_count: str = Field("", alias="LockoutBadCount")
    reset_lockout_count: str = Field("", alias="ResetLockoutCount")


class KerberosPolicy(FixedKeySection):
    max_service_age: str = Field("", alias="MaxServiceAge")
    max_ticket_age: str = Field("", alias="MaxTicketAge")
    max_renew_age: str = Field("", alias="MaxRenewAge")
    max_clock_skew: str = Field("", alias="MaxClockSkew")
    ticket_validate_client: str = Field("", alias="TicketValidateClient")


class EventAudit(FixedKeySection):
    audit_account_manage: str = Field("", alias="AuditAccountManage")
    audit_ds_access: str = Field("", alias="AuditDSAccess")
    audit_account_logon: str = Field("", alias="AuditAccountLogon")
    audit_logon_events: str = Field("", alias="AuditLogonEvents")
    audit_object_access: str = Field("", alias="AuditObjectAccess")
    audit_policy_change: str = Field("", alias="AuditPolicyChange")
    audit_privilege_use: str = Field("", alias="AuditPrivilegeUse")
    audit_process_tracking: str = Field("", alias="AuditProcessTracking")
    audit_system_events: str = Field("", alias="AuditSystemEvents")


class EventLogPolicy(FixedKeySection):
    """Shared shape of the System, Security and Application log sections."""
    maximum_log_size: str = Field("", alias="MaximumLogSize")
    audit_log_retention_period: str = Field("", alias="AuditLogRetentionPeriod")
    retention_days: str = Field("", alias="RetentionDays")
    restrict_guest_access: str = Field("", alias="RestrictGuestAccess")


class RestrictedGroup(BaseModel):
    group_name: str
    group_members: str = ""
    group_memberof: str = ""


class RegistryKey(BaseModel):
    key_name: str
    propagation_mode: str
    acl: str


class RegistryValue(BaseModel):
    key_name: str
    value_type: str
    value: str


class SystemService(BaseModel):
    service_name: str
    startup_mode: str
    acl: str


class FileSystemEntry(BaseModel):
    path: str
    propagation_mode: str
    acl: str


class SecuritySettings(BaseModel):
    """Structured content of a GPO's GptTmpl.inf."""
    password_policies: Optional[PasswordPolicies] = None
    account_lockout: Optional[AccountLockout] = None
    kerberos_policy: Optional[KerberosPolicy] = None
    event_audit: Optional[EventAudit] = None
    system_log: Optional[EventLogPolicy] = None
    audit_log: Optional[EventLogPolicy] = None
    application_log: Optional[EventLogPolicy] = None
    restricted_groups: List[RestrictedGroup] = Field(default_factory=list)
    registry_keys: List[RegistryKey] = Field(default_factory=list)
    registry_values: List[RegistryValue] = Field(default_factory=list)
    system_services: List[SystemService] = Field(default_factory=list)
    filesystem: List[FileSystemEntry] = Field(default_factory=list)
