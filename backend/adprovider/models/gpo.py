"""Group Policy models"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class GPOStatus(str, Enum):
    """GPO status as accepted by the GroupPolicy cmdlets."""
    ALL_SETTINGS_DISABLED = "AllSettingsDisabled"
    USER_SETTINGS_DISABLED = "UserSettingsDisabled"
    COMPUTER_SETTINGS_DISABLED = "ComputerSettingsDisabled"
    ALL_SETTINGS_ENABLED = "AllSettingsEnabled"


# Numeric GpoStatus from ConvertTo-Json
GPO_STATUS_BY_NUMBER = {
    0: GPOStatus.ALL_SETTINGS_DISABLED,
    1: GPOStatus.USER_SETTINGS_DISABLED,
    2: GPOStatus.COMPUTER_SETTINGS_DISABLED,
    3: GPOStatus.ALL_SETTINGS_ENABLED,
}


class GPO(BaseModel):
    """Group Policy Object."""
    guid: str = ""
    name: str
    domain: str = ""
    description: str = ""
    status: GPOStatus = GPOStatus.ALL_SETTINGS_ENABLED
    dn: str = ""
    base_path: str = ""
    user_version: int = 0
    computer_version: int = 0


class GPLink(BaseModel):
    """Link between a GPO and a container."""
    gpo_guid: str
    target_dn: str
    target_guid: str = ""
    enforced: bool = False
    enabled: bool = True
    # 0-based position in the target's gPLink; None leaves placement to New-GPLink
    order: Optional[int] = Field(None, ge=0)

    @property
    def id(self) -> str:
        return f"{self.gpo_guid}_{self.target_guid}"
