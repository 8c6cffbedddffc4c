from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


ProvisioningState = Literal["none", "in_progress", "provisioned", "provisioning_failed"]


class WorkspaceProvisioningStatus(BaseModel):
    workspace_id: str
    name: str | None = None
    subscription_status: str | None = None
    tier: str | None = None
    provisioning_state: ProvisioningState | None = None
    provisioning_error: str | None = None
    has_profile: bool
    has_ref_id: bool
    placeholder_profile: bool = False
    provisioned_at: datetime | None = None


class ProvisioningRepairRequest(BaseModel):
    recreate: bool = Field(
        default=False,
        description="Replace an existing profile reference with a newly created profile",
    )
    display_name: str | None = None


class ProvisioningRepairResponse(BaseModel):
    workspace_id: str
    status: Literal["provisioned", "already_provisioned", "in_progress", "provisioning_failed"]
    has_profile: bool
    has_ref_id: bool
    attempts: int
    error: str | None = None
