"""Pydantic schemas for organizations, memberships, and invitations.

Learn: Pydantic v2 models validate request/response data. Separate
"Create" schemas (input) from "Read" schemas (output) for clean APIs.
Invitation payloads keep the camelCase keys web clients already send
(userData, inviteUrl, teamMember) via aliases.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# ─── Organizations ──────────────────────────────────────

class OrgCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    industry: Optional[str] = Field(None, max_length=100)


class OrgRead(BaseModel):
    id: uuid.UUID
    name: str
    industry: Optional[str] = None
    owner_id: uuid.UUID
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Members ────────────────────────────────────────────

class MemberRead(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    user_id: uuid.UUID
    name: str
    email: str
    role: str
    department: Optional[str] = None
    phone: Optional[str] = None
    permissions: list[str] = []
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class MemberUpdate(BaseModel):
    role: Optional[str] = Field(None, max_length=50)
    department: Optional[str] = Field(None, max_length=50)
    phone: Optional[str] = Field(None, max_length=50)
    permissions: Optional[list[str]] = None


class MemberRemoved(BaseModel):
    message: str


class AccessRead(BaseModel):
    org_id: uuid.UUID
    is_owner: bool
    permissions: list[str]
    role: Optional[str] = None
    department: Optional[str] = None

    model_config = {"from_attributes": True}


# ─── Invitations ────────────────────────────────────────

class InviteCreate(BaseModel):
    email: str
    org_id: uuid.UUID
    role: str = Field(..., min_length=1, max_length=50)
    department: Optional[str] = Field(None, max_length=50)
    phone: Optional[str] = Field(None, max_length=50)
    permissions: Optional[list[str]] = None


class InviteCreated(BaseModel):
    message: str
    invite_id: uuid.UUID = Field(serialization_alias="inviteId")
    invite_url: Optional[str] = Field(None, serialization_alias="inviteUrl")


class InviteRead(BaseModel):
    id: uuid.UUID
    email: str
    org_id: uuid.UUID
    role: str
    department: Optional[str] = None
    permissions: list[str] = []
    expires_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class InviteDetails(BaseModel):
    email: str
    role: str
    department: Optional[str] = None
    org_id: uuid.UUID
    org_name: Optional[str] = None
    inviter_name: str
    permissions: list[str] = []
    expires_at: datetime
    user_exists: bool
    user_name: Optional[str] = None


class NewUserFields(BaseModel):
    name: Optional[str] = None
    password: Optional[str] = None


class AcceptInviteRequest(BaseModel):
    token: Optional[str] = None
    user_data: Optional[NewUserFields] = Field(None, alias="userData")

    model_config = {"populate_by_name": True}


class AcceptInviteResponse(BaseModel):
    message: str
    team_member: MemberRead = Field(serialization_alias="teamMember")


# ─── Audit trail ────────────────────────────────────────

class EventRead(BaseModel):
    id: int
    type: str
    data: dict
    metadata: dict = Field(default_factory=dict, validation_alias="meta")
    created_at: datetime

    model_config = {"from_attributes": True}
