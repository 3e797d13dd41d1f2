from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime
from typing import Optional
from pagetree.models.workspace import WorkspaceRole

# Schemas pour les workspaces et leurs membres

class WorkspaceCreate(BaseModel):
    name: str = Field(min_length=1)
    icon: Optional[str] = "🏠"

class WorkspaceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    icon: Optional[str] = None

class WorkspaceResponse(BaseModel):
    id: int
    name: str
    icon: Optional[str]
    owner_id: int
    created_at: datetime
    role: Optional[WorkspaceRole] = None  # rôle de l'appelant

    model_config = ConfigDict(from_attributes=True)

class MemberInvite(BaseModel):
    email: EmailStr
    role: WorkspaceRole = WorkspaceRole.MEMBER

class MemberRoleUpdate(BaseModel):
    role: WorkspaceRole

class MemberResponse(BaseModel):
    workspace_id: int
    user_id: int
    role: WorkspaceRole
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)
