from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
from pagetree.core.database import get_db
from pagetree.models.user import User
from pagetree.routers.deps import get_current_user
from pagetree.schemas.workspace import (
    WorkspaceCreate, WorkspaceUpdate, WorkspaceResponse, MemberInvite, MemberRoleUpdate, MemberResponse
)
from pagetree.schemas.page import PageCreate, PageResponse, PageTreeNode, TrashPageResponse
from pagetree.schemas.database import DatabaseCreate
from pagetree.services import workspace_service, page_service, schema_service

router = APIRouter(prefix="/workspaces", tags=["workspaces"])

def _with_role(workspace, role) -> WorkspaceResponse:
    response = WorkspaceResponse.model_validate(workspace)
    response.role = role
    return response

@router.post("", response_model=WorkspaceResponse, status_code=status.HTTP_201_CREATED)
def create_workspace(data: WorkspaceCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    workspace, role = workspace_service.create_workspace(db, current_user.id, data.name, data.icon)
    return _with_role(workspace, role)

@router.get("", response_model=List[WorkspaceResponse])
def list_workspaces(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    # workspaces dont l'user est membre
    return [_with_role(ws, role) for ws, role in workspace_service.list_workspaces(db, current_user.id)]

@router.get("/{workspace_id}", response_model=WorkspaceResponse)
def get_workspace(workspace_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    role = workspace_service.get_member_role(db, workspace_id, current_user.id)
    return _with_role(workspace_service.get_workspace(db, workspace_id), role)

@router.put("/{workspace_id}", response_model=WorkspaceResponse)
def update_workspace(workspace_id: int, data: WorkspaceUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    workspace, role = workspace_service.update_workspace(db, current_user.id, workspace_id, data.name, data.icon)
    return _with_role(workspace, role)

@router.delete("/{workspace_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_workspace(workspace_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    workspace_service.delete_workspace(db, current_user.id, workspace_id)

# ---- membres ----

@router.get("/{workspace_id}/members", response_model=List[MemberResponse])
def list_members(workspace_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return workspace_service.list_members(db, current_user.id, workspace_id)

@router.post("/{workspace_id}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
def add_member(workspace_id: int, data: MemberInvite, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return workspace_service.add_member(db, current_user.id, workspace_id, data.email, data.role)

@router.put("/{workspace_id}/members/{user_id}", response_model=MemberResponse)
def update_member_role(workspace_id: int, user_id: int, data: MemberRoleUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return workspace_service.update_member_role(db, current_user.id, workspace_id, user_id, data.role)

@router.delete("/{workspace_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(workspace_id: int, user_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    workspace_service.remove_member(db, current_user.id, workspace_id, user_id)

# ---- contenu ----

@router.get("/{workspace_id}/pages", response_model=List[PageTreeNode])
def get_page_tree(workspace_id: int, trash: bool = False, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    # arbre complet; trash=true inclut les pages à la corbeille
    return page_service.get_page_tree(db, current_user.id, workspace_id, include_deleted=trash)

@router.post("/{workspace_id}/pages", response_model=PageResponse, status_code=status.HTTP_201_CREATED)
def create_page(workspace_id: int, data: PageCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return page_service.create_page(
        db, current_user.id, workspace_id,
        title=data.title, icon=data.icon, parent_id=data.parent_id, cover_image=data.cover_image
    )

@router.get("/{workspace_id}/trash", response_model=List[TrashPageResponse])
def get_trash(workspace_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return page_service.get_trash(db, current_user.id, workspace_id)

@router.post("/{workspace_id}/databases", response_model=PageResponse, status_code=status.HTTP_201_CREATED)
def create_database(workspace_id: int, data: DatabaseCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return schema_service.create_database(db, current_user.id, workspace_id, title=data.title, parent_id=data.parent_id)
