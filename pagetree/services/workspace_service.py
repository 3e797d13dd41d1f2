"""Workspace service: membres, rôles et cycle de vie des workspaces"""

import logging
from sqlalchemy import select, or_
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
from pagetree.core.database import atomic
from pagetree.core.errors import NotFound, Forbidden, InvalidState
from pagetree.models.user import User
from pagetree.models.workspace import Workspace, WorkspaceMember, WorkspaceRole, ROLE_RANK
from pagetree.models.page import Page
from pagetree.models.block import Block
from pagetree.models.database_property import DatabaseProperty, RowValue
from pagetree.services.event_service import publish_event

logger = logging.getLogger(__name__)


def get_workspace(db: Session, workspace_id: int) -> Workspace:
    workspace = db.query(Workspace).filter(Workspace.id == workspace_id).first()
    if not workspace:
        raise NotFound("Workspace not found", field="workspace_id")
    return workspace


def get_member_role(db: Session, workspace_id: int, user_id: int) -> WorkspaceRole:
    get_workspace(db, workspace_id)
    member = db.query(WorkspaceMember).filter(
        WorkspaceMember.workspace_id == workspace_id,
        WorkspaceMember.user_id == user_id
    ).first()
    if not member:
        raise Forbidden("You are not a member of this workspace", field="workspace_id")
    return WorkspaceRole(member.role)


def require_role(db: Session, workspace_id: int, user_id: int, minimum: WorkspaceRole) -> WorkspaceRole:
    role = get_member_role(db, workspace_id, user_id)
    if ROLE_RANK[role] < ROLE_RANK[minimum]:
        raise Forbidden(f"Role '{role.value}' cannot perform this action (requires {minimum.value})")
    return role


def create_workspace(db: Session, user_id: int, name: str, icon: Optional[str] = None) -> Tuple[Workspace, WorkspaceRole]:
    logger.debug(f"Creating workspace for user: {user_id}")
    with atomic(db):
        workspace = Workspace(name=name, icon=icon, owner_id=user_id)
        db.add(workspace)
        db.flush()
        # le créateur devient owner
        db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user_id, role=WorkspaceRole.OWNER.value))
    db.refresh(workspace)
    publish_event("workspace", workspace.id, "create", workspace_id=workspace.id)
    return workspace, WorkspaceRole.OWNER


def list_workspaces(db: Session, user_id: int) -> List[Tuple[Workspace, WorkspaceRole]]:
    rows = db.query(Workspace, WorkspaceMember.role).join(
        WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id
    ).filter(
        WorkspaceMember.user_id == user_id
    ).order_by(Workspace.id).all()
    return [(workspace, WorkspaceRole(role)) for workspace, role in rows]


def update_workspace(db: Session, user_id: int, workspace_id: int,
                     name: Optional[str] = None, icon: Optional[str] = None) -> Tuple[Workspace, WorkspaceRole]:
    role = require_role(db, workspace_id, user_id, WorkspaceRole.ADMIN)
    workspace = get_workspace(db, workspace_id)
    with atomic(db):
        if name is not None:
            workspace.name = name
        if icon is not None:
            workspace.icon = icon
    db.refresh(workspace)
    publish_event("workspace", workspace.id, "update", workspace_id=workspace.id)
    return workspace, role


def delete_workspace(db: Session, user_id: int, workspace_id: int) -> None:
    """Suppression définitive: pages, blocks, propriétés et valeurs partent avec"""
    require_role(db, workspace_id, user_id, WorkspaceRole.OWNER)
    logger.info(f"Deleting workspace {workspace_id}")

    with atomic(db):
        page_ids = select(Page.id).where(Page.workspace_id == workspace_id)
        property_ids = select(DatabaseProperty.id).where(DatabaseProperty.page_id.in_(page_ids))

        db.query(RowValue).filter(
            or_(RowValue.row_id.in_(page_ids), RowValue.property_id.in_(property_ids))
        ).delete(synchronize_session=False)
        db.query(DatabaseProperty).filter(DatabaseProperty.page_id.in_(page_ids)).delete(synchronize_session=False)
        db.query(Block).filter(Block.page_id.in_(page_ids)).delete(synchronize_session=False)
        db.query(Page).filter(Page.workspace_id == workspace_id).delete(synchronize_session=False)
        db.query(WorkspaceMember).filter(WorkspaceMember.workspace_id == workspace_id).delete(synchronize_session=False)
        db.query(Workspace).filter(Workspace.id == workspace_id).delete(synchronize_session=False)

    db.expire_all()
    publish_event("workspace", workspace_id, "delete", workspace_id=workspace_id)


def list_members(db: Session, user_id: int, workspace_id: int) -> List[WorkspaceMember]:
    get_member_role(db, workspace_id, user_id)
    return db.query(WorkspaceMember).filter(
        WorkspaceMember.workspace_id == workspace_id
    ).order_by(WorkspaceMember.id).all()


def add_member(db: Session, user_id: int, workspace_id: int, email: str, role: WorkspaceRole) -> WorkspaceMember:
    require_role(db, workspace_id, user_id, WorkspaceRole.ADMIN)
    if role == WorkspaceRole.OWNER:
        raise Forbidden("Cannot assign owner role", field="role")

    invitee = db.query(User).filter(User.email == email).first()
    if not invitee:
        raise NotFound("User not found", field="email")

    existing = db.query(WorkspaceMember).filter(
        WorkspaceMember.workspace_id == workspace_id,
        WorkspaceMember.user_id == invitee.id
    ).first()
    if existing:
        raise InvalidState("User is already a member of this workspace", field="email")

    with atomic(db):
        member = WorkspaceMember(workspace_id=workspace_id, user_id=invitee.id, role=role.value)
        db.add(member)
    db.refresh(member)
    return member


def _get_membership(db: Session, workspace_id: int, member_user_id: int) -> WorkspaceMember:
    member = db.query(WorkspaceMember).filter(
        WorkspaceMember.workspace_id == workspace_id,
        WorkspaceMember.user_id == member_user_id
    ).first()
    if not member:
        raise NotFound("Member not found", field="user_id")
    return member


def update_member_role(db: Session, user_id: int, workspace_id: int, member_user_id: int, role: WorkspaceRole) -> WorkspaceMember:
    require_role(db, workspace_id, user_id, WorkspaceRole.ADMIN)
    member = _get_membership(db, workspace_id, member_user_id)

    if member.role == WorkspaceRole.OWNER.value:
        raise Forbidden("Cannot change the owner role", field="user_id")
    if role == WorkspaceRole.OWNER:
        raise Forbidden("Cannot assign owner role", field="role")

    with atomic(db):
        member.role = role.value
    db.refresh(member)
    return member


def remove_member(db: Session, user_id: int, workspace_id: int, member_user_id: int) -> None:
    require_role(db, workspace_id, user_id, WorkspaceRole.ADMIN)
    member = _get_membership(db, workspace_id, member_user_id)
    if member.role == WorkspaceRole.OWNER.value:
        raise Forbidden("Cannot remove the workspace owner", field="user_id")
    with atomic(db):
        db.delete(member)
