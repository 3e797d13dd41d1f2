"""
Moteur de hiérarchie des blocks.

Les blocks utilisent un ordre entier (dernier frère + 1) et une
suppression définitive en cascade; leur état "corbeille" dérive de leur page.
"""

import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from pagetree.core.config import settings
from pagetree.core.database import atomic, lock_workspace
from pagetree.core.errors import NotFound, CycleDetected, CrossTenantViolation
from pagetree.models.block import Block, BlockType
from pagetree.models.page import Page
from pagetree.models.workspace import WorkspaceRole
from pagetree.services.block_content import validate_content, PAGE_REFERENCE_TYPES
from pagetree.services.event_service import publish_event
from pagetree.services.workspace_service import require_role

logger = logging.getLogger(__name__)

_UNSET = object()


def _get_live_page(db: Session, page_id: int, field: str = "page_id") -> Page:
    page = db.query(Page).filter(Page.id == page_id, Page.is_deleted == False).first()
    if not page:
        raise NotFound("Page not found", field=field)
    return page


def get_block_or_404(db: Session, block_id: int) -> Block:
    block = db.query(Block).filter(Block.id == block_id).first()
    if not block:
        raise NotFound("Block not found", field="block_id")
    return block


def _next_order(db: Session, page_id: int, parent_block_id: Optional[int], exclude_id: Optional[int] = None) -> int:
    query = db.query(func.max(Block.order)).filter(
        Block.page_id == page_id,
        Block.parent_block_id == parent_block_id
    )
    if exclude_id is not None:
        query = query.filter(Block.id != exclude_id)
    last = query.scalar()
    return (last if last is not None else 0) + 1


def _validate_parent_block(db: Session, parent_block_id: int, page_id: int) -> Block:
    parent = db.query(Block).filter(Block.id == parent_block_id).first()
    if not parent:
        raise NotFound("Parent block not found", field="parent_block_id")
    if parent.page_id != page_id:
        raise CrossTenantViolation("Parent block belongs to another page", field="parent_block_id")
    return parent


def _check_page_reference(db: Session, block_type: BlockType, content: dict, page: Page) -> None:
    if BlockType(block_type) not in PAGE_REFERENCE_TYPES:
        return
    referenced = db.query(Page).filter(Page.id == content["page_id"]).first()
    if not referenced:
        raise NotFound("Referenced page not found", field="content.page_id")
    if referenced.workspace_id != page.workspace_id:
        raise CrossTenantViolation("Referenced page belongs to another workspace", field="content.page_id")


def is_block_ancestor(db: Session, ancestor_id: int, block_id: int) -> bool:
    seen = set()
    current = db.query(Block.parent_block_id).filter(Block.id == block_id).scalar()
    while current is not None and current not in seen:
        if current == ancestor_id:
            return True
        seen.add(current)
        current = db.query(Block.parent_block_id).filter(Block.id == current).scalar()
    return False


def _descendant_blocks(db: Session, block_id: int) -> List[Block]:
    result = []
    frontier = [block_id]
    while frontier:
        children = db.query(Block).filter(Block.parent_block_id.in_(frontier)).all()
        result.extend(children)
        frontier = [child.id for child in children]
    return result


def list_blocks(db: Session, user_id: int, page_id: int) -> List[Block]:
    page = _get_live_page(db, page_id)
    require_role(db, page.workspace_id, user_id, WorkspaceRole.VIEWER)
    return sorted(db.query(Block).filter(Block.page_id == page_id).all(), key=lambda b: (b.order, b.id))


def create_block(db: Session, user_id: int, page_id: int, block_type: BlockType = BlockType.PARAGRAPH,
                 content: Optional[dict] = None, parent_block_id: Optional[int] = None,
                 order: Optional[int] = None) -> Block:
    logger.debug(f"Creating block in page: {page_id}")
    page = _get_live_page(db, page_id)
    require_role(db, page.workspace_id, user_id, WorkspaceRole.MEMBER)

    normalized = validate_content(block_type, content)
    _check_page_reference(db, block_type, normalized, page)

    with atomic(db):
        lock_workspace(db, page.workspace_id)
        if parent_block_id is not None:
            _validate_parent_block(db, parent_block_id, page_id)
        if order is None:
            order = _next_order(db, page_id, parent_block_id)

        block = Block(
            type=BlockType(block_type).value,
            page_id=page_id,
            parent_block_id=parent_block_id,
            content=normalized,
            order=order,
            created_by_id=user_id,
        )
        db.add(block)

    db.refresh(block)
    publish_event("block", block.id, "create", workspace_id=page.workspace_id, page_id=page_id,
                  affected_parent_id=parent_block_id, new_order=block.order)
    return block


def update_block(db: Session, user_id: int, block_id: int, block_type: Optional[BlockType] = None,
                 content: Optional[dict] = None) -> Block:
    logger.debug(f"Updating block: {block_id}")
    block = get_block_or_404(db, block_id)
    page = _get_live_page(db, block.page_id)
    require_role(db, page.workspace_id, user_id, WorkspaceRole.MEMBER)

    new_type = BlockType(block_type) if block_type is not None else BlockType(block.type)
    # un changement de type revalide le contenu existant
    normalized = validate_content(new_type, content if content is not None else block.content)
    _check_page_reference(db, new_type, normalized, page)

    with atomic(db):
        block.type = new_type.value
        block.content = normalized
        block.updated_at = datetime.utcnow()

    db.refresh(block)
    publish_event("block", block.id, "update", workspace_id=page.workspace_id, page_id=block.page_id,
                  affected_parent_id=block.parent_block_id)
    return block


def move_block(db: Session, user_id: int, block_id: int, parent_block_id=_UNSET,
               page_id: Optional[int] = None, order: Optional[int] = None) -> Block:
    attempts_left = settings.MOVE_RETRY_ATTEMPTS
    while True:
        try:
            block, workspace_id = _move_block_once(db, user_id, block_id, parent_block_id, page_id, order)
            break
        except OperationalError as e:
            db.rollback()
            if attempts_left <= 0:
                raise
            attempts_left -= 1
            logger.warning(f"Retrying move of block {block_id} after store failure: {e}")

    logger.info(f"Moved block {block.id} to page {block.page_id}, parent {block.parent_block_id}")
    publish_event("block", block.id, "move", workspace_id=workspace_id, page_id=block.page_id,
                  affected_parent_id=block.parent_block_id, new_order=block.order)
    return block


def _move_block_once(db: Session, user_id: int, block_id: int, parent_block_id, page_id: Optional[int],
                     order: Optional[int]):
    block = get_block_or_404(db, block_id)
    source_page = _get_live_page(db, block.page_id)
    require_role(db, source_page.workspace_id, user_id, WorkspaceRole.MEMBER)

    target_page = source_page
    if page_id is not None and page_id != block.page_id:
        target_page = _get_live_page(db, page_id)
        require_role(db, target_page.workspace_id, user_id, WorkspaceRole.MEMBER)

    with atomic(db):
        for locked_id in sorted({source_page.workspace_id, target_page.workspace_id}):
            lock_workspace(db, locked_id)
        db.refresh(block)

        crosses_pages = target_page.id != block.page_id
        if parent_block_id is _UNSET:
            # changement de page sans parent => racine de la page cible
            target_parent = None if crosses_pages else block.parent_block_id
        else:
            target_parent = parent_block_id

        if target_parent is not None:
            if target_parent == block.id or is_block_ancestor(db, block.id, target_parent):
                raise CycleDetected("Cannot move a block into itself or its own descendant", field="parent_block_id")
            _validate_parent_block(db, target_parent, target_page.id)

        same_group = not crosses_pages and target_parent == block.parent_block_id
        if order is not None:
            new_order = order
        elif same_group:
            new_order = block.order
        else:
            new_order = _next_order(db, target_page.id, target_parent, exclude_id=block.id)

        if crosses_pages:
            # les descendants doivent rester joignables par la page cible
            for descendant in _descendant_blocks(db, block.id):
                descendant.page_id = target_page.id
            block.page_id = target_page.id

        block.parent_block_id = target_parent
        block.order = new_order
        block.updated_at = datetime.utcnow()

    db.refresh(block)
    return block, target_page.workspace_id


def delete_block(db: Session, user_id: int, block_id: int) -> None:
    """Suppression définitive du block et de ses descendants"""
    logger.debug(f"Deleting block: {block_id}")
    block = get_block_or_404(db, block_id)
    page = _get_live_page(db, block.page_id)
    require_role(db, page.workspace_id, user_id, WorkspaceRole.MEMBER)

    parent_block_id = block.parent_block_id
    with atomic(db):
        doomed = _descendant_blocks(db, block.id)
        # enfants d'abord
        for descendant in reversed(doomed):
            db.delete(descendant)
            db.flush()
        db.delete(block)

    publish_event("block", block_id, "delete", workspace_id=page.workspace_id, page_id=page.id,
                  affected_parent_id=parent_block_id)
