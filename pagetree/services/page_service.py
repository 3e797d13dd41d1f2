"""
Moteur de hiérarchie des pages.

Seul ce module écrit parent_id / order / is_deleted des pages. Chaque
opération vérifie le rôle de l'appelant, valide la structure, puis écrit
dans une seule unité atomique.
"""

import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from pagetree.core.config import settings
from pagetree.core.database import atomic, lock_workspace
from pagetree.core.errors import NotFound, CycleDetected, CrossTenantViolation, InvalidState
from pagetree.models.page import Page
from pagetree.models.block import Block
from pagetree.models.database_property import DatabaseProperty, RowValue, PropertyType
from pagetree.models.workspace import WorkspaceRole
from pagetree.schemas.block import BlockTreeNode
from pagetree.schemas.page import PageTreeNode
from pagetree.services.block_content import PAGE_REFERENCE_TYPES
from pagetree.services.event_service import publish_event
from pagetree.services.ordering import key_between
from pagetree.services.tree_service import build_page_tree, build_block_tree, sibling_sort_key
from pagetree.services.workspace_service import require_role

logger = logging.getLogger(__name__)

# distingue "parent_id absent" de "parent_id=None" (racine)
_UNSET = object()


# ========== LECTURE ==========

def get_page_or_404(db: Session, page_id: int, include_deleted: bool = False) -> Page:
    query = db.query(Page).filter(Page.id == page_id)
    if not include_deleted:
        query = query.filter(Page.is_deleted == False)
    page = query.first()
    if not page:
        raise NotFound("Page not found", field="page_id")
    return page


def get_page(db: Session, user_id: int, page_id: int) -> Page:
    page = get_page_or_404(db, page_id)
    require_role(db, page.workspace_id, user_id, WorkspaceRole.VIEWER)
    return page


def get_page_with_blocks(db: Session, user_id: int, page_id: int) -> Tuple[Page, List[BlockTreeNode]]:
    page = get_page(db, user_id, page_id)
    blocks = db.query(Block).filter(Block.page_id == page_id).all()
    return page, build_block_tree(blocks)


def get_page_tree(db: Session, user_id: int, workspace_id: int, include_deleted: bool = False) -> List[PageTreeNode]:
    logger.debug(f"Getting page tree for workspace: {workspace_id}")
    require_role(db, workspace_id, user_id, WorkspaceRole.VIEWER)

    query = db.query(Page).filter(Page.workspace_id == workspace_id)
    if not include_deleted:
        query = query.filter(Page.is_deleted == False)
    return build_page_tree(query.all())


def get_trash(db: Session, user_id: int, workspace_id: int) -> List[Page]:
    require_role(db, workspace_id, user_id, WorkspaceRole.VIEWER)
    return db.query(Page).filter(
        Page.workspace_id == workspace_id,
        Page.is_deleted == True
    ).order_by(Page.deleted_at.desc(), Page.id).all()


def is_ancestor(db: Session, ancestor_id: int, page_id: int) -> bool:
    """True si ancestor_id est strictement au-dessus de page_id (une page n'est pas son propre ancêtre)"""
    seen = set()
    current = db.query(Page.parent_id).filter(Page.id == page_id).scalar()
    while current is not None and current not in seen:
        if current == ancestor_id:
            return True
        seen.add(current)
        current = db.query(Page.parent_id).filter(Page.id == current).scalar()
    return False


def _descendant_pages(db: Session, page_id: int, live_only: bool = False) -> List[Page]:
    # parcours en largeur: les parents avant leurs enfants
    result = []
    frontier = [page_id]
    while frontier:
        query = db.query(Page).filter(Page.parent_id.in_(frontier))
        if live_only:
            query = query.filter(Page.is_deleted == False)
        children = sorted(query.all(), key=sibling_sort_key)
        result.extend(children)
        frontier = [child.id for child in children]
    return result


# ========== ORDRE ==========

def _sorted_siblings(db: Session, workspace_id: int, parent_id: Optional[int], exclude_id: Optional[int] = None) -> List[Page]:
    # pages supprimées incluses: elles gardent leur place si on les restaure
    query = db.query(Page).filter(Page.workspace_id == workspace_id, Page.parent_id == parent_id)
    if exclude_id is not None:
        query = query.filter(Page.id != exclude_id)
    # tri en Python: indépendant de la collation SQL
    return sorted(query.all(), key=sibling_sort_key)


def _key_after_last(siblings: List[Page]) -> str:
    if not siblings:
        return key_between(None, None)
    return key_between(siblings[-1].order, None)


def _key_after(siblings: List[Page], anchor: Page) -> str:
    higher = next((s.order for s in siblings if s.order > anchor.order), None)
    return key_between(anchor.order, higher)


def _validate_parent(db: Session, parent_id: int, workspace_id: int) -> Page:
    parent = db.query(Page).filter(Page.id == parent_id).first()
    if not parent:
        raise NotFound("Parent page not found", field="parent_id")
    if parent.workspace_id != workspace_id:
        raise CrossTenantViolation("Parent page belongs to another workspace", field="parent_id")
    if parent.is_deleted:
        raise InvalidState("Parent page is in the trash", field="parent_id")
    return parent


# ========== ÉCRITURE ==========

def create_page(db: Session, user_id: int, workspace_id: int, title: Optional[str] = None,
                icon: Optional[str] = None, parent_id: Optional[int] = None,
                cover_image: Optional[str] = None, is_database: bool = False) -> Page:
    logger.debug(f"Creating page in workspace: {workspace_id}")
    require_role(db, workspace_id, user_id, WorkspaceRole.MEMBER)

    with atomic(db):
        page = insert_page(db, user_id, workspace_id, parent_id, title=title, icon=icon,
                           cover_image=cover_image, is_database=is_database)

    db.refresh(page)
    publish_event("page", page.id, "create", workspace_id=workspace_id,
                  affected_parent_id=parent_id, new_order=page.order)
    return page


def insert_page(db: Session, user_id: int, workspace_id: int, parent_id: Optional[int],
                title: Optional[str] = None, icon: Optional[str] = None,
                cover_image: Optional[str] = None, is_database: bool = False) -> Page:
    """Insère une page en dernière position de son groupe de frères.

    À appeler dans une unité atomique ouverte par l'appelant (rôle déjà vérifié).
    """
    lock_workspace(db, workspace_id)
    if parent_id is not None:
        _validate_parent(db, parent_id, workspace_id)

    siblings = _sorted_siblings(db, workspace_id, parent_id)
    page = Page(
        workspace_id=workspace_id,
        parent_id=parent_id,
        title=title or "Untitled",
        icon=icon,
        cover_image=cover_image,
        is_database=is_database,
        is_deleted=False,
        order=_key_after_last(siblings),
        created_by_id=user_id,
        updated_by_id=user_id,
    )
    db.add(page)
    db.flush()
    return page


def update_page(db: Session, user_id: int, page_id: int, title: Optional[str] = None,
                icon: Optional[str] = None, cover_image: Optional[str] = None,
                is_template: Optional[bool] = None) -> Page:
    # jamais parent/order ici: c'est le rôle de move_page
    logger.debug(f"Updating page: {page_id}")
    page = get_page_or_404(db, page_id)
    require_role(db, page.workspace_id, user_id, WorkspaceRole.MEMBER)

    with atomic(db):
        if title is not None:
            page.title = title
        if icon is not None:
            page.icon = icon
        if cover_image is not None:
            page.cover_image = cover_image
        if is_template is not None:
            page.is_template = is_template
        page.updated_by_id = user_id
        page.updated_at = datetime.utcnow()

    db.refresh(page)
    publish_event("page", page.id, "update", workspace_id=page.workspace_id, affected_parent_id=page.parent_id)
    return page


def move_page(db: Session, user_id: int, page_id: int, parent_id=_UNSET,
              workspace_id: Optional[int] = None, order: Optional[str] = None,
              after_id: Optional[int] = None) -> Page:
    """Déplace une page (parent, workspace et/ou position).

    L'ordre est recalculé à partir des voisins lus sous verrou; en cas
    d'échec transitoire du store (conflit d'écriture) on recommence une fois.
    """
    attempts_left = settings.MOVE_RETRY_ATTEMPTS
    while True:
        try:
            page = _move_page_once(db, user_id, page_id, parent_id, workspace_id, order, after_id)
            break
        except OperationalError as e:
            db.rollback()
            if attempts_left <= 0:
                raise
            attempts_left -= 1
            logger.warning(f"Retrying move of page {page_id} after store failure: {e}")

    logger.info(f"Moved page {page.id} to workspace {page.workspace_id}, parent {page.parent_id}")
    publish_event("page", page.id, "move", workspace_id=page.workspace_id,
                  affected_parent_id=page.parent_id, new_order=page.order)
    return page


def _move_page_once(db: Session, user_id: int, page_id: int, parent_id, workspace_id: Optional[int],
                    order: Optional[str], after_id: Optional[int]) -> Page:
    page = get_page_or_404(db, page_id)
    source_workspace = page.workspace_id
    require_role(db, source_workspace, user_id, WorkspaceRole.MEMBER)

    target_workspace = workspace_id if workspace_id is not None else source_workspace
    if target_workspace != source_workspace:
        # l'appelant doit aussi être membre du workspace de destination
        require_role(db, target_workspace, user_id, WorkspaceRole.MEMBER)

    with atomic(db):
        for locked_id in sorted({source_workspace, target_workspace}):
            lock_workspace(db, locked_id)

        # état frais: les vérifications se font au moment du commit, pas de la requête
        db.refresh(page)
        if page.is_deleted or page.workspace_id != source_workspace:
            raise InvalidState("Page changed concurrently", field="page_id")

        if parent_id is _UNSET:
            # changement de workspace sans parent => racine de la destination
            target_parent = page.parent_id if target_workspace == source_workspace else None
        else:
            target_parent = parent_id

        if target_parent is not None:
            if target_parent == page.id or is_ancestor(db, page.id, target_parent):
                raise CycleDetected("Cannot move a page into itself or its own descendant", field="parent_id")
            _validate_parent(db, target_parent, target_workspace)

        same_group = target_parent == page.parent_id and target_workspace == source_workspace
        siblings = _sorted_siblings(db, target_workspace, target_parent, exclude_id=page.id)

        if order is not None:
            new_order = order
        elif after_id is not None:
            anchor = next((s for s in siblings if s.id == after_id), None)
            if anchor is None:
                raise NotFound("Sibling page not found in destination", field="after_id")
            new_order = _key_after(siblings, anchor)
        elif same_group:
            new_order = page.order
        else:
            new_order = _key_after_last(siblings)

        page.parent_id = target_parent
        page.order = new_order
        page.updated_by_id = user_id
        page.updated_at = datetime.utcnow()

        if target_workspace != source_workspace:
            # tout le sous-arbre suit la page
            page.workspace_id = target_workspace
            for descendant in _descendant_pages(db, page.id):
                descendant.workspace_id = target_workspace

    db.refresh(page)
    return page


def soft_delete_page(db: Session, user_id: int, page_id: int) -> Page:
    """Met la page et ses descendants vivants à la corbeille.

    Les blocks ne sont pas marqués: leur visibilité dérive de celle de la page.
    """
    logger.debug(f"Soft deleting page: {page_id}")
    page = get_page_or_404(db, page_id)
    require_role(db, page.workspace_id, user_id, WorkspaceRole.MEMBER)

    batch = str(uuid.uuid4())
    now = datetime.utcnow()
    with atomic(db):
        lock_workspace(db, page.workspace_id)
        # les descendants déjà à la corbeille gardent leur propre lot
        flagged = [page] + _descendant_pages(db, page.id, live_only=True)
        for target in flagged:
            target.is_deleted = True
            target.deleted_at = now
            target.deleted_batch = batch
            target.updated_by_id = user_id

    logger.info(f"Soft deleted page {page_id} with {len(flagged) - 1} descendants")
    db.refresh(page)
    publish_event("page", page.id, "delete", workspace_id=page.workspace_id, affected_parent_id=page.parent_id)
    return page


def restore_page(db: Session, user_id: int, page_id: int) -> Page:
    """Restaure la page, ce qui a été supprimé avec elle, et ses ancêtres"""
    logger.debug(f"Restoring page: {page_id}")
    page = get_page_or_404(db, page_id, include_deleted=True)
    require_role(db, page.workspace_id, user_id, WorkspaceRole.MEMBER)
    if not page.is_deleted:
        raise InvalidState("Page is not in the trash", field="page_id")

    with atomic(db):
        lock_workspace(db, page.workspace_id)
        restored = [page]

        # descendants du même appel de suppression
        if page.deleted_batch is not None:
            frontier = [page.id]
            while frontier:
                children = db.query(Page).filter(
                    Page.parent_id.in_(frontier),
                    Page.is_deleted == True,
                    Page.deleted_batch == page.deleted_batch
                ).all()
                restored.extend(children)
                frontier = [child.id for child in children]

        # une page restaurée doit rester atteignable depuis la racine
        seen = {page.id}
        parent_id = page.parent_id
        while parent_id is not None and parent_id not in seen:
            seen.add(parent_id)
            parent = db.query(Page).filter(Page.id == parent_id).first()
            if parent is None:
                break
            if parent.is_deleted:
                restored.append(parent)
            parent_id = parent.parent_id

        for target in restored:
            target.is_deleted = False
            target.deleted_at = None
            target.deleted_batch = None
            target.updated_by_id = user_id

    logger.info(f"Restored page {page_id} ({len(restored)} pages)")
    for target in restored:
        publish_event("page", target.id, "restore", workspace_id=target.workspace_id,
                      affected_parent_id=target.parent_id, new_order=target.order)
    db.refresh(page)
    return page


def duplicate_page(db: Session, user_id: int, page_id: int) -> Page:
    """Copie profonde: page, blocks, sous-pages, et schéma/valeurs des bases.

    Chaque page copiée (avec ses blocks) est une unité atomique; un gros
    sous-arbre ne garde donc pas une transaction ouverte du début à la fin.
    """
    logger.debug(f"Duplicating page: {page_id}")
    page = get_page_or_404(db, page_id)
    require_role(db, page.workspace_id, user_id, WorkspaceRole.MEMBER)

    page_map: Dict[int, int] = {}
    property_map: Dict[int, int] = {}

    with atomic(db):
        lock_workspace(db, page.workspace_id)
        siblings = _sorted_siblings(db, page.workspace_id, page.parent_id)
        copy = _copy_page_unit(db, user_id, page, page.parent_id, _key_after(siblings, page),
                               f"{page.title} (Copy)", property_map)
    page_map[page.id] = copy.id

    queue = [page.id]
    while queue:
        source_id = queue.pop(0)
        children = sorted(
            db.query(Page).filter(Page.parent_id == source_id, Page.is_deleted == False).all(),
            key=sibling_sort_key
        )
        for child in children:
            with atomic(db):
                # l'ordre relatif des enfants est conservé tel quel
                child_copy = _copy_page_unit(db, user_id, child, page_map[source_id], child.order,
                                             child.title, property_map)
            page_map[child.id] = child_copy.id
            queue.append(child.id)

    with atomic(db):
        _remap_page_references(db, page_map)

    logger.info(f"Duplicated page {page_id} into {copy.id} ({len(page_map)} pages)")
    for source_id, copy_id in page_map.items():
        copied = db.query(Page).filter(Page.id == copy_id).first()
        publish_event("page", copied.id, "create", workspace_id=copied.workspace_id,
                      affected_parent_id=copied.parent_id, new_order=copied.order)
    db.refresh(copy)
    return copy


def _copy_page_unit(db: Session, user_id: int, source: Page, parent_id: Optional[int], order: str,
                    title: str, property_map: Dict[int, int]) -> Page:
    copy = Page(
        workspace_id=source.workspace_id,
        parent_id=parent_id,
        title=title,
        icon=source.icon,
        cover_image=source.cover_image,
        is_database=source.is_database,
        is_template=source.is_template,
        is_deleted=False,
        order=order,
        created_by_id=user_id,
        updated_by_id=user_id,
    )
    db.add(copy)
    db.flush()

    _copy_blocks(db, user_id, source.id, copy.id)
    if source.is_database:
        _copy_properties(db, source.id, copy.id, property_map)
    _copy_row_values(db, source.id, copy.id, property_map)
    return copy


def _copy_blocks(db: Session, user_id: int, source_page_id: int, copy_page_id: int) -> None:
    blocks = db.query(Block).filter(Block.page_id == source_page_id).all()
    by_parent: Dict[Optional[int], List[Block]] = {}
    for block in blocks:
        by_parent.setdefault(block.parent_block_id, []).append(block)

    block_map: Dict[int, int] = {}
    # parents avant enfants pour connaître le nouvel id du parent
    frontier: List[Optional[int]] = [None]
    while frontier:
        next_frontier = []
        for old_parent in frontier:
            for block in sorted(by_parent.get(old_parent, []), key=sibling_sort_key):
                new_block = Block(
                    type=block.type,
                    page_id=copy_page_id,
                    parent_block_id=block_map.get(old_parent) if old_parent is not None else None,
                    content=dict(block.content or {}),
                    order=block.order,
                    created_by_id=user_id,
                )
                db.add(new_block)
                db.flush()
                block_map[block.id] = new_block.id
                next_frontier.append(block.id)
        frontier = next_frontier


def _copy_properties(db: Session, source_page_id: int, copy_page_id: int, property_map: Dict[int, int]) -> None:
    properties = db.query(DatabaseProperty).filter(DatabaseProperty.page_id == source_page_id).all()
    copies = []
    for prop in properties:
        new_prop = DatabaseProperty(
            page_id=copy_page_id,
            name=prop.name,
            type=prop.type,
            config=dict(prop.config or {}),
            order=prop.order,
        )
        db.add(new_prop)
        copies.append((prop, new_prop))
    db.flush()

    for prop, new_prop in copies:
        property_map[prop.id] = new_prop.id

    # une relation/rollup vers la base elle-même pointe vers la copie
    for prop, new_prop in copies:
        config = dict(new_prop.config)
        if prop.type == PropertyType.RELATION.value and config.get("database_id") == source_page_id:
            config["database_id"] = copy_page_id
        if prop.type == PropertyType.ROLLUP.value:
            for key in ("relation_property_id", "target_property_id"):
                if config.get(key) in property_map:
                    config[key] = property_map[config[key]]
        new_prop.config = config


def _copy_row_values(db: Session, source_row_id: int, copy_row_id: int, property_map: Dict[int, int]) -> None:
    values = db.query(RowValue).filter(RowValue.row_id == source_row_id).all()
    for value in values:
        db.add(RowValue(
            row_id=copy_row_id,
            property_id=property_map.get(value.property_id, value.property_id),
            value=value.value,
        ))


def _remap_page_references(db: Session, page_map: Dict[int, int]) -> None:
    # les blocks child_page copiés pointent vers les pages copiées
    blocks = db.query(Block).filter(
        Block.page_id.in_(list(page_map.values())),
        Block.type.in_([block_type.value for block_type in PAGE_REFERENCE_TYPES])
    ).all()
    for block in blocks:
        referenced = (block.content or {}).get("page_id")
        if referenced in page_map:
            block.content = {**block.content, "page_id": page_map[referenced]}


def permanently_reap(db: Session, user_id: int, page_id: int) -> None:
    """Suppression définitive d'une page à la corbeille et de tout son sous-arbre"""
    logger.debug(f"Reaping page: {page_id}")
    page = get_page_or_404(db, page_id, include_deleted=True)
    require_role(db, page.workspace_id, user_id, WorkspaceRole.ADMIN)
    if not page.is_deleted:
        raise InvalidState("Only pages in the trash can be permanently deleted", field="page_id")

    workspace_id = page.workspace_id
    parent_id = page.parent_id
    doomed = [page.id] + [descendant.id for descendant in _descendant_pages(db, page.id)]

    # du plus profond au plus haut: une interruption ne laisse jamais d'orphelin
    for doomed_id in reversed(doomed):
        with atomic(db):
            _delete_page_records(db, doomed_id)

    db.expire_all()
    logger.info(f"Permanently deleted page {page_id} ({len(doomed)} pages)")
    publish_event("page", page_id, "delete", workspace_id=workspace_id, affected_parent_id=parent_id)


def _delete_page_records(db: Session, page_id: int) -> None:
    property_ids = [row.id for row in db.query(DatabaseProperty.id).filter(DatabaseProperty.page_id == page_id).all()]
    if property_ids:
        db.query(RowValue).filter(RowValue.property_id.in_(property_ids)).delete(synchronize_session=False)
        db.query(DatabaseProperty).filter(DatabaseProperty.id.in_(property_ids)).delete(synchronize_session=False)
    db.query(RowValue).filter(RowValue.row_id == page_id).delete(synchronize_session=False)
    db.query(Block).filter(Block.page_id == page_id).delete(synchronize_session=False)
    db.query(Page).filter(Page.id == page_id).delete(synchronize_session=False)
