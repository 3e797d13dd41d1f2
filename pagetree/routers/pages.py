from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from pagetree.core.database import get_db
from pagetree.models.user import User
from pagetree.routers.deps import get_current_user
from pagetree.schemas.page import PageUpdate, PageMove, PageResponse, PageWithBlocks
from pagetree.schemas.block import BlockCreate, BlockResponse
from pagetree.services import page_service, block_service

router = APIRouter(prefix="/pages", tags=["pages"])

@router.get("/{page_id}", response_model=PageWithBlocks)
def get_page(page_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    # page + arbre de ses blocks
    page, blocks = page_service.get_page_with_blocks(db, current_user.id, page_id)
    return {"page": page, "blocks": blocks}

@router.put("/{page_id}", response_model=PageResponse)
def update_page(page_id: int, data: PageUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return page_service.update_page(
        db, current_user.id, page_id,
        title=data.title, icon=data.icon, cover_image=data.cover_image, is_template=data.is_template
    )

@router.post("/{page_id}/move", response_model=PageResponse)
def move_page(page_id: int, data: PageMove, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    # seuls les champs envoyés comptent: parent_id absent != parent_id null
    return page_service.move_page(db, current_user.id, page_id, **data.model_dump(exclude_unset=True))

@router.delete("/{page_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_page(page_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    # corbeille, pas de suppression définitive
    page_service.soft_delete_page(db, current_user.id, page_id)

@router.post("/{page_id}/restore", response_model=PageResponse)
def restore_page(page_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return page_service.restore_page(db, current_user.id, page_id)

@router.post("/{page_id}/duplicate", response_model=PageResponse, status_code=status.HTTP_201_CREATED)
def duplicate_page(page_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return page_service.duplicate_page(db, current_user.id, page_id)

@router.delete("/{page_id}/permanent", status_code=status.HTTP_204_NO_CONTENT)
def reap_page(page_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    page_service.permanently_reap(db, current_user.id, page_id)

@router.post("/{page_id}/blocks", response_model=BlockResponse, status_code=status.HTTP_201_CREATED)
def create_block(page_id: int, data: BlockCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Créer un block dans une page"""
    return block_service.create_block(
        db, current_user.id, page_id,
        block_type=data.type, content=data.content, parent_block_id=data.parent_block_id, order=data.order
    )
