from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from pagetree.core.database import get_db
from pagetree.models.user import User
from pagetree.routers.deps import get_current_user
from pagetree.schemas.block import BlockUpdate, BlockMove, BlockResponse
from pagetree.services import block_service

router = APIRouter(prefix="/blocks", tags=["blocks"])

@router.put("/{block_id}", response_model=BlockResponse)
def update_block(block_id: int, data: BlockUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Modifier le type ou le contenu d'un block"""
    return block_service.update_block(db, current_user.id, block_id, block_type=data.type, content=data.content)

@router.post("/{block_id}/move", response_model=BlockResponse)
def move_block(block_id: int, data: BlockMove, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Déplacer un block (parent, page et/ou ordre)"""
    return block_service.move_block(db, current_user.id, block_id, **data.model_dump(exclude_unset=True))

@router.delete("/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_block(block_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Supprimer un block et ses enfants"""
    block_service.delete_block(db, current_user.id, block_id)
