from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional, Any, List
from pagetree.models.block import BlockType

class BlockCreate(BaseModel):
    """Créer un block"""
    type: BlockType = BlockType.PARAGRAPH
    content: dict[str, Any] = {}
    parent_block_id: Optional[int] = None
    order: Optional[int] = None  # absent = après le dernier frère

class BlockUpdate(BaseModel):
    """Modifier un block (type/contenu seulement, jamais parent/ordre)"""
    type: Optional[BlockType] = None
    content: Optional[dict[str, Any]] = None

class BlockMove(BaseModel):
    """Déplacer un block: un champ absent garde la valeur actuelle"""
    parent_block_id: Optional[int] = None
    page_id: Optional[int] = None
    order: Optional[int] = None

class BlockResponse(BaseModel):
    """Block retourné"""
    id: int
    type: BlockType
    page_id: int
    parent_block_id: Optional[int]
    content: dict[str, Any]
    order: int
    created_by_id: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class BlockTreeNode(BlockResponse):
    children: List["BlockTreeNode"] = []
