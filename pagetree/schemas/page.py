from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, List
from pagetree.schemas.block import BlockTreeNode

# chiffres base 62, jamais de "0" final
ORDER_KEY_PATTERN = r"^[0-9A-Za-z]*[1-9A-Za-z]$"

# Schemas pour les pages

class PageCreate(BaseModel):
    title: Optional[str] = None
    icon: Optional[str] = None
    cover_image: Optional[str] = None
    parent_id: Optional[int] = None

class PageUpdate(BaseModel):
    title: Optional[str] = None
    icon: Optional[str] = None
    cover_image: Optional[str] = None
    is_template: Optional[bool] = None

class PageMove(BaseModel):
    """Déplacement: un champ absent garde la valeur actuelle, parent_id=null remonte à la racine"""
    parent_id: Optional[int] = None
    workspace_id: Optional[int] = None
    order: Optional[str] = Field(None, max_length=255, pattern=ORDER_KEY_PATTERN)
    after_id: Optional[int] = None

class PageResponse(BaseModel):
    id: int
    workspace_id: int
    parent_id: Optional[int]
    title: str
    icon: Optional[str]
    cover_image: Optional[str]
    is_database: bool
    is_template: bool
    is_deleted: bool
    order: str
    created_by_id: int
    updated_by_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class TrashPageResponse(PageResponse):
    deleted_at: Optional[datetime]

class PageTreeNode(PageResponse):
    children: List["PageTreeNode"] = []

class PageWithBlocks(BaseModel):
    page: PageResponse
    blocks: List[BlockTreeNode] = []
