from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, Any, List
from pagetree.models.database_property import PropertyType
from pagetree.schemas.page import PageResponse

class DatabaseCreate(BaseModel):
    title: Optional[str] = None
    parent_id: Optional[int] = None

class PropertyCreate(BaseModel):
    name: str = Field(min_length=1)
    type: PropertyType = PropertyType.TEXT
    config: dict[str, Any] = {}

class PropertyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    type: Optional[PropertyType] = None
    config: Optional[dict[str, Any]] = None

class PropertyResponse(BaseModel):
    id: int
    page_id: int
    name: str
    type: PropertyType
    config: dict[str, Any]
    order: int

    model_config = ConfigDict(from_attributes=True)

class RowCreate(BaseModel):
    title: Optional[str] = None
    icon: Optional[str] = None
    values: dict[int, Any] = {}  # property_id -> valeur

class RowValueSet(BaseModel):
    value: Any = None  # null efface la valeur

class RowResponse(BaseModel):
    """Ligne: valeurs stockées + propriétés calculées (formula/rollup)"""
    id: int
    title: str
    icon: Optional[str]
    order: str
    values: dict[int, Any] = {}
    created_at: datetime
    updated_at: datetime

class DatabaseResponse(BaseModel):
    database: PageResponse
    properties: List[PropertyResponse] = []
    rows: List[RowResponse] = []
