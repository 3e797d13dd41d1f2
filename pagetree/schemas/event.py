from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Literal, Union

EntityType = Literal["workspace", "page", "block", "property", "row_value"]
Operation = Literal["create", "update", "move", "delete", "restore"]


class MutationEvent(BaseModel):
    """Assez d'info pour qu'un abonné (temps réel, index de recherche) patche sa vue locale"""
    entity_type: EntityType
    entity_id: int
    operation: Operation
    workspace_id: Optional[int] = None
    page_id: Optional[int] = None
    affected_parent_id: Optional[int] = None
    new_order: Optional[Union[str, int]] = None
    occurred_at: datetime = Field(default_factory=datetime.utcnow)
