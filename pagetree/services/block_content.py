"""
Contenu des blocks: une variante fermée par type de block.

Le stockage garde un JSON opaque; à la frontière du moteur chaque type a
son schéma pydantic et tout champ inconnu est refusé.
"""

from typing import Any, Dict, List, Optional, Type
from pydantic import BaseModel, ConfigDict, ValidationError
from pagetree.core.errors import TypeMismatch
from pagetree.models.block import BlockType


class BlockContent(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RichTextContent(BlockContent):
    text: str = ""
    marks: Optional[List[Dict[str, Any]]] = None  # gras, lien, couleur...


class ToDoContent(RichTextContent):
    checked: bool = False


class CodeContent(BlockContent):
    text: str = ""
    language: str = "plain"


class CalloutContent(RichTextContent):
    icon: Optional[str] = None


class MediaContent(BlockContent):
    url: str  # URL fournie par le stockage de fichiers
    caption: str = ""
    name: Optional[str] = None


class EmptyContent(BlockContent):
    pass


class ChildPageContent(BlockContent):
    page_id: int


class EquationContent(BlockContent):
    expression: str = ""


CONTENT_MODELS: Dict[BlockType, Type[BlockContent]] = {
    BlockType.PARAGRAPH: RichTextContent,
    BlockType.HEADING_1: RichTextContent,
    BlockType.HEADING_2: RichTextContent,
    BlockType.HEADING_3: RichTextContent,
    BlockType.BULLETED_LIST_ITEM: RichTextContent,
    BlockType.NUMBERED_LIST_ITEM: RichTextContent,
    BlockType.TO_DO: ToDoContent,
    BlockType.TOGGLE: RichTextContent,
    BlockType.CODE: CodeContent,
    BlockType.QUOTE: RichTextContent,
    BlockType.CALLOUT: CalloutContent,
    BlockType.DIVIDER: EmptyContent,
    BlockType.IMAGE: MediaContent,
    BlockType.VIDEO: MediaContent,
    BlockType.FILE: MediaContent,
    BlockType.EMBED: MediaContent,
    BlockType.BOOKMARK: MediaContent,
    BlockType.COLUMN_LIST: EmptyContent,
    BlockType.COLUMN: EmptyContent,
    BlockType.CHILD_PAGE: ChildPageContent,
    BlockType.CHILD_DATABASE: ChildPageContent,
    BlockType.TABLE_OF_CONTENTS: EmptyContent,
    BlockType.EQUATION: EquationContent,
}

PAGE_REFERENCE_TYPES = {BlockType.CHILD_PAGE, BlockType.CHILD_DATABASE}


def validate_content(block_type: BlockType, content: Optional[dict]) -> dict:
    """Valide le contenu contre le schéma du type, retourne le JSON normalisé"""
    model = CONTENT_MODELS[BlockType(block_type)]
    try:
        parsed = model.model_validate(content or {})
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        field = f"content.{location}" if location else "content"
        raise TypeMismatch(f"Invalid content for '{BlockType(block_type).value}' block: {first['msg']}", field=field)
    return parsed.model_dump(exclude_none=True)
