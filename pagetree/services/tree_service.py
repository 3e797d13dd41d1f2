"""Projection en arbre (lecture): pages d'un workspace, blocks d'une page"""

from typing import List, Iterable
from pagetree.models.page import Page
from pagetree.models.block import Block
from pagetree.schemas.page import PageResponse, PageTreeNode
from pagetree.schemas.block import BlockResponse, BlockTreeNode


def sibling_sort_key(node):
    # égalité de clé départagée par l'id
    return (node.order, node.id)


def build_page_tree(pages: Iterable[Page]) -> List[PageTreeNode]:
    pages = sorted(pages, key=sibling_sort_key)
    nodes = {
        page.id: PageTreeNode(**PageResponse.model_validate(page).model_dump())
        for page in pages
    }

    roots = []
    for page in pages:
        node = nodes[page.id]
        # parent absent de la sélection (ex: filtré) => remonte à la racine
        if page.parent_id is not None and page.parent_id in nodes:
            nodes[page.parent_id].children.append(node)
        else:
            roots.append(node)
    return roots


def build_block_tree(blocks: Iterable[Block]) -> List[BlockTreeNode]:
    blocks = sorted(blocks, key=sibling_sort_key)
    nodes = {
        block.id: BlockTreeNode(**BlockResponse.model_validate(block).model_dump())
        for block in blocks
    }

    roots = []
    for block in blocks:
        node = nodes[block.id]
        if block.parent_block_id is not None and block.parent_block_id in nodes:
            nodes[block.parent_block_id].children.append(node)
        else:
            roots.append(node)
    return roots


def count_tree(nodes) -> int:
    return sum(1 + count_tree(node.children) for node in nodes)
