"""Block tree operations over a document's ``blocks`` map.

The tree is an arena: every block is a ``pycrdt.Map`` stored in the flat
``blocks`` map under its id, and the only links between blocks are ids
(``sys:parent`` and the ``sys:children`` array). This module provides:
- Navigation (find by id/flavour, children, ancestors, descendants)
- Placement resolution for new and moved blocks
- Insertion of blocks built from validated specs
- Subtree deletion and moves, both validated before anything is mutated
- In-place text and property edits
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pycrdt import Array, Doc, Map, Text

from ..errors import NotFoundError, StructuralProtectionError, ValidationError
from .factory import (
    BlockContent,
    block_content,
    block_version,
    generate_block_id,
    note_props,
    surface_props,
)
from .models import STRUCTURAL_FLAVOURS, BlockFlavour, BlockSpec, Placement, placement_kind
from .richtext import replace_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsertResult:
    block_id: str
    flavour: str
    parent_id: str
    index: int
    block_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result = {
            "blockId": self.block_id,
            "flavour": self.flavour,
            "parentId": self.parent_id,
            "index": self.index,
        }
        if self.block_type:
            result["blockType"] = self.block_type
        return result


class BlockTree:
    """Addressable view of the ``blocks`` map of one document."""

    def __init__(self, doc: Doc) -> None:
        self.doc = doc
        self.blocks: Map = doc.get("blocks", type=Map)

    # =========================================================================
    # Navigation
    # =========================================================================

    def get(self, block_id: str) -> Map | None:
        value = self.blocks.get(block_id)
        return value if isinstance(value, Map) else None

    def require(self, block_id: str, *, what: str = "block") -> Map:
        block = self.get(block_id)
        if block is None:
            raise NotFoundError(
                f"{what.capitalize()} {block_id!r} not found",
                resource_type=what,
                resource_id=block_id,
            )
        return block

    def flavour(self, block_id: str) -> str | None:
        block = self.get(block_id)
        return block.get("sys:flavour") if block is not None else None

    def find_by_flavour(self, flavour: str) -> str | None:
        """Id of the first block with ``flavour``, or None."""
        for block_id, block in self.blocks.items():
            if isinstance(block, Map) and block.get("sys:flavour") == flavour:
                return str(block.get("sys:id") or block_id)
        return None

    @property
    def page_id(self) -> str | None:
        return self.find_by_flavour(BlockFlavour.PAGE.value)

    @property
    def note_id(self) -> str | None:
        return self.find_by_flavour(BlockFlavour.NOTE.value)

    def parent_id(self, block_id: str) -> str | None:
        block = self.get(block_id)
        if block is None:
            return None
        parent = block.get("sys:parent")
        return parent if isinstance(parent, str) and parent else None

    def child_ids(self, block_id: str) -> list[str]:
        block = self.get(block_id)
        if block is None:
            return []
        return _flatten_children(block.get("sys:children"))

    def child_index(self, parent_id: str, child_id: str) -> int:
        """Position of ``child_id`` among the children of ``parent_id``, or -1."""
        block = self.get(parent_id)
        children = block.get("sys:children") if block is not None else None
        if not isinstance(children, Array):
            return -1
        for index, entry in enumerate(children):
            if entry == child_id or (isinstance(entry, list) and child_id in entry):
                return index
        return -1

    def ancestors(self, block_id: str) -> list[str]:
        """Ancestor ids from the immediate parent up to the root."""
        result: list[str] = []
        seen = {block_id}
        current = self.parent_id(block_id)
        while current and current not in seen:
            result.append(current)
            seen.add(current)
            current = self.parent_id(current)
        return result

    def descendants(self, block_id: str) -> list[str]:
        """All descendant ids in depth-first order."""
        result: list[str] = []
        stack = list(reversed(self.child_ids(block_id)))
        while stack:
            current = stack.pop()
            if current in result:
                continue
            result.append(current)
            stack.extend(reversed(self.child_ids(current)))
        return result

    def _children_array(self, block: Map) -> Array:
        current = block.get("sys:children")
        if isinstance(current, Array):
            return current
        block["sys:children"] = Array()
        return block["sys:children"]

    # =========================================================================
    # Structural blocks
    # =========================================================================

    def create_page(self, title: str) -> str:
        """Create the page block with its surface and note (new documents only)."""
        page_id = generate_block_id()
        with self.doc.transaction():
            self.blocks[page_id] = _new_block(
                page_id, BlockFlavour.PAGE.value, None, {"prop:title": Text(title)}
            )
            self.ensure_surface()
            self.ensure_note()
        return page_id

    def ensure_note(self) -> str:
        """Id of the first note, creating one under the page if none exists."""
        existing = self.note_id
        if existing:
            return existing
        page_id = self.page_id
        if not page_id:
            raise NotFoundError(
                "Document has no page block; unable to insert content", resource_type="page"
            )
        return self._attach(page_id, None, BlockContent(BlockFlavour.NOTE.value, note_props()))

    def ensure_surface(self) -> str:
        existing = self.find_by_flavour(BlockFlavour.SURFACE.value)
        if existing:
            return existing
        page_id = self.page_id
        if not page_id:
            raise NotFoundError(
                "Document has no page block; unable to create the surface", resource_type="page"
            )
        return self._attach(
            page_id, None, BlockContent(BlockFlavour.SURFACE.value, surface_props())
        )

    @property
    def title(self) -> str:
        page = self.get(self.page_id or "")
        value = page.get("prop:title") if page is not None else None
        return str(value) if value is not None else ""

    def set_title(self, title: str) -> None:
        page_id = self.page_id
        if not page_id:
            raise NotFoundError("Document has no page block", resource_type="page")
        page = self.require(page_id)
        current = page.get("prop:title")
        if isinstance(current, Text):
            replace_text(current, title)
        else:
            page["prop:title"] = Text(title)

    # =========================================================================
    # Placement
    # =========================================================================

    def resolve_placement(
        self,
        placement: Placement | None,
        kind: str,
        *,
        strict: bool = True,
        exclude: str | None = None,
    ) -> tuple[str, int]:
        """Resolve a placement request to ``(parent_id, insert_index)``.

        Args:
            placement: The request, or None for the type-directed default.
            kind: ``placement_kind`` of the block being placed.
            strict: Reject out-of-range indexes and incompatible parents.
            exclude: A block to ignore when counting the parent's children
                (the block being moved, which is detached before insertion).

        Raises:
            NotFoundError: Parent or reference block missing.
            ValidationError: Parent cannot host the block, or bad index.
        """
        reference: str | None = None
        mode = "append"
        parent_id: str | None = None

        if placement is not None and (placement.after_block_id or placement.before_block_id):
            mode = "after" if placement.after_block_id else "before"
            reference = placement.after_block_id or placement.before_block_id
            self.require(reference, what="reference block")
            parent_id = self.parent_id(reference)
            if not parent_id:
                raise ValidationError(f"Block {reference!r} has no parent", field="placement")
        elif placement is not None and placement.parent_id:
            mode = "index" if placement.index is not None else "append"
            parent_id = placement.parent_id
        elif placement is not None and placement.index is not None:
            mode = "index"

        if not parent_id:
            if kind in ("frame", "edgeless_text"):
                parent_id = self.ensure_surface()
            elif kind == "note":
                parent_id = self.page_id
                if not parent_id:
                    raise NotFoundError("Document has no page block", resource_type="page")
            else:
                parent_id = self.ensure_note()

        parent = self.require(parent_id, what="parent block")
        if strict:
            _check_parent(parent.get("sys:flavour"), kind)

        siblings = [c for c in self.child_ids(parent_id) if c != exclude]
        if mode in ("after", "before"):
            if reference not in siblings:
                raise ValidationError(
                    f"Reference block {reference!r} is not a child of parent {parent_id!r}",
                    field="placement",
                )
            position = siblings.index(reference)
            return parent_id, position + 1 if mode == "after" else position
        if mode == "index":
            requested = placement.index if placement is not None else None
            requested = len(siblings) if requested is None else requested
            if requested > len(siblings) and strict:
                raise ValidationError(
                    f"placement index {requested} is out of range (max {len(siblings)})",
                    field="placement.index",
                    value=requested,
                )
            return parent_id, min(requested, len(siblings))
        return parent_id, len(siblings)

    # =========================================================================
    # Mutation
    # =========================================================================

    def insert_block(
        self,
        spec: BlockSpec,
        placement: Placement | None = None,
        *,
        strict: bool = True,
    ) -> InsertResult:
        """Create a block from a validated spec at the resolved placement."""
        content = block_content(spec)
        with self.doc.transaction():
            parent_id, index = self.resolve_placement(
                placement, placement_kind(content.flavour), strict=strict
            )
            block_id = self._attach(parent_id, index, content)
        logger.debug("Inserted %s %s under %s at %d", content.flavour, block_id, parent_id, index)
        return InsertResult(block_id, content.flavour, parent_id, index, content.block_type)

    def insert_at(self, parent_id: str, index: int, spec: BlockSpec) -> str:
        """Insert without placement checks; used by the markdown parser."""
        return self._attach(parent_id, index, block_content(spec))

    def _attach(self, parent_id: str, index: int | None, content: BlockContent) -> str:
        block_id = generate_block_id()
        while block_id in self.blocks:
            block_id = generate_block_id()
        parent = self.require(parent_id, what="parent block")
        with self.doc.transaction():
            self.blocks[block_id] = _new_block(block_id, content.flavour, parent_id, content.props)
            children = self._children_array(parent)
            children.insert(len(children) if index is None else index, block_id)
            block = self.blocks[block_id]
            for path, value in content.texts:
                target: Any = block
                for key in path:
                    target = target[key]
                replace_text(target, value)
        return block_id

    def remove_subtree(self, block_id: str) -> list[str]:
        """Remove a block and everything under it from the map.

        Children go first, depth-first. The block's entry in its parent's
        children array is left alone; see ``delete_block``.
        """
        removed: list[str] = []
        for child_id in self.child_ids(block_id):
            removed.extend(self.remove_subtree(child_id))
        if block_id in self.blocks:
            del self.blocks[block_id]
            removed.append(block_id)
        return removed

    def delete_block(self, block_id: str) -> list[str]:
        """Detach a block from its parent and remove its subtree.

        Raises:
            NotFoundError: Block missing.
            StructuralProtectionError: Page, surface or note.
        """
        block = self.require(block_id)
        self._guard(block_id, block, "delete")
        with self.doc.transaction():
            self.detach(block_id)
            removed = self.remove_subtree(block_id)
        return removed

    def clear_children(self, parent_id: str) -> list[str]:
        """Remove every child subtree of ``parent_id`` (structural or not)."""
        parent = self.require(parent_id, what="parent block")
        removed: list[str] = []
        with self.doc.transaction():
            for child_id in self.child_ids(parent_id):
                removed.extend(self.remove_subtree(child_id))
            children = self._children_array(parent)
            if len(children):
                del children[0 : len(children)]
        return removed

    def move_block(
        self, block_id: str, placement: Placement | None, *, strict: bool = True
    ) -> tuple[str, int]:
        """Move a block to a new parent and/or position.

        Every check runs before the block is detached, so a rejected move
        leaves the tree unchanged.

        Raises:
            NotFoundError: Block, parent or reference missing.
            StructuralProtectionError: Page, surface or note.
            ValidationError: Missing placement, cycle, or incompatible parent.
        """
        block = self.require(block_id)
        self._guard(block_id, block, "move")
        if placement is None:
            raise ValidationError(
                "placement must specify after_block_id, before_block_id or parent_id",
                field="placement",
            )
        if block_id in (placement.after_block_id, placement.before_block_id):
            raise ValidationError("Cannot place a block relative to itself", field="placement")

        target_parent = placement.parent_id
        if placement.after_block_id or placement.before_block_id:
            target_parent = self.parent_id(placement.after_block_id or placement.before_block_id)
        if target_parent and (
            target_parent == block_id or block_id in self.ancestors(target_parent)
        ):
            raise ValidationError(
                "Cannot move block into itself or its own descendant",
                field="placement",
                value=target_parent,
            )

        kind = placement_kind(block.get("sys:flavour"))
        parent_id, index = self.resolve_placement(
            placement, kind, strict=strict, exclude=block_id
        )

        with self.doc.transaction():
            self.detach(block_id)
            parent = self.require(parent_id, what="parent block")
            self._children_array(parent).insert(index, block_id)
            block["sys:parent"] = parent_id
        logger.debug("Moved %s under %s at %d", block_id, parent_id, index)
        return parent_id, index

    def update_block(
        self,
        block_id: str,
        *,
        text: str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> str:
        """Edit text in place and set ``prop:`` keys. Returns the flavour."""
        block = self.require(block_id)
        self._guard(block_id, block, "update")
        props = {}
        for key, value in (properties or {}).items():
            if key.startswith("sys:"):
                raise ValidationError(
                    "System fields cannot be updated", field="properties", value=key
                )
            props[key if key.startswith("prop:") else f"prop:{key}"] = value

        with self.doc.transaction():
            if text is not None:
                current = block.get("prop:text")
                if isinstance(current, Text):
                    replace_text(current, text)
                else:
                    block["prop:text"] = Text(text)
            for key, value in props.items():
                block[key] = value
        return block.get("sys:flavour")

    def detach(self, block_id: str) -> None:
        parent_id = self.parent_id(block_id)
        parent = self.get(parent_id) if parent_id else None
        if parent is None:
            return
        index = self.child_index(parent_id, block_id)
        if index >= 0:
            children = self._children_array(parent)
            entry = children[index]
            if isinstance(entry, list):
                remaining = [c for c in entry if c != block_id]
                del children[index]
                for offset, child in enumerate(remaining):
                    children.insert(index + offset, child)
            else:
                del children[index]

    @staticmethod
    def _guard(block_id: str, block: Map, action: str) -> None:
        flavour = block.get("sys:flavour")
        if flavour in STRUCTURAL_FLAVOURS:
            raise StructuralProtectionError(block_id, flavour, action=action)


def _new_block(
    block_id: str, flavour: str, parent_id: str | None, props: dict[str, Any]
) -> Map:
    return Map(
        {
            "sys:id": block_id,
            "sys:flavour": flavour,
            "sys:version": block_version(flavour),
            "sys:parent": parent_id,
            "sys:children": Array(),
            **props,
        }
    )


def _flatten_children(value: Any) -> list[str]:
    if not isinstance(value, (Array, list)):
        return []
    result: list[str] = []
    for entry in value:
        if isinstance(entry, str):
            result.append(entry)
        elif isinstance(entry, (list, Array)):
            result.extend(child for child in entry if isinstance(child, str))
    return result


def _check_parent(parent_flavour: str | None, kind: str) -> None:
    if parent_flavour == BlockFlavour.PAGE and kind != "note":
        raise ValidationError(
            f"Cannot place {kind!r} directly under affine:page", field="placement"
        )
    if parent_flavour == BlockFlavour.SURFACE and kind not in ("frame", "edgeless_text"):
        raise ValidationError(
            f"Cannot place {kind!r} directly under affine:surface", field="placement"
        )
    if kind == "note" and parent_flavour != BlockFlavour.PAGE:
        raise ValidationError("note blocks must be placed under affine:page", field="placement")
    if kind in ("frame", "edgeless_text") and parent_flavour != BlockFlavour.SURFACE:
        raise ValidationError(
            f"{kind} blocks must be placed under affine:surface", field="placement"
        )
