"""Exact-substring patches applied to a block tree.

A patch renders the note to markdown, finds the one place ``old`` occurs,
and rewrites only the top-level blocks whose rendered lines overlap it:

    result = apply_patch(tree, "- Item 2", "- Item 2 (edited)")
    result.blocks_removed  # 1

Blocks outside the affected range keep their ids and CRDT identity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import (
    AmbiguousMatchError,
    PatchTargetNotFoundError,
    TitleOnlyChangeError,
    ValidationError,
)
from .markdown_parser import insert_markdown
from .markdown_renderer import BlockLineRange, render_markdown
from .tree import BlockTree

logger = logging.getLogger(__name__)


@dataclass
class PatchPlan:
    """Where a patch lands: the affected blocks and the markdown replacing them."""

    start: int
    current_markdown: str
    patched_markdown: str
    affected: list[BlockLineRange] = field(default_factory=list)
    region_markdown: str = ""


@dataclass
class PatchResult:
    blocks_removed: int = 0
    blocks_created: int = 0
    removed_ids: list[str] = field(default_factory=list)
    created_ids: list[str] = field(default_factory=list)
    dry_run: bool = False
    current_markdown: str | None = None
    patched_markdown: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.dry_run:
            return {
                "dryRun": True,
                "currentMarkdown": self.current_markdown,
                "patchedMarkdown": self.patched_markdown,
            }
        return {
            "patched": True,
            "blocksRemoved": self.blocks_removed,
            "blocksCreated": self.blocks_created,
        }


def locate(markdown: str, old: str) -> int:
    """Offset of the single occurrence of ``old`` in ``markdown``.

    Raises:
        ValidationError: ``old`` is empty.
        PatchTargetNotFoundError: ``old`` does not occur.
        AmbiguousMatchError: ``old`` occurs more than once.
    """
    if not old:
        raise ValidationError("old_markdown must not be empty", field="old_markdown")
    start = markdown.find(old)
    if start == -1:
        raise PatchTargetNotFoundError(old)
    if markdown.find(old, start + 1) != -1:
        raise AmbiguousMatchError(old)
    return start


def line_offsets(markdown: str) -> list[int]:
    """Character offset at which each line starts, plus one past the last line."""
    offsets = [0]
    for line in markdown.split("\n"):
        offsets.append(offsets[-1] + len(line) + 1)
    return offsets


def plan_patch(tree: BlockTree, old: str, new: str) -> PatchPlan:
    """Work out which blocks a patch replaces, without touching the tree.

    Raises:
        PatchTargetNotFoundError, AmbiguousMatchError: See ``locate``.
        TitleOnlyChangeError: The match overlaps no content block.
    """
    rendered = render_markdown(tree)
    current = rendered.markdown
    start = locate(current, old)
    end = start + len(old)
    plan = PatchPlan(
        start=start,
        current_markdown=current,
        patched_markdown=current[:start] + new + current[end:],
    )

    offsets = line_offsets(current)
    for entry in rendered.block_line_ranges:
        block_start = offsets[entry.start_line]
        block_end = offsets[entry.end_line]
        if block_end > start and block_start < end:
            plan.affected.append(entry)
    if not plan.affected:
        raise TitleOnlyChangeError()

    region_start = offsets[plan.affected[0].start_line]
    region_end = offsets[plan.affected[-1].end_line]
    plan.region_markdown = current[region_start:start] + new + current[end:region_end]
    return plan


def apply_patch(tree: BlockTree, old: str, new: str, *, dry_run: bool = False) -> PatchResult:
    """Replace the unique occurrence of ``old`` with ``new``.

    The affected blocks are removed and the re-parsed region is inserted
    where the first of them stood, all in one transaction. With
    ``dry_run`` only the before/after markdown is returned.

    Raises:
        PatchTargetNotFoundError: ``old`` is absent.
        AmbiguousMatchError: ``old`` occurs more than once.
        TitleOnlyChangeError: The change is confined to the title or blank lines.
    """
    if dry_run:
        current = render_markdown(tree).markdown
        start = locate(current, old)
        return PatchResult(
            dry_run=True,
            current_markdown=current,
            patched_markdown=current[:start] + new + current[start + len(old) :],
        )

    plan = plan_patch(tree, old, new)
    note_id = tree.note_id
    if not note_id:
        raise TitleOnlyChangeError()

    result = PatchResult()
    with tree.doc.transaction():
        insert_index = tree.child_index(note_id, plan.affected[0].block_id)
        if insert_index < 0:
            insert_index = 0
        for entry in plan.affected:
            tree.detach(entry.block_id)
            tree.remove_subtree(entry.block_id)
            result.removed_ids.append(entry.block_id)
        result.created_ids = insert_markdown(tree, note_id, plan.region_markdown, insert_index)

    result.blocks_removed = len(result.removed_ids)
    result.blocks_created = len(result.created_ids)
    logger.debug(
        "Patched %d block(s) into %d at index %d",
        result.blocks_removed,
        result.blocks_created,
        insert_index,
    )
    return result
