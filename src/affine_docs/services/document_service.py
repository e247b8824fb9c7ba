"""Document Service - Create, read and edit AFFiNE documents.

Every public method is one logical operation on one sync channel:
connect, join, load the document, mutate locally, push one delta,
touch the workspace metadata, disconnect. Validation happens before any
mutation, so a rejected call pushes nothing.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, TypeVar

from pycrdt import Doc, Map

from ..blocks.factory import generate_block_id
from ..blocks.markdown_parser import insert_markdown
from ..blocks.markdown_renderer import render_markdown
from ..blocks.models import STRUCTURAL_FLAVOURS, Placement, build_block_spec
from ..blocks.patch import apply_patch
from ..blocks.richtext import plain_text
from ..blocks.tree import BlockTree
from ..config import Settings
from ..errors import NotFoundError, ValidationError
from ..transport import (
    ChannelFactory,
    DocChanges,
    WorkspaceChannel,
    load_doc,
    open_channel,
    push_changes,
)
from ..workspace_meta import (
    DEFAULT_TITLE,
    add_page,
    remove_page,
    rename_page,
    set_doc_meta_title,
    touch_page,
    write_doc_meta,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DocumentService:
    """Document operations over the workspace sync socket.

    Holds only settings and a channel factory; no state is kept between
    calls.
    """

    def __init__(self, settings: Settings, channel_factory: ChannelFactory = open_channel):
        self._settings = settings
        self._channel_factory = channel_factory

    # =========================================================================
    # Channel helpers
    # =========================================================================

    def _read(
        self, workspace_id: str | None, doc_id: str, fn: Callable[[BlockTree], T]
    ) -> T:
        ws = self._settings.resolve_workspace(workspace_id)
        with self._channel_factory(self._settings, ws) as channel:
            doc = self._load_existing(channel, ws, doc_id)
            return fn(BlockTree(doc))

    def _mutate(
        self, workspace_id: str | None, doc_id: str, fn: Callable[[BlockTree], T]
    ) -> T:
        """Run ``fn`` against the loaded tree and push whatever it changed."""
        ws = self._settings.resolve_workspace(workspace_id)
        with self._channel_factory(self._settings, ws) as channel:
            doc = self._load_existing(channel, ws, doc_id)
            with DocChanges(doc) as changes:
                result = fn(BlockTree(doc))
            if push_changes(channel, ws, doc_id, changes) is not None:
                self._touch(channel, ws, doc_id)
            return result

    @staticmethod
    def _load_existing(channel: WorkspaceChannel, ws: str, doc_id: str) -> Doc:
        doc, exists = load_doc(channel, ws, doc_id)
        if not exists:
            raise NotFoundError(
                f"Document {doc_id!r} not found", resource_type="document", resource_id=doc_id
            )
        return doc

    @staticmethod
    def _update_workspace(
        channel: WorkspaceChannel, ws: str, fn: Callable[[Doc], Any]
    ) -> None:
        """Apply ``fn`` to the workspace root doc; push only a non-empty delta."""
        ws_doc, _ = load_doc(channel, ws, ws)
        with DocChanges(ws_doc) as changes:
            fn(ws_doc)
        push_changes(channel, ws, ws, changes)

    def _touch(self, channel: WorkspaceChannel, ws: str, doc_id: str) -> None:
        self._update_workspace(channel, ws, lambda ws_doc: touch_page(ws_doc, doc_id))

    # =========================================================================
    # Documents
    # =========================================================================

    def create_doc(
        self,
        title: str = DEFAULT_TITLE,
        content: str | None = None,
        *,
        workspace_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a document with a page, surface and note.

        Args:
            title: Document title.
            content: Optional markdown parsed into the note.
            workspace_id: Overrides the configured workspace.

        Returns:
            ``{"docId", "title"}``
        """
        ws = self._settings.resolve_workspace(workspace_id)
        title = title or DEFAULT_TITLE
        doc_id = generate_block_id()
        doc: Doc = Doc()
        tree = BlockTree(doc)
        with DocChanges(doc) as changes, doc.transaction():
            tree.create_page(title)
            if content:
                insert_markdown(tree, tree.ensure_note(), content)
            write_doc_meta(doc, doc_id, title)

        with self._channel_factory(self._settings, ws) as channel:
            push_changes(channel, ws, doc_id, changes)
            self._update_workspace(channel, ws, lambda ws_doc: add_page(ws_doc, doc_id, title))
        logger.info("Created doc %s in workspace %s", doc_id, ws)
        return {"docId": doc_id, "title": title}

    def read_doc(self, doc_id: str, *, workspace_id: str | None = None) -> dict[str, Any]:
        """Return every block in document order plus the plain text."""

        def read(tree: BlockTree) -> dict[str, Any]:
            page_id = tree.page_id
            order = [page_id, *tree.descendants(page_id)] if page_id else []
            blocks = []
            lines = []
            for block_id in order:
                block = tree.get(block_id)
                if block is None:
                    continue
                entry = _block_summary(tree, block_id, block)
                blocks.append(entry)
                if entry["text"]:
                    lines.append(entry["text"])
            return {
                "docId": doc_id,
                "title": tree.title,
                "exists": True,
                "blockCount": len(blocks),
                "blocks": blocks,
                "plainText": "\n".join(lines),
            }

        return self._read(workspace_id, doc_id, read)

    def read_doc_as_markdown(
        self,
        doc_id: str,
        *,
        include_block_ids: bool = False,
        workspace_id: str | None = None,
    ) -> dict[str, Any]:
        """Render the document as markdown, optionally with block line ranges."""

        def read(tree: BlockTree) -> dict[str, Any]:
            title = tree.title
            if tree.note_id is None:
                markdown = f"# {title}\n" if title else ""
                return {"docId": doc_id, "exists": True, "title": title, "markdown": markdown}
            rendered = render_markdown(tree, title)
            result: dict[str, Any] = {
                "docId": doc_id,
                "exists": True,
                "title": title,
                "markdown": rendered.markdown,
            }
            if include_block_ids:
                result["blockLineRanges"] = [
                    {
                        **entry.to_dict(),
                        "flavour": tree.flavour(entry.block_id),
                        "type": _block_type(tree, entry.block_id),
                    }
                    for entry in rendered.block_line_ranges
                ]
            return result

        return self._read(workspace_id, doc_id, read)

    def update_doc_title(
        self, doc_id: str, title: str, *, workspace_id: str | None = None
    ) -> dict[str, Any]:
        """Rename a document: page title, doc meta and workspace ``pages`` entry."""
        if not title:
            raise ValidationError("title must not be empty", field="title")
        ws = self._settings.resolve_workspace(workspace_id)
        with self._channel_factory(self._settings, ws) as channel:
            doc = self._load_existing(channel, ws, doc_id)
            tree = BlockTree(doc)
            with DocChanges(doc) as changes, doc.transaction():
                tree.set_title(title)
                set_doc_meta_title(doc, title)
            push_changes(channel, ws, doc_id, changes)
            self._update_workspace(channel, ws, lambda ws_doc: rename_page(ws_doc, doc_id, title))
        logger.info("Renamed doc %s", doc_id)
        return {"updated": True, "docId": doc_id, "title": title}

    def delete_doc(self, doc_id: str, *, workspace_id: str | None = None) -> dict[str, Any]:
        """Drop the ``pages`` entry, then ask the server to delete the document."""
        ws = self._settings.resolve_workspace(workspace_id)
        with self._channel_factory(self._settings, ws) as channel:
            self._update_workspace(channel, ws, lambda ws_doc: remove_page(ws_doc, doc_id))
            channel.delete_document(ws, doc_id)
        logger.info("Deleted doc %s", doc_id)
        return {"deleted": True, "docId": doc_id}

    # =========================================================================
    # Blocks
    # =========================================================================

    def append_block(
        self,
        doc_id: str,
        block_type: str,
        *,
        text: Any = None,
        placement: Placement | dict[str, Any] | None = None,
        strict: bool | None = None,
        workspace_id: str | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        """Insert one block of ``block_type``.

        Args:
            doc_id: Target document.
            block_type: Canonical type or legacy alias (``heading1``, ``todo``...).
            text: Block text; plain string or formatted runs.
            placement: ``Placement`` or a dict with parentId/afterBlockId/
                beforeBlockId/index. None uses the type-directed default.
            strict: Reject fields irrelevant to the type. Defaults to settings.
            **fields: Type-specific fields (level, style, url, ...).

        Returns:
            The new block id, flavour, parent and index.

        Raises:
            ValidationError: Bad type, field, value or placement.
            NotFoundError: Document, parent or reference block missing.
        """
        strict = self._settings.strict if strict is None else strict
        spec = build_block_spec(block_type, strict=strict, text=text, **fields)
        if isinstance(placement, dict):
            placement = Placement.from_dict(placement)

        result = self._mutate(
            workspace_id, doc_id, lambda tree: tree.insert_block(spec, placement, strict=strict)
        )
        logger.info("Appended %s block %s to doc %s", result.flavour, result.block_id, doc_id)
        return {"appended": True, "docId": doc_id, **result.to_dict()}

    def append_paragraph(
        self, doc_id: str, text: str, *, workspace_id: str | None = None
    ) -> dict[str, Any]:
        return self.append_block(doc_id, "paragraph", text=text, workspace_id=workspace_id)

    def update_block(
        self,
        doc_id: str,
        block_id: str,
        *,
        text: str | None = None,
        properties: dict[str, Any] | None = None,
        workspace_id: str | None = None,
    ) -> dict[str, Any]:
        """Splice new text into a block and/or set its ``prop:`` keys."""
        if text is None and not properties:
            raise ValidationError("Nothing to update: pass text or properties", field="text")
        flavour = self._mutate(
            workspace_id,
            doc_id,
            lambda tree: tree.update_block(block_id, text=text, properties=properties),
        )
        logger.info("Updated block %s in doc %s", block_id, doc_id)
        return {"updated": True, "docId": doc_id, "blockId": block_id, "flavour": flavour}

    def delete_block(
        self, doc_id: str, block_id: str, *, workspace_id: str | None = None
    ) -> dict[str, Any]:
        removed = self._mutate(workspace_id, doc_id, lambda tree: tree.delete_block(block_id))
        logger.info("Deleted block %s (%d total) from doc %s", block_id, len(removed), doc_id)
        return {"deleted": True, "docId": doc_id, "blockId": block_id, "removed": len(removed)}

    def delete_blocks(
        self, doc_id: str, block_ids: list[str], *, workspace_id: str | None = None
    ) -> dict[str, Any]:
        """Delete several blocks at once; missing and structural ids are skipped."""

        def delete(tree: BlockTree) -> dict[str, Any]:
            deleted: list[str] = []
            skipped: list[dict[str, str]] = []
            with tree.doc.transaction():
                for block_id in block_ids:
                    block = tree.get(block_id)
                    if block is None:
                        skipped.append({"blockId": block_id, "reason": "not found"})
                        continue
                    if block.get("sys:flavour") in STRUCTURAL_FLAVOURS:
                        skipped.append({"blockId": block_id, "reason": "structural"})
                        continue
                    tree.delete_block(block_id)
                    deleted.append(block_id)
            return {"docId": doc_id, "deleted": deleted, "skipped": skipped}

        result = self._mutate(workspace_id, doc_id, delete)
        logger.info("Deleted %d block(s) from doc %s", len(result["deleted"]), doc_id)
        return result

    def move_block(
        self,
        doc_id: str,
        block_id: str,
        placement: Placement | dict[str, Any] | None,
        *,
        strict: bool | None = None,
        workspace_id: str | None = None,
    ) -> dict[str, Any]:
        """Move a block; everything is validated before it is detached.

        Raises:
            StructuralProtectionError: Page, surface or note.
            ValidationError: No placement, a cycle, or an incompatible parent.
        """
        strict = self._settings.strict if strict is None else strict
        if isinstance(placement, dict):
            placement = Placement.from_dict(placement)
        parent_id, index = self._mutate(
            workspace_id, doc_id, lambda tree: tree.move_block(block_id, placement, strict=strict)
        )
        logger.info("Moved block %s in doc %s", block_id, doc_id)
        return {
            "moved": True,
            "docId": doc_id,
            "blockId": block_id,
            "parentId": parent_id,
            "index": index,
        }

    # =========================================================================
    # Markdown
    # =========================================================================

    def write_doc_from_markdown(
        self,
        doc_id: str,
        markdown: str,
        *,
        dry_run: bool = False,
        workspace_id: str | None = None,
    ) -> dict[str, Any]:
        """Replace the whole note body with parsed ``markdown``.

        A leading ``# <title>`` heading equal to the document title is
        dropped so the title is not duplicated into the body.
        """

        def write(tree: BlockTree) -> dict[str, Any]:
            note_id = tree.note_id
            if not note_id:
                raise NotFoundError(
                    "Document has no note block", resource_type="note", resource_id=doc_id
                )
            title = tree.title
            if dry_run:
                return {
                    "dryRun": True,
                    "currentMarkdown": render_markdown(tree, title).markdown,
                    "newMarkdown": markdown,
                }
            body = strip_title_heading(markdown, title)
            with tree.doc.transaction():
                tree.clear_children(note_id)
                created = insert_markdown(tree, note_id, body)
            return {"written": True, "docId": doc_id, "blocksCreated": len(created)}

        result = self._mutate(workspace_id, doc_id, write)
        if not dry_run:
            logger.info("Rewrote doc %s from markdown", doc_id)
        return result

    def update_doc_markdown(
        self,
        doc_id: str,
        old_markdown: str,
        new_markdown: str,
        *,
        dry_run: bool = False,
        workspace_id: str | None = None,
    ) -> dict[str, Any]:
        """Replace the single occurrence of ``old_markdown`` in the rendered doc.

        Only the top-level blocks overlapping the match are rebuilt.

        Raises:
            PatchTargetNotFoundError: No occurrence.
            AmbiguousMatchError: More than one occurrence.
            TitleOnlyChangeError: The match touches no content block; use
                ``update_doc_title`` to rename.
        """
        result = self._mutate(
            workspace_id,
            doc_id,
            lambda tree: apply_patch(tree, old_markdown, new_markdown, dry_run=dry_run),
        )
        if dry_run:
            return result.to_dict()
        logger.info(
            "Patched doc %s: %d removed, %d created",
            doc_id,
            result.blocks_removed,
            result.blocks_created,
        )
        return {"docId": doc_id, **result.to_dict()}


def strip_title_heading(markdown: str, title: str) -> str:
    """Drop a leading ``# title`` line and the blank lines after it."""
    if not title:
        return markdown
    pattern = re.compile(rf"^#\s+{re.escape(title)}\s*\n+")
    return pattern.sub("", markdown, count=1)


def _block_summary(tree: BlockTree, block_id: str, block: Map) -> dict[str, Any]:
    text_value = block.get("prop:text")
    if text_value is None:
        text_value = block.get("prop:title")
    return {
        "id": block_id,
        "flavour": block.get("sys:flavour"),
        "type": block.get("prop:type"),
        "parentId": tree.parent_id(block_id),
        "childIds": tree.child_ids(block_id),
        "text": plain_text(text_value),
        "checked": block.get("prop:checked"),
        "language": block.get("prop:language"),
    }


def _block_type(tree: BlockTree, block_id: str) -> str | None:
    block = tree.get(block_id)
    return block.get("prop:type") if block is not None else None
