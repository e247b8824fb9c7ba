"""Folder Service - The workspace organize tree.

Every call loads the folders doc once, applies its edit through
``FolderTree`` and pushes only when a transaction changed the doc, so reads
never send anything.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from ..config import Settings
from ..errors import AffineDocsError, Result
from ..folders import FolderTree, folders_doc_id
from ..transport import (
    ChannelFactory,
    DocChanges,
    WorkspaceChannel,
    load_doc,
    open_channel,
    push_changes,
)
from ..workspace_meta import page_titles

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FolderService:
    """Folder operations over the workspace sync socket."""

    def __init__(self, settings: Settings, channel_factory: ChannelFactory = open_channel):
        self._settings = settings
        self._channel_factory = channel_factory

    def _with_folders(
        self,
        workspace_id: str | None,
        fn: Callable[[FolderTree], T],
        *,
        with_titles: bool = False,
    ) -> tuple[T, dict[str, str]]:
        """Run ``fn`` on the folders doc; push if any transaction changed it.

        With ``with_titles`` the workspace doc is loaded on the same channel
        and its page titles are returned alongside the result.
        """
        ws = self._settings.resolve_workspace(workspace_id)
        doc_id = folders_doc_id(ws)
        with self._channel_factory(self._settings, ws) as channel:
            doc, _ = load_doc(channel, ws, doc_id)
            with DocChanges(doc) as changes:
                result = fn(FolderTree(doc))
            push_changes(channel, ws, doc_id, changes)
            titles = self._titles(channel, ws) if with_titles else {}
        return result, titles

    @staticmethod
    def _titles(channel: WorkspaceChannel, ws: str) -> dict[str, str]:
        ws_doc, _ = load_doc(channel, ws, ws)
        return page_titles(ws_doc)

    # =========================================================================
    # Reads
    # =========================================================================

    def list_tree(self, *, workspace_id: str | None = None) -> list[dict[str, Any]]:
        """Nested tree of live entries; doc links carry their titles."""
        entries, titles = self._with_folders(
            workspace_id, lambda tree: tree, with_titles=True
        )
        return entries.build_tree(titles)

    def list_children(
        self, folder_id: str | None = None, *, workspace_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Direct children of ``folder_id`` (the root when None), in order."""
        children, titles = self._with_folders(
            workspace_id, lambda tree: tree.children(folder_id), with_titles=True
        )
        return [entry.to_dict(titles) for entry in children]

    # =========================================================================
    # Edits
    # =========================================================================

    def create_folder(
        self, name: str, parent_id: str | None = None, *, workspace_id: str | None = None
    ) -> dict[str, Any]:
        def create(tree: FolderTree) -> dict[str, Any]:
            if parent_id:
                tree.require(parent_id, folder=True)
            entry = tree.append(parent_id, "folder", name)
            return {"id": entry.id, "name": name, "parentId": parent_id, "index": entry.index}

        result, _ = self._with_folders(workspace_id, create)
        logger.info("Created folder %s", result["id"])
        return result

    def rename_folder(
        self, folder_id: str, name: str, *, workspace_id: str | None = None
    ) -> dict[str, Any]:
        entry, _ = self._with_folders(workspace_id, lambda tree: tree.rename(folder_id, name))
        logger.info("Renamed folder %s", folder_id)
        return {"id": entry.id, "name": entry.data}

    def add_doc(
        self, folder_id: str, doc_id: str, *, workspace_id: str | None = None
    ) -> dict[str, Any]:
        """Link a document into a folder; an existing link is reported, not duplicated."""
        result, _ = self._with_folders(workspace_id, lambda tree: _add_doc(tree, folder_id, doc_id))
        logger.info("Linked doc %s into folder %s", doc_id, folder_id)
        return result

    def add_docs(
        self, folder_id: str, doc_ids: list[str], *, workspace_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Link several documents; each id gets its own success/error entry."""

        def add_all(tree: FolderTree) -> list[dict[str, Any]]:
            return _batch(doc_ids, lambda doc_id: _add_doc(tree, folder_id, doc_id))

        results, _ = self._with_folders(workspace_id, add_all)
        return results

    def move_node(
        self,
        node_id: str,
        parent_id: str | None = None,
        *,
        after_id: str | None = None,
        before_id: str | None = None,
        workspace_id: str | None = None,
    ) -> dict[str, Any]:
        """Move a folder or link under ``parent_id`` (None for the root).

        Raises:
            NotFoundError: Node, target folder or sibling missing.
            ValidationError: The move would create a cycle, or puts a
                non-folder at the root.
        """
        entry, _ = self._with_folders(
            workspace_id,
            lambda tree: tree.move(node_id, parent_id, after_id=after_id, before_id=before_id),
        )
        logger.info("Moved node %s under %s", node_id, entry.parent_id)
        return {"id": entry.id, "parentId": entry.parent_id, "index": entry.index}

    def remove_node(self, node_id: str, *, workspace_id: str | None = None) -> dict[str, Any]:
        """Soft-delete a node; folders take their whole subtree with them."""
        result, _ = self._with_folders(workspace_id, lambda tree: _remove(tree, node_id))
        logger.info("Removed node %s (%d entries)", node_id, len(result["removed"]))
        return result

    def remove_nodes(
        self, node_ids: list[str], *, workspace_id: str | None = None
    ) -> list[dict[str, Any]]:
        results, _ = self._with_folders(
            workspace_id,
            lambda tree: _batch(node_ids, lambda node_id: _remove(tree, node_id)),
        )
        return results


def _add_doc(tree: FolderTree, folder_id: str, doc_id: str) -> dict[str, Any]:
    tree.require(folder_id, folder=True)
    existing = tree.find_doc_link(folder_id, doc_id)
    if existing is not None:
        return {
            "linkId": existing.id,
            "folderId": folder_id,
            "docId": doc_id,
            "index": existing.index,
            "duplicate": True,
        }
    entry = tree.append(folder_id, "doc", doc_id)
    return {"linkId": entry.id, "folderId": folder_id, "docId": doc_id, "index": entry.index}


def _remove(tree: FolderTree, node_id: str) -> dict[str, Any]:
    node = tree.require(node_id)
    if node.is_folder:
        removed = tree.delete_recursive(node_id)
    else:
        tree.soft_delete(node_id)
        removed = [node_id]
    return {"deleted": True, "id": node_id, "type": node.type, "removed": removed}


def _batch(ids: list[str], fn: Callable[[str], dict[str, Any]]) -> list[dict[str, Any]]:
    """Apply ``fn`` to each id, collecting per-item outcomes instead of aborting."""
    outcomes = []
    for item_id in ids:
        try:
            result = Result.ok(fn(item_id))
        except AffineDocsError as exc:
            result = Result.fail(exc)
        if result.success:
            outcomes.append({"id": item_id, "success": True, **result.unwrap()})
        else:
            logger.debug("Batch item %s failed: %s", item_id, result.error)
            outcomes.append({"id": item_id, "success": False, "error": result.error.to_dict()})
    return outcomes
