"""Organize tree stored in the workspace folders doc.

The folders doc (``db$<workspaceId>$folders``) is a flat table: each entry
is a root map keyed by its own id with ``id``, ``parentId``, ``type``,
``data`` and ``index`` fields. The hierarchy exists only through
``parentId``; siblings are ordered by comparing ``index`` strings.

Entries are never removed. Deleting one clears its fields and sets the
``$$DELETED`` flag, and readers skip flagged entries.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any

from pycrdt import Doc, Map

from .errors import NotFoundError, ValidationError
from .fractional import index_between

logger = logging.getLogger(__name__)

FOLDERS_TABLE = "folders"
DELETED_FLAG = "$$DELETED"
NODE_ID_LENGTH = 21
ENTRY_TYPES = ("folder", "doc", "tag", "collection")

_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-"
_ENTRY_FIELDS = ("parentId", "type", "data", "index")


def folders_doc_id(workspace_id: str) -> str:
    return f"db${workspace_id}${FOLDERS_TABLE}"


def generate_node_id() -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(NODE_ID_LENGTH))


@dataclass(frozen=True)
class FolderEntry:
    id: str
    parent_id: str | None
    type: str
    data: str
    index: str

    @property
    def is_folder(self) -> bool:
        return self.type == "folder"

    def to_dict(self, titles: dict[str, str] | None = None) -> dict[str, Any]:
        node: dict[str, Any] = {"id": self.id, "type": self.type}
        if self.type == "folder":
            node["name"] = self.data
        elif self.type == "doc":
            node["docId"] = self.data
            node["title"] = (titles or {}).get(self.data)
        else:
            node["data"] = self.data
        return node


def _entry_from_map(entry: Map) -> FolderEntry | None:
    if entry.get(DELETED_FLAG) is True:
        return None
    node_id = entry.get("id")
    if not node_id:
        return None
    return FolderEntry(
        id=str(node_id),
        parent_id=entry.get("parentId") or None,
        type=entry.get("type") or "folder",
        data=entry.get("data") or "",
        index=entry.get("index") or "a0",
    )


class FolderTree:
    """Live entries of one folders doc, with ordered edits."""

    def __init__(self, doc: Doc) -> None:
        self.doc = doc

    # =========================================================================
    # Reads
    # =========================================================================

    def _map(self, node_id: str) -> Map | None:
        if node_id not in self.doc.keys():
            return None
        return self.doc.get(node_id, type=Map)

    def entries(self) -> list[FolderEntry]:
        result = []
        for key in list(self.doc.keys()):
            entry = _entry_from_map(self.doc.get(key, type=Map))
            if entry is not None:
                result.append(entry)
        return result

    def get(self, node_id: str) -> FolderEntry | None:
        entry = self._map(node_id)
        return _entry_from_map(entry) if entry is not None else None

    def require(self, node_id: str, *, folder: bool = False) -> FolderEntry:
        """Return a live entry, or a live folder when ``folder`` is set.

        Raises:
            NotFoundError: No such live entry, or it is not a folder.
        """
        entry = self.get(node_id)
        what = "folder" if folder else "node"
        if entry is None or (folder and not entry.is_folder):
            raise NotFoundError(
                f"{what.capitalize()} {node_id!r} not found",
                resource_type=what,
                resource_id=node_id,
            )
        return entry

    def children(self, parent_id: str | None) -> list[FolderEntry]:
        """Live children of ``parent_id`` (None for the root) in index order."""
        return sorted(
            (e for e in self.entries() if e.parent_id == parent_id), key=lambda e: e.index
        )

    def is_ancestor(self, node_id: str, candidate_id: str) -> bool:
        """True if ``candidate_id`` is on the parent chain above ``node_id``."""
        visited: set[str] = set()
        current = node_id
        while current:
            entry = self.get(current)
            if entry is None or not entry.parent_id:
                return False
            current = entry.parent_id
            if current in visited:
                return False
            visited.add(current)
            if current == candidate_id:
                return True
        return False

    def find_doc_link(self, folder_id: str, doc_id: str) -> FolderEntry | None:
        for entry in self.children(folder_id):
            if entry.type == "doc" and entry.data == doc_id:
                return entry
        return None

    def build_tree(
        self, titles: dict[str, str] | None = None, parent_id: str | None = None
    ) -> list[dict[str, Any]]:
        entries = self.entries()
        return _build_tree(entries, titles or {}, parent_id)

    # =========================================================================
    # Writes
    # =========================================================================

    def insert(self, entry: FolderEntry) -> None:
        target = self.doc.get(entry.id, type=Map)
        with self.doc.transaction():
            target["id"] = entry.id
            target["parentId"] = entry.parent_id
            target["type"] = entry.type
            target["data"] = entry.data
            target["index"] = entry.index
            target.pop(DELETED_FLAG, None)

    def append(self, parent_id: str | None, entry_type: str, data: str) -> FolderEntry:
        """Create a new entry after the last child of ``parent_id``."""
        if entry_type not in ENTRY_TYPES:
            raise ValidationError(
                f"Unknown entry type {entry_type!r}", field="type", value=entry_type
            )
        siblings = self.children(parent_id)
        index = index_between(siblings[-1].index if siblings else None, None)
        node_id = generate_node_id()
        while node_id in self.doc.keys():
            node_id = generate_node_id()
        entry = FolderEntry(node_id, parent_id, entry_type, data, index)
        self.insert(entry)
        logger.debug("Added %s entry %s under %s", entry_type, node_id, parent_id)
        return entry

    def rename(self, folder_id: str, name: str) -> FolderEntry:
        entry = self.require(folder_id, folder=True)
        target = self.doc.get(folder_id, type=Map)
        if entry.data != name:
            target["data"] = name
        return FolderEntry(entry.id, entry.parent_id, entry.type, name, entry.index)

    def soft_delete(self, node_id: str) -> None:
        target = self._map(node_id)
        if target is None:
            return
        with self.doc.transaction():
            for key in _ENTRY_FIELDS:
                target.pop(key, None)
            target[DELETED_FLAG] = True

    def delete_recursive(self, node_id: str) -> list[str]:
        """Soft-delete a node and, for folders, every live descendant.

        Returns the deleted ids, descendants first.
        """
        deleted: list[str] = []
        with self.doc.transaction():
            for child in self.children(node_id):
                if child.is_folder:
                    deleted.extend(self.delete_recursive(child.id))
                else:
                    self.soft_delete(child.id)
                    deleted.append(child.id)
            self.soft_delete(node_id)
            deleted.append(node_id)
        return deleted

    def move(
        self,
        node_id: str,
        parent_id: str | None = None,
        *,
        after_id: str | None = None,
        before_id: str | None = None,
    ) -> FolderEntry:
        """Reparent and/or reorder a node.

        With ``after_id`` or ``before_id`` the parent is taken from that
        sibling when ``parent_id`` is not given. Without either the node
        goes after the last child of the target parent. Every check runs
        before the entry is touched.

        Raises:
            NotFoundError: The node, target folder or sibling is missing.
            ValidationError: A cycle, a non-folder at the root, or a
                sibling that does not sit under the target parent.
        """
        node = self.require(node_id)
        if after_id and before_id:
            raise ValidationError(
                "Specify at most one of after_id and before_id", field="placement"
            )
        reference_id = after_id or before_id
        if reference_id == node_id:
            raise ValidationError("Cannot place a node relative to itself", field="placement")
        reference = self.require(reference_id) if reference_id else None
        if reference is not None and parent_id is None:
            parent_id = reference.parent_id
        if reference is not None and reference.parent_id != parent_id:
            raise ValidationError(
                f"Node {reference_id!r} is not a child of {parent_id!r}",
                field="placement",
                value=reference_id,
            )

        if parent_id:
            if parent_id == node_id:
                raise ValidationError("Cannot move a node into itself", field="parent_id")
            if self.is_ancestor(parent_id, node_id):
                raise ValidationError(
                    "Cannot move a node into its own descendant",
                    field="parent_id",
                    value=parent_id,
                )
            self.require(parent_id, folder=True)
        elif not node.is_folder:
            raise ValidationError(
                "Only folders can be at root level", field="parent_id", value=node.type
            )

        siblings = [e for e in self.children(parent_id) if e.id != node_id]
        index = _index_for(siblings, after_id, before_id)
        target = self.doc.get(node_id, type=Map)
        with self.doc.transaction():
            target["parentId"] = parent_id
            target["index"] = index
        logger.debug("Moved node %s under %s", node_id, parent_id)
        return FolderEntry(node.id, parent_id, node.type, node.data, index)


def _index_for(siblings: list[FolderEntry], after_id: str | None, before_id: str | None) -> str:
    ids = [e.id for e in siblings]
    if after_id:
        position = ids.index(after_id)
        upper = siblings[position + 1].index if position + 1 < len(siblings) else None
        return index_between(siblings[position].index, upper)
    if before_id:
        position = ids.index(before_id)
        lower = siblings[position - 1].index if position > 0 else None
        return index_between(lower, siblings[position].index)
    return index_between(siblings[-1].index if siblings else None, None)


def _build_tree(
    entries: list[FolderEntry], titles: dict[str, str], parent_id: str | None
) -> list[dict[str, Any]]:
    nodes = []
    for entry in sorted((e for e in entries if e.parent_id == parent_id), key=lambda e: e.index):
        node = entry.to_dict(titles)
        if entry.is_folder:
            node["children"] = _build_tree(entries, titles, entry.id)
        nodes.append(node)
    return nodes
