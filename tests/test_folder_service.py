"""Tests for services/folder_service.py - Folder operations end to end.

Tests:
- Listing with doc titles
- Create, rename, link and move
- Batch results with per-item errors
- Removal cascades
- Reads never push
"""

from __future__ import annotations

import pytest

from affine_docs.errors import NotFoundError, ValidationError
from affine_docs.folders import folders_doc_id
from affine_docs.services import DocumentService, FolderService

from conftest import WORKSPACE_ID, FakeServer

FOLDERS_DOC = folders_doc_id(WORKSPACE_ID)


# =============================================================================
# Reads
# =============================================================================


class TestListing:
    """Test tree and children listings."""

    def test_empty_workspace(self, folder_service: FolderService, server: FakeServer) -> None:
        """An absent folders doc lists as empty and is not created."""
        assert folder_service.list_tree() == []
        assert folder_service.list_children() == []

        assert server.pushes == []

    def test_tree_with_titles(
        self,
        folder_service: FolderService,
        doc_service: DocumentService,
        server: FakeServer,
    ) -> None:
        """Doc links are reported with their current titles."""
        doc_id = doc_service.create_doc("Roadmap")["docId"]
        folder = folder_service.create_folder("Projects")
        link = folder_service.add_doc(folder["id"], doc_id)
        pushes = len(server.pushes)

        tree = folder_service.list_tree()

        assert tree == [
            {
                "id": folder["id"],
                "type": "folder",
                "name": "Projects",
                "children": [
                    {"id": link["linkId"], "type": "doc", "docId": doc_id, "title": "Roadmap"}
                ],
            }
        ]
        assert len(server.pushes) == pushes

    def test_list_children_in_order(self, folder_service: FolderService) -> None:
        """Children come back in index order."""
        parent = folder_service.create_folder("Parent")
        a = folder_service.create_folder("A", parent["id"])
        b = folder_service.create_folder("B", parent["id"])

        children = folder_service.list_children(parent["id"])

        assert [c["id"] for c in children] == [a["id"], b["id"]]
        assert [c["name"] for c in children] == ["A", "B"]


# =============================================================================
# Edits
# =============================================================================


class TestEdits:
    """Test single-item edits."""

    def test_create_folder(self, folder_service: FolderService, server: FakeServer) -> None:
        """Folders are written to the folders doc."""
        result = folder_service.create_folder("Inbox")

        assert result["name"] == "Inbox"
        assert result["parentId"] is None
        assert server.pushed_doc_ids() == [FOLDERS_DOC]

    def test_create_under_missing_parent(
        self, folder_service: FolderService, server: FakeServer
    ) -> None:
        """A missing parent is reported and nothing is pushed."""
        with pytest.raises(NotFoundError):
            folder_service.create_folder("Orphan", "missing")

        assert server.pushes == []

    def test_rename(self, folder_service: FolderService) -> None:
        """Renames are visible in later listings."""
        folder = folder_service.create_folder("Old")

        assert folder_service.rename_folder(folder["id"], "New") == {
            "id": folder["id"],
            "name": "New",
        }
        assert folder_service.list_children()[0]["name"] == "New"

    def test_add_doc_duplicate(self, folder_service: FolderService, server: FakeServer) -> None:
        """Linking the same doc twice returns the existing link."""
        folder = folder_service.create_folder("Docs")
        first = folder_service.add_doc(folder["id"], "doc-1")
        pushes = len(server.pushes)

        second = folder_service.add_doc(folder["id"], "doc-1")

        assert second["duplicate"] is True
        assert second["linkId"] == first["linkId"]
        assert len(server.pushes) == pushes

    def test_move_between_siblings(self, folder_service: FolderService) -> None:
        """A folder placed after the first sibling lands between the two."""
        a = folder_service.create_folder("A")
        b = folder_service.create_folder("B")
        c = folder_service.create_folder("C")

        moved = folder_service.move_node(c["id"], after_id=a["id"])

        assert a["index"] < moved["index"] < b["index"]
        assert [n["id"] for n in folder_service.list_children()] == [a["id"], c["id"], b["id"]]

    def test_move_cycle_pushes_nothing(
        self, folder_service: FolderService, server: FakeServer
    ) -> None:
        """A rejected move leaves the stored folders untouched."""
        outer = folder_service.create_folder("Outer")
        inner = folder_service.create_folder("Inner", outer["id"])
        pushes = len(server.pushes)

        with pytest.raises(ValidationError):
            folder_service.move_node(outer["id"], inner["id"])

        assert len(server.pushes) == pushes

    def test_remove_folder_cascades(self, folder_service: FolderService) -> None:
        """Removing a folder soft-deletes everything inside it."""
        outer = folder_service.create_folder("Outer")
        inner = folder_service.create_folder("Inner", outer["id"])
        link = folder_service.add_doc(inner["id"], "doc-1")

        result = folder_service.remove_node(outer["id"])

        assert result["removed"] == [link["linkId"], inner["id"], outer["id"]]
        assert folder_service.list_tree() == []


# =============================================================================
# Batches
# =============================================================================


class TestBatches:
    """Test per-item batch results."""

    def test_add_docs(self, folder_service: FolderService) -> None:
        """Each id gets its own outcome; duplicates are flagged."""
        folder = folder_service.create_folder("Docs")

        results = folder_service.add_docs(folder["id"], ["d1", "d2", "d1"])

        assert [r["success"] for r in results] == [True, True, True]
        assert results[2]["duplicate"] is True
        assert len(folder_service.list_children(folder["id"])) == 2

    def test_add_docs_missing_folder(self, folder_service: FolderService) -> None:
        """A missing folder fails every item without raising."""
        results = folder_service.add_docs("missing", ["d1"])

        assert results == [
            {
                "id": "d1",
                "success": False,
                "error": {
                    "type": "notfound",
                    "message": "Folder 'missing' not found",
                    "recoverable": False,
                    "resource_type": "folder",
                    "resource_id": "missing",
                },
            }
        ]

    def test_remove_nodes_partial(self, folder_service: FolderService) -> None:
        """Failures do not stop the rest of the batch."""
        folder = folder_service.create_folder("Gone")

        results = folder_service.remove_nodes(["ghost", folder["id"]])

        assert [r["success"] for r in results] == [False, True]
        assert results[1]["deleted"] is True
        assert folder_service.list_tree() == []
