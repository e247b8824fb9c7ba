"""Shared fixtures - an in-memory AFFiNE sync server.

FakeServer answers the space:join, space:load-doc, space:push-doc-update and
space:delete-doc events from pycrdt docs it keeps per (workspace, doc) pair,
and records every event and push so tests can check what reached the server.
FakeSocketClient stands in for socketio.Client and forwards calls to it.

Fixtures:
- server, settings: a fresh server and test settings
- channel_factory: open_channel wired to the fake client
- doc_service, folder_service: services talking to the fake server
- tree, empty_tree: local block trees with and without a note
"""

from __future__ import annotations

import base64
import functools
from typing import Any, Callable

import pytest
from pycrdt import Doc
from socketio import exceptions as sio_exceptions

from affine_docs.blocks.tree import BlockTree
from affine_docs.config import Settings
from affine_docs.services import DocumentService, FolderService
from affine_docs.transport import open_channel

WORKSPACE_ID = "ws-test"


# =============================================================================
# In-memory sync server
# =============================================================================


class FakeServer:
    """Answers the ``space:*`` events from pycrdt docs held in memory."""

    def __init__(self) -> None:
        self.docs: dict[tuple[str, str], Doc] = {}
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.pushes: list[tuple[str, bytes]] = []
        self.deleted: list[str] = []
        self.connections = 0
        self.disconnects = 0
        # Behaviour switches for error-path tests
        self.join_ack: dict[str, Any] = {"data": {"success": True}}
        self.acks: dict[str, Any] = {}
        self.silent: set[str] = set()
        self.refuse_connect: str | None = None
        self.push_timestamp: int | None = 1700000000000

    def seed(self, doc_id: str, doc: Doc, workspace_id: str = WORKSPACE_ID) -> None:
        stored: Doc = Doc()
        stored.apply_update(doc.get_update())
        self.docs[(workspace_id, doc_id)] = stored

    def snapshot(self, doc_id: str, workspace_id: str = WORKSPACE_ID) -> Doc:
        """A client-side copy of a stored doc."""
        copy: Doc = Doc()
        copy.apply_update(self.docs[(workspace_id, doc_id)].get_update())
        return copy

    def tree(self, doc_id: str, workspace_id: str = WORKSPACE_ID) -> BlockTree:
        return BlockTree(self.snapshot(doc_id, workspace_id))

    def pushed_doc_ids(self) -> list[str]:
        return [doc_id for doc_id, _ in self.pushes]

    def handle(self, event: str, payload: dict[str, Any]) -> dict[str, Any] | None:
        self.events.append((event, payload))
        if event in self.acks:
            return self.acks[event]
        if event == "space:join":
            return self.join_ack
        key = (payload["spaceId"], payload["docId"])
        if event == "space:load-doc":
            doc = self.docs.get(key)
            if doc is None:
                return {"error": {"name": "DOC_NOT_FOUND", "message": "doc not found"}}
            return {
                "data": {
                    "missing": base64.b64encode(doc.get_update()).decode("ascii"),
                    "state": base64.b64encode(doc.get_state()).decode("ascii"),
                    "timestamp": 1,
                }
            }
        if event == "space:push-doc-update":
            update = base64.b64decode(payload["update"])
            self.docs.setdefault(key, Doc()).apply_update(update)
            self.pushes.append((payload["docId"], update))
            if self.push_timestamp is None:
                return {"data": {}}
            return {"data": {"timestamp": self.push_timestamp}}
        if event == "space:delete-doc":
            self.docs.pop(key, None)
            self.deleted.append(payload["docId"])
            return None
        return {"error": {"name": "UNKNOWN_EVENT", "message": event}}


class FakeSocketClient:
    """Stands in for ``socketio.Client`` and forwards to a ``FakeServer``."""

    def __init__(self, server: FakeServer) -> None:
        self.server = server
        self.handlers: dict[str, Callable[..., Any]] = {}
        self.connected = False
        self.connect_kwargs: dict[str, Any] = {}
        self.url: str | None = None

    def on(self, event: str, handler: Callable[..., Any] | None = None) -> None:
        self.handlers[event] = handler

    def connect(self, url: str, **kwargs: Any) -> None:
        self.url = url
        self.connect_kwargs = kwargs
        if self.server.refuse_connect == "auth":
            self.handlers["connect_error"]({"message": "Unauthorized"})
            raise sio_exceptions.ConnectionError("One or more namespaces failed to connect")
        if self.server.refuse_connect == "timeout":
            raise sio_exceptions.ConnectionError("Connection error")
        self.connected = True
        self.server.connections += 1

    def call(self, event: str, data: Any = None, timeout: float | None = None) -> Any:
        if event in self.server.silent:
            raise sio_exceptions.TimeoutError()
        return self.server.handle(event, data)

    def emit(self, event: str, data: Any = None) -> None:
        self.server.handle(event, data)

    def disconnect(self) -> None:
        self.connected = False
        self.server.disconnects += 1


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def settings() -> Settings:
    return Settings(workspace_id=WORKSPACE_ID, api_token="test-token", request_timeout=1.0)


@pytest.fixture
def channel_factory(server: FakeServer):
    """``open_channel`` wired to the in-memory server."""
    return functools.partial(open_channel, client_factory=lambda: FakeSocketClient(server))


@pytest.fixture
def doc_service(settings: Settings, channel_factory) -> DocumentService:
    return DocumentService(settings, channel_factory=channel_factory)


@pytest.fixture
def folder_service(settings: Settings, channel_factory) -> FolderService:
    return FolderService(settings, channel_factory=channel_factory)


@pytest.fixture
def tree() -> BlockTree:
    """A fresh document with page, surface and note, titled 'Test Doc'."""
    block_tree = BlockTree(Doc())
    block_tree.create_page("Test Doc")
    return block_tree


@pytest.fixture
def empty_tree() -> BlockTree:
    """A document with a page but no note or surface."""
    from pycrdt import Text

    from affine_docs.blocks.tree import _new_block

    block_tree = BlockTree(Doc())
    block_tree.blocks["page0"] = _new_block(
        "page0", "affine:page", None, {"prop:title": Text("Bare")}
    )
    return block_tree
