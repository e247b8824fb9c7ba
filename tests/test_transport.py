"""Tests for transport.py - Socket.io sync channel.

Tests:
- Connect options and handshake failures
- Join, load, push and delete acknowledgements
- Error and timeout mapping
- Channel release on every exit path
"""

from __future__ import annotations

import base64

import pytest
from pycrdt import Doc, Map

from affine_docs.config import Settings
from affine_docs.errors import (
    AuthError,
    ConnectTimeoutError,
    JoinTimeoutError,
    PushRejectedError,
    PushTimeoutError,
    TransportError,
    VersionMismatchError,
)
from affine_docs.transport import (
    SOCKETIO_PATH,
    DocChanges,
    WorkspaceChannel,
    connect,
    decode_update,
    encode_update,
    load_doc,
    open_channel,
    push_changes,
)

from conftest import WORKSPACE_ID, FakeServer, FakeSocketClient


def _channel(server: FakeServer) -> WorkspaceChannel:
    client = FakeSocketClient(server)
    client.connect("ws://test")
    return WorkspaceChannel(client, timeout=1.0, client_version="0.26.2")


# =============================================================================
# Connect
# =============================================================================


class TestConnect:
    """Test opening the socket."""

    def test_websocket_only(self, server: FakeServer) -> None:
        """The client connects over websocket with the AFFiNE socket path."""
        clients: list[FakeSocketClient] = []

        def factory() -> FakeSocketClient:
            clients.append(FakeSocketClient(server))
            return clients[-1]

        connect(
            "wss://app.example.com",
            {"Authorization": "Bearer x"},
            timeout=5,
            request_timeout=7,
            client_version="0.26.2",
            client_factory=factory,
        )

        kwargs = clients[0].connect_kwargs
        assert clients[0].url == "wss://app.example.com"
        assert kwargs["transports"] == ["websocket"]
        assert kwargs["socketio_path"] == SOCKETIO_PATH
        assert kwargs["headers"] == {"Authorization": "Bearer x"}
        assert kwargs["wait_timeout"] == 5

    def test_auth_rejected(self, server: FakeServer) -> None:
        """A handshake refused by the server raises AuthError."""
        server.refuse_connect = "auth"

        with pytest.raises(AuthError, match="Unauthorized"):
            connect(
                "ws://test",
                timeout=1,
                request_timeout=1,
                client_version="0.26.2",
                client_factory=lambda: FakeSocketClient(server),
            )

    def test_connect_timeout(self, server: FakeServer) -> None:
        """A connection that never opens raises ConnectTimeoutError."""
        server.refuse_connect = "timeout"

        with pytest.raises(ConnectTimeoutError) as exc_info:
            connect(
                "ws://test",
                timeout=3,
                request_timeout=1,
                client_version="0.26.2",
                client_factory=lambda: FakeSocketClient(server),
            )

        assert exc_info.value.context["timeout_seconds"] == 3


# =============================================================================
# Events
# =============================================================================


class TestJoin:
    """Test space:join."""

    def test_join_payload(self, server: FakeServer) -> None:
        """Join sends the workspace space type, id and client version."""
        _channel(server).join(WORKSPACE_ID)

        event, payload = server.events[-1]
        assert event == "space:join"
        assert payload == {
            "spaceType": "workspace",
            "spaceId": WORKSPACE_ID,
            "clientVersion": "0.26.2",
        }

    def test_version_mismatch(self, server: FakeServer) -> None:
        """success: false means the server refused the client version."""
        server.join_ack = {"data": {"success": False}}

        with pytest.raises(VersionMismatchError):
            _channel(server).join(WORKSPACE_ID)

    def test_join_timeout(self, server: FakeServer) -> None:
        """No acknowledgement raises JoinTimeoutError."""
        server.silent.add("space:join")

        with pytest.raises(JoinTimeoutError):
            _channel(server).join(WORKSPACE_ID)

    def test_join_error_ack(self, server: FakeServer) -> None:
        """An error acknowledgement surfaces as TransportError."""
        server.join_ack = {"error": {"name": "SPACE_ACCESS_DENIED", "message": "denied"}}

        with pytest.raises(TransportError) as exc_info:
            _channel(server).join(WORKSPACE_ID)

        assert exc_info.value.remote_error == "SPACE_ACCESS_DENIED"


class TestLoadSnapshot:
    """Test space:load-doc."""

    def test_missing_doc_is_empty(self, server: FakeServer) -> None:
        """DOC_NOT_FOUND yields an empty snapshot, not an error."""
        snapshot = _channel(server).load_snapshot(WORKSPACE_ID, "nope")

        assert snapshot.missing is None
        assert snapshot.exists is False

    def test_existing_doc(self, server: FakeServer) -> None:
        """An existing doc comes back as a decoded update."""
        doc = Doc()
        doc.get("meta", type=Map)["title"] = "Hello"
        server.seed("d1", doc)

        snapshot = _channel(server).load_snapshot(WORKSPACE_ID, "d1")

        assert snapshot.exists
        loaded = Doc()
        loaded.apply_update(snapshot.missing)
        assert loaded.get("meta", type=Map)["title"] == "Hello"

    def test_other_error_surfaces(self, server: FakeServer) -> None:
        """Any other acknowledged error is raised."""
        server.acks["space:load-doc"] = {"error": {"name": "INTERNAL", "message": "boom"}}

        with pytest.raises(TransportError, match="boom"):
            _channel(server).load_snapshot(WORKSPACE_ID, "d1")

    def test_load_doc_helper(self, server: FakeServer) -> None:
        """load_doc returns a fresh Doc and whether it exists remotely."""
        doc, exists = load_doc(_channel(server), WORKSPACE_ID, "nope")

        assert exists is False
        assert isinstance(doc, Doc)


class TestPushUpdate:
    """Test space:push-doc-update."""

    def test_push_returns_timestamp(self, server: FakeServer) -> None:
        """The server timestamp is returned."""
        doc = Doc()
        doc.get("meta", type=Map)["title"] = "x"

        timestamp = _channel(server).push_update(WORKSPACE_ID, "d1", doc.get_update())

        assert timestamp == server.push_timestamp
        assert server.pushed_doc_ids() == ["d1"]

    def test_push_without_timestamp(self, server: FakeServer) -> None:
        """A missing timestamp falls back to the local clock in milliseconds."""
        server.push_timestamp = None

        timestamp = _channel(server).push_update(WORKSPACE_ID, "d1", Doc().get_update())

        assert timestamp > 1_600_000_000_000

    def test_push_rejected(self, server: FakeServer) -> None:
        """An error acknowledgement raises PushRejectedError."""
        server.acks["space:push-doc-update"] = {"error": {"name": "BAD", "message": "rejected"}}

        with pytest.raises(PushRejectedError):
            _channel(server).push_update(WORKSPACE_ID, "d1", b"\x00\x00")

    def test_push_timeout(self, server: FakeServer) -> None:
        """No acknowledgement raises PushTimeoutError."""
        server.silent.add("space:push-doc-update")

        with pytest.raises(PushTimeoutError):
            _channel(server).push_update(WORKSPACE_ID, "d1", b"\x00\x00")

    def test_payload_is_base64(self, server: FakeServer) -> None:
        """The update travels base64 encoded."""
        _channel(server).push_update(WORKSPACE_ID, "d1", Doc().get_update())

        _, payload = server.events[-1]
        assert base64.b64decode(payload["update"]) == server.pushes[-1][1]


class TestPushChanges:
    """Test change tracking and push elision."""

    def test_unchanged_doc_not_pushed(self, server: FakeServer) -> None:
        """A doc no transaction touched sends nothing."""
        doc = Doc()
        with DocChanges(doc) as changes:
            doc.get("meta", type=Map)

        result = push_changes(_channel(server), WORKSPACE_ID, "d1", changes)

        assert result is None
        assert server.pushes == []

    def test_changed_doc_pushes_delta(self, server: FakeServer) -> None:
        """Changes made while watched are pushed once."""
        doc = Doc()
        with DocChanges(doc) as changes:
            doc.get("meta", type=Map)["title"] = "changed"

        push_changes(_channel(server), WORKSPACE_ID, "d1", changes)

        assert server.pushed_doc_ids() == ["d1"]
        assert server.snapshot("d1").get("meta", type=Map)["title"] == "changed"

    def test_delete_only_edit_is_pushed(self, server: FakeServer) -> None:
        """A deletion leaves the state vector alone but is still sent."""
        seeded = Doc()
        seeded_meta = seeded.get("meta", type=Map)
        seeded_meta["keep"] = "yes"
        seeded_meta["drop"] = "no"
        server.seed("d1", seeded)
        channel = _channel(server)
        doc, _ = load_doc(channel, WORKSPACE_ID, "d1")
        meta = doc.get("meta", type=Map)

        with DocChanges(doc) as changes:
            del meta["drop"]
        push_changes(channel, WORKSPACE_ID, "d1", changes)

        assert doc.get_state() == changes.state
        assert changes.changed
        assert server.pushed_doc_ids() == ["d1"]
        assert server.snapshot("d1").get("meta", type=Map).to_py() == {"keep": "yes"}


class TestDelete:
    """Test space:delete-doc."""

    def test_delete_is_emitted(self, server: FakeServer) -> None:
        """Delete is a fire-and-forget emit."""
        _channel(server).delete_document(WORKSPACE_ID, "d1")

        assert server.deleted == ["d1"]


# =============================================================================
# Lifecycle
# =============================================================================


class TestOpenChannel:
    """Test the scoped channel."""

    def test_disconnects_on_success(self, server: FakeServer, settings: Settings) -> None:
        """The channel joins and is released after the block."""
        with open_channel(
            settings, WORKSPACE_ID, client_factory=lambda: FakeSocketClient(server)
        ) as channel:
            channel.load_snapshot(WORKSPACE_ID, "d1")

        assert server.events[0][0] == "space:join"
        assert server.disconnects == 1

    def test_disconnects_on_error(self, server: FakeServer, settings: Settings) -> None:
        """The channel is released when the body raises."""
        with pytest.raises(RuntimeError):
            with open_channel(settings, WORKSPACE_ID, client_factory=lambda: FakeSocketClient(server)):
                raise RuntimeError("boom")

        assert server.disconnects == 1

    def test_disconnects_when_join_fails(self, server: FakeServer, settings: Settings) -> None:
        """A failed join still releases the channel."""
        server.join_ack = {"data": {"success": False}}

        with pytest.raises(VersionMismatchError):
            with open_channel(settings, WORKSPACE_ID, client_factory=lambda: FakeSocketClient(server)):
                pass

        assert server.disconnects == 1

    def test_close_is_idempotent(self, server: FakeServer) -> None:
        """Closing twice disconnects once."""
        channel = _channel(server)
        channel.close()
        channel.close()

        assert server.disconnects == 1


class TestCodec:
    """Test payload encoding."""

    def test_decode_empty(self) -> None:
        """Empty payloads decode to None."""
        assert decode_update(None) is None
        assert decode_update("") is None

    def test_encode_decode(self) -> None:
        """Encoding is plain base64."""
        assert decode_update(encode_update(b"\x01\x02")) == b"\x01\x02"
