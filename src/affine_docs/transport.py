"""Socket.io sync channel for AFFiNE workspace documents.

One channel per logical operation:

    with open_channel(settings, workspace_id) as channel:
        snapshot = channel.load_snapshot(workspace_id, doc_id)
        ...
        channel.push_update(workspace_id, doc_id, delta)

The channel is always disconnected when the ``with`` block exits, whether
it exits normally or by an exception. Remote calls time out and raise;
nothing here retries.
"""

from __future__ import annotations

import base64
import logging
import time
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

import socketio
from pycrdt import Doc, TransactionEvent
from socketio import exceptions as sio_exceptions

from .config import Settings
from .errors import (
    AuthError,
    ConnectTimeoutError,
    JoinTimeoutError,
    PushRejectedError,
    PushTimeoutError,
    TransportError,
    VersionMismatchError,
)

logger = logging.getLogger(__name__)

SPACE_TYPE = "workspace"
SOCKETIO_PATH = "/socket.io/"
DOC_NOT_FOUND = "DOC_NOT_FOUND"

# v1 update with no structs and an empty delete set
EMPTY_UPDATE = b"\x00\x00"

_AUTH_MARKERS = ("401", "403", "unauthorized", "forbidden", "auth")


def _default_client() -> Any:
    return socketio.Client(reconnection=False)


def encode_update(update: bytes) -> str:
    return base64.b64encode(update).decode("ascii")


def decode_update(payload: str | None) -> bytes | None:
    if not payload:
        return None
    return base64.b64decode(payload)


@dataclass(frozen=True)
class DocSnapshot:
    """Result of ``space:load-doc``.

    ``missing`` is the full document update the client lacks; it is None
    when the document does not exist on the server yet.
    """

    missing: bytes | None = None
    state: bytes | None = None
    timestamp: int | None = None

    @property
    def exists(self) -> bool:
        return self.missing is not None


class WorkspaceChannel:
    """A connected socket.io client speaking the AFFiNE ``space:*`` events."""

    def __init__(self, client: Any, *, timeout: float, client_version: str) -> None:
        self._client = client
        self._timeout = timeout
        self._client_version = client_version
        self._closed = False

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def join(self, workspace_id: str) -> None:
        """Join a workspace space.

        Raises:
            VersionMismatchError: The server answered ``success: false``.
            JoinTimeoutError: No acknowledgement within the request timeout.
            TransportError: Any other acknowledged error.
        """
        payload = {
            "spaceType": SPACE_TYPE,
            "spaceId": workspace_id,
            "clientVersion": self._client_version,
        }
        ack = self._call("space:join", payload, timeout_error=JoinTimeoutError)
        error = ack.get("error")
        if error:
            raise TransportError(
                error.get("message") or "join failed",
                event="space:join",
                remote_error=error.get("name"),
            )
        data = ack.get("data") or {}
        if data.get("success") is False:
            raise VersionMismatchError(workspace_id, self._client_version)
        logger.debug("Joined workspace %s", workspace_id)

    def load_snapshot(self, workspace_id: str, doc_id: str) -> DocSnapshot:
        """Load a document snapshot. A document the server does not have yields an empty snapshot."""
        payload = {"spaceType": SPACE_TYPE, "spaceId": workspace_id, "docId": doc_id}
        ack = self._call("space:load-doc", payload, timeout_error=TransportError)
        error = ack.get("error")
        if error:
            if error.get("name") == DOC_NOT_FOUND:
                logger.debug("Doc %s not found in %s", doc_id, workspace_id)
                return DocSnapshot()
            raise TransportError(
                error.get("message") or "load-doc failed",
                event="space:load-doc",
                remote_error=error.get("name"),
            )
        data = ack.get("data") or {}
        snapshot = DocSnapshot(
            missing=decode_update(data.get("missing")),
            state=decode_update(data.get("state")),
            timestamp=data.get("timestamp"),
        )
        logger.debug(
            "Loaded doc %s (%d bytes)", doc_id, len(snapshot.missing) if snapshot.missing else 0
        )
        return snapshot

    def push_update(self, workspace_id: str, doc_id: str, update: bytes) -> int:
        """Push a binary delta and return the server timestamp in milliseconds."""
        payload = {
            "spaceType": SPACE_TYPE,
            "spaceId": workspace_id,
            "docId": doc_id,
            "update": encode_update(update),
        }
        ack = self._call("space:push-doc-update", payload, timeout_error=PushTimeoutError)
        error = ack.get("error")
        if error:
            raise PushRejectedError(
                error.get("message") or "push-doc-update failed",
                event="space:push-doc-update",
                remote_error=error.get("name"),
            )
        data = ack.get("data") or {}
        timestamp = data.get("timestamp") or int(time.time() * 1000)
        logger.debug("Pushed %d bytes to doc %s", len(update), doc_id)
        return timestamp

    def delete_document(self, workspace_id: str, doc_id: str) -> None:
        """Ask the server to delete a document. Fire-and-forget."""
        payload = {"spaceType": SPACE_TYPE, "spaceId": workspace_id, "docId": doc_id}
        self._client.emit("space:delete-doc", payload)
        logger.debug("Requested delete of doc %s", doc_id)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._client.disconnect()
        except sio_exceptions.SocketIOError as exc:
            logger.warning("Error while disconnecting socket: %s", exc)

    def __enter__(self) -> WorkspaceChannel:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _call(
        self,
        event: str,
        payload: dict[str, Any],
        *,
        timeout_error: type[TransportError],
    ) -> dict[str, Any]:
        logger.debug("-> %s", event)
        try:
            ack = self._client.call(event, payload, timeout=self._timeout)
        except sio_exceptions.TimeoutError as exc:
            raise timeout_error(
                f"No acknowledgement for {event} within {self._timeout}s", event=event
            ) from exc
        except sio_exceptions.SocketIOError as exc:
            raise TransportError(f"{event} failed: {exc}", event=event) from exc
        if isinstance(ack, (list, tuple)):
            ack = ack[0] if ack else None
        return ack if isinstance(ack, dict) else {}


def connect(
    url: str,
    headers: dict[str, str] | None = None,
    *,
    timeout: float,
    request_timeout: float,
    client_version: str,
    client_factory: Callable[[], Any] | None = None,
) -> WorkspaceChannel:
    """Open a websocket-only socket.io connection.

    Raises:
        AuthError: The server refused the handshake.
        ConnectTimeoutError: The connection was not established in time.
    """
    client = (client_factory or _default_client)()
    rejected: list[Any] = []
    client.on("connect_error", lambda data=None: rejected.append(data))

    logger.debug("Connecting to %s", url)
    try:
        client.connect(
            url,
            headers=headers or {},
            transports=["websocket"],
            socketio_path=SOCKETIO_PATH,
            wait_timeout=timeout,
        )
    except sio_exceptions.ConnectionError as exc:
        detail = str(exc)
        if rejected or any(marker in detail.lower() for marker in _AUTH_MARKERS):
            reason = rejected[0] if rejected and rejected[0] else detail
            if isinstance(reason, dict):
                reason = reason.get("message") or str(reason)
            raise AuthError(f"Server rejected the connection: {reason}") from exc
        raise ConnectTimeoutError(url, timeout) from exc
    return WorkspaceChannel(client, timeout=request_timeout, client_version=client_version)


def load_doc(channel: WorkspaceChannel, workspace_id: str, doc_id: str) -> tuple[Doc, bool]:
    """Load ``doc_id`` into a fresh ``Doc``. Returns the doc and whether it exists remotely."""
    snapshot = channel.load_snapshot(workspace_id, doc_id)
    doc: Doc = Doc()
    if snapshot.missing:
        doc.apply_update(snapshot.missing)
    return doc, snapshot.exists


class DocChanges:
    """Records whether any transaction on ``doc`` inserted or deleted content.

    Deletions leave the state vector untouched, so the per-transaction
    updates are inspected instead:

        with DocChanges(doc) as changes:
            tree.delete_block(block_id)
        push_changes(channel, workspace_id, doc_id, changes)
    """

    def __init__(self, doc: Doc) -> None:
        self.doc = doc
        self.state = doc.get_state()
        self.changed = False
        self._subscription: Any = None

    def _on_transaction(self, event: TransactionEvent) -> None:
        if event.update != EMPTY_UPDATE:
            self.changed = True

    def __enter__(self) -> DocChanges:
        self._subscription = self.doc.observe(self._on_transaction)
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.doc.unobserve(self._subscription)
        self._subscription = None

    def update(self) -> bytes:
        """Everything the doc gained since it started being watched, deletions included."""
        return self.doc.get_update(self.state)


def push_changes(
    channel: WorkspaceChannel,
    workspace_id: str,
    doc_id: str,
    changes: DocChanges,
) -> int | None:
    """Push what ``changes`` recorded.

    Returns the server timestamp, or None when no transaction touched the
    doc and nothing was sent.
    """
    if not changes.changed:
        logger.debug("No changes to push for doc %s", doc_id)
        return None
    return channel.push_update(workspace_id, doc_id, changes.update())


@contextmanager
def open_channel(
    settings: Settings,
    workspace_id: str,
    *,
    client_factory: Callable[[], Any] | None = None,
) -> Iterator[WorkspaceChannel]:
    """Connect, join ``workspace_id`` and yield the channel; always disconnect."""
    channel = connect(
        settings.socket_url,
        settings.auth_headers(),
        timeout=settings.connect_timeout,
        request_timeout=settings.request_timeout,
        client_version=settings.client_version,
        client_factory=client_factory,
    )
    try:
        channel.join(workspace_id)
        yield channel
    finally:
        channel.close()


# Anything called like ``open_channel(settings, workspace_id)``
ChannelFactory = Callable[[Settings, str], AbstractContextManager[WorkspaceChannel]]
