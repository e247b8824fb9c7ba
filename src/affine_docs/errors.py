"""affine-docs Error Hierarchy.

Provides a structured error hierarchy for all document operations:
- AffineDocsError: Base exception for all library errors
- ValidationError: Bad caller input, detected before any mutation
- NotFoundError: Missing block, parent, document, folder or node
- StructuralProtectionError: Page/surface/note targeted by a content edit
- TransportError: Channel failures (timeouts, auth, version, push rejection)
- ConfigurationError: Missing or invalid settings

Each error type includes:
- Descriptive message
- Optional context for debugging
- Recoverable flag so callers can decide whether to supply more context
- Structured representation for tool responses

Usage:
    from affine_docs.errors import ValidationError, NotFoundError

    if block is None:
        raise NotFoundError("Block not found", resource_type="block", resource_id=block_id)

No error in this package triggers an automatic retry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


# =============================================================================
# Result Type for Explicit Success/Failure
# =============================================================================


@dataclass
class Result(Generic[T]):
    """Structured result that makes success/failure explicit.

    Batch operations collect one Result per item instead of aborting the
    whole batch on the first failure.

    Usage:
        results = [Result.ok(node_id), Result.fail(NotFoundError("missing"))]
        failed = [r for r in results if not r.success]
    """

    success: bool
    value: T | None = None
    error: "AffineDocsError | None" = None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        """Create a successful result."""
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: "AffineDocsError") -> "Result[T]":
        """Create a failed result."""
        return cls(success=False, error=error)

    def unwrap(self) -> T:
        """Get value or raise the error.

        Raises:
            AffineDocsError: If this is a failed result.
        """
        if self.success:
            return self.value  # type: ignore
        if self.error:
            raise self.error
        raise AffineDocsError("Result failed with no error")

    def unwrap_or(self, default: T) -> T:
        """Get value or return default."""
        if self.success:
            return self.value  # type: ignore
        return default


# =============================================================================
# Error Base Classes
# =============================================================================


class AffineDocsError(Exception):
    """Base exception for all affine-docs errors.

    Attributes:
        message: Human-readable error description
        recoverable: Whether the caller can fix the input and try again
        context: Additional context for debugging
    """

    def __init__(
        self,
        message: str,
        *,
        recoverable: bool = False,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to structured dictionary for tool responses."""
        return {
            "type": type(self).__name__.lower().replace("error", ""),
            "message": self.message,
            "recoverable": self.recoverable,
            **{k: v for k, v in self.context.items() if v is not None},
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(AffineDocsError):
    """Input validation failed.

    Raised when a block type, placement or property combination is not
    acceptable. Always raised before the document is touched.

    Example:
        raise ValidationError("Heading level must be an integer", field="level", value="x")
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        recoverable: bool = False,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if field:
            context["field"] = field
        if constraint:
            context["constraint"] = constraint
        if value is not None:
            context["value"] = _truncate(str(value), 100)
        super().__init__(message, recoverable=recoverable, context=context)
        self.field = field
        self.constraint = constraint


class InvalidRangeError(ValidationError):
    """Fractional index bounds are not strictly ordered."""

    def __init__(self, lower: str, upper: str) -> None:
        super().__init__(
            f"{lower!r} should be smaller than {upper!r}",
            constraint="lower < upper",
            context={"lower": lower, "upper": upper},
        )


class PatchTargetNotFoundError(ValidationError):
    """The substring to replace does not occur in the rendered markdown."""

    def __init__(self, old_markdown: str) -> None:
        super().__init__(
            "old_markdown not found in document. Read the document as markdown "
            "first and copy the exact text to replace.",
            field="old_markdown",
            value=old_markdown,
            recoverable=True,
        )


class AmbiguousMatchError(ValidationError):
    """The substring to replace occurs more than once."""

    def __init__(self, old_markdown: str) -> None:
        super().__init__(
            "old_markdown matches multiple locations. Include more surrounding "
            "context to make the match unique.",
            field="old_markdown",
            value=old_markdown,
            recoverable=True,
        )


class TitleOnlyChangeError(ValidationError):
    """The change touches only the title or blank lines."""

    def __init__(self) -> None:
        super().__init__(
            "The change does not overlap any content block. To change the "
            "document title use update_doc_title.",
            field="old_markdown",
            recoverable=True,
        )


# =============================================================================
# Document Errors
# =============================================================================


class NotFoundError(AffineDocsError):
    """Requested block, document, folder or node not found."""

    def __init__(
        self,
        message: str,
        *,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            recoverable=False,
            context={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )


class StructuralProtectionError(AffineDocsError):
    """Attempt to delete, update or move a page, surface or note block."""

    def __init__(self, block_id: str, flavour: str, *, action: str = "modify") -> None:
        super().__init__(
            f"Cannot {action} structural block {block_id!r} ({flavour})",
            recoverable=False,
            context={"block_id": block_id, "flavour": flavour, "action": action},
        )
        self.block_id = block_id
        self.flavour = flavour


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(AffineDocsError):
    """Socket channel operation failed.

    Base class for all transport errors. Never retried automatically.
    """

    def __init__(
        self,
        message: str,
        *,
        event: str | None = None,
        remote_error: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if event:
            context["event"] = event
        if remote_error:
            context["remote_error"] = remote_error
        super().__init__(message, recoverable=False, context=context)
        self.event = event
        self.remote_error = remote_error


class ConnectTimeoutError(TransportError):
    """The channel did not open within the connect timeout."""

    def __init__(self, url: str, timeout: float) -> None:
        super().__init__(
            f"Timed out connecting to {url} after {timeout}s",
            context={"url": url, "timeout_seconds": timeout},
        )


class AuthError(TransportError):
    """The server rejected the credentials during the handshake."""


class VersionMismatchError(TransportError):
    """The server refused the join because of the client version."""

    def __init__(self, workspace_id: str, client_version: str) -> None:
        super().__init__(
            f"Server rejected client version {client_version} for workspace {workspace_id}",
            event="space:join",
            context={"workspace_id": workspace_id, "client_version": client_version},
        )


class JoinTimeoutError(TransportError):
    """No acknowledgement for space:join."""


class PushTimeoutError(TransportError):
    """No acknowledgement for space:push-doc-update."""


class PushRejectedError(TransportError):
    """The server acknowledged a push with an error."""


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(AffineDocsError):
    """Configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        *,
        setting: str | None = None,
    ) -> None:
        super().__init__(
            message,
            recoverable=False,
            context={"setting": setting},
        )


# =============================================================================
# Utilities
# =============================================================================


def _truncate(value: str | None, max_len: int) -> str | None:
    """Truncate a string value for safe logging."""
    if value is None:
        return None
    if len(value) <= max_len:
        return value
    return value[:max_len] + "..."
