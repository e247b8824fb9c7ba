"""Block vocabulary for AFFiNE documents.

Defines the closed set of block flavours, the caller-facing block types
(with their legacy aliases), and one spec dataclass per block type. A spec
holds only the fields that are legal for its type, so strict validation is
a matter of checking that every supplied field exists on the chosen
variant; the remaining runtime checks cover URL syntax, numeric ranges and
closed enumerations.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Union
from urllib.parse import urlsplit

from ..errors import ValidationError
from .richtext import TextRun

RichText = Union[str, list[TextRun]]


class BlockFlavour(str, Enum):
    """BlockSuite flavours (the ``sys:flavour`` value of a block)."""

    PAGE = "affine:page"
    SURFACE = "affine:surface"
    NOTE = "affine:note"
    PARAGRAPH = "affine:paragraph"
    LIST = "affine:list"
    CODE = "affine:code"
    DIVIDER = "affine:divider"
    CALLOUT = "affine:callout"
    LATEX = "affine:latex"
    TABLE = "affine:table"
    BOOKMARK = "affine:bookmark"
    IMAGE = "affine:image"
    ATTACHMENT = "affine:attachment"
    EMBED_YOUTUBE = "affine:embed-youtube"
    EMBED_GITHUB = "affine:embed-github"
    EMBED_FIGMA = "affine:embed-figma"
    EMBED_LOOM = "affine:embed-loom"
    EMBED_HTML = "affine:embed-html"
    EMBED_LINKED_DOC = "affine:embed-linked-doc"
    EMBED_SYNCED_DOC = "affine:embed-synced-doc"
    EMBED_IFRAME = "affine:embed-iframe"
    DATABASE = "affine:database"
    SURFACE_REF = "affine:surface-ref"
    FRAME = "affine:frame"
    EDGELESS_TEXT = "affine:edgeless-text"


# Never deleted, updated or moved by content operations
STRUCTURAL_FLAVOURS = frozenset(
    {BlockFlavour.PAGE.value, BlockFlavour.SURFACE.value, BlockFlavour.NOTE.value}
)

LIST_STYLES = ("bulleted", "numbered", "todo")
BOOKMARK_STYLES = ("vertical", "horizontal", "list", "cube", "citation")

LEGACY_ALIASES: dict[str, tuple[str, dict[str, Any]]] = {
    "heading1": ("heading", {"level": 1}),
    "heading2": ("heading", {"level": 2}),
    "heading3": ("heading", {"level": 3}),
    "bulleted_list": ("list", {"style": "bulleted"}),
    "numbered_list": ("list", {"style": "numbered"}),
    "todo": ("list", {"style": "todo"}),
}


def placement_kind(flavour: str) -> str:
    """Group a flavour by where it may live: note, frame, edgeless_text or content."""
    if flavour == BlockFlavour.NOTE:
        return "note"
    if flavour == BlockFlavour.FRAME:
        return "frame"
    if flavour == BlockFlavour.EDGELESS_TEXT:
        return "edgeless_text"
    return "content"


# =============================================================================
# Placement
# =============================================================================


@dataclass(frozen=True)
class Placement:
    """Where to put a block.

    Exactly one mode applies: ``after_block_id``, ``before_block_id``,
    ``parent_id`` with optional ``index``, or nothing (type-directed default).
    """

    parent_id: str | None = None
    after_block_id: str | None = None
    before_block_id: str | None = None
    index: int | None = None

    @classmethod
    def build(
        cls,
        *,
        parent_id: str | None = None,
        after_block_id: str | None = None,
        before_block_id: str | None = None,
        index: Any = None,
    ) -> Placement | None:
        """Normalize caller input. Returns None when no placement was requested."""
        parent_id = (parent_id or "").strip() or None
        after_block_id = (after_block_id or "").strip() or None
        before_block_id = (before_block_id or "").strip() or None

        if after_block_id and before_block_id:
            raise ValidationError(
                "after_block_id and before_block_id are mutually exclusive",
                field="placement",
            )
        if index is not None:
            if isinstance(index, bool) or not isinstance(index, int) or index < 0:
                raise ValidationError(
                    "placement index must be an integer greater than or equal to 0",
                    field="placement.index",
                    value=index,
                )
            if after_block_id or before_block_id:
                raise ValidationError(
                    "placement index cannot be combined with after_block_id/before_block_id",
                    field="placement.index",
                )
        if not (parent_id or after_block_id or before_block_id) and index is None:
            return None
        return cls(parent_id, after_block_id, before_block_id, index)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Placement | None:
        if not data:
            return None
        return cls.build(
            parent_id=data.get("parentId") or data.get("parent_id"),
            after_block_id=data.get("afterBlockId") or data.get("after_block_id"),
            before_block_id=data.get("beforeBlockId") or data.get("before_block_id"),
            index=data.get("index"),
        )


# =============================================================================
# Block specs (one variant per block type)
# =============================================================================


@dataclass
class BlockSpec:
    """Common base. ``text`` is accepted by every type."""

    type_name: ClassVar[str] = ""
    flavour: ClassVar[BlockFlavour]
    text: RichText = ""

    def validate(self, strict: bool) -> None:
        """Normalize values and run the checks a field whitelist cannot express."""

    @property
    def block_type(self) -> str | None:
        return None


@dataclass
class ParagraphSpec(BlockSpec):
    type_name: ClassVar[str] = "paragraph"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.PARAGRAPH

    @property
    def block_type(self) -> str:
        return "text"


@dataclass
class HeadingSpec(BlockSpec):
    type_name: ClassVar[str] = "heading"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.PARAGRAPH
    level: Any = 1

    def validate(self, strict: bool) -> None:
        level = _as_int("level", self.level, "Heading level must be an integer from 1 to 6")
        self.level = max(1, min(6, level))

    @property
    def block_type(self) -> str:
        return f"h{self.level}"


@dataclass
class QuoteSpec(BlockSpec):
    type_name: ClassVar[str] = "quote"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.PARAGRAPH

    @property
    def block_type(self) -> str:
        return "quote"


@dataclass
class ListSpec(BlockSpec):
    type_name: ClassVar[str] = "list"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.LIST
    style: str = "bulleted"
    checked: bool | None = None

    def validate(self, strict: bool) -> None:
        if self.style not in LIST_STYLES:
            raise ValidationError(
                f"Invalid list style {self.style!r}",
                field="style",
                value=self.style,
                constraint=", ".join(LIST_STYLES),
            )
        if self.checked is not None and self.style != "todo":
            if strict:
                raise ValidationError(
                    "The 'checked' field can only be used when list style is 'todo'",
                    field="checked",
                )
            self.checked = None
        self.checked = bool(self.checked) if self.style == "todo" else False

    @property
    def block_type(self) -> str:
        return self.style


@dataclass
class CodeSpec(BlockSpec):
    type_name: ClassVar[str] = "code"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.CODE
    language: str = "txt"
    caption: str | None = None

    def validate(self, strict: bool) -> None:
        self.language = (self.language or "txt").strip().lower() or "txt"
        if len(self.language) > 64:
            raise ValidationError(
                "Code language is too long (max 64 chars)", field="language", value=self.language
            )


@dataclass
class DividerSpec(BlockSpec):
    type_name: ClassVar[str] = "divider"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.DIVIDER

    def validate(self, strict: bool) -> None:
        if self.text and strict:
            raise ValidationError("Divider blocks do not accept text", field="text")
        self.text = ""


@dataclass
class CalloutSpec(BlockSpec):
    type_name: ClassVar[str] = "callout"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.CALLOUT


@dataclass
class LatexSpec(BlockSpec):
    type_name: ClassVar[str] = "latex"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.LATEX
    latex: str = ""

    def validate(self, strict: bool) -> None:
        self.latex = (self.latex or "").strip()
        if not self.latex and strict:
            raise ValidationError(
                "latex blocks require a non-empty 'latex' value in strict mode", field="latex"
            )


@dataclass
class TableSpec(BlockSpec):
    type_name: ClassVar[str] = "table"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.TABLE
    rows: Any = 3
    columns: Any = 3
    # Row-major cell contents; filled by the markdown parser
    cells: list[list[RichText]] | None = None

    def validate(self, strict: bool) -> None:
        self.rows = _int_in_range("rows", self.rows, 1, 20, "table rows")
        self.columns = _int_in_range("columns", self.columns, 1, 20, "table columns")


@dataclass
class _UrlSpec(BlockSpec):
    url: str = ""
    caption: str | None = None

    def validate(self, strict: bool) -> None:
        self.url = (self.url or "").strip()
        if not self.url:
            raise ValidationError(f"{self.type_name} blocks require a non-empty url", field="url")
        if not is_valid_url(self.url):
            raise ValidationError(
                f"Invalid url for {self.type_name} block", field="url", value=self.url
            )


@dataclass
class BookmarkSpec(_UrlSpec):
    type_name: ClassVar[str] = "bookmark"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.BOOKMARK
    bookmark_style: str = "horizontal"

    def validate(self, strict: bool) -> None:
        super().validate(strict)
        if self.bookmark_style not in BOOKMARK_STYLES:
            raise ValidationError(
                f"Invalid bookmark style {self.bookmark_style!r}",
                field="bookmark_style",
                value=self.bookmark_style,
                constraint=", ".join(BOOKMARK_STYLES),
            )


@dataclass
class EmbedYoutubeSpec(_UrlSpec):
    type_name: ClassVar[str] = "embed_youtube"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.EMBED_YOUTUBE


@dataclass
class EmbedGithubSpec(_UrlSpec):
    type_name: ClassVar[str] = "embed_github"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.EMBED_GITHUB


@dataclass
class EmbedFigmaSpec(_UrlSpec):
    type_name: ClassVar[str] = "embed_figma"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.EMBED_FIGMA


@dataclass
class EmbedLoomSpec(_UrlSpec):
    type_name: ClassVar[str] = "embed_loom"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.EMBED_LOOM


@dataclass
class EmbedIframeSpec(_UrlSpec):
    type_name: ClassVar[str] = "embed_iframe"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.EMBED_IFRAME
    iframe_url: str | None = None

    def validate(self, strict: bool) -> None:
        super().validate(strict)
        if self.iframe_url is not None:
            self.iframe_url = self.iframe_url.strip()
            if not self.iframe_url and strict:
                raise ValidationError(
                    "embed_iframe iframe_url cannot be empty when provided", field="iframe_url"
                )


@dataclass
class EmbedHtmlSpec(BlockSpec):
    type_name: ClassVar[str] = "embed_html"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.EMBED_HTML
    html: str = ""
    design: str = ""
    caption: str | None = None

    def validate(self, strict: bool) -> None:
        if not self.html and not self.design and strict:
            raise ValidationError("embed_html blocks require html or design", field="html")


@dataclass
class EmbedLinkedDocSpec(BlockSpec):
    type_name: ClassVar[str] = "embed_linked_doc"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.EMBED_LINKED_DOC
    page_id: str = ""
    caption: str | None = None
    title: str | None = None

    def validate(self, strict: bool) -> None:
        self.page_id = (self.page_id or "").strip()
        if not self.page_id:
            raise ValidationError(f"{self.type_name} blocks require page_id", field="page_id")


@dataclass
class EmbedSyncedDocSpec(EmbedLinkedDocSpec):
    type_name: ClassVar[str] = "embed_synced_doc"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.EMBED_SYNCED_DOC


@dataclass
class ImageSpec(BlockSpec):
    type_name: ClassVar[str] = "image"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.IMAGE
    source_id: str = ""
    caption: str | None = None
    size: Any = None
    # Accepted for parity with attachments; images do not store them
    name: str | None = None
    mime_type: str | None = None
    embed: bool | None = None

    def validate(self, strict: bool) -> None:
        self.source_id = (self.source_id or "").strip()
        if not self.source_id:
            raise ValidationError(
                f"{self.type_name} blocks require source_id (upload the blob first)",
                field="source_id",
            )
        self.size = _non_negative_size(self.size)


@dataclass
class AttachmentSpec(ImageSpec):
    type_name: ClassVar[str] = "attachment"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.ATTACHMENT

    def validate(self, strict: bool) -> None:
        super().validate(strict)
        self.name = (self.name or "attachment").strip() or "attachment"
        self.mime_type = (
            (self.mime_type or "application/octet-stream").strip() or "application/octet-stream"
        )
        self.embed = bool(self.embed)


@dataclass
class DatabaseSpec(BlockSpec):
    type_name: ClassVar[str] = "database"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.DATABASE


@dataclass
class DataViewSpec(DatabaseSpec):
    """Stored as a database block; the raw data-view flavour does not render."""

    type_name: ClassVar[str] = "data_view"

    @property
    def block_type(self) -> str:
        return "data_view_fallback"


@dataclass
class SurfaceRefSpec(BlockSpec):
    type_name: ClassVar[str] = "surface_ref"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.SURFACE_REF
    reference: str = ""
    ref_flavour: str = ""
    caption: str | None = None

    def validate(self, strict: bool) -> None:
        self.reference = (self.reference or "").strip()
        self.ref_flavour = (self.ref_flavour or "").strip()
        if not self.reference:
            raise ValidationError(
                "surface_ref blocks require 'reference' (target element/block id)",
                field="reference",
            )
        if not self.ref_flavour:
            raise ValidationError(
                "surface_ref blocks require 'ref_flavour' (for example affine:frame)",
                field="ref_flavour",
            )


@dataclass
class _SizedSpec(BlockSpec):
    width: Any = 100
    height: Any = 100

    def validate(self, strict: bool) -> None:
        for name in ("width", "height"):
            value = getattr(self, name)
            if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
                value = max(1, math.floor(value))
            setattr(
                self, name, _int_in_range(name, value, 1, 10000, f"{self.type_name} {name}")
            )


@dataclass
class FrameSpec(_SizedSpec):
    type_name: ClassVar[str] = "frame"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.FRAME
    background: str = "transparent"

    def validate(self, strict: bool) -> None:
        super().validate(strict)
        self.background = (self.background or "transparent").strip() or "transparent"


@dataclass
class EdgelessTextSpec(_SizedSpec):
    type_name: ClassVar[str] = "edgeless_text"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.EDGELESS_TEXT


@dataclass
class NoteSpec(FrameSpec):
    type_name: ClassVar[str] = "note"
    flavour: ClassVar[BlockFlavour] = BlockFlavour.NOTE


SPEC_TYPES: dict[str, type[BlockSpec]] = {
    cls.type_name: cls
    for cls in (
        ParagraphSpec,
        HeadingSpec,
        QuoteSpec,
        ListSpec,
        CodeSpec,
        DividerSpec,
        CalloutSpec,
        LatexSpec,
        TableSpec,
        BookmarkSpec,
        ImageSpec,
        AttachmentSpec,
        EmbedYoutubeSpec,
        EmbedGithubSpec,
        EmbedFigmaSpec,
        EmbedLoomSpec,
        EmbedHtmlSpec,
        EmbedLinkedDocSpec,
        EmbedSyncedDocSpec,
        EmbedIframeSpec,
        DatabaseSpec,
        DataViewSpec,
        SurfaceRefSpec,
        FrameSpec,
        EdgelessTextSpec,
        NoteSpec,
    )
}

CANONICAL_TYPES = tuple(SPEC_TYPES)

# Fields the markdown parser fills but callers never pass
_INTERNAL_FIELDS = frozenset({"cells"})


def resolve_type(type_name: str) -> tuple[str, dict[str, Any]]:
    """Map a caller type (canonical or legacy alias) to its canonical name and implied fields."""
    key = (type_name or "").strip().lower()
    if key in SPEC_TYPES:
        return key, {}
    if key in LEGACY_ALIASES:
        return LEGACY_ALIASES[key]
    supported = ", ".join([*CANONICAL_TYPES, *LEGACY_ALIASES])
    raise ValidationError(
        f"Unsupported block type {type_name!r}. Supported types: {supported}",
        field="type",
        value=type_name,
    )


def build_block_spec(type_name: str, *, strict: bool = True, **values: Any) -> BlockSpec:
    """Build and validate the spec variant for ``type_name``.

    Fields given as None count as absent. In strict mode a field that does
    not belong to the variant is rejected; otherwise it is dropped.
    """
    canonical, implied = resolve_type(type_name)
    spec_cls = SPEC_TYPES[canonical]
    allowed = {f.name for f in fields(spec_cls)} - _INTERNAL_FIELDS

    accepted: dict[str, Any] = {}
    for name, value in values.items():
        if value is None:
            continue
        if name not in allowed:
            if strict:
                raise ValidationError(
                    f"The {name!r} field is not valid for type={canonical!r}",
                    field=name,
                )
            continue
        accepted[name] = value
    # An alias fixes the list style; an explicit heading level still wins
    for name, value in implied.items():
        if name == "style" or name not in accepted:
            accepted[name] = value

    spec = spec_cls(**accepted)
    spec.validate(strict)
    return spec


# =============================================================================
# Helpers
# =============================================================================


def is_valid_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return bool(parts.scheme) and bool(parts.netloc or parts.path) and " " not in url


def _as_int(name: str, value: Any, message: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(message, field=name, value=value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    if not isinstance(value, int):
        raise ValidationError(message, field=name, value=value)
    return value


def _int_in_range(name: str, value: Any, low: int, high: int, label: str) -> int:
    message = f"{label} must be an integer between {low} and {high}"
    number = _as_int(name, value, message)
    if not low <= number <= high:
        raise ValidationError(message, field=name, value=value, constraint=f"{low}..{high}")
    return number


def _non_negative_size(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return max(0, math.floor(value))
    return 0


__all__ = [
    "BOOKMARK_STYLES",
    "BlockFlavour",
    "BlockSpec",
    "CANONICAL_TYPES",
    "LEGACY_ALIASES",
    "LIST_STYLES",
    "Placement",
    "RichText",
    "SPEC_TYPES",
    "STRUCTURAL_FLAVOURS",
    "build_block_spec",
    "placement_kind",
    "resolve_type",
]
