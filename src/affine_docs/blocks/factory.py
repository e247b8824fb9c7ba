"""Flavour-specific property bags for new blocks.

``block_content`` turns a validated spec into the BlockSuite properties a
freshly created block needs. Rich text values cannot be formatted before
they are attached to a document, so text properties are returned as empty
``Text`` placeholders plus a list of ``(path, content)`` pairs that the tree
writes once the block is integrated.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import Any

from pycrdt import Array, Map, Text

from .models import (
    AttachmentSpec,
    BlockFlavour,
    BlockSpec,
    BookmarkSpec,
    CalloutSpec,
    CodeSpec,
    DatabaseSpec,
    DividerSpec,
    EdgelessTextSpec,
    EmbedFigmaSpec,
    EmbedGithubSpec,
    EmbedHtmlSpec,
    EmbedIframeSpec,
    EmbedLinkedDocSpec,
    EmbedLoomSpec,
    EmbedSyncedDocSpec,
    EmbedYoutubeSpec,
    FrameSpec,
    HeadingSpec,
    ImageSpec,
    LatexSpec,
    ListSpec,
    NoteSpec,
    ParagraphSpec,
    QuoteSpec,
    RichText,
    SurfaceRefSpec,
    TableSpec,
)

_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-"
BLOCK_ID_LENGTH = 10

BLOCK_VERSIONS = {BlockFlavour.PAGE.value: 2, BlockFlavour.SURFACE.value: 5}

# Canvas placement defaults shared by most embeddable blocks
_CANVAS = {"prop:index": "a0", "prop:xywh": "[0,0,0,0]", "prop:lockedBySelf": False}


def generate_block_id(length: int = BLOCK_ID_LENGTH) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def block_version(flavour: str) -> int:
    return BLOCK_VERSIONS.get(flavour, 1)


@dataclass
class BlockContent:
    flavour: str
    props: dict[str, Any]
    texts: list[tuple[tuple[str, ...], RichText]] = field(default_factory=list)
    block_type: str | None = None


def note_props(width: int = 800, height: int = 95, background: Any = None) -> dict[str, Any]:
    """Properties of a page-level note block."""
    if background is None:
        background = Map({"light": "#ffffff", "dark": "#252525"})
    return {
        "prop:xywh": f"[0,0,{width},{height}]",
        "prop:background": background,
        "prop:index": "a0",
        "prop:lockedBySelf": False,
        "prop:hidden": False,
        "prop:displayMode": "both",
        "prop:edgeless": Map(
            {
                "style": Map(
                    {
                        "borderRadius": 8,
                        "borderSize": 1,
                        "borderStyle": "solid",
                        "shadowType": "none",
                    }
                )
            }
        ),
    }


def surface_props() -> dict[str, Any]:
    return {
        "prop:elements": Map({"type": "$blocksuite:internal:native$", "value": Map()}),
    }


def _text(spec_text: RichText, key: str = "prop:text") -> tuple[dict[str, Any], list]:
    return {key: Text()}, [((key,), spec_text)]


def block_content(spec: BlockSpec) -> BlockContent:
    """Build the property bag for ``spec``."""
    flavour = spec.flavour.value

    if isinstance(spec, (ParagraphSpec, HeadingSpec, QuoteSpec)):
        props, texts = _text(spec.text)
        props["prop:type"] = spec.block_type
        return BlockContent(flavour, props, texts, spec.block_type)

    if isinstance(spec, ListSpec):
        props, texts = _text(spec.text)
        props["prop:type"] = spec.style
        props["prop:checked"] = bool(spec.checked)
        return BlockContent(flavour, props, texts, spec.style)

    if isinstance(spec, CodeSpec):
        props, texts = _text(spec.text)
        props["prop:language"] = spec.language
        if spec.caption:
            props["prop:caption"] = spec.caption
        return BlockContent(flavour, props, texts)

    if isinstance(spec, DividerSpec):
        return BlockContent(flavour, {})

    if isinstance(spec, CalloutSpec):
        props, texts = _text(spec.text)
        props["prop:icon"] = {"type": "emoji", "unicode": "\U0001f4a1"}
        props["prop:backgroundColorName"] = "grey"
        return BlockContent(flavour, props, texts)

    if isinstance(spec, LatexSpec):
        return BlockContent(
            flavour,
            {
                "prop:xywh": "[0,0,16,16]",
                "prop:index": "a0",
                "prop:lockedBySelf": False,
                "prop:scale": 1,
                "prop:rotate": 0,
                "prop:latex": spec.latex,
            },
        )

    if isinstance(spec, TableSpec):
        return _table_content(spec)

    if isinstance(spec, BookmarkSpec):
        return BlockContent(
            flavour,
            {
                **_CANVAS,
                "prop:style": spec.bookmark_style,
                "prop:url": spec.url,
                "prop:caption": spec.caption,
                "prop:description": None,
                "prop:icon": None,
                "prop:image": None,
                "prop:title": None,
                "prop:rotate": 0,
                "prop:footnoteIdentifier": None,
            },
        )

    if isinstance(spec, AttachmentSpec):
        props = {
            **_CANVAS,
            "prop:name": spec.name,
            "prop:size": spec.size,
            "prop:type": spec.mime_type,
            "prop:sourceId": spec.source_id,
            "prop:embed": spec.embed,
            "prop:style": "horizontalThin",
            "prop:rotate": 0,
            "prop:footnoteIdentifier": None,
        }
        if spec.caption is not None:
            props["prop:caption"] = spec.caption
        return BlockContent(flavour, props)

    if isinstance(spec, ImageSpec):
        return BlockContent(
            flavour,
            {
                **_CANVAS,
                "prop:caption": spec.caption or "",
                "prop:sourceId": spec.source_id,
                "prop:width": 0,
                "prop:height": 0,
                "prop:size": spec.size or -1,
                "prop:rotate": 0,
            },
        )

    if isinstance(spec, EmbedYoutubeSpec):
        return _embed_content(
            spec, "video", "image", "creator", "creatorUrl", "creatorImage", "videoId"
        )
    if isinstance(spec, EmbedGithubSpec):
        content = _embed_content(
            spec, "horizontal", "image", "status", "statusReason", "createdAt", "assignees"
        )
        content.props.update(
            {"prop:owner": "", "prop:repo": "", "prop:githubType": "issue", "prop:githubId": ""}
        )
        return content
    if isinstance(spec, EmbedFigmaSpec):
        return _embed_content(spec, "figma")
    if isinstance(spec, EmbedLoomSpec):
        return _embed_content(spec, "video", "image", "videoId")

    if isinstance(spec, EmbedIframeSpec):
        return BlockContent(
            flavour,
            {
                **_CANVAS,
                "prop:scale": 1,
                "prop:url": spec.url,
                "prop:iframeUrl": spec.iframe_url or spec.url,
                "prop:caption": spec.caption,
                "prop:title": None,
                "prop:description": None,
            },
        )

    if isinstance(spec, EmbedHtmlSpec):
        props = {**_CANVAS, "prop:rotate": 0, "prop:style": "html", "prop:caption": spec.caption}
        if spec.html:
            props["prop:html"] = spec.html
        if spec.design:
            props["prop:design"] = spec.design
        return BlockContent(flavour, props)

    if isinstance(spec, EmbedSyncedDocSpec):
        props = {
            **_CANVAS,
            "prop:xywh": "[0,0,800,100]",
            "prop:rotate": 0,
            "prop:style": "syncedDoc",
            "prop:pageId": spec.page_id,
        }
        if spec.caption is not None:
            props["prop:caption"] = spec.caption
        return BlockContent(flavour, props)

    if isinstance(spec, EmbedLinkedDocSpec):
        props = {
            **_CANVAS,
            "prop:rotate": 0,
            "prop:style": "horizontal",
            "prop:caption": spec.caption,
            "prop:pageId": spec.page_id,
            "prop:footnoteIdentifier": None,
        }
        if spec.title:
            props["prop:title"] = spec.title
        return BlockContent(flavour, props)

    if isinstance(spec, DatabaseSpec):
        props, texts = _text(spec.text, "prop:title")
        props.update({"prop:views": Array(), "prop:cells": Map(), "prop:columns": Array()})
        return BlockContent(flavour, props, texts, spec.block_type)

    if isinstance(spec, SurfaceRefSpec):
        return BlockContent(
            flavour,
            {
                "prop:reference": spec.reference,
                "prop:caption": spec.caption or "",
                "prop:refFlavour": spec.ref_flavour,
            },
        )

    if isinstance(spec, NoteSpec):
        return BlockContent(
            flavour, note_props(spec.width, spec.height, background=spec.background)
        )

    if isinstance(spec, FrameSpec):
        props, texts = _text(spec.text or "Frame", "prop:title")
        props.update(
            {
                "prop:background": spec.background,
                "prop:xywh": f"[0,0,{spec.width},{spec.height}]",
                "prop:index": "a0",
                "prop:childElementIds": Map(),
                "prop:presentationIndex": "a0",
                "prop:lockedBySelf": False,
            }
        )
        return BlockContent(flavour, props, texts)

    if isinstance(spec, EdgelessTextSpec):
        return BlockContent(
            flavour,
            {
                "prop:xywh": f"[0,0,{spec.width},{spec.height}]",
                "prop:index": "a0",
                "prop:lockedBySelf": False,
                "prop:scale": 1,
                "prop:rotate": 0,
                "prop:hasMaxWidth": False,
                "prop:color": "black",
                "prop:fontFamily": "Inter",
                "prop:fontStyle": "normal",
                "prop:fontWeight": "regular",
                "prop:textAlign": "left",
            },
        )

    raise TypeError(f"No property builder for {type(spec).__name__}")


def _embed_content(spec: Any, style: str, *nullable: str) -> BlockContent:
    props = {
        **_CANVAS,
        "prop:rotate": 0,
        "prop:style": style,
        "prop:url": spec.url,
        "prop:caption": spec.caption,
        "prop:title": None,
        "prop:description": None,
    }
    for name in nullable:
        props[f"prop:{name}"] = None
    return BlockContent(spec.flavour.value, props)


def _table_content(spec: TableSpec) -> BlockContent:
    row_ids = [generate_block_id() for _ in range(spec.rows)]
    column_ids = [generate_block_id() for _ in range(spec.columns)]
    rows = {rid: {"rowId": rid, "order": f"r{i:04d}"} for i, rid in enumerate(row_ids)}
    columns = {cid: {"columnId": cid, "order": f"c{i:04d}"} for i, cid in enumerate(column_ids)}

    cells: dict[str, Map] = {}
    texts: list[tuple[tuple[str, ...], RichText]] = []
    for r, rid in enumerate(row_ids):
        for c, cid in enumerate(column_ids):
            key = f"{rid}:{cid}"
            cells[key] = Map({"text": Text()})
            content: RichText = ""
            if spec.cells is not None and r < len(spec.cells) and c < len(spec.cells[r]):
                content = spec.cells[r][c]
            if content:
                texts.append((("prop:cells", key, "text"), content))

    return BlockContent(
        spec.flavour.value,
        {"prop:rows": rows, "prop:columns": columns, "prop:cells": Map(cells)},
        texts,
    )
