"""Parse Markdown into AFFiNE blocks.

This module converts Markdown text into block specs using the mistletoe
library, then writes them into a block tree. Besides CommonMark and GFM
tables it understands the AFFiNE single-paragraph sentinels produced by
the renderer:
- ``$$...$$`` becomes a latex block
- a paragraph starting with the attachment glyph becomes an attachment
- a paragraph holding only an image becomes an image block
- a paragraph holding only an ``affine://`` link becomes a linked doc
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from mistletoe import Document
from mistletoe.block_token import (
    BlockCode,
    CodeFence,
    Heading,
    List,
    ListItem,
    Paragraph,
    Quote,
    SetextHeading,
    Table,
    TableRow,
    ThematicBreak,
)
from mistletoe.span_token import (
    AutoLink,
    Emphasis,
    EscapeSequence,
    Image,
    InlineCode,
    LineBreak,
    Link,
    RawText,
    Strikethrough,
    Strong,
)

from .markdown_renderer import AFFINE_LINK_SCHEME, ATTACHMENT_GLYPH
from .models import (
    AttachmentSpec,
    BlockSpec,
    CodeSpec,
    DividerSpec,
    EmbedLinkedDocSpec,
    HeadingSpec,
    ImageSpec,
    LatexSpec,
    ListSpec,
    ParagraphSpec,
    QuoteSpec,
    TableSpec,
)
from .richtext import TextRun, merge_runs
from .tree import BlockTree

_LATEX = re.compile(r"^\$\$([\s\S]+)\$\$$")
_ATTACHMENT = re.compile(rf"^{ATTACHMENT_GLYPH}\s+(.+)$")
_TODO = re.compile(r"^\[([ xX])\]\s*")
_UNDERLINE_TAG = re.compile(r"(</?u>)")


@dataclass
class ParsedBlock:
    """A block spec plus the blocks nested under it."""

    spec: BlockSpec
    children: list[ParsedBlock] = field(default_factory=list)


def parse_markdown(markdown: str) -> list[ParsedBlock]:
    """Parse Markdown text into a forest of block specs.

    Args:
        markdown: The Markdown text to parse.

    Returns:
        Top-level parsed blocks in document order. Unsupported tokens are skipped.
    """
    doc = Document(markdown)
    blocks: list[ParsedBlock] = []
    for token in doc.children:
        blocks.extend(_convert_token(token))
    return blocks


def insert_markdown(
    tree: BlockTree, parent_id: str, markdown: str, index: int | None = None
) -> list[str]:
    """Parse ``markdown`` and insert the blocks under ``parent_id``.

    Args:
        tree: Target block tree.
        parent_id: Parent for the top-level parsed blocks.
        markdown: The Markdown text to parse.
        index: Position among the parent's children; None appends.

    Returns:
        Ids of the created top-level blocks, in document order.
    """
    parsed = parse_markdown(markdown)
    created: list[str] = []
    position = len(tree.child_ids(parent_id)) if index is None else index
    with tree.doc.transaction():
        for block in parsed:
            created.append(_write(tree, parent_id, position, block))
            position += 1
    return created


def _write(tree: BlockTree, parent_id: str, index: int, block: ParsedBlock) -> str:
    block_id = tree.insert_at(parent_id, index, block.spec)
    for offset, child in enumerate(block.children):
        _write(tree, block_id, offset, child)
    return block_id


# =============================================================================
# Block tokens
# =============================================================================


def _convert_token(token: Any) -> list[ParsedBlock]:
    """Convert a mistletoe block token to parsed blocks."""
    if isinstance(token, (Heading, SetextHeading)):
        return [ParsedBlock(HeadingSpec(text=_inline_runs(token.children), level=token.level))]
    elif isinstance(token, Paragraph):
        return [_convert_paragraph(token)]
    elif isinstance(token, (CodeFence, BlockCode)):
        return [_convert_code(token)]
    elif isinstance(token, List):
        return _convert_list(token)
    elif isinstance(token, ThematicBreak):
        return [ParsedBlock(DividerSpec())]
    elif isinstance(token, Quote):
        return _convert_quote(token)
    elif isinstance(token, Table):
        return [_convert_table(token)]
    return []


def _convert_paragraph(token: Paragraph) -> ParsedBlock:
    """Convert a paragraph, checking the AFFiNE sentinels first."""
    children = list(token.children or [])
    literal = _literal(children)

    latex = _LATEX.match(literal)
    if latex:
        return ParsedBlock(LatexSpec(latex=latex.group(1)))

    attachment = _ATTACHMENT.match(literal)
    if attachment:
        return ParsedBlock(
            AttachmentSpec(
                name=attachment.group(1),
                mime_type="application/octet-stream",
                size=0,
                source_id="",
                embed=False,
            )
        )

    if len(children) == 1 and isinstance(children[0], Image):
        image = children[0]
        src = image.src or ""
        return ParsedBlock(
            ImageSpec(source_id="" if src == "image" else src, caption=_plain(image.children))
        )

    if len(children) == 1 and isinstance(children[0], Link):
        link = children[0]
        if (link.target or "").startswith(AFFINE_LINK_SCHEME):
            return ParsedBlock(
                EmbedLinkedDocSpec(
                    page_id=link.target[len(AFFINE_LINK_SCHEME) :],
                    title=_plain(link.children) or "Linked Doc",
                )
            )

    return ParsedBlock(ParagraphSpec(text=_inline_runs(children)))


def _convert_code(token: CodeFence | BlockCode) -> ParsedBlock:
    """Convert a code block token."""
    language = getattr(token, "language", "") or "txt"
    content = _plain(token.children)
    if content.endswith("\n"):
        content = content[:-1]
    return ParsedBlock(CodeSpec(text=content, language=language.strip().lower()[:64] or "txt"))


def _convert_list(token: List) -> list[ParsedBlock]:
    """Convert a list token into list item blocks, nesting recursively."""
    ordered = token.start is not None
    blocks = []
    for item in token.children:
        if isinstance(item, ListItem):
            blocks.append(_convert_list_item(item, ordered))
    return blocks


def _convert_list_item(item: ListItem, ordered: bool) -> ParsedBlock:
    style = "numbered" if ordered else "bulleted"
    checked = False
    runs: list[TextRun] = []
    nested: list[ParsedBlock] = []

    children = list(item.children or [])
    if children and isinstance(children[0], Paragraph):
        runs = _inline_runs(children[0].children)
        children = children[1:]

    if not ordered:
        match = _TODO.match("".join(run.text for run in runs))
        if match:
            style = "todo"
            checked = match.group(1) != " "
            runs = _strip_prefix(runs, len(match.group(0)))

    for child in children:
        nested.extend(_convert_token(child))
    return ParsedBlock(ListSpec(text=runs, style=style, checked=checked), nested)


def _convert_quote(token: Quote) -> list[ParsedBlock]:
    """Each paragraph of a blockquote becomes a quote block."""
    blocks = []
    for child in token.children or []:
        if isinstance(child, Paragraph):
            blocks.append(ParsedBlock(QuoteSpec(text=_inline_runs(child.children))))
        else:
            blocks.extend(_convert_token(child))
    return blocks


def _convert_table(token: Table) -> ParsedBlock:
    """Convert a GFM table. Short rows are padded to the widest row."""
    rows: list[list[list[TextRun]]] = []
    header = getattr(token, "header", None)
    for row in ([header] if header is not None else []) + list(token.children or []):
        if isinstance(row, TableRow):
            rows.append([_inline_runs(cell.children) for cell in row.children])
    n_cols = max((len(row) for row in rows), default=0)
    for row in rows:
        row.extend([] for _ in range(n_cols - len(row)))
    spec = TableSpec(rows=max(len(rows), 1), columns=max(n_cols, 1), cells=rows)
    return ParsedBlock(spec)


# =============================================================================
# Inline tokens
# =============================================================================


class _InlineWalker:
    """Collects runs from inline tokens, tracking nested formatting."""

    def __init__(self) -> None:
        self.runs: list[TextRun] = []
        self.underline = False

    def walk(self, tokens: Any, attrs: dict[str, Any]) -> None:
        for token in tokens or []:
            self._convert(token, attrs)

    def _emit(self, text: str, attrs: dict[str, Any]) -> None:
        if not text:
            return
        active = dict(attrs)
        if self.underline:
            active["underline"] = True
        self.runs.append(TextRun(text, active))

    def _convert(self, token: Any, attrs: dict[str, Any]) -> None:
        if isinstance(token, RawText):
            for part in _UNDERLINE_TAG.split(token.content):
                if part == "<u>":
                    self.underline = True
                elif part == "</u>":
                    self.underline = False
                else:
                    self._emit(part, attrs)
        elif isinstance(token, Strong):
            self.walk(token.children, {**attrs, "bold": True})
        elif isinstance(token, Emphasis):
            self.walk(token.children, {**attrs, "italic": True})
        elif isinstance(token, Strikethrough):
            self.walk(token.children, {**attrs, "strikethrough": True})
        elif isinstance(token, InlineCode):
            content = token.children[0].content if token.children else ""
            if content:
                self.runs.append(TextRun(content, {"code": True}))
        elif isinstance(token, (Link, AutoLink)):
            self.walk(token.children, {**attrs, "link": token.target})
        elif isinstance(token, Image):
            self._emit(_plain(token.children), {})
        elif isinstance(token, LineBreak):
            self._emit("\n", attrs)
        elif isinstance(token, EscapeSequence):
            if token.children:
                self._emit(token.children[0].content, attrs)
        elif hasattr(token, "children"):
            self.walk(token.children, attrs)


def _inline_runs(tokens: Any) -> list[TextRun]:
    walker = _InlineWalker()
    walker.walk(tokens, {})
    return merge_runs(walker.runs)


def _strip_prefix(runs: list[TextRun], count: int) -> list[TextRun]:
    """Drop the first ``count`` characters across runs."""
    result = []
    for run in runs:
        if count >= len(run.text):
            count -= len(run.text)
            continue
        result.append(TextRun(run.text[count:], run.attrs))
        count = 0
    return result


def _plain(tokens: Any) -> str:
    """Extract plain text from tokens."""
    parts = []
    for token in tokens or []:
        if isinstance(token, RawText):
            parts.append(token.content)
        elif isinstance(token, LineBreak):
            parts.append("\n")
        elif hasattr(token, "children"):
            parts.append(_plain(token.children))
    return "".join(parts)


def _literal(tokens: Any) -> str:
    """Approximate the source text of inline tokens, for sentinel matching."""
    parts = []
    for token in tokens or []:
        if isinstance(token, RawText):
            parts.append(token.content)
        elif isinstance(token, EscapeSequence):
            parts.append("\\" + (token.children[0].content if token.children else ""))
        elif isinstance(token, LineBreak):
            parts.append("\n")
        elif isinstance(token, InlineCode):
            parts.append("`" + (token.children[0].content if token.children else "") + "`")
        elif isinstance(token, Strong):
            parts.append("**" + _literal(token.children) + "**")
        elif isinstance(token, Emphasis):
            parts.append("*" + _literal(token.children) + "*")
        elif isinstance(token, Strikethrough):
            parts.append("~~" + _literal(token.children) + "~~")
        elif isinstance(token, Image):
            parts.append(f"![{_literal(token.children)}]({token.src})")
        elif isinstance(token, (Link, AutoLink)):
            parts.append(f"[{_literal(token.children)}]({token.target})")
        elif hasattr(token, "children"):
            parts.append(_literal(token.children))
    return "".join(parts)
