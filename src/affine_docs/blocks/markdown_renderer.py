"""Render a block tree to markdown with a line map.

Each top-level child of the note records the line range it produced, so
a character offset in the output can be traced back to the block that
produced it. Blank-line runs are collapsed after rendering and every range
is remapped through the same collapse.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from pycrdt import Map, Text

from .models import BlockFlavour
from .richtext import plain_text, rich_text_to_markdown
from .tree import BlockTree

ATTACHMENT_GLYPH = "\U0001f4ce"
AFFINE_LINK_SCHEME = "affine://"

# A numbered item whose stored text already carries its own "N. " marker
_NUMBER_PREFIX = re.compile(r"^\d+\.\s*")


@dataclass
class BlockLineRange:
    """Lines ``[start_line, end_line)`` of the output produced by one block."""

    block_id: str
    start_line: int
    end_line: int

    def to_dict(self) -> dict[str, Any]:
        return {"blockId": self.block_id, "startLine": self.start_line, "endLine": self.end_line}


@dataclass
class RenderedMarkdown:
    markdown: str
    block_line_ranges: list[BlockLineRange] = field(default_factory=list)


class _Lines:
    """Output buffer; multi-line chunks become one entry per line."""

    def __init__(self) -> None:
        self.items: list[str] = []
        # Blank lines inside code blocks survive the collapse
        self.verbatim: set[int] = set()

    def emit(self, text: str, indent: str = "", *, verbatim: bool = False) -> None:
        for line in text.split("\n"):
            if verbatim:
                self.verbatim.add(len(self.items))
            self.items.append(f"{indent}{line}" if line else "")

    def blank(self) -> None:
        self.items.append("")

    def __len__(self) -> int:
        return len(self.items)


def render_markdown(tree: BlockTree, title: str | None = None) -> RenderedMarkdown:
    """Render the first note of ``tree``.

    Args:
        tree: Block tree to render.
        title: Title line to emit as ``# title``; pass "" to omit it.
            Defaults to the page title.

    Returns:
        Markdown ending in a single newline, plus one range per top-level block.
    """
    title = tree.title if title is None else title
    out = _Lines()
    if title:
        out.emit(f"# {title}")
        out.blank()

    ranges: list[BlockLineRange] = []
    note_id = tree.note_id
    list_index: list[int] = []
    prev_was_list = False
    for child_id in tree.child_ids(note_id) if note_id else []:
        is_list = tree.flavour(child_id) == BlockFlavour.LIST
        if not is_list:
            if prev_was_list:
                out.blank()
            list_index.clear()
        start = len(out)
        _render_block(tree, child_id, 0, list_index, out)
        ranges.append(BlockLineRange(child_id, start, len(out)))
        prev_was_list = is_list

    lines, remap = _collapse_blank_lines(out.items, out.verbatim)
    for entry in ranges:
        entry.start_line = remap[entry.start_line]
        entry.end_line = remap[entry.end_line]
    return RenderedMarkdown("\n".join(lines) + "\n", ranges)


def _render_block(
    tree: BlockTree,
    block_id: str,
    depth: int,
    list_index: list[int],
    out: _Lines,
    indent: str = "",
) -> None:
    block = tree.get(block_id)
    if block is None:
        return
    flavour = block.get("sys:flavour")
    block_type = block.get("prop:type")
    text = rich_text_to_markdown(block.get("prop:text"))
    children = tree.child_ids(block_id)

    if flavour == BlockFlavour.PARAGRAPH:
        level = _heading_level(block_type)
        if level:
            out.emit(f"{'#' * level} {text}", indent)
            out.blank()
        elif block_type == "quote":
            out.emit(f"> {text}", indent)
            out.blank()
        elif text:
            out.emit(text, indent)
            out.blank()
        for child_id in children:
            _render_block(tree, child_id, depth, [], out, indent)

    elif flavour == BlockFlavour.LIST:
        # Counters for deeper levels restart under every item
        del list_index[depth + 1 :]
        while len(list_index) <= depth:
            list_index.append(0)
        if block_type == "todo":
            prefix = "- [x]" if block.get("prop:checked") else "- [ ]"
            list_index[depth] = 0
        elif block_type == "numbered":
            list_index[depth] += 1
            prefix = f"{list_index[depth]}."
            text = _NUMBER_PREFIX.sub("", text, count=1)
        else:
            prefix = "-"
            list_index[depth] = 0
        out.emit(f"{prefix} {text}", indent)
        # Children sit under the item content, past the list marker
        child_indent = indent + " " * (len(prefix.split(" ", 1)[0]) + 1)
        for child_id in children:
            if tree.flavour(child_id) != BlockFlavour.LIST:
                out.blank()
            _render_block(tree, child_id, depth + 1, list_index, out, child_indent)

    elif flavour == BlockFlavour.CODE:
        language = block.get("prop:language") or ""
        out.emit(f"```{language}", indent)
        out.emit(plain_text(block.get("prop:text")), indent, verbatim=True)
        out.emit("```", indent)
        out.blank()

    elif flavour == BlockFlavour.DIVIDER:
        out.emit("---", indent)
        out.blank()

    elif flavour == BlockFlavour.TABLE:
        _render_table(block, out)

    elif flavour == BlockFlavour.LATEX:
        latex = block.get("prop:latex") or ""
        if latex:
            out.emit(f"$${latex}$$", indent)
            out.blank()

    elif flavour == BlockFlavour.IMAGE:
        caption = block.get("prop:caption") or ""
        out.emit(f"![{caption}](image)", indent)
        out.blank()

    elif flavour == BlockFlavour.ATTACHMENT:
        name = block.get("prop:name") or "attachment"
        out.emit(f"{ATTACHMENT_GLYPH} {name}", indent)
        out.blank()

    elif flavour == BlockFlavour.DATABASE:
        db_title = plain_text(block.get("prop:title")) or text
        if db_title:
            out.emit(f"**{db_title}**", indent)
            out.blank()
        for child_id in children:
            _render_block(tree, child_id, depth, [], out, indent)
        if not db_title and not children:
            out.emit("*(database)*", indent)
            out.blank()

    elif flavour == BlockFlavour.BOOKMARK:
        url = block.get("prop:url") or ""
        out.emit(f"[{block.get('prop:title') or url}]({url})", indent)
        out.blank()

    elif flavour == BlockFlavour.EMBED_LINKED_DOC:
        page_id = block.get("prop:pageId") or ""
        out.emit(
            f"[{block.get('prop:title') or 'Linked Doc'}]({AFFINE_LINK_SCHEME}{page_id})", indent
        )
        out.blank()

    elif text:
        out.emit(text, indent)
        out.blank()


def _heading_level(block_type: Any) -> int:
    if isinstance(block_type, str) and len(block_type) == 2 and block_type[0] == "h":
        if block_type[1].isdigit() and 1 <= int(block_type[1]) <= 6:
            return int(block_type[1])
    return 0


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, Map):
        return value.to_py() or {}
    return value if isinstance(value, dict) else {}


def _read_cell(cells: Any, key: str) -> str:
    if isinstance(cells, Map):
        cell = cells.get(key)
        if isinstance(cell, Map):
            return rich_text_to_markdown(cell.get("text"))
        if isinstance(cell, Text):
            return rich_text_to_markdown(cell)
    cell = _as_dict(cells).get(key)
    if isinstance(cell, dict):
        return str(cell.get("text") or "")
    return ""


def _render_table(block: Map, out: _Lines) -> None:
    rows = _as_dict(block.get("prop:rows"))
    columns = _as_dict(block.get("prop:columns"))
    cells = block.get("prop:cells")
    row_ids = sorted(rows, key=lambda rid: (rows[rid] or {}).get("order") or "")
    column_ids = sorted(columns, key=lambda cid: (columns[cid] or {}).get("order") or "")

    if row_ids and column_ids and cells is not None:
        for r, row_id in enumerate(row_ids):
            values = [_read_cell(cells, f"{row_id}:{cid}") for cid in column_ids]
            out.emit(f"| {' | '.join(values)} |")
            if r == 0:
                out.emit("|" + "|".join(" --- " for _ in column_ids) + "|")
    else:
        n_rows = max(len(row_ids), 1)
        n_cols = max(len(column_ids), 1)
        empty_row = "|" + " |" * n_cols
        out.emit(empty_row)
        out.emit("|" + " --- |" * n_cols)
        for _ in range(1, n_rows):
            out.emit(empty_row)
    out.blank()


def _collapse_blank_lines(
    lines: list[str], verbatim: set[int] | frozenset[int] = frozenset()
) -> tuple[list[str], list[int]]:
    """Collapse blank runs and trim trailing blanks.

    Returns the kept lines and a map from every original line number
    (plus the one-past-the-end position) to a kept line number. A dropped
    line maps to the next kept line.
    """
    kept: list[str] = []
    origin: list[int] = []
    for i, line in enumerate(lines):
        if line == "" and i not in verbatim and kept and kept[-1] == "":
            continue
        kept.append(line)
        origin.append(i)
    while kept and kept[-1] == "":
        kept.pop()
        origin.pop()

    remap = [-1] * (len(lines) + 1)
    for new, old in enumerate(origin):
        remap[old] = new
    remap[len(lines)] = len(kept)
    for i in range(len(lines) - 1, -1, -1):
        if remap[i] == -1:
            remap[i] = remap[i + 1]
    return kept, remap
