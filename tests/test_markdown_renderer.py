"""Tests for blocks/markdown_renderer.py - Markdown with line ranges.

Tests:
- Title line and heading output
- List prefixes and numbered counters
- Code, divider, table and embed sentinels
- Blank-line collapse and range remapping
"""

from __future__ import annotations

from affine_docs.blocks.markdown_parser import parse_markdown
from affine_docs.blocks.markdown_renderer import _collapse_blank_lines, render_markdown
from affine_docs.blocks.models import Placement, TableSpec, build_block_spec
from affine_docs.blocks.richtext import TextRun
from affine_docs.blocks.tree import BlockTree


def _add(tree: BlockTree, block_type: str, placement: Placement | None = None, **fields) -> str:
    return tree.insert_block(build_block_spec(block_type, **fields), placement).block_id


def _line_of(markdown: str, line: int) -> str:
    return markdown.split("\n")[line]


# =============================================================================
# Basic output
# =============================================================================


class TestHeadingsAndTitle:
    """Test the title line and headings."""

    def test_heading_without_title(self, tree: BlockTree) -> None:
        """An h2 with no title line renders alone, mapped to line 0."""
        block_id = _add(tree, "heading", text="Intro", level=2)

        rendered = render_markdown(tree, title="")

        assert rendered.markdown == "## Intro\n"
        assert [r.to_dict() for r in rendered.block_line_ranges] == [
            {"blockId": block_id, "startLine": 0, "endLine": 1}
        ]

    def test_page_title_by_default(self, tree: BlockTree) -> None:
        """The page title becomes the first heading."""
        _add(tree, "paragraph", text="Body")

        rendered = render_markdown(tree)

        assert rendered.markdown == "# Test Doc\n\nBody\n"
        assert rendered.block_line_ranges[0].start_line == 2

    def test_empty_document(self, tree: BlockTree) -> None:
        """A document with no content renders only its title."""
        assert render_markdown(tree).markdown == "# Test Doc\n"
        assert render_markdown(tree, title="").markdown == "\n"

    def test_quote_and_formatting(self, tree: BlockTree) -> None:
        """Quotes get a marker; formatted runs become markdown."""
        _add(tree, "quote", text="wise words")
        _add(
            tree,
            "paragraph",
            text=[TextRun("Bold", {"bold": True}), TextRun(" and "), TextRun("site", {"link": "https://e.com"})],
        )

        rendered = render_markdown(tree, title="")

        assert rendered.markdown == "> wise words\n\n**Bold** and [site](https://e.com)\n"


# =============================================================================
# Lists
# =============================================================================


class TestLists:
    """Test list rendering."""

    def test_prefixes(self, tree: BlockTree) -> None:
        """Bulleted, todo and numbered items get their markers."""
        _add(tree, "list", text="bullet")
        _add(tree, "todo", text="done", checked=True)
        _add(tree, "todo", text="open")
        _add(tree, "list", style="numbered", text="first")

        rendered = render_markdown(tree, title="")

        assert rendered.markdown == "- bullet\n- [x] done\n- [ ] open\n1. first\n"

    def test_numbering_restarts_after_paragraph(self, tree: BlockTree) -> None:
        """A non-list block ends the list and resets the counter."""
        _add(tree, "list", style="numbered", text="a")
        _add(tree, "list", style="numbered", text="b")
        _add(tree, "paragraph", text="para")
        _add(tree, "list", style="numbered", text="c")

        rendered = render_markdown(tree, title="")

        assert rendered.markdown == "1. a\n2. b\n\npara\n\n1. c\n"
        assert [(r.start_line, r.end_line) for r in rendered.block_line_ranges] == [
            (0, 1),
            (1, 2),
            (3, 5),
            (5, 6),
        ]

    def test_nested_counters(self, tree: BlockTree) -> None:
        """Nested numbered items count separately and restart under each parent."""
        a = _add(tree, "list", style="numbered", text="a")
        _add(tree, "list", Placement(parent_id=a), style="numbered", text="x")
        _add(tree, "list", Placement(parent_id=a), style="numbered", text="y")
        b = _add(tree, "list", style="numbered", text="b")
        _add(tree, "list", Placement(parent_id=b), style="numbered", text="z")

        rendered = render_markdown(tree, title="")

        assert rendered.markdown == "1. a\n   1. x\n   2. y\n2. b\n   1. z\n"
        assert [(r.start_line, r.end_line) for r in rendered.block_line_ranges] == [
            (0, 3),
            (3, 5),
        ]

    def test_children_indent_past_marker(self, tree: BlockTree) -> None:
        """Nested items line up with the parent item's content, whatever the marker width."""
        a = _add(tree, "list", style="numbered", text="a")
        _add(tree, "list", Placement(parent_id=a), style="numbered", text="x")
        _add(tree, "list", Placement(parent_id=a), text="y")
        todo = _add(tree, "list", style="todo", text="task")
        _add(tree, "list", Placement(parent_id=todo), text="sub")

        rendered = render_markdown(tree, title="")

        assert rendered.markdown == "1. a\n   1. x\n   - y\n- [ ] task\n  - sub\n"

    def test_nested_numbered_round_trip(self, tree: BlockTree) -> None:
        """Numbered parents keep their numbered and bulleted children through a re-parse."""
        a = _add(tree, "list", style="numbered", text="a")
        _add(tree, "list", Placement(parent_id=a), style="numbered", text="x")
        _add(tree, "list", Placement(parent_id=a), text="y")

        blocks = parse_markdown(render_markdown(tree, title="").markdown)

        assert len(blocks) == 1
        assert blocks[0].spec.style == "numbered"
        assert [child.spec.style for child in blocks[0].children] == ["numbered", "bulleted"]
        texts = ["".join(run.text for run in child.spec.text) for child in blocks[0].children]
        assert texts == ["x", "y"]

    def test_stored_number_prefix_dropped(self, tree: BlockTree) -> None:
        """A numbered item whose text already starts with "N. " is not numbered twice."""
        _add(tree, "list", style="numbered", text="1. first")
        _add(tree, "list", style="numbered", text="7.second")

        rendered = render_markdown(tree, title="")

        assert rendered.markdown == "1. first\n2. second\n"


# =============================================================================
# Other blocks
# =============================================================================


class TestOtherBlocks:
    """Test non-text blocks."""

    def test_code_keeps_blank_lines(self, tree: BlockTree) -> None:
        """Blank lines inside code survive the collapse."""
        _add(tree, "code", text="a = 1\n\n\nb = 2", language="python")

        rendered = render_markdown(tree, title="")

        assert rendered.markdown == "```python\na = 1\n\n\nb = 2\n```\n"

    def test_divider(self, tree: BlockTree) -> None:
        """Dividers render as a thematic break."""
        _add(tree, "paragraph", text="above")
        _add(tree, "divider")

        assert render_markdown(tree, title="").markdown == "above\n\n---\n"

    def test_nested_embeds_stay_in_item(self, tree: BlockTree) -> None:
        """Dividers and links under a list item are indented into it and survive a re-parse."""
        item = _add(tree, "list", text="item")
        _add(tree, "divider", Placement(parent_id=item))
        _add(tree, "embed_linked_doc", Placement(parent_id=item), page_id="doc123", title="Other")
        _add(tree, "bookmark", Placement(parent_id=item), url="https://example.com")

        rendered = render_markdown(tree, title="")

        assert rendered.markdown == (
            "- item\n\n"
            "  ---\n\n"
            "  [Other](affine://doc123)\n\n"
            "  [https://example.com](https://example.com)\n"
        )
        blocks = parse_markdown(rendered.markdown)
        assert len(blocks) == 1
        assert len(blocks[0].children) == 3

    def test_table(self, tree: BlockTree) -> None:
        """Tables render in row and column order with a separator row."""
        spec = TableSpec(rows=2, columns=2, cells=[["a", "b"], ["c", "d"]])
        spec.validate(True)
        tree.insert_block(spec)

        rendered = render_markdown(tree, title="")

        assert rendered.markdown == "| a | b |\n| --- | --- |\n| c | d |\n"

    def test_sentinels(self, tree: BlockTree) -> None:
        """Latex, attachments, images and linked docs use their sentinel forms."""
        _add(tree, "latex", latex="x^2")
        _add(tree, "attachment", source_id="blob", name="report.pdf")
        _add(tree, "image", source_id="blob2", caption="chart")
        _add(tree, "embed_linked_doc", page_id="doc123", title="Other")
        _add(tree, "bookmark", url="https://example.com")

        rendered = render_markdown(tree, title="")

        assert rendered.markdown == (
            "$$x^2$$\n\n"
            "\U0001f4ce report.pdf\n\n"
            "![chart](image)\n\n"
            "[Other](affine://doc123)\n\n"
            "[https://example.com](https://example.com)\n"
        )


# =============================================================================
# Line ranges
# =============================================================================


class TestLineRanges:
    """Test blank collapse and remapping."""

    def test_collapse_map(self) -> None:
        """Dropped lines map to the next kept line."""
        kept, remap = _collapse_blank_lines(["a", "", "", "b", ""])

        assert kept == ["a", "", "b"]
        assert remap == [0, 1, 2, 2, 3, 3]

    def test_ranges_follow_collapse(self, tree: BlockTree) -> None:
        """A double blank between blocks is collapsed and ranges still point at content."""
        item = _add(tree, "list", text="item")
        _add(tree, "paragraph", Placement(parent_id=item), text="note")
        heading = _add(tree, "heading", text="Next", level=2)

        rendered = render_markdown(tree, title="")
        by_id = {r.block_id: r for r in rendered.block_line_ranges}

        assert "\n\n\n" not in rendered.markdown
        assert _line_of(rendered.markdown, by_id[heading].start_line) == "## Next"
        assert _line_of(rendered.markdown, by_id[item].start_line) == "- item"

    def test_ranges_are_ordered_and_disjoint(self, tree: BlockTree) -> None:
        """Each top-level block owns a distinct slice of lines."""
        for i in range(3):
            _add(tree, "paragraph", text=f"p{i}")

        ranges = render_markdown(tree).block_line_ranges

        for earlier, later in zip(ranges, ranges[1:]):
            assert earlier.end_line <= later.start_line
