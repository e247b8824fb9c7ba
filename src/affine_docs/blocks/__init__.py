"""Blocks Layer - The document block tree and its markdown forms.

Architecture:
    blocks/
        models             <- Flavours, aliases, block specs, placement requests
        richtext           <- Formatting runs with explicit attribute resets
        factory            <- Flavour-specific property bags for new blocks
        tree               <- Navigation, placement, insert/move/delete
        markdown_renderer  <- Tree to markdown plus block line ranges
        markdown_parser    <- Markdown to block specs (mistletoe)
        patch              <- Exact-substring patches over the rendered form

Design Principles:
    - Blocks reference each other only by id, never by object
    - Everything is validated before the document is mutated
    - Text is spliced in place, never reassigned
"""

from .markdown_parser import insert_markdown, parse_markdown
from .markdown_renderer import BlockLineRange, RenderedMarkdown, render_markdown
from .models import BlockFlavour, BlockSpec, Placement, build_block_spec
from .patch import PatchResult, apply_patch
from .tree import BlockTree, InsertResult

__all__ = [
    "BlockFlavour",
    "BlockLineRange",
    "BlockSpec",
    "BlockTree",
    "InsertResult",
    "PatchResult",
    "Placement",
    "RenderedMarkdown",
    "apply_patch",
    "build_block_spec",
    "insert_markdown",
    "parse_markdown",
    "render_markdown",
]
