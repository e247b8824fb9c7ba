"""Rich text runs for CRDT text values.

A run is a string plus the formatting attributes active over it. Writing
runs into a ``pycrdt.Text`` follows one hard rule: once any run in a text
carries an attribute, every run is written with that attribute key present,
using None where it is inactive. Without the explicit None the CRDT extends
the previous run's formatting into the newly inserted text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from pycrdt import Text

# Attribute keys understood by both the renderer and the parser
ATTRIBUTE_KEYS = ("bold", "italic", "strikethrough", "underline", "code", "link")


@dataclass(frozen=True)
class TextRun:
    """A span of text with uniform formatting."""

    text: str
    attrs: Mapping[str, Any] = field(default_factory=dict)

    def active(self) -> dict[str, Any]:
        """Attributes that are actually set (drops None/False)."""
        return {k: v for k, v in self.attrs.items() if v}


def merge_runs(runs: Iterable[TextRun]) -> list[TextRun]:
    """Merge adjacent runs with identical active formatting; drop empty ones."""
    merged: list[TextRun] = []
    for run in runs:
        if not run.text:
            continue
        if merged and merged[-1].active() == run.active():
            merged[-1] = TextRun(merged[-1].text + run.text, merged[-1].active())
        else:
            merged.append(TextRun(run.text, run.active()))
    return merged


def explicit_runs(runs: Iterable[TextRun]) -> list[tuple[str, dict[str, Any] | None]]:
    """Return ``(text, attrs)`` pairs ready for insertion.

    If no run is formatted, attrs is None everywhere. Otherwise every pair
    carries every attribute key used anywhere in ``runs``.
    """
    runs = merge_runs(runs)
    used = [key for key in ATTRIBUTE_KEYS if any(key in run.active() for run in runs)]
    extra = sorted({key for run in runs for key in run.active()} - set(used))
    used.extend(extra)
    if not used:
        return [(run.text, None) for run in runs]
    return [(run.text, {key: run.active().get(key) for key in used}) for run in runs]


def write_runs(text: Text, runs: Iterable[TextRun]) -> None:
    """Append runs to an integrated ``Text``."""
    for chunk, attrs in explicit_runs(runs):
        if attrs is None:
            text.insert(len(text), chunk)
        else:
            text.insert(len(text), chunk, attrs)


def replace_text(text: Text, value: str | Iterable[TextRun]) -> None:
    """Replace the content of ``text`` in place, keeping its CRDT identity."""
    if len(text):
        del text[0 : len(text)]
    if isinstance(value, str):
        if value:
            text.insert(0, value)
    else:
        write_runs(text, value)


def read_runs(value: Any) -> list[TextRun]:
    """Read runs from a ``Text`` (or a plain string stored as a scalar)."""
    if isinstance(value, str):
        return [TextRun(value)] if value else []
    if not isinstance(value, Text):
        return []
    runs = []
    for insert, attrs in value.diff():
        if isinstance(insert, str):
            runs.append(TextRun(insert, {k: v for k, v in (attrs or {}).items() if v}))
    return runs


def plain_text(value: Any) -> str:
    if isinstance(value, Text):
        return str(value)
    if isinstance(value, str):
        return value
    return ""


def runs_to_markdown(runs: Iterable[TextRun]) -> str:
    """Serialize runs as markdown.

    Precedence: inline code alone, then bold/italic, strikethrough,
    underline (as HTML), and finally the link wrapper.
    """
    parts = []
    for run in runs:
        attrs = run.active()
        chunk = run.text
        if attrs.get("code"):
            parts.append(f"`{chunk}`")
            continue
        if attrs.get("bold") and attrs.get("italic"):
            chunk = f"***{chunk}***"
        elif attrs.get("bold"):
            chunk = f"**{chunk}**"
        elif attrs.get("italic"):
            chunk = f"*{chunk}*"
        if attrs.get("strikethrough"):
            chunk = f"~~{chunk}~~"
        if attrs.get("underline"):
            chunk = f"<u>{chunk}</u>"
        if attrs.get("link"):
            chunk = f"[{chunk}]({attrs['link']})"
        parts.append(chunk)
    return "".join(parts)


def rich_text_to_markdown(value: Any) -> str:
    if isinstance(value, str):
        return value
    runs = read_runs(value)
    if all(not run.active() for run in runs):
        return plain_text(value)
    return runs_to_markdown(runs)
