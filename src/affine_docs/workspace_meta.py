"""Document metadata kept in the workspace root doc.

The workspace doc (whose id is the workspace id) holds a ``meta`` map with
a ``pages`` array. Every document in the workspace has one map entry there:

    {"id": ..., "title": ..., "createDate": ms, "updatedDate": ms, "tags": []}

These entries are what AFFiNE clients list in their sidebars, so they have
to follow title changes and edits to the document body.
"""

from __future__ import annotations

import time

from pycrdt import Array, Doc, Map

META_MAP = "meta"
PAGES_KEY = "pages"
DEFAULT_TITLE = "Untitled"


def now_ms() -> int:
    return int(time.time() * 1000)


def _pages(doc: Doc, *, create: bool = False) -> Array | None:
    meta = doc.get(META_MAP, type=Map)
    pages = meta.get(PAGES_KEY)
    if isinstance(pages, Array):
        return pages
    if not create:
        return None
    meta[PAGES_KEY] = Array()
    return meta[PAGES_KEY]


def _entries(doc: Doc) -> list[Map]:
    pages = _pages(doc)
    if pages is None:
        return []
    return [entry for entry in pages if isinstance(entry, Map)]


def find_page(doc: Doc, doc_id: str) -> Map | None:
    for entry in _entries(doc):
        if entry.get("id") == doc_id:
            return entry
    return None


def add_page(doc: Doc, doc_id: str, title: str = DEFAULT_TITLE, *, now: int | None = None) -> None:
    """Append a ``pages`` entry for a new document."""
    stamp = now_ms() if now is None else now
    with doc.transaction():
        pages = _pages(doc, create=True)
        pages.append(
            Map(
                {
                    "id": doc_id,
                    "title": title,
                    "createDate": stamp,
                    "updatedDate": stamp,
                    "tags": Array(),
                }
            )
        )


def remove_page(doc: Doc, doc_id: str) -> bool:
    """Remove the entry for ``doc_id``. Returns False if there was none."""
    pages = _pages(doc)
    if pages is None:
        return False
    with doc.transaction():
        for index in range(len(pages) - 1, -1, -1):
            entry = pages[index]
            if isinstance(entry, Map) and entry.get("id") == doc_id:
                del pages[index]
                return True
    return False


def rename_page(doc: Doc, doc_id: str, title: str, *, now: int | None = None) -> bool:
    entry = find_page(doc, doc_id)
    if entry is None:
        return False
    with doc.transaction():
        entry["title"] = title
        entry["updatedDate"] = now_ms() if now is None else now
    return True


def touch_page(doc: Doc, doc_id: str, *, now: int | None = None) -> bool:
    """Bump ``updatedDate`` for ``doc_id``. Returns False if it has no entry."""
    entry = find_page(doc, doc_id)
    if entry is None:
        return False
    entry["updatedDate"] = now_ms() if now is None else now
    return True


def page_titles(doc: Doc) -> dict[str, str]:
    """Map of document id to title for every listed page."""
    titles: dict[str, str] = {}
    for entry in _entries(doc):
        doc_id = entry.get("id")
        if isinstance(doc_id, str):
            titles[doc_id] = str(entry.get("title") or "")
    return titles


# =============================================================================
# Per-document meta map
# =============================================================================


def write_doc_meta(doc: Doc, doc_id: str, title: str, *, now: int | None = None) -> None:
    """Fill the ``meta`` map of a new document."""
    meta = doc.get(META_MAP, type=Map)
    with doc.transaction():
        meta["id"] = doc_id
        meta["title"] = title
        meta["createDate"] = now_ms() if now is None else now
        meta["tags"] = Array()


def set_doc_meta_title(doc: Doc, title: str) -> None:
    meta = doc.get(META_MAP, type=Map)
    if meta.get("title") != title:
        meta["title"] = title
