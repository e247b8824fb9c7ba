"""AFFiNE document engine.

Reads and edits AFFiNE documents and the organize folder tree over the
workspace sync socket. Documents are CRDT block trees; they can be edited
block by block or through a markdown view with surgical patches.
"""

from .config import Settings
from .errors import AffineDocsError
from .logging_setup import configure_logging
from .services import DocumentService, FolderService

__version__ = "0.1.0"

__all__ = [
    "AffineDocsError",
    "DocumentService",
    "FolderService",
    "Settings",
    "__version__",
    "configure_logging",
]
