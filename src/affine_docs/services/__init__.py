"""Services Layer - One method per logical document or folder operation.

Architecture:
    services/
        document_service  <- Document create/read/edit/patch/delete
        folder_service    <- Organize tree listing and edits

Design Principles:
    - Services hold only settings and a channel factory
    - Each call opens one channel, loads once, pushes at most once per doc
    - Errors propagate after the channel is closed
"""

from .document_service import DocumentService
from .folder_service import FolderService

__all__ = [
    "DocumentService",
    "FolderService",
]
