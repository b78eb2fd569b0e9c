"""Poll-based change detection for providers without push delivery."""

from .base import BasePoller
from .cursors import CursorStore
from .gmail import GmailPoller
from .notion import NotionPoller, NotionState
from .spotify import SpotifyPoller, SpotifyState

__all__ = [
    "BasePoller",
    "CursorStore",
    "GmailPoller",
    "NotionPoller",
    "NotionState",
    "SpotifyPoller",
    "SpotifyState",
]
