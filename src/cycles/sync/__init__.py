"""Google Drive backup: token handling, Drive client and the sync session."""

from src.cycles.sync.auth import OAuthTokens, TokenManager
from src.cycles.sync.drive import DriveClient
from src.cycles.sync.session import SyncSession, SyncStatus

__all__ = [
    "OAuthTokens",
    "TokenManager",
    "DriveClient",
    "SyncSession",
    "SyncStatus",
]
