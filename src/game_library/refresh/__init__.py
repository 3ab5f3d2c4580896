"""
Bulk and webhook-driven refresh of the index and library.
"""

from game_library.refresh.coordinator import JobState, RefreshCoordinator, RefreshJob
from game_library.refresh.notifications import LibraryNotification, NotificationReceipt

__all__ = [
    "JobState",
    "LibraryNotification",
    "NotificationReceipt",
    "RefreshCoordinator",
    "RefreshJob",
]
