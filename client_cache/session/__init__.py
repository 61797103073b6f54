"""
Profile session orchestration.
"""

from .profile_session import BulkFetcher, ProfileSession, ProfileState

__all__ = ["ProfileSession", "ProfileState", "BulkFetcher"]
