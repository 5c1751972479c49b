"""
Firebase Realtime Database and Firestore access.
"""

from .client import (
    FirebaseError,
    FirebaseRealtimeDatabase,
    MockRealtimeDatabase,
    RealtimeDatabase,
    initialize_firebase,
    service_account_info,
)
from .repositories import DEMO_RESPONDERS


def create_realtime_database(settings, app=None) -> RealtimeDatabase:
    """Real database, or a mock one seeded with demo responders."""
    if settings.firebase_mock_mode:
        return MockRealtimeDatabase({"responders": DEMO_RESPONDERS})
    return FirebaseRealtimeDatabase(app or initialize_firebase(settings))


__all__ = [
    "FirebaseError",
    "FirebaseRealtimeDatabase",
    "MockRealtimeDatabase",
    "RealtimeDatabase",
    "create_realtime_database",
    "initialize_firebase",
    "service_account_info",
]
