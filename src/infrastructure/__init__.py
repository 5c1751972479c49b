"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- storage: Google Cloud Storage plus the local chunk file lifecycle
- video: FFprobe chunk inspection
- google: Video Intelligence, Vision and Maps
- firebase: Realtime Database and Firestore repositories
- notifications: FCM push, Twilio SMS and SMTP email

These wrappers translate between external formats and plain dicts or
domain models, and each ships a mock for running without credentials.
"""
