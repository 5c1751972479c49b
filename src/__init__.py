"""
Heimdall - chunked video capture relay with AI security analysis and
emergency dispatch.

This package contains the complete application:
- core: Framework-agnostic business logic (recording, analysis, dispatch)
- infrastructure: External service integrations (GCS, Google AI, Firebase, notifications)
- realtime: Socket.IO event relay
- api: FastAPI routes and dependencies
- capture: Recording client that uploads chunks to the backend
- config: Application configuration
"""

__version__ = "2.0.0"
