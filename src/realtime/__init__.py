"""
Socket.IO relay between capture devices and dashboards.
"""

from .events import DASHBOARD_ROOM, RealtimeRelay, create_socket_server

__all__ = ["DASHBOARD_ROOM", "RealtimeRelay", "create_socket_server"]
