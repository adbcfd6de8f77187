"""Shared FastAPI dependencies."""

from starlette.requests import HTTPConnection

from thumbs.ws.broadcaster import Broadcaster
from thumbs.ws.registry import ConnectionRegistry


def get_registry(conn: HTTPConnection) -> ConnectionRegistry:
    """The process-wide connection registry created by the app factory."""
    return conn.app.state.registry


def get_broadcaster(conn: HTTPConnection) -> Broadcaster:
    return conn.app.state.broadcaster
