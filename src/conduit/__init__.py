"""Conduit - WebSocket-to-TCP tunneling relay."""

__version__ = "0.1.0"
