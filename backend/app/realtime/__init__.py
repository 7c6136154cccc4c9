"""Persistent session channel over WebSocket."""
