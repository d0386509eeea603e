"""WebSocket event handlers package."""
