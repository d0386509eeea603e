"""Real-time chat backend: DM and group conversations, message delivery and presence."""

__version__ = '1.0.0'
