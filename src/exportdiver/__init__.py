"""exportdiver: turn chat-export archives into browsable, searchable conversation-sets."""

__version__ = "0.1.0"
