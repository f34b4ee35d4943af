"""
Narrator — an ambient, self-throttling voice for chat-roleplay hosts.
"""

__version__ = "0.1.0"
