"""Anonymous campus chat: matchmaking and chat-session coordination."""
__version__ = "0.1.0"
