"""
Telegram surface for the campus chat.
"""
