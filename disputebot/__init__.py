"""
Rental-disputes assistant bridging Telegram chats to a hosted OpenAI agent.
"""

__version__ = "1.0.0"
