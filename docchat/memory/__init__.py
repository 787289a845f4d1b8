"""Chat session and message history."""
from docchat.memory.manager import ConversationManager

__all__ = ["ConversationManager"]
