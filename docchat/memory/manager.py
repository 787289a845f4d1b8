"""Conversation memory manager.

Handles session creation, message persistence, and conversation history
for multi-turn chat interactions.
"""
from typing import List, Dict, Optional
import structlog

from docchat.db import Database
from docchat.models import ChatMessage, ChatSession, Source

logger = structlog.get_logger()

TITLE_MAX_CHARS = 50


class ConversationManager:
    """Manages chat sessions and conversation history."""

    def __init__(self, db: Database, history_limit: int = 10):
        """Initialize the conversation manager.

        Args:
            db: Relational store holding sessions and messages
            history_limit: Number of recent messages replayed to the model
        """
        self.db = db
        self.history_limit = history_limit

    def create_session(
        self,
        user_id: str,
        title: Optional[str] = None,
        document_ids: Optional[List[str]] = None,
    ) -> ChatSession:
        """Create a new chat session scoped to optional documents."""
        session = self.db.create_session(user_id, title, document_ids)
        logger.info(
            "conversation_session_created",
            session_id=session.id,
            document_count=len(session.document_ids),
        )
        return session

    def add_message(
        self,
        session_id: str,
        role: str,
        content: str,
        sources: Optional[List[Source]] = None,
    ) -> ChatMessage:
        """Add a message to a session.

        Args:
            session_id: The session to add the message to
            role: Message role ('user' or 'assistant')
            content: The message content
            sources: Optional citations for assistant messages

        Returns:
            The stored message
        """
        message = self.db.add_message(session_id, role, content, sources)
        self.db.touch_session(session_id)
        logger.info(
            "conversation_message_added",
            session_id=session_id,
            role=role,
            message_id=message.id,
        )
        return message

    def get_recent_messages(
        self, session_id: str, limit: Optional[int] = None
    ) -> List[ChatMessage]:
        """Newest messages of a session in chronological order."""
        return self.db.get_recent_messages(session_id, limit or self.history_limit)

    def get_all_messages(self, session_id: str) -> List[ChatMessage]:
        return self.db.get_messages(session_id)

    def format_conversation_history(self, session_id: str) -> List[Dict[str, str]]:
        """Format recent conversation history for the chat model.

        Returns:
            List of message dicts with 'role' and 'content' keys, oldest first;
            anything that is not a user message is replayed as the model's turn
        """
        history = [
            {
                "role": "user" if msg.role == "user" else "assistant",
                "content": msg.content,
            }
            for msg in self.get_recent_messages(session_id)
        ]

        logger.debug(
            "conversation_history_formatted",
            session_id=session_id,
            message_count=len(history),
        )
        return history

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self.db.get_session(session_id)

    def list_sessions(self, user_id: Optional[str] = None, limit: int = 50) -> List[ChatSession]:
        return self.db.list_sessions(user_id, limit)

    def delete_session(self, session_id: str) -> bool:
        """Delete a session and all its messages.

        Returns:
            True if deleted, False if not found
        """
        deleted = self.db.delete_session(session_id)
        if deleted:
            logger.info("conversation_session_deleted", session_id=session_id)
        return deleted

    def update_session_title(self, session_id: str, first_message: str) -> Optional[str]:
        """Title an untitled session from its first message (max 50 chars + '...').

        Returns:
            The new title, or None if the session already had one
        """
        session = self.db.get_session(session_id)
        if session is None or session.title:
            return None

        title = first_message[:TITLE_MAX_CHARS]
        if len(first_message) > TITLE_MAX_CHARS:
            title += "..."

        self.db.update_session_title(session_id, title)
        logger.info("session_title_updated", session_id=session_id, title=title)
        return title
