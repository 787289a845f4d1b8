"""Tests for ConversationManager."""
from docchat.memory import ConversationManager
from docchat.models import Source


def test_create_session_with_scope(db):
    manager = ConversationManager(db)

    session = manager.create_session("user-1", document_ids=["d1"])

    assert manager.get_session(session.id).document_ids == ["d1"]
    assert [s.id for s in manager.list_sessions("user-1")] == [session.id]
    assert manager.list_sessions("user-2") == []


def test_add_message_touches_session(db):
    manager = ConversationManager(db)
    session = manager.create_session("user-1")

    manager.add_message(session.id, "user", "hello")

    assert manager.get_session(session.id).updated_at >= session.updated_at
    assert [m.content for m in manager.get_all_messages(session.id)] == ["hello"]


def test_history_is_bounded_and_oldest_first(db):
    manager = ConversationManager(db, history_limit=3)
    session = manager.create_session("user-1")
    for i in range(5):
        manager.add_message(session.id, "user" if i % 2 == 0 else "assistant", f"m{i}")

    history = manager.format_conversation_history(session.id)

    assert history == [
        {"role": "user", "content": "m2"},
        {"role": "assistant", "content": "m3"},
        {"role": "user", "content": "m4"},
    ]


def test_assistant_sources_are_kept(db):
    manager = ConversationManager(db)
    session = manager.create_session("user-1")
    source = Source("d1", "Report", 0, "Revenue...", 0.9)

    manager.add_message(session.id, "assistant", "Answer [Source 1]", [source])

    assert manager.get_all_messages(session.id)[0].sources == [source]


class TestSessionTitle:
    def test_short_message_used_as_is(self, db):
        manager = ConversationManager(db)
        session = manager.create_session("user-1")

        assert manager.update_session_title(session.id, "What is revenue?") == "What is revenue?"
        assert manager.get_session(session.id).title == "What is revenue?"

    def test_long_message_truncated(self, db):
        manager = ConversationManager(db)
        session = manager.create_session("user-1")
        message = "x" * 80

        assert manager.update_session_title(session.id, message) == "x" * 50 + "..."

    def test_existing_title_kept(self, db):
        manager = ConversationManager(db)
        session = manager.create_session("user-1", title="Budget review")

        assert manager.update_session_title(session.id, "Another question") is None
        assert manager.get_session(session.id).title == "Budget review"

    def test_missing_session(self, db):
        assert ConversationManager(db).update_session_title("missing", "hi") is None


def test_delete_session(db):
    manager = ConversationManager(db)
    session = manager.create_session("user-1")
    manager.add_message(session.id, "user", "hello")

    assert manager.delete_session(session.id) is True
    assert manager.delete_session(session.id) is False
    assert manager.get_all_messages(session.id) == []
