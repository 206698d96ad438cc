import pytest

from conftest import NOW
from guru_gateway.context.registry import PageProfile, PageRegistry
from guru_gateway.conversation.models import Message, MessageMetadata, SuggestedAction
from guru_gateway.conversation.store import ConversationStore, welcome_text
from guru_gateway.core.types import MessageRole


@pytest.fixture
def registry():
    return PageRegistry.with_builtin_pages()


def test_open_seeds_single_welcome(registry):
    store = ConversationStore()
    profile = registry.resolve("deals")

    welcome = store.open(profile, "Guru")
    assert welcome is not None
    assert store.open(profile, "Guru") is None

    assert len(store) == 1
    assert store.messages[0].role == MessageRole.ASSISTANT
    assert store.messages[0].text == (
        "Hi! I'm Guru, your AI sales assistant for Deals. "
        'Try asking: "Summarize my pipeline"'
    )


def test_open_stamps_welcome_with_given_time(registry):
    store = ConversationStore()

    welcome = store.open(registry.resolve("deals"), "Guru", created_at=NOW)

    assert welcome.created_at == NOW


def test_open_keeps_existing_history(registry):
    store = ConversationStore()
    store.append(Message.create(MessageRole.USER, "hello"))

    assert store.open(registry.resolve("tasks"), "Guru") is None
    assert [m.text for m in store.messages] == ["hello"]


def test_append_preserves_order_and_duplicates():
    store = ConversationStore()
    for text in ("one", "two", "two"):
        store.append(Message.create(MessageRole.USER, text))

    assert [m.text for m in store.messages] == ["one", "two", "two"]
    assert len({m.id for m in store.messages}) == 3


def test_clear_then_open_reseeds(registry):
    store = ConversationStore()
    profile = registry.resolve("contacts")
    store.open(profile, "Guru")
    store.append(Message.create(MessageRole.USER, "who is hot?"))

    store.clear()
    assert len(store) == 0
    assert store.open(profile, "Guru") is not None
    assert len(store) == 1


def test_messages_is_a_snapshot():
    store = ConversationStore()
    snapshot = store.messages
    store.append(Message.create(MessageRole.USER, "later"))

    assert snapshot == ()
    assert len(store.messages) == 1


def test_welcome_without_suggestions():
    profile = PageProfile(key="reports", title="Reports", suggested_queries=(), context_fetcher={})

    assert welcome_text("Guru", profile) == "Hi! I'm Guru, your AI sales assistant for Reports."


def test_metadata_confidence_range():
    with pytest.raises(ValueError):
        MessageMetadata(confidence_score=101)

    metadata = MessageMetadata(
        confidence_score=80,
        sources=("deals",),
        suggested_actions=(SuggestedAction(label="Create task", action_id="create_task"),),
    )
    assert metadata.to_dict() == {
        "confidence_score": 80,
        "sources": ["deals"],
        "suggested_actions": [{"label": "Create task", "action_id": "create_task", "payload": {}}],
    }


def test_message_api_dict():
    message = Message.create(MessageRole.ASSISTANT, "hi")
    assert message.to_api_dict() == {"role": "assistant", "content": "hi"}
