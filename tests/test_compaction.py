"""
Tests for context compression.
"""

from unittest.mock import MagicMock

from chat_context.context.compaction import (
    EMPTY_SUMMARY,
    SUMMARY_PREFIX,
    CompressionEngine,
    create_summary,
    message_tokens,
    should_compress,
)
from chat_context.context.tokens import estimate_tokens
from chat_context.context.types import MessageRole
from chat_context.storage import CacheTier

from conftest import make_message, make_session


def test_estimate_tokens_empty():
    """Test token estimation for empty text."""
    assert estimate_tokens("") == 0


def test_estimate_tokens_rounds_up():
    """Test that partial tokens count as a whole token."""
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_estimate_tokens_counts_utf8_bytes():
    """Test that multi-byte characters weigh more than ASCII."""
    assert estimate_tokens("日本") == 2  # 6 bytes
    assert estimate_tokens("éé") == 1  # 4 bytes


def test_create_summary_empty():
    """Test the summary of nothing."""
    assert create_summary([]) == EMPTY_SUMMARY


def test_create_summary_topics_and_key_points():
    """Test topic and key point extraction."""
    long_reply = "Decorators wrap a function to extend its behaviour without editing it."
    messages = [
        make_message(0, MessageRole.USER, "Tell me about Python decorators please"),
        make_message(1, MessageRole.ASSISTANT, long_reply),
        make_message(2, MessageRole.USER, "What about generators?"),
        make_message(3, MessageRole.ASSISTANT, "Sure."),
    ]

    summary = create_summary(messages)

    assert summary == (
        "discussed topics: Tell, about, Python, What, generators?. "
        f"key points: {long_reply[:50]}..."
    )


def test_create_summary_caps_topics_and_points():
    """Test that at most 5 topics and 3 key points are kept."""
    messages = []
    for i in range(4):
        messages.append(make_message(2 * i, MessageRole.USER, f"alpha{i} beta{i} gamma{i} delta{i}"))
        messages.append(make_message(2 * i + 1, MessageRole.ASSISTANT, f"{i}" * 60))

    summary = create_summary(messages)
    topics, points = summary.split(". key points: ")

    assert topics == "discussed topics: alpha0, beta0, gamma0, alpha1, beta1"
    assert points.count("...") == 3


def test_create_summary_skips_short_words():
    """Test that words of two characters or fewer are not topics."""
    summary = create_summary([make_message(0, MessageRole.USER, "is it ok to go swimming")])
    assert summary.startswith("discussed topics: swimming.")


def test_should_compress_by_messages():
    """Test the message count trigger."""
    session = make_session([make_message(i) for i in range(9)], max_messages=10)
    assert should_compress(session) is True

    session = make_session([make_message(i) for i in range(8)], max_messages=10)
    assert should_compress(session) is False


def test_should_compress_by_tokens():
    """Test the token trigger."""
    session = make_session([make_message(0, content="x" * 400)], max_tokens=100)
    assert should_compress(session) is True


def test_compress_preserves_important_and_recent():
    """Test the preservation policy."""
    messages = [make_message(i, MessageRole.USER if i % 2 else MessageRole.ASSISTANT) for i in range(30)]
    messages[0] = make_message(0, content="remember the launch date", is_important=True)
    messages[2] = make_message(2, MessageRole.SYSTEM, "You are a helpful assistant.")
    messages[4] = make_message(4, MessageRole.ASSISTANT, "Welcome!", is_welcome=True)
    session = make_session(messages)
    engine = CompressionEngine(CacheTier("compression"))

    result = engine.compress(session)

    ids = [m.id for m in session.messages]
    assert session.messages[0].metadata.is_summary
    assert session.messages[0].role == MessageRole.SYSTEM
    assert session.messages[0].content.startswith(SUMMARY_PREFIX)
    assert ids[1:4] == ["msg_0", "msg_2", "msg_4"]
    assert ids[4:] == [f"msg_{i}" for i in range(10, 30)]
    assert result.removed_count == 7
    assert result.summary_message is session.messages[0]
    assert [m.id for m in result.preserved_messages] == ids[1:]


def test_compress_keeps_token_invariant():
    """Test that total tokens match the messages after compression."""
    messages = [make_message(i, content=f"a fairly long message body number {i}") for i in range(40)]
    session = make_session(messages)
    engine = CompressionEngine(CacheTier("compression"))

    result = engine.compress(session)

    assert session.metadata.total_tokens == sum(message_tokens(m) for m in session.messages)
    assert session.metadata.total_tokens == sum(estimate_tokens(m.content) for m in session.messages)
    assert result.compressed_tokens == session.metadata.total_tokens
    assert result.compression_ratio < 1
    assert session.metadata.message_count == len(session.messages) == 21


def test_compress_keeps_timestamps_ascending():
    """Test that the summary does not break chronological order."""
    session = make_session([make_message(i) for i in range(25)])
    CompressionEngine(CacheTier("compression")).compress(session)

    timestamps = [m.timestamp for m in session.messages]
    assert timestamps == sorted(timestamps)


def test_compress_without_removal_adds_no_summary():
    """Test that a short session is left untouched."""
    messages = [make_message(i) for i in range(10)]
    session = make_session(list(messages))

    result = CompressionEngine(CacheTier("compression")).compress(session)

    assert result.removed_count == 0
    assert result.summary_message is None
    assert session.messages == messages
    assert not any(m.metadata.is_summary for m in session.messages)


def test_compress_is_memoized_on_unchanged_session():
    """Test that compressing twice returns the cached result."""
    session = make_session([make_message(i) for i in range(30)])
    engine = CompressionEngine(CacheTier("compression"))

    first = engine.compress(session)
    messages_after_first = list(session.messages)
    second = engine.compress(session)

    assert second is first
    assert session.messages == messages_after_first


def test_compress_survives_broken_cache():
    """Test that cache failures only disable memoization."""
    cache = MagicMock()
    cache.get.side_effect = RuntimeError("cache down")
    cache.set.side_effect = RuntimeError("cache down")
    session = make_session([make_message(i) for i in range(30)])

    result = CompressionEngine(cache).compress(session)

    assert result.removed_count == 10
    assert len(session.messages) == 21


def test_compress_empty_session():
    """Test compressing a session with no messages."""
    session = make_session([])
    result = CompressionEngine(CacheTier("compression")).compress(session)

    assert result.removed_count == 0
    assert result.compression_ratio == 1.0
    assert session.messages == []
