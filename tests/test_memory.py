"""
Tests for memory extraction, storage and search.
"""

import math
import re
from datetime import timedelta

import pytest

from chat_context.context.types import MemoryFragment, MemoryType, MessageRole, utcnow
from chat_context.memory import ExtractionRule, MemoryExtractor, extract_tags, relevance_score
from chat_context.memory.index import MemoryIndex
from chat_context.storage import memory_key

from conftest import make_message, make_session


def _extract(content, role=MessageRole.USER):
    return MemoryExtractor().extract(make_session(), make_message(0, role, content))


def _fragment(content="likes green tea", importance=1.0, confidence=1.0, tags=None, age_days=0,
              fragment_type=MemoryType.PREFERENCE, session_id="session_test"):
    created = utcnow() - timedelta(days=age_days)
    return MemoryFragment(
        id=f"memory_{abs(hash((content, age_days, tuple(tags or ()))))}",
        session_id=session_id,
        user_id="user-1",
        type=fragment_type,
        content=content,
        importance=importance,
        confidence=confidence,
        created_at=created,
        last_accessed_at=created,
        tags=list(tags or []),
    )


# Extraction


def test_extract_fact():
    """Test that a statement of origin is a high-importance fact."""
    fragments = _extract("I am from Berlin")

    assert len(fragments) == 1
    assert fragments[0].type == MemoryType.FACT
    assert fragments[0].importance == 0.9
    assert fragments[0].confidence == 0.9
    assert fragments[0].content == "I am from Berlin"
    assert fragments[0].user_id == "user-1"


def test_extract_preference():
    """Test likes and dislikes."""
    likes = _extract("I really like hiking on weekends")
    dislikes = _extract("Honestly I hate early mornings")

    assert [(f.type, f.importance, f.confidence) for f in likes] == [(MemoryType.PREFERENCE, 0.7, 0.8)]
    assert [f.type for f in dislikes] == [MemoryType.PREFERENCE]


def test_extract_skill():
    """Test abilities and inabilities."""
    assert [f.type for f in _extract("I can speak French")] == [MemoryType.SKILL]
    assert [f.type for f in _extract("Sadly I cannot swim")] == [MemoryType.SKILL]
    assert _extract("I can speak French")[0].importance == 0.8


def test_extract_multiple_rules():
    """Test that each matching rule yields its own fragment."""
    fragments = _extract("I am good at chess and I work at a school")

    assert sorted(f.metadata["rule"] for f in fragments) == ["abilities", "occupation"]
    assert all(f.content == "I am good at chess and I work at a school" for f in fragments)
    assert len({f.id for f in fragments}) == 2


def test_extract_negated_ability():
    """Test that a negation does not also yield the positive statement."""
    def rules(content):
        return sorted(f.metadata["rule"] for f in _extract(content))

    assert rules("I can't swim") == ["inabilities"]
    assert rules("I can’t swim") == ["inabilities"]
    assert rules("I cannot drive") == ["inabilities"]
    assert rules("I'm not good at maths") == ["inabilities"]
    assert rules("I am not able to cook") == ["inabilities"]
    assert rules("I am able to cook") == ["abilities"]
    assert rules("我不会游泳") == ["inabilities"]


def test_extract_chinese_phrasing():
    """Test the Chinese phrasings of the default rules."""
    fragments = _extract("我喜欢喝茶")
    assert [f.type for f in fragments] == [MemoryType.PREFERENCE]


def test_extract_nothing():
    """Test messages without memorable content."""
    assert _extract("What's the weather like today?") == []


def test_extract_ignores_non_user_messages():
    """Test that assistant statements are never memories."""
    assert _extract("I am an assistant", MessageRole.ASSISTANT) == []


def test_extract_tags():
    """Test keyword tagging."""
    assert extract_tags("My job keeps me away from my family") == ["work", "family"]
    assert extract_tags("I study hard to improve my skills") == ["study", "skill"]
    assert extract_tags("Nothing here") == []


def test_extracted_fragments_carry_tags():
    """Test that fragments get the message tags."""
    fragments = _extract("I work at a school")
    assert fragments[0].tags == ["work", "study"]


def test_custom_rule_table():
    """Test that the rule table can be replaced."""
    rule = ExtractionRule("pets", re.compile(r"\bmy (?:dog|cat)\b"), MemoryType.RELATIONSHIP, 0.6, 0.7)
    extractor = MemoryExtractor(rules=[rule])

    fragments = extractor.extract(make_session(), make_message(0, content="My dog is called Rex"))

    assert [(f.type, f.importance, f.confidence) for f in fragments] == [(MemoryType.RELATIONSHIP, 0.6, 0.7)]
    assert fragments[0].metadata["rule"] == "pets"


# Scoring


def test_relevance_content_match():
    """Test the text match weighted by importance and confidence."""
    fragment = _fragment("I like green tea", importance=0.9, confidence=0.9)
    assert relevance_score(fragment, "GREEN TEA", now=fragment.created_at) == pytest.approx(0.72)


def test_relevance_tag_match():
    """Test tag matches in both directions."""
    fragment = _fragment("unrelated", tags=["work"], importance=0.5, confidence=0.5)
    now = fragment.created_at

    assert relevance_score(fragment, "work", now=now) == pytest.approx(0.15)
    assert relevance_score(fragment, "my work schedule", now=now) == pytest.approx(0.15)
    assert relevance_score(fragment, "wo", now=now) == pytest.approx(0.15)


def test_relevance_tag_bonus_is_additive():
    """Test that every matching tag adds to the score."""
    fragment = _fragment("unrelated", tags=["work", "study", "skill"])
    assert relevance_score(fragment, "work study skill", now=fragment.created_at) == pytest.approx(0.9)


def test_relevance_is_clamped():
    """Test the upper bound."""
    fragment = _fragment("work and study skill", tags=["work", "study", "skill"])
    assert relevance_score(fragment, "work", now=fragment.created_at) == 1.0


def test_relevance_time_decay():
    """Test exponential decay with age."""
    fragment = _fragment("green tea", age_days=30)
    now = fragment.created_at + timedelta(days=30)
    assert relevance_score(fragment, "green tea", now=now) == pytest.approx(0.8 * math.exp(-1))


def test_relevance_no_match():
    """Test that unrelated fragments score zero."""
    assert relevance_score(_fragment("green tea"), "python") == 0.0


# Index


@pytest.fixture
def index(service):
    return service.memory


@pytest.mark.asyncio
async def test_store_and_get_user_memory(index, store):
    """Test appending fragments and reading them back."""
    await index.store_fragments("user-1", [_fragment("a"), _fragment("b", fragment_type=MemoryType.FACT)])
    await index.store_fragments("user-1", [_fragment("c", fragment_type=MemoryType.SKILL)])

    assert [f.content for f in await index.get_user_memory("user-1")] == ["a", "b", "c"]
    assert [f.content for f in await index.get_user_memory("user-1", MemoryType.FACT)] == ["b"]
    assert [f.content for f in await index.get_user_memory("user-1", "skill")] == ["c"]
    assert len(await store.get(memory_key("user-1"))) == 3


@pytest.mark.asyncio
async def test_get_user_memory_from_store(index, service):
    """Test the cache miss path."""
    await index.store_fragments("user-1", [_fragment("a", fragment_type=MemoryType.FACT), _fragment("b")])
    service.caches.memory.clear()

    facts = await index.get_user_memory("user-1", MemoryType.FACT)
    everything = await index.get_user_memory("user-1")

    assert [f.content for f in facts] == ["a"]
    assert facts[0] is everything[0]
    assert facts[0].created_at.tzinfo is not None
    assert MemoryIndex.cache_key("user-1", MemoryType.FACT) in service.caches.memory


@pytest.mark.asyncio
async def test_typed_view_refreshed_after_store(index):
    """Test that typed views see newly stored fragments."""
    await index.store_fragments("user-1", [_fragment("a", fragment_type=MemoryType.FACT)])
    assert len(await index.get_user_memory("user-1", MemoryType.FACT)) == 1

    await index.store_fragments("user-1", [_fragment("b", fragment_type=MemoryType.FACT)])
    assert len(await index.get_user_memory("user-1", MemoryType.FACT)) == 2


@pytest.mark.asyncio
async def test_get_user_memory_unknown_or_corrupt(index, store):
    """Test that missing or corrupt memory reads as empty."""
    assert await index.get_user_memory("nobody") == []

    store.set_raw(memory_key("broken"), "not json")
    assert await index.get_user_memory("broken") == []

    await store.set(memory_key("partial"), [{"id": "memory_1"}])
    assert await index.get_user_memory("partial") == []


@pytest.mark.asyncio
async def test_search_memory_ranks_and_filters(index):
    """Test threshold, ordering and limit of search results."""
    await index.store_fragments("user-1", [
        _fragment("I like green tea", importance=0.7, confidence=0.8),
        _fragment("I love green tea in the morning", importance=1.0, confidence=1.0),
        _fragment("green tea from last year", age_days=120),
        _fragment("I like coffee"),
    ])

    results = await index.search_memory("user-1", "green tea")

    assert [f.content for f in results] == ["I love green tea in the morning", "I like green tea"]
    scores = [relevance_score(f, "green tea") for f in results]
    assert all(score > 0.3 for score in scores)
    assert scores == sorted(scores, reverse=True)

    limited = await index.search_memory("user-1", "green tea", limit=1)
    assert [f.content for f in limited] == ["I love green tea in the morning"]


@pytest.mark.asyncio
async def test_search_memory_tracks_access(index, store, service):
    """Test that returned fragments record the access."""
    await index.store_fragments("user-1", [_fragment("green tea"), _fragment("coffee")])

    await index.search_memory("user-1", "green tea")
    await index.search_memory("user-1", "green tea")

    service.caches.memory.clear()
    by_content = {f.content: f for f in await index.get_user_memory("user-1")}
    assert by_content["green tea"].access_count == 2
    assert by_content["green tea"].last_accessed_at >= by_content["green tea"].created_at
    assert by_content["coffee"].access_count == 0


@pytest.mark.asyncio
async def test_search_memory_unknown_user(index):
    """Test searching with no memory stored."""
    assert await index.search_memory("nobody", "anything") == []


@pytest.mark.asyncio
async def test_delete_user_memory(index, store):
    """Test purging a user's memory."""
    await index.store_fragments("user-1", [_fragment("a", fragment_type=MemoryType.FACT)])
    await index.get_user_memory("user-1", MemoryType.FACT)

    assert await index.delete_user_memory("user-1") is True
    assert await index.get_user_memory("user-1") == []
    assert await index.get_user_memory("user-1", MemoryType.FACT) == []
    assert await store.get(memory_key("user-1")) is None
