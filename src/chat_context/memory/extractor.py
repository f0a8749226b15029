"""
Memory extraction - derive durable facts about a user from their messages.

Extraction is driven by a rule table. Each rule is a regular expression
matched against the lower-cased message; every rule that matches yields one
fragment holding the full original message. The default rules recognise
English phrasings together with the Chinese phrasings used by the product's
first deployment.
"""

import re
from dataclasses import dataclass

import structlog

from ..context.types import ChatMessage, ContextSession, MemoryFragment, MemoryType, MessageRole, new_id, utcnow

logger = structlog.get_logger()


@dataclass(frozen=True)
class ExtractionRule:
    """Maps a message pattern to the kind of fragment it produces."""

    name: str
    pattern: re.Pattern[str]
    fragment_type: MemoryType
    importance: float
    confidence: float

    def matches(self, content_lower: str) -> bool:
        return self.pattern.search(content_lower) is not None


def _rule(
    name: str,
    pattern: str,
    fragment_type: MemoryType,
    importance: float,
    confidence: float,
) -> ExtractionRule:
    return ExtractionRule(name, re.compile(pattern), fragment_type, importance, confidence)


DEFAULT_RULES: tuple[ExtractionRule, ...] = (
    # Preferences
    _rule(
        "likes",
        r"\bi (?:really )?(?:like|love|enjoy|prefer|tend to|usually)\b|我喜欢|我偏好|我倾向于|我习惯",
        MemoryType.PREFERENCE, 0.7, 0.8,
    ),
    _rule(
        "dislikes",
        r"\bi (?:dislike|hate|don't like|do not like|can't stand)\b|我不喜欢|我讨厌|我不习惯",
        MemoryType.PREFERENCE, 0.7, 0.8,
    ),
    # Facts
    _rule(
        "identity",
        r"\b(?:i am(?! (?:not )?(?:good at|able to))|i'm(?! (?:not )?(?:good at|able to))|my name is|i come from)\b|我是|我叫|我的名字是|我来自",
        MemoryType.FACT, 0.9, 0.9,
    ),
    _rule(
        "occupation",
        r"\bi (?:work|study) (?:at|for|in)\b|我在|我工作在|我学习在",
        MemoryType.FACT, 0.9, 0.9,
    ),
    # Skills
    _rule(
        "abilities",
        r"\b(?:i can(?!['’]t|not)|i am able to|i'm able to|i am good at|i'm good at)\b|我会|我能够|我擅长|我精通",
        MemoryType.SKILL, 0.8, 0.8,
    ),
    _rule(
        "inabilities",
        r"\b(?:i cannot|i can['’]t|i am not good at|i'm not good at|i am not able to|i'm not able to)\b|我不会|我不擅长|我不熟悉",
        MemoryType.SKILL, 0.8, 0.8,
    ),
)

# Tag -> keywords whose presence in a message earns the tag
DEFAULT_TAG_KEYWORDS: dict[str, tuple[str, ...]] = {
    "work": ("work", "job", "career", "工作", "职业"),
    "study": ("study", "school", "education", "学习", "教育"),
    "hobby": ("hobby", "hobbies", "interest", "爱好", "兴趣"),
    "family": ("family", "parent", "children", "家庭", "家人"),
    "skill": ("skill", "ability", "技能", "能力"),
}


def extract_tags(content: str, keywords: dict[str, tuple[str, ...]] = DEFAULT_TAG_KEYWORDS) -> list[str]:
    """Get the category tags whose keywords occur in content."""
    content_lower = content.lower()
    return [tag for tag, words in keywords.items() if any(word in content_lower for word in words)]


class MemoryExtractor:
    """Turns user messages into memory fragments using a rule table."""

    def __init__(
        self,
        rules: tuple[ExtractionRule, ...] | list[ExtractionRule] = DEFAULT_RULES,
        tag_keywords: dict[str, tuple[str, ...]] = DEFAULT_TAG_KEYWORDS,
    ):
        self.rules = list(rules)
        self.tag_keywords = tag_keywords

    def extract(self, session: ContextSession, message: ChatMessage) -> list[MemoryFragment]:
        """Get the fragments a message yields. Only user messages yield any."""
        if message.role != MessageRole.USER:
            return []

        content_lower = message.content.lower()
        tags = extract_tags(message.content, self.tag_keywords)
        fragments = []

        for rule in self.rules:
            if rule.matches(content_lower):
                now = utcnow()
                fragments.append(MemoryFragment(
                    id=new_id("memory"),
                    session_id=session.id,
                    user_id=session.user_id,
                    type=rule.fragment_type,
                    content=message.content,
                    importance=rule.importance,
                    confidence=rule.confidence,
                    created_at=now,
                    last_accessed_at=now,
                    tags=list(tags),
                    metadata={"rule": rule.name, "message_id": message.id},
                ))

        if fragments:
            logger.debug(
                "Extracted memory fragments",
                session_id=session.id,
                count=len(fragments),
                rules=[f.metadata["rule"] for f in fragments],
            )

        return fragments
