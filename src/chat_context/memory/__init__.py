"""Long-term user memory: extraction and retrieval."""

from .extractor import DEFAULT_RULES, ExtractionRule, MemoryExtractor, extract_tags
from .index import MemoryIndex, relevance_score

__all__ = [
    "DEFAULT_RULES",
    "ExtractionRule",
    "MemoryExtractor",
    "MemoryIndex",
    "extract_tags",
    "relevance_score",
]
