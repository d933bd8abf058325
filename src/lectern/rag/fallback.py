"""Answers for queries with no confident match in the knowledge base.

The default strategy pulls a few topic hints out of the best sub-threshold
excerpts, asks the generator for an answer that acknowledges the gap, and
falls back to a templated message when generation is unavailable or fails.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Protocol

from lectern.db.vectors import VectorMatch
from lectern.rag.llm_client import Generator

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 300
MAX_TOPIC_HINTS = 3

_WORD_RE = re.compile(r"[a-z][a-z'-]{3,}")

_STOPWORDS: frozenset[str] = frozenset(
    """
    about above after again against also because been before being below between
    both could does doing down during each from further have having here into
    itself just more most much other over same should some such than that their
    theirs them then there these they this those through under until very were
    what when where which while whom will with would your yours
    """.split()
)

_CLARIFYING_PROMPT = """\
The user asked: "{query}"

I have some related content in my knowledge base. Here are relevant excerpts:
{excerpts}

Generate a helpful response that:
1. Shows you understand what they're asking about
2. Explains what related information you DO have (based on the excerpts)
3. Offers to explore related angles or aspects of their question
4. Suggests 2-3 specific ways to approach their topic based on your available knowledge
5. Maintains an engaging, helpful tone

Find connections between their question and your knowledge base."""


class FallbackStrategy(Protocol):
    """Produce a conversational answer when nothing clears the confidence bar."""

    def respond(
        self,
        query: str,
        candidates: Sequence[VectorMatch],
        generator: Generator | None,
    ) -> str: ...


class KeywordTopicFallback:
    """Default fallback: topic hints from keywords, generator first, template second.

    Args:
        topic_keywords: ``keyword -> hint`` map. A hint is offered when its
            keyword occurs in a sampled excerpt. Empty means hints are the most
            frequent content words of the excerpts.
        max_hints: Maximum number of hints listed in the templated message.
        excerpt_chars: Excerpt length shown to the generator.
    """

    def __init__(
        self,
        topic_keywords: Mapping[str, str] | None = None,
        max_hints: int = MAX_TOPIC_HINTS,
        excerpt_chars: int = EXCERPT_CHARS,
    ) -> None:
        self._keywords = {k.lower(): v for k, v in (topic_keywords or {}).items()}
        self._max_hints = max_hints
        self._excerpt_chars = excerpt_chars

    def respond(
        self,
        query: str,
        candidates: Sequence[VectorMatch],
        generator: Generator | None,
    ) -> str:
        if generator is not None:
            try:
                answer = generator.generate(self.build_prompt(query, candidates)).strip()
            except Exception as exc:
                logger.warning("Fallback generation failed; using templated answer: %s", exc)
            else:
                if answer:
                    return answer
        return self.templated_message(query, self.topic_hints(candidates))

    def build_prompt(self, query: str, candidates: Sequence[VectorMatch]) -> str:
        excerpts = "\n\n".join(c.text[: self._excerpt_chars] for c in candidates)
        return _CLARIFYING_PROMPT.format(query=query, excerpts=excerpts)

    def topic_hints(self, candidates: Sequence[VectorMatch]) -> list[str]:
        texts = [c.text.lower() for c in candidates]
        if self._keywords:
            hints: list[str] = []
            for text in texts:
                for keyword, hint in self._keywords.items():
                    if keyword in text and hint not in hints:
                        hints.append(hint)
            return hints[: self._max_hints]

        counts: Counter[str] = Counter()
        for text in texts:
            counts.update(w for w in _WORD_RE.findall(text) if w not in _STOPWORDS)
        return [word for word, _ in counts.most_common(self._max_hints)]

    @staticmethod
    def templated_message(query: str, hints: Sequence[str]) -> str:
        message = (
            f'I\'m not finding specific information about "{query}" in my current '
            "knowledge base. "
        )
        if hints:
            message += "\n\nI do have information about:\n"
            message += "".join(f"• {hint}\n" for hint in hints)
            message += "\nCould you rephrase your question or ask about one of these topics?"
        else:
            message += (
                "\n\nCould you try rephrasing your question or asking about a specific "
                "aspect of the topic?"
            )
        return message
