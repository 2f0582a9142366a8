"""Topic segmentation of a chronological message list."""

from datetime import timedelta
from typing import Protocol

from inbox_models import Direction, Message

# Phrases that usually open a new exchange
TOPIC_STARTERS = (
    "hey",
    "hi",
    "hello",
    "good morning",
    "good afternoon",
    "good evening",
    "quick question",
    "i have a question",
    "can i ask",
    "by the way",
    "speaking of",
    "on another note",
    "also",
    "another thing",
    "btw",
    "one more thing",
    "oh and",
    "additionally",
    "fyi",
)

QUESTION_WORDS = (
    "what",
    "how",
    "when",
    "where",
    "why",
    "can you",
    "could you",
    "would you",
    "do you",
)

TOPIC_GAP = timedelta(hours=1)


class Segmenter(Protocol):
    def segment(self, messages: list[Message]) -> list[list[Message]]: ...


class TopicSegmenter:
    """Splits conversations on topic-starter phrases, long pauses, and questions
    that follow an inbound message."""

    def __init__(
        self,
        starters: tuple[str, ...] = TOPIC_STARTERS,
        question_words: tuple[str, ...] = QUESTION_WORDS,
        gap: timedelta = TOPIC_GAP,
    ):
        self.starters = starters
        self.question_words = question_words
        self.gap = gap

    def segment(self, messages: list[Message]) -> list[list[Message]]:
        segments: list[list[Message]] = []
        current: list[Message] = []
        for i, message in enumerate(messages):
            current.append(message)
            following = messages[i + 1] if i + 1 < len(messages) else None
            if following is not None and self.is_boundary(message, following):
                segments.append(current)
                current = []
        if current:
            segments.append(current)
        return segments

    def is_boundary(self, current: Message, following: Message) -> bool:
        next_text = following.body.strip().lower()

        if next_text.startswith(self.starters):
            return True

        if following.created_at - current.created_at > self.gap:
            return True

        if (
            current.direction == Direction.INBOUND
            and following.direction == Direction.OUTBOUND
            and self.is_question(next_text)
        ):
            return True

        return False

    def is_question(self, text: str) -> bool:
        text = text.strip().lower()
        return "?" in text or text.startswith(self.question_words)


def segment_by_topic(messages: list[Message]) -> list[list[Message]]:
    return TopicSegmenter().segment(messages)
