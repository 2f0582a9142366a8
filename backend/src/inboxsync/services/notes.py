"""AI-assisted note extraction from conversation segments."""

import logging
from typing import Callable

from inbox_models import (
    Creator,
    EvaluationProgress,
    EvaluationResult,
    Message,
    Thread,
    ThreadNote,
)
from inboxsync.config import settings
from inboxsync.errors import BackendError, CompletionError, InboxValidationError
from inboxsync.ports import ChatCompletion, InboxBackend
from inboxsync.services.contacts import phones_match
from inboxsync.services.segmentation import Segmenter, TopicSegmenter

logger = logging.getLogger(__name__)

NO_INSIGHTS_SENTINEL = "NO_ACTIONABLE_INSIGHTS"
SOURCE_EXCERPT_CHARS = 500
FALLBACK_EXCERPT_CHARS = 100

EXTRACTION_PROMPT = """You are analyzing a conversation between a creator and chat members to extract actionable insights for account management.

Look for:
1. Creator's responses to questions about preferences/boundaries
2. Creator's reactions to suggestions or requests
3. Creator's communication style and tone preferences
4. Any instructions or feedback the creator gives
5. Content type preferences and limitations

Extract ONLY actionable insights in this format:
- "Creator prefers [preference] when [context]"
- "Creator dislikes [thing] because [reason]"
- "Creator's tone is [description] in [situation]"
- "Creator's boundary: [specific boundary]"
- "Creator's content preference: [preference]"

Focus on insights that help the team understand how to better manage the creator's account.
Keep each insight under 100 characters if possible.
If no actionable insights found, respond with "{sentinel}".

The creator's username is @{username}."""

ProgressCallback = Callable[[EvaluationProgress], None]


def truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def transcript(segment: list[Message]) -> str:
    return "\n".join(f"{m.sender_phone_number}: {m.body}" for m in segment)


def parse_insights(content: str) -> list[str]:
    """Split a completion into insight lines; the sentinel means none."""
    content = content.strip()
    if not content or content == NO_INSIGHTS_SENTINEL:
        return []
    return [line.strip() for line in content.splitlines() if line.strip()]


class NoteExtractor:
    """Turns un-evaluated conversation segments into thread notes.

    A segment counts as evaluated once a note is anchored to its last
    message, so running evaluate() twice never duplicates notes.
    """

    def __init__(
        self,
        backend: InboxBackend,
        completion: ChatCompletion,
        segmenter: Segmenter | None = None,
    ):
        self._backend = backend
        self._completion = completion
        self.segmenter = segmenter or TopicSegmenter()

    async def evaluate(
        self,
        thread: Thread,
        on_progress: ProgressCallback | None = None,
    ) -> EvaluationResult:
        """
        Evaluate every segment of a thread that has no note yet.

        Raises:
            InboxValidationError: the thread has no creator, or the creator
                has no phone number
            BackendError: history or existing notes could not be fetched
        """
        creator = await self._require_creator(thread)

        messages = await self._backend.get_all_messages(thread.id)
        anchors = await self._backend.get_note_anchors(thread.id)

        pending = [
            segment
            for segment in self.segmenter.segment(messages)
            if segment[-1].message_id not in anchors
        ]
        result = EvaluationResult(segments_total=len(pending))
        if not pending:
            logger.info(f"No new segments to evaluate for thread {thread.id}")
            return result

        progress = EvaluationProgress(total=len(pending))
        if on_progress:
            on_progress(progress.model_copy())

        for i, segment in enumerate(pending):
            try:
                notes = await self.process_segment(thread.id, segment, creator)
            except BackendError as e:
                logger.error(f"Error processing segment {i + 1} of thread {thread.id}: {e}")
                notes = []
            result.notes.extend(notes)
            result.segments_processed = i + 1
            result.messages_processed += len(segment)

            progress = EvaluationProgress(
                current=i + 1,
                total=len(pending),
                processed=result.messages_processed,
                notes_created=result.notes_created,
            )
            if on_progress:
                on_progress(progress)

        logger.info(
            f"Created {result.notes_created} notes from {len(pending)} segments in thread {thread.id}"
        )
        return result

    async def _require_creator(self, thread: Thread) -> Creator:
        if not thread.client_id:
            raise InboxValidationError(
                "Please assign a creator to this thread before evaluating messages"
            )
        creator = await self._backend.get_creator(thread.client_id)
        if creator is None:
            raise InboxValidationError(
                "Please assign a creator to this thread before evaluating messages"
            )
        if not creator.phone:
            raise InboxValidationError(
                "The assigned creator does not have a phone number configured. "
                "Please update the creator's phone."
            )
        return creator

    async def process_segment(
        self, thread_id: int, segment: list[Message], creator: Creator
    ) -> list[ThreadNote]:
        """Extract and store notes for one segment.

        Segments without a creator message produce nothing.
        """
        if not any(phones_match(m.sender_phone_number, creator.phone) for m in segment):
            return []

        text = transcript(segment)
        source = truncate(text, SOURCE_EXCERPT_CHARS)
        anchor = segment[-1].message_id

        try:
            insights = await self._extract(text, creator.username)
        except CompletionError as e:
            logger.error(f"Error analyzing segment with AI, using fallback note: {e}")
            return await self._fallback_note(thread_id, segment, creator, source, anchor)

        notes = []
        for insight in insights:
            try:
                notes.append(
                    await self._backend.create_note(thread_id, insight, source, anchor)
                )
            except BackendError as e:
                logger.error(f"Error creating note: {e}")
        return notes

    async def _extract(self, text: str, username: str) -> list[str]:
        content = await self._completion.complete(
            [
                {
                    "role": "system",
                    "content": EXTRACTION_PROMPT.format(
                        sentinel=NO_INSIGHTS_SENTINEL, username=username
                    ),
                },
                {"role": "user", "content": f"Conversation:\n{text}"},
            ],
            model=settings.completion_model,
            temperature=settings.completion_temperature,
            max_tokens=settings.completion_max_tokens,
        )
        return parse_insights(content)

    async def _fallback_note(
        self,
        thread_id: int,
        segment: list[Message],
        creator: Creator,
        source: str,
        anchor: str,
    ) -> list[ThreadNote]:
        summary = " ".join(
            m.body
            for m in segment
            if phones_match(m.sender_phone_number, creator.phone) and m.body
        )
        if not summary:
            return []
        content = f"Creator mentioned: {truncate(summary, FALLBACK_EXCERPT_CHARS)}"
        return [await self._backend.create_note(thread_id, content, source, anchor)]
