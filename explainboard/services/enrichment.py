import asyncio
import dataclasses
import logging
from typing import Callable

from pydantic import BaseModel, ValidationError

from explainboard.clients import GeminiClient, GroqClient
from explainboard.errors import MalformedModelOutput
from explainboard.models import LiveSegment, LiveSegmentData, new_segment_id

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# JSON Schema. Groq strict mode requires additionalProperties: false
# everywhere and all properties in "required".
# ---------------------------------------------------------------------------

LIVE_SEGMENT_SCHEMA = {
    "type": "object",
    "properties": {
        "keyIdea": {
            "type": "string",
            "description": (
                "A concise, catchy heading for the main concept discussed in "
                "the latest transcript segment."
            ),
        },
        "detailedExplanation": {
            "type": "string",
            "description": (
                "A well-structured explanation of the concept. Use markdown "
                "(**bold**, *italics*, newlines) for clarity."
            ),
        },
        "imagePrompt": {
            "type": "string",
            "description": (
                "A creative, contextually-aware prompt for an AI image generator "
                "that reflects the overall topic's style and vividly illustrates "
                "the core concept."
            ),
        },
    },
    "required": ["keyIdea", "detailedExplanation", "imagePrompt"],
    "additionalProperties": False,
}


class _LiveSegmentPayload(BaseModel):
    keyIdea: str
    detailedExplanation: str
    imagePrompt: str


# ---------------------------------------------------------------------------
# Board
# ---------------------------------------------------------------------------


class LiveBoard:
    """Ordered, append-only segments of the current live session.

    Every write carries the session generation it was started under;
    writes from a superseded generation are ignored so late results of an
    old session never land on a new one.
    """

    def __init__(self) -> None:
        self.generation = 0
        self._segments: list[LiveSegment] = []
        self._listeners: list[Callable[[dict], None]] = []

    @property
    def segments(self) -> tuple[LiveSegment, ...]:
        return tuple(self._segments)

    def subscribe(self, fn: Callable[[dict], None]) -> None:
        self._listeners.append(fn)

    def reset(self, generation: int) -> None:
        self.generation = generation
        self._segments = []
        self._emit({"type": "segments_cleared"})

    def append(self, generation: int, segment: LiveSegment) -> bool:
        if generation != self.generation:
            logger.info("Dropping segment %s from stale session", segment.id)
            return False
        self._segments.append(segment)
        self._emit({"type": "segment_added", "segment": dataclasses.asdict(segment)})
        return True

    def patch_image(self, generation: int, segment_id: str, image_url: str) -> bool:
        """Attach an image to the segment with *segment_id* (looked up by id)."""
        if generation != self.generation:
            return False
        for index, segment in enumerate(self._segments):
            if segment.id == segment_id:
                updated = dataclasses.replace(segment, image_url=image_url)
                self._segments[index] = updated
                self._emit(
                    {"type": "segment_updated", "segment": dataclasses.asdict(updated)}
                )
                return True
        return False

    def _emit(self, event: dict) -> None:
        for fn in self._listeners:
            try:
                fn(event)
            except Exception:
                logger.exception("Board listener failed")


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class SegmentEnrichmentPipeline:
    """Turn transcript chunks into illustrated segments on a ``LiveBoard``.

    ``enrich`` runs the text phase and publishes the segment immediately; the
    image phase runs as a separate task and patches the image in by id when
    (and if) it arrives.
    """

    def __init__(
        self,
        groq: GroqClient,
        gemini: GeminiClient,
        board: LiveBoard | None = None,
    ) -> None:
        self.groq = groq
        self.gemini = gemini
        self.board = board or LiveBoard()
        self._image_tasks: set[asyncio.Task] = set()

    def reset(self, generation: int) -> None:
        self.board.reset(generation)

    async def extract_key_idea(
        self, transcript: str, session_context: str
    ) -> LiveSegmentData:
        """Distil the newest transcript chunk into one key idea.

        Raises ``MalformedModelOutput`` if the reply does not match
        ``LIVE_SEGMENT_SCHEMA``.
        """
        messages = [
            {
                "role": "system",
                "content": (
                    "You are an AI learning assistant with expertise in real-time "
                    "summarization and visual concept generation. Your goal is to "
                    "transform a live spoken lecture into an illustrated digital "
                    "whiteboard. Pinpoint the single most important idea, definition "
                    "or example in the newest transcript segment and return: "
                    "keyIdea (a short, clear heading of 3-7 words), "
                    "detailedExplanation (a structured markdown explanation) and "
                    "imagePrompt (a descriptive prompt for an AI image generator that "
                    "reflects the topic's style). Do not repeat information already "
                    "covered in the session context."
                ),
            },
            {
                "role": "user",
                "content": (
                    "Session context (what has been discussed already):\n"
                    f"{session_context or 'The session is just beginning.'}\n\n"
                    "Most recent transcript segment (focus on this):\n"
                    f'"{transcript}"'
                ),
            },
        ]
        result = await self.groq.chat_json(
            messages, LIVE_SEGMENT_SCHEMA, schema_name="live_segment"
        )
        try:
            payload = _LiveSegmentPayload.model_validate(result)
        except ValidationError as exc:
            raise MalformedModelOutput(
                "The model returned an invalid format for the live segment."
            ) from exc
        return LiveSegmentData(
            key_idea=payload.keyIdea,
            detailed_explanation=payload.detailedExplanation,
            image_prompt=payload.imagePrompt,
        )

    async def enrich(
        self, transcript: str, session_context: str, generation: int
    ) -> LiveSegment:
        data = await self.extract_key_idea(transcript, session_context)
        segment = LiveSegment(
            key_idea=data.key_idea,
            detailed_explanation=data.detailed_explanation,
            image_prompt=data.image_prompt,
            id=new_segment_id(),
        )
        if not self.board.append(generation, segment):
            return segment

        task = asyncio.create_task(self._illustrate(generation, segment))
        self._image_tasks.add(task)
        task.add_done_callback(self._image_tasks.discard)
        return segment

    async def _illustrate(self, generation: int, segment: LiveSegment) -> None:
        try:
            image_url = await self.gemini.generate_image(segment.image_prompt)
        except Exception as exc:
            # The segment keeps no image; its text is already published.
            logger.warning("Image generation failed for segment %s: %s", segment.id, exc)
            return
        self.board.patch_image(generation, segment.id, image_url)

    async def wait_for_images(self) -> None:
        """Wait until every pending image request has settled."""
        pending = [t for t in self._image_tasks if not t.done()]
        while pending:
            await asyncio.gather(*pending, return_exceptions=True)
            pending = [t for t in self._image_tasks if not t.done()]

    async def aclose(self) -> None:
        for task in list(self._image_tasks):
            task.cancel()
        await asyncio.gather(*list(self._image_tasks), return_exceptions=True)
