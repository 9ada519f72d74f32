import asyncio
import dataclasses
import logging

from pydantic import BaseModel, Field, ValidationError

from explainboard.clients import GeminiClient, GroqClient
from explainboard.errors import GenerationError, MalformedModelOutput
from explainboard.models import Section, WhiteboardContent

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# JSON Schema
# ---------------------------------------------------------------------------

WHITEBOARD_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {
            "type": "string",
            "description": "A concise and engaging title for the topic.",
        },
        "introduction": {
            "type": "string",
            "description": "A brief, one-paragraph introduction to the topic.",
        },
        "sections": {
            "type": "array",
            "description": "An array of sections that break down the topic.",
            "items": {
                "type": "object",
                "properties": {
                    "heading": {"type": "string"},
                    "explanation": {"type": "string"},
                    "imagePrompt": {"type": "string"},
                },
                "required": ["heading", "explanation", "imagePrompt"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["title", "introduction", "sections"],
    "additionalProperties": False,
}


class _SectionPayload(BaseModel):
    heading: str
    explanation: str
    imagePrompt: str


class _WhiteboardPayload(BaseModel):
    title: str
    introduction: str
    sections: list[_SectionPayload] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def merge_section_images(
    previous: WhiteboardContent | None,
    image_urls: list[str | None],
) -> WhiteboardContent | None:
    """Return a new whiteboard with *image_urls* paired to sections by index.

    ``None`` entries (failed images) leave that section without an image.
    """
    if previous is None:
        return None
    sections = tuple(
        dataclasses.replace(section, image_url=image_urls[index])
        if index < len(image_urls)
        else section
        for index, section in enumerate(previous.sections)
    )
    return dataclasses.replace(previous, sections=sections)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ExplanationService:
    """Generate an illustrated whiteboard explanation for a topic."""

    def __init__(self, groq: GroqClient, gemini: GeminiClient) -> None:
        self.groq = groq
        self.gemini = gemini

    async def generate_explanation(self, topic: str) -> WhiteboardContent:
        """One structured call: title, introduction and at least 3 sections.

        Sections come back without images.
        """
        messages = [
            {
                "role": "system",
                "content": (
                    "You are an expert educator and creative director. Break down a "
                    "complex topic into an easy-to-understand visual explanation for a "
                    "digital whiteboard. For each section provide a clear heading, a "
                    "detailed explanation using simple markdown (**bold**, *italics*, "
                    "short paragraphs separated by newlines), and a highly descriptive "
                    "imagePrompt that acts as a creative brief for an AI artist, "
                    "specifying style (chalkboard sketch, infographic, vector "
                    "illustration), composition and mood. Provide at least 3 sections."
                ),
            },
            {"role": "user", "content": f'Topic: "{topic}"'},
        ]
        result = await self.groq.chat_json(
            messages, WHITEBOARD_SCHEMA, schema_name="whiteboard"
        )
        try:
            payload = _WhiteboardPayload.model_validate(result)
        except ValidationError as exc:
            raise MalformedModelOutput(
                "The model returned an invalid format. Please try again."
            ) from exc
        return WhiteboardContent(
            title=payload.title,
            introduction=payload.introduction,
            sections=tuple(
                Section(
                    heading=s.heading,
                    explanation=s.explanation,
                    image_prompt=s.imagePrompt,
                )
                for s in payload.sections
            ),
        )

    async def generate_section_images(
        self, sections: tuple[Section, ...]
    ) -> list[str | None]:
        """Request every section image concurrently; failures resolve to ``None``."""
        return list(
            await asyncio.gather(*(self._image_or_none(s) for s in sections))
        )

    async def _image_or_none(self, section: Section) -> str | None:
        try:
            return await self.gemini.generate_image(section.image_prompt)
        except Exception as exc:
            logger.warning("Failed to generate image for %r: %s", section.heading, exc)
            return None


class WhiteboardSession:
    """The one whiteboard shown in explain mode.

    Each ``submit`` starts a new generation; image results that belong to a
    superseded generation are discarded instead of merged.
    """

    def __init__(self, service: ExplanationService) -> None:
        self.service = service
        self.content: WhiteboardContent | None = None
        self.loading = False
        self.error: str | None = None
        self._generation = 0
        self._image_tasks: set[asyncio.Task] = set()

    @property
    def generation(self) -> int:
        return self._generation

    def snapshot(self) -> dict:
        return {
            "loading": self.loading,
            "error": self.error,
            "content": dataclasses.asdict(self.content) if self.content else None,
        }

    def reset(self) -> None:
        self._generation += 1
        self.content = None
        self.error = None
        self.loading = False

    async def submit(self, topic: str) -> WhiteboardContent:
        """Run the text phase, publish it, and schedule the image phase.

        Raises ``GenerationError`` if the text phase fails.
        """
        self.reset()
        generation = self._generation
        self.loading = True

        try:
            content = await self.service.generate_explanation(topic)
        except GenerationError as exc:
            if generation == self._generation:
                self.error = str(exc)
                self.loading = False
            raise

        if generation != self._generation:
            logger.info("Discarding explanation for superseded topic %r", topic)
            return content

        self.content = content
        task = asyncio.create_task(self._illustrate(generation, content))
        self._image_tasks.add(task)
        task.add_done_callback(self._image_tasks.discard)
        return content

    async def _illustrate(self, generation: int, content: WhiteboardContent) -> None:
        try:
            image_urls = await self.service.generate_section_images(content.sections)
            if generation != self._generation:
                logger.info("Discarding %d images for a superseded topic", len(image_urls))
                return
            self.content = merge_section_images(self.content, image_urls)
        finally:
            if generation == self._generation:
                self.loading = False

    async def wait_for_images(self) -> None:
        pending = [t for t in self._image_tasks if not t.done()]
        while pending:
            await asyncio.gather(*pending, return_exceptions=True)
            pending = [t for t in self._image_tasks if not t.done()]

    async def aclose(self) -> None:
        for task in list(self._image_tasks):
            task.cancel()
        await asyncio.gather(*list(self._image_tasks), return_exceptions=True)
