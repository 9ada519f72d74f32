import asyncio
import logging
from typing import Callable

from explainboard.config import settings
from explainboard.errors import ExtractionError, GenerationError
from explainboard.models import LiveSegment
from explainboard.services.enrichment import SegmentEnrichmentPipeline

logger = logging.getLogger(__name__)


class TranscriptSegmenter:
    """Buffer transcript fragments and hand them off in drained chunks.

    ``append`` is called for every transcript fragment; ``drain`` is called by
    the session timer.  ``context`` accumulates one digest line per emitted
    segment and is fed back into every extraction so later segments don't
    repeat earlier ones.
    """

    def __init__(
        self,
        pipeline: SegmentEnrichmentPipeline,
        generation: int = 0,
        *,
        min_chars: int | None = None,
        on_error: Callable[[ExtractionError], None] | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.generation = generation
        self.min_chars = settings.min_transcript_chars if min_chars is None else min_chars
        self.buffer = ""
        self.context = ""
        self._on_error = on_error
        self._drain_lock = asyncio.Lock()

    def append(self, fragment: str) -> None:
        self.buffer += fragment + " "

    def take(self) -> str | None:
        """Take the whole buffer and reset it, or ``None`` if it is too short.

        No suspension point between the read and the reset.
        """
        if len(self.buffer.strip()) < self.min_chars:
            return None
        chunk, self.buffer = self.buffer, ""
        return chunk

    async def drain(self) -> LiveSegment | None:
        """Turn the buffered transcript into one segment.

        Drains run one at a time.  Extraction failures are reported and
        logged, never raised; the next drain gets another chance.
        """
        async with self._drain_lock:
            chunk = self.take()
            if chunk is None:
                return None

            try:
                segment = await self.pipeline.enrich(chunk, self.context, self.generation)
            except GenerationError as exc:
                logger.warning("Failed to process transcript segment: %s", exc)
                error = ExtractionError("Error generating content from speech.")
                error.__cause__ = exc
                if self._on_error:
                    self._on_error(error)
                return None

            digest = segment.digest()
            self.context = f"{self.context}\n{digest}" if self.context else digest
            return segment
