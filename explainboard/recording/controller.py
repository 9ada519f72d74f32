import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from explainboard.clients import GeminiClient, LiveCallbacks
from explainboard.config import settings
from explainboard.errors import (
    CaptureUnavailable,
    ExtractionError,
    LiveConnectionError,
    SessionAlreadyActive,
)
from explainboard.recording.capture import AudioCapture
from explainboard.services.enrichment import SegmentEnrichmentPipeline
from explainboard.services.segmenter import TranscriptSegmenter

logger = logging.getLogger(__name__)

CONNECTION_ERROR_MESSAGE = "A connection error occurred."


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"


@dataclass
class SessionResources:
    """Everything a live session holds open, released together on teardown."""

    transport: Any = None
    capture: AudioCapture | None = None
    audio_task: asyncio.Task | None = None
    timer_task: asyncio.Task | None = None

    def release(self) -> None:
        # Each release is independent: one failing must not skip the rest.
        if self.transport is not None:
            try:
                self.transport.close()
            except Exception:
                logger.exception("Failed to close live transport")
            self.transport = None
        if self.capture is not None:
            try:
                self.capture.close()
            except Exception:
                logger.exception("Failed to close audio capture")
            self.capture = None
        if self.audio_task is not None:
            self.audio_task.cancel()
            self.audio_task = None
        if self.timer_task is not None:
            self.timer_task.cancel()
            self.timer_task = None


class LiveSessionController:
    """Lifecycle of one live classroom session at a time.

    State machine::

        IDLE --start()--> CONNECTING --on_open--> LIVE
        CONNECTING | LIVE --stop() / on_error / on_close--> IDLE

    Every transport callback is bound to the generation of the session that
    opened it, so events from a superseded transport are ignored.
    """

    def __init__(
        self,
        gemini: GeminiClient,
        pipeline: SegmentEnrichmentPipeline,
        *,
        capture_factory: Callable[[], AudioCapture] = AudioCapture,
        segment_interval: float | None = None,
    ) -> None:
        self.gemini = gemini
        self.pipeline = pipeline
        self.capture_factory = capture_factory
        self.segment_interval = (
            settings.segment_interval_seconds if segment_interval is None else segment_interval
        )

        self.state = SessionState.IDLE
        self.error: str | None = None
        self.segmenter: TranscriptSegmenter | None = None

        self._generation = 0
        self._resources = SessionResources()
        self._background: set[asyncio.Task] = set()
        self._listeners: list[Callable[[dict], None]] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def on_event(self, fn: Callable[[dict], None]) -> None:
        """Register a listener for status and board events.

        ``fn`` receives dicts with a ``"type"`` key: ``session_status``,
        ``extraction_error``, ``segments_cleared``, ``segment_added`` or
        ``segment_updated``.
        """
        self._listeners.append(fn)
        self.pipeline.board.subscribe(fn)

    @property
    def generation(self) -> int:
        return self._generation

    def snapshot(self) -> dict:
        return {
            "status": self.state.value,
            "error": self.error,
            "segments": [dataclasses.asdict(s) for s in self.pipeline.board.segments],
        }

    async def start(self) -> None:
        """Acquire the microphone and open the live transport.

        Returns once the transport is connecting; ``on_open`` moves the
        session to LIVE.
        """
        if self.state is not SessionState.IDLE:
            raise SessionAlreadyActive("A live session is already running.")

        capture = self.capture_factory()
        try:
            capture.open()
        except CaptureUnavailable as exc:
            logger.warning("Failed to start session: %s", exc)
            self._set_error(str(exc))
            raise

        self._generation += 1
        generation = self._generation
        self.error = None
        self.pipeline.reset(generation)
        self.segmenter = TranscriptSegmenter(
            self.pipeline, generation, on_error=self._on_extraction_error
        )
        self._resources = SessionResources(capture=capture)
        self._set_state(SessionState.CONNECTING)

        segmenter = self.segmenter
        callbacks = LiveCallbacks(
            on_open=lambda: self._on_open(generation),
            on_message=lambda text: self._on_message(generation, text),
            on_error=lambda exc: self._on_error(generation, exc),
            on_close=lambda: self._on_close(generation, segmenter),
        )
        try:
            transport = await self.gemini.open_live_session(callbacks)
        except Exception as exc:
            logger.error("Failed to open live session: %s", exc)
            self._teardown()
            self._set_error(CONNECTION_ERROR_MESSAGE)
            raise LiveConnectionError(CONNECTION_ERROR_MESSAGE) from exc

        if generation == self._generation and self.state is not SessionState.IDLE:
            self._resources.transport = transport
        else:
            transport.close()

    def stop(self) -> None:
        """Release every session resource and return to IDLE.  Idempotent."""
        self._teardown()

    async def aclose(self) -> None:
        """Stop for shutdown: a transport that reports its close late schedules no drain."""
        self.stop()
        self._generation += 1
        await asyncio.gather(*list(self._background), return_exceptions=True)

    async def wait_for_drains(self) -> None:
        """Wait for final drains scheduled by ``on_close``."""
        await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Transport callbacks (event loop)
    # ------------------------------------------------------------------

    def _on_open(self, generation: int) -> None:
        if generation != self._generation or self.state is not SessionState.CONNECTING:
            return
        resources = self._resources
        self._set_state(SessionState.LIVE)
        try:
            resources.capture.start(asyncio.get_running_loop())
        except CaptureUnavailable as exc:
            logger.warning("Capture failed after connect: %s", exc)
            self._teardown()
            self._set_error(str(exc))
            return
        resources.audio_task = asyncio.create_task(self._pump_audio(generation))
        resources.timer_task = asyncio.create_task(self._run_timer(self.segmenter))

    def _on_message(self, generation: int, text: str) -> None:
        if generation != self._generation or self.segmenter is None:
            return
        self.segmenter.append(text)

    def _on_error(self, generation: int, exc: BaseException) -> None:
        if generation != self._generation:
            return
        logger.error("Session error: %s", exc)
        self._teardown()
        self._set_error(CONNECTION_ERROR_MESSAGE)

    def _on_close(self, generation: int, segmenter: TranscriptSegmenter) -> None:
        if generation != self._generation:
            return
        self._teardown()
        # Process whatever was said just before the connection closed.
        task = asyncio.create_task(segmenter.drain())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_extraction_error(self, error: ExtractionError) -> None:
        self._emit({"type": "extraction_error", "message": str(error)})

    # ------------------------------------------------------------------
    # Session tasks
    # ------------------------------------------------------------------

    async def _pump_audio(self, generation: int) -> None:
        resources = self._resources
        try:
            async for frame in resources.capture.frames():
                await resources.transport.send(frame)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._on_error(generation, exc)

    async def _run_timer(self, segmenter: TranscriptSegmenter) -> None:
        while True:
            await asyncio.sleep(self.segment_interval)
            # Shielded: stopping the session cancels the timer, not the drain.
            await asyncio.shield(segmenter.drain())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _teardown(self) -> None:
        resources, self._resources = self._resources, SessionResources()
        resources.release()
        if self.state is not SessionState.IDLE:
            logger.info("Live session stopped")
            self._set_state(SessionState.IDLE)

    def _set_state(self, state: SessionState) -> None:
        self.state = state
        self._emit_status()

    def _set_error(self, message: str) -> None:
        self.error = message
        self._emit_status()

    def _emit_status(self) -> None:
        self._emit({"type": "session_status", "status": self.state.value, "error": self.error})

    def _emit(self, event: dict) -> None:
        for fn in self._listeners:
            try:
                fn(event)
            except Exception:
                logger.exception("Session listener failed")
