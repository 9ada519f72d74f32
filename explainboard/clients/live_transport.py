import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

from google import genai
from google.genai import types

from explainboard.errors import LiveConnectionError
from explainboard.recording.audio_utils import pcm_mime_type

logger = logging.getLogger(__name__)

_LIVE_CONFIG = types.LiveConnectConfig(
    # The native-audio models only accept an AUDIO response modality; the
    # spoken replies are ignored, only the input transcription is used.
    response_modalities=[types.Modality.AUDIO],
    input_audio_transcription=types.AudioTranscriptionConfig(),
)


@dataclass
class LiveCallbacks:
    on_open: Callable[[], None]
    on_message: Callable[[str], None]
    on_error: Callable[[BaseException], None]
    on_close: Callable[[], None]


def transcript_text(message: Any) -> str | None:
    """Return the input-transcription fragment carried by a server message."""
    content = getattr(message, "server_content", None)
    transcription = getattr(content, "input_transcription", None) if content else None
    text = getattr(transcription, "text", None) if transcription else None
    return text or None


class LiveTransport:
    """Callback-style adapter over a Gemini Live session.

    The receive loop runs in its own task on the event loop.  It fires
    ``on_open`` once the websocket is up, ``on_message`` for every transcript
    fragment, ``on_error`` on any failure and ``on_close`` exactly once, last,
    however the loop ends (server close, error or ``close()``).
    """

    def __init__(
        self,
        client: genai.Client,
        model: str,
        callbacks: LiveCallbacks,
        *,
        sample_rate: int,
    ) -> None:
        self._client = client
        self._model = model
        self._callbacks = callbacks
        self._mime_type = pcm_mime_type(sample_rate)
        self._session = None
        self._task: asyncio.Task | None = None

    @property
    def is_open(self) -> bool:
        return self._session is not None

    def open(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def send(self, frame: bytes) -> None:
        session = self._session
        if session is None:
            raise LiveConnectionError("Live session is not open.")
        await session.send_realtime_input(
            audio=types.Blob(data=frame, mime_type=self._mime_type)
        )

    def close(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        # on_close may call back into close() from inside the receive task
        if task is asyncio.current_task():
            return
        task.cancel()

    # ------------------------------------------------------------------
    # Receive loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            async with self._client.aio.live.connect(
                model=self._model, config=_LIVE_CONFIG
            ) as session:
                self._session = session
                logger.info("Live session opened (model=%s)", self._model)
                self._callbacks.on_open()
                await self._receive(session)
        except Exception as exc:
            logger.error("Live session error: %s", exc)
            self._callbacks.on_error(exc)
        finally:
            self._session = None
            logger.info("Live session closed")
            self._callbacks.on_close()

    async def _receive(self, session) -> None:
        # session.receive() ends after every model turn; an empty pass means
        # the server closed the connection.
        while True:
            received = False
            async for message in session.receive():
                received = True
                text = transcript_text(message)
                if text:
                    self._callbacks.on_message(text)
            if not received:
                return
