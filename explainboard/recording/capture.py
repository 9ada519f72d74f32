import asyncio
import logging
from typing import AsyncIterator

import numpy as np

from explainboard.config import settings
from explainboard.errors import CaptureUnavailable
from explainboard.recording.audio_utils import float_to_pcm16

logger = logging.getLogger(__name__)


class AudioCapture:
    """Microphone capture that yields 16-bit PCM frames in capture order.

    Threading model (two contexts):

    1. **Audio callback**: runs in PortAudio's own thread.  Encodes the
       block and hands it to the event loop; no I/O, no logging.

    2. **Event loop**: consumers iterate ``frames()`` and forward each
       frame to the live transport.

    The frame queue is unbounded so no frame is dropped while the
    transport is briefly slower than the microphone.
    """

    def __init__(
        self,
        sample_rate: int | None = None,
        frame_size: int | None = None,
    ) -> None:
        self.sample_rate = sample_rate or settings.sample_rate
        self.frame_size = frame_size or settings.frame_size
        self._stream = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()
        self._running = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Acquire the input device without starting capture.

        Raises ``CaptureUnavailable`` (with nothing left open) if PortAudio,
        the device or the permission is missing.
        """
        try:
            # PortAudio is loaded on first use so the server starts on hosts
            # without it.
            import sounddevice as sd
        except OSError as exc:
            raise CaptureUnavailable("Audio input is not available on this host.") from exc

        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.frame_size,
                callback=self._audio_callback,
            )
        except (sd.PortAudioError, ValueError) as exc:
            self._stream = None
            raise CaptureUnavailable(
                "Could not access microphone. Please check permissions and try again."
            ) from exc

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._stream is None:
            raise CaptureUnavailable("Microphone was not opened.")
        self._loop = loop
        self._running = True
        self._stream.start()
        logger.info(
            "Capture started: %d Hz, %d samples per frame",
            self.sample_rate, self.frame_size,
        )

    async def frames(self) -> AsyncIterator[bytes]:
        while True:
            yield await self._queue.get()

    def close(self) -> None:
        self._running = False
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Audio callback (PortAudio thread)
    # ------------------------------------------------------------------

    def _audio_callback(
        self,
        indata: np.ndarray,
        frames: int,
        timeinfo,  # noqa: ANN001
        status,  # noqa: ANN001
    ) -> None:
        if not self._running or self._loop is None:
            return
        frame = float_to_pcm16(indata[:, 0])
        self._loop.call_soon_threadsafe(self._queue.put_nowait, frame)
