import base64
import logging

from google import genai
from google.genai import errors, types

from explainboard.clients.live_transport import LiveCallbacks, LiveTransport
from explainboard.config import settings
from explainboard.errors import ImageGenerationFailure

logger = logging.getLogger(__name__)


class GeminiClient:
    """Shared Gemini handle for image generation and live transcription sessions."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        image_model: str | None = None,
        live_model: str | None = None,
        client: genai.Client | None = None,
    ) -> None:
        self._client = client or genai.Client(api_key=api_key or settings.gemini_api_key)
        self.image_model = image_model or settings.image_model
        self.live_model = live_model or settings.live_model

    async def generate_image(self, prompt: str) -> str:
        """Generate one illustration and return it as a ``data:image/png`` URL.

        Raises ``ImageGenerationFailure`` if the request fails or the reply
        carries no inline image.
        """
        try:
            resp = await self._client.aio.models.generate_content(
                model=self.image_model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_modalities=[types.Modality.IMAGE],
                ),
            )
        except errors.APIError as exc:
            raise ImageGenerationFailure(f"Image request failed: {exc}") from exc

        candidates = resp.candidates or []
        content = candidates[0].content if candidates else None
        for part in (content.parts or []) if content else []:
            if part.inline_data and part.inline_data.data:
                encoded = base64.b64encode(part.inline_data.data).decode("ascii")
                return f"data:image/png;base64,{encoded}"
        raise ImageGenerationFailure("Image generation failed. No image data received.")

    async def open_live_session(self, callbacks: LiveCallbacks) -> LiveTransport:
        """Open a streaming transcription session; events arrive via *callbacks*."""
        transport = LiveTransport(
            self._client,
            self.live_model,
            callbacks,
            sample_rate=settings.sample_rate,
        )
        transport.open()
        return transport
