import json
import logging

import groq
from groq import AsyncGroq

from explainboard.config import settings
from explainboard.errors import MalformedModelOutput, ModelRequestError

logger = logging.getLogger(__name__)


class GroqClient:
    """Async wrapper around the official Groq SDK for structured output.

    Usage::

        groq = GroqClient()                               # DEFAULT_MODEL from env
        data = await groq.chat_json(messages, MY_SCHEMA)  # parsed dict

    One instance is built at startup and shared by every service, so all
    calls reuse the same ``AsyncGroq`` HTTP session.
    """

    def __init__(self, model: str | None = None, api_key: str | None = None) -> None:
        self._model = model or settings.default_model
        self._client = AsyncGroq(api_key=api_key or settings.groq_api_key)

    async def chat_json(
        self,
        messages: list[dict],
        response_schema: dict,
        *,
        schema_name: str = "response",
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict:
        """Structured-output completion using Groq's strict JSON Schema mode.

        *response_schema* must be a valid JSON Schema dict.  Groq strict mode
        requires ``"additionalProperties": false`` on every object and all
        properties listed in ``"required"``.

        Returns the parsed JSON object.  Raises ``ModelRequestError`` when the
        API call itself fails and ``MalformedModelOutput`` when the reply is
        not a JSON object.
        """
        kwargs: dict = {
            "model": model or self._model,
            "messages": messages,
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": schema_name,
                    "strict": True,
                    "schema": response_schema,
                },
            },
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            resp = await self._client.chat.completions.create(**kwargs)
        except groq.APIError as exc:
            raise ModelRequestError(f"Groq request failed: {exc}") from exc

        text = (resp.choices[0].message.content or "").strip()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("Failed to parse %s response: %r", schema_name, text[:200])
            raise MalformedModelOutput(
                "The model returned an invalid format. Please try again."
            ) from exc
        if not isinstance(data, dict):
            raise MalformedModelOutput(
                "The model returned an invalid format. Please try again."
            )
        return data
